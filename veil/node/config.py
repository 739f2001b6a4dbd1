"""
Veil Ledger Configuration
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional

from veil.constants import (
    DEFAULT_ATTESTATION_MAX_AGE_SEC,
    DEFAULT_ATTESTATION_MAX_SKEW_SEC,
    DEFAULT_CURVE,
    DEFAULT_H_GENERATOR_SEED,
    DEFAULT_HTTP_TIMEOUT_SEC,
    DEFAULT_RANGE_BITS,
    DEFAULT_SUBMISSION_TIMEOUT_SEC,
    SUPPORTED_RANGE_BITS,
)
from veil.crypto.curve import CURVES
from veil.crypto.generators import PedersenGenerators, get_generators
from veil.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class CryptoConfig:
    """Curve and proof parameters."""
    curve: str = DEFAULT_CURVE
    h_generator_seed: str = DEFAULT_H_GENERATOR_SEED
    range_bits: int = DEFAULT_RANGE_BITS


@dataclass
class SubmissionConfig:
    """Ledger submission and attestation settings."""
    timeout_sec: float = DEFAULT_SUBMISSION_TIMEOUT_SEC
    attestation_max_age_sec: float = DEFAULT_ATTESTATION_MAX_AGE_SEC
    attestation_max_skew_sec: float = DEFAULT_ATTESTATION_MAX_SKEW_SEC
    contract_url: Optional[str] = None
    authority_url: Optional[str] = None
    http_timeout_sec: float = DEFAULT_HTTP_TIMEOUT_SEC


@dataclass
class StorageConfig:
    """Storage configuration."""
    data_dir: str = "./data"
    db_name: str = "veil_utxos.db"
    persist: bool = True


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class LedgerConfig:
    """
    Complete ledger configuration.

    Passed explicitly to UTXOLedger; there is no process-wide instance.
    """
    name: str = "veil-ledger"

    # Sub-configurations
    crypto: CryptoConfig = field(default_factory=CryptoConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def db_path(self) -> Path:
        """Get database file path."""
        return Path(self.storage.data_dir) / self.storage.db_name

    def generators(self) -> PedersenGenerators:
        """Generators for the configured curve and H seed (cached)."""
        return get_generators(self.crypto.curve, self.crypto.h_generator_seed.encode("utf-8"))

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        # Crypto validation
        if self.crypto.curve not in CURVES:
            errors.append(f"Unknown curve: {self.crypto.curve}")
        if not self.crypto.h_generator_seed:
            errors.append("h_generator_seed cannot be empty")
        if self.crypto.range_bits not in SUPPORTED_RANGE_BITS:
            errors.append(f"Unsupported range_bits: {self.crypto.range_bits}")

        # Submission validation
        if self.submission.timeout_sec <= 0:
            errors.append("submission timeout must be positive")
        if self.submission.attestation_max_age_sec <= 0:
            errors.append("attestation_max_age_sec must be positive")
        if self.submission.attestation_max_skew_sec < 0:
            errors.append("attestation_max_skew_sec cannot be negative")
        if self.submission.http_timeout_sec <= 0:
            errors.append("http_timeout_sec must be positive")
        for key in ("contract_url", "authority_url"):
            url = getattr(self.submission, key)
            if url is not None and not url.startswith(("http://", "https://")):
                errors.append(f"{key} must be an http(s) URL")

        # Storage validation
        if self.storage.persist and not self.storage.data_dir:
            errors.append("data_dir cannot be empty")

        # Log validation
        if not isinstance(getattr(logging, self.log.level.upper(), None), int):
            errors.append(f"Unknown log level: {self.log.level}")

        return errors

    def require_valid(self) -> None:
        """
        Raises:
            ConfigurationError: If validate() reports any error
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError("; ".join(errors), {"errors": errors})

    def save(self, path: str) -> None:
        """Save configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: str) -> "LedgerConfig":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)

        try:
            config = cls(name=data.get("name", "veil-ledger"))

            if "crypto" in data:
                config.crypto = CryptoConfig(**data["crypto"])

            if "submission" in data:
                config.submission = SubmissionConfig(**data["submission"])

            if "storage" in data:
                config.storage = StorageConfig(**data["storage"])

            if "log" in data:
                config.log = LogConfig(**data["log"])
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration file {path}: {e}")

        logger.info(f"Configuration loaded from {path}")
        return config

    def to_dict(self) -> dict:
        """Export configuration as dictionary."""
        return {
            "name": self.name,
            "crypto": asdict(self.crypto),
            "submission": asdict(self.submission),
            "storage": asdict(self.storage),
            "log": asdict(self.log),
        }


def setup_logging(config: LogConfig) -> None:
    """Configure logging based on config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
    )
