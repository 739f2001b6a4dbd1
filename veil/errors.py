"""
Veil Error Handling

All error codes and exception classes.
"""

from enum import IntEnum
from typing import Optional, Any


class ErrorCode(IntEnum):
    """Veil error codes."""

    # 1xxx - General errors
    UNKNOWN_ERROR = 1000
    INVALID_VALUE = 1001
    CONFIGURATION_ERROR = 1002

    # 2xxx - Curve / field arithmetic errors
    CURVE_ARITHMETIC_FAILURE = 2001
    NO_INVERSE_EXISTS = 2002

    # 3xxx - Proof preconditions
    VALUE_OUT_OF_RANGE = 3001
    VALUE_CONSERVATION_VIOLATED = 3002

    # 4xxx - UTXO state machine errors
    UTXO_NOT_FOUND = 4001
    UTXO_ALREADY_SPENT = 4002
    NULLIFIER_ALREADY_USED = 4003

    # 5xxx - Attestation errors
    ATTESTATION_INVALID = 5001
    ATTESTATION_EXPIRED = 5002
    ATTESTATION_UNAVAILABLE = 5003

    # 6xxx - Ledger submission errors
    SUBMISSION_TIMEOUT = 6001
    SUBMISSION_REJECTED = 6002


class VeilError(Exception):
    """Base exception for all veil errors."""

    retryable: bool = False

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


# ==============================================================================
# General Errors (1xxx)
# ==============================================================================

class InvalidValue(VeilError):
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.INVALID_VALUE, message, details)


class ConfigurationError(VeilError):
    def __init__(self, message: str, details: Any = None):
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message, details)


# ==============================================================================
# Curve Errors (2xxx)
# ==============================================================================

class CurveArithmeticFailure(VeilError):
    """Internal invariant broken: a computed point is not on the curve."""

    def __init__(self, message: str = "Computed point is not on the curve", details: Any = None):
        super().__init__(ErrorCode.CURVE_ARITHMETIC_FAILURE, message, details)


class NoInverseExists(VeilError):
    def __init__(self, a: int, modulus: int):
        super().__init__(
            ErrorCode.NO_INVERSE_EXISTS,
            f"No inverse of {a} modulo {modulus}",
            {"modulus": hex(modulus)}
        )


# ==============================================================================
# Proof Precondition Errors (3xxx)
# ==============================================================================

class ValueOutOfRange(VeilError):
    def __init__(self, bit_length: int, details: Optional[dict] = None):
        info = {"bit_length": bit_length}
        if details:
            info.update(details)
        super().__init__(
            ErrorCode.VALUE_OUT_OF_RANGE,
            f"Value outside [0, 2^{bit_length})",
            info
        )


class ValueConservationViolated(VeilError):
    def __init__(self, expected: int, actual: int, utxo_id: Optional[str] = None):
        details = {"expected": expected, "actual": actual}
        if utxo_id is not None:
            details["utxo_id"] = utxo_id
        super().__init__(
            ErrorCode.VALUE_CONSERVATION_VIOLATED,
            f"Value not conserved: {actual} != {expected}",
            details
        )


# ==============================================================================
# State Machine Errors (4xxx)
# ==============================================================================

class UTXONotFound(VeilError):
    def __init__(self, utxo_id: str):
        super().__init__(
            ErrorCode.UTXO_NOT_FOUND,
            f"UTXO not found: {utxo_id[:16]}",
            {"utxo_id": utxo_id}
        )


class UTXOAlreadySpent(VeilError):
    def __init__(self, utxo_id: str):
        super().__init__(
            ErrorCode.UTXO_ALREADY_SPENT,
            f"UTXO already spent: {utxo_id[:16]}",
            {"utxo_id": utxo_id}
        )


class NullifierAlreadyUsed(VeilError):
    def __init__(self, nullifier: bytes, utxo_id: Optional[str] = None):
        details = {"nullifier": nullifier.hex()}
        if utxo_id is not None:
            details["utxo_id"] = utxo_id
        super().__init__(
            ErrorCode.NULLIFIER_ALREADY_USED,
            f"Nullifier already used: {nullifier.hex()[:16]}",
            details
        )


# ==============================================================================
# Attestation Errors (5xxx)
# ==============================================================================

class AttestationInvalid(VeilError):
    def __init__(self, reason: str, details: Any = None):
        super().__init__(
            ErrorCode.ATTESTATION_INVALID,
            f"Invalid attestation: {reason}",
            details
        )


class AttestationExpired(VeilError):
    def __init__(self, age: float, max_age: float):
        super().__init__(
            ErrorCode.ATTESTATION_EXPIRED,
            f"Attestation expired: age {age:.0f}s > {max_age:.0f}s",
            {"age": age, "max_age": max_age}
        )


class AttestationUnavailable(VeilError):
    retryable = True

    def __init__(self, reason: str):
        super().__init__(
            ErrorCode.ATTESTATION_UNAVAILABLE,
            f"Attestation authority unavailable: {reason}",
            {"reason": reason}
        )


# ==============================================================================
# Submission Errors (6xxx)
# ==============================================================================

class SubmissionTimeout(VeilError):
    retryable = True

    def __init__(self, operation: str, timeout: float, utxo_id: Optional[str] = None):
        details = {"operation": operation, "timeout": timeout}
        if utxo_id is not None:
            details["utxo_id"] = utxo_id
        super().__init__(
            ErrorCode.SUBMISSION_TIMEOUT,
            f"{operation} submission timed out after {timeout}s",
            details
        )


class SubmissionRejected(VeilError):
    retryable = True

    def __init__(self, operation: str, reason: str, utxo_id: Optional[str] = None):
        details = {"operation": operation, "reason": reason}
        if utxo_id is not None:
            details["utxo_id"] = utxo_id
        super().__init__(
            ErrorCode.SUBMISSION_REJECTED,
            f"{operation} rejected by ledger: {reason}",
            details
        )
