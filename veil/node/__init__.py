"""
Veil Node Configuration
"""

from veil.node.config import LedgerConfig, LogConfig, setup_logging

__all__ = ["LedgerConfig", "LogConfig", "setup_logging"]
