"""
Core utilities package.

JSON helpers and the error taxonomy shared by every other package.
"""

from eigentrader.core.errors import (
    ConfigurationError,
    EigenTraderError,
    ExecutionFailed,
    ExecutionRejected,
    ParseFailure,
    ProviderUnavailable,
    VerificationMismatch,
)
from eigentrader.core.json_utils import dumps, dumps_pretty, loads

__all__ = [
    "ConfigurationError",
    "EigenTraderError",
    "ExecutionFailed",
    "ExecutionRejected",
    "ParseFailure",
    "ProviderUnavailable",
    "VerificationMismatch",
    "dumps",
    "dumps_pretty",
    "loads",
]
