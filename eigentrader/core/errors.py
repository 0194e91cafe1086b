"""
Error taxonomy.

ConfigurationError is fatal for the component that needs the setting.
Everything else is recovered close to where it happens: provider failures
become HOLD decisions or unsigned responses, verification mismatches are
logged, parse failures become HOLD, rejected or failed executions are
annotated into the decision rationale.
"""

from __future__ import annotations

from typing import Optional


class EigenTraderError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(EigenTraderError, ValueError):
    """Missing or malformed credential / setting."""


class ProviderUnavailable(EigenTraderError):
    """Network failure or error status from the inference provider or registry."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: str = "unknown",
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.body = body

    @property
    def is_grant_error(self) -> bool:
        return self.code in {"grant_expired", "grant_not_found", "insufficient_tokens", "invalid_signature"} or (
            self.status in (401, 403)
        )


class VerificationMismatch(EigenTraderError):
    """Signature did not recover to the expected signer."""

    def __init__(self, recovered: Optional[str], expected: str) -> None:
        super().__init__(f"recovered {recovered or 'nothing'}, expected {expected}")
        self.recovered = recovered
        self.expected = expected


class ParseFailure(EigenTraderError):
    """Model output could not be turned into a trade decision."""


class ExecutionRejected(EigenTraderError):
    """A risk guard refused the trade."""


class ExecutionFailed(EigenTraderError):
    """Quote or swap call errored."""
