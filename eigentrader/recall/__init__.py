"""
Recall verification registry: HTTP client and periodic submission of signed inferences.
"""

from eigentrader.recall.client import RegistryClient, RegistryResult, wallet_verification_message
from eigentrader.recall.submission_service import SubmissionOutcome, SubmissionService

__all__ = [
    "RegistryClient",
    "RegistryResult",
    "wallet_verification_message",
    "SubmissionOutcome",
    "SubmissionService",
]
