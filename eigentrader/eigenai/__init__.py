"""
EigenAI package.

Grant authentication, the chat-completions transport, signature verification
and the tool-calling inference adapter.
"""

from eigentrader.eigenai.adapter import (
    AdapterState,
    Completed,
    Exhausted,
    InferenceAdapter,
    StreamPart,
    convert_prompt_to_messages,
)
from eigentrader.eigenai.client import EigenAIClient
from eigentrader.eigenai.grant_authenticator import GrantAuthenticator
from eigentrader.eigenai.reasoning import ReasoningClient, ReasoningResult
from eigentrader.eigenai.signature_verifier import (
    SignatureVerifier,
    VerificationResult,
    build_signed_message,
    create_audit_hashes,
)
from eigentrader.eigenai.types import (
    AuthFields,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    Grant,
    PromptMessage,
    ToolSpec,
    VerificationData,
)

__all__ = [
    "AdapterState",
    "Completed",
    "Exhausted",
    "InferenceAdapter",
    "StreamPart",
    "convert_prompt_to_messages",
    "EigenAIClient",
    "GrantAuthenticator",
    "ReasoningClient",
    "ReasoningResult",
    "SignatureVerifier",
    "VerificationResult",
    "build_signed_message",
    "create_audit_hashes",
    "AuthFields",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "Grant",
    "PromptMessage",
    "ToolSpec",
    "VerificationData",
]
