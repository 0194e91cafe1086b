"""
Local verification of EigenAI response signatures.

The provider signs (EIP-191 personal_sign) the literal concatenation

    chain_id + model_id + <every request message content, in order> + output

where output is the response text, or the JSON of the tool-call list when the
model answered with tool calls only. Rebuilding that string byte-for-byte and
recovering the signer is all verification does; it never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from eigentrader.config.config import DEFAULT_CHAIN_ID, DEFAULT_EXPECTED_SIGNER
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.types import ChatMessage, ChatRequest, ChatResponse, VerificationData

log = logging.getLogger("eigentrader")

SIGNATURE_BYTES = 65


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    recovered_address: Optional[str]
    expected_signer: str
    reconstructed_message: str
    error: Optional[str] = None


def build_signed_message(
    chain_id: str,
    model_id: str,
    prompt: Union[str, Iterable[Union[ChatMessage, str, None]]],
    output: str,
) -> str:
    """Order-sensitive concatenation the provider signs. None contents count as ""."""
    if isinstance(prompt, str):
        prompt_text = prompt
    else:
        parts = []
        for m in prompt:
            if isinstance(m, ChatMessage):
                parts.append(m.content or "")
            else:
                parts.append(m or "")
        prompt_text = "".join(parts)
    return f"{chain_id}{model_id}{prompt_text}{output}"


def _normalize_signature(signature: Optional[str]) -> bytes:
    if not signature:
        raise ValueError("missing signature")
    if not isinstance(signature, str):
        raise ValueError(f"signature must be a hex string, got {type(signature).__name__}")
    sig = signature.strip()
    if sig[:2].lower() == "0x":
        sig = sig[2:]
    try:
        raw = bytes.fromhex(sig)
    except ValueError as exc:
        raise ValueError("signature is not valid hex") from exc
    if len(raw) != SIGNATURE_BYTES:
        raise ValueError(f"signature must be {SIGNATURE_BYTES} bytes, got {len(raw)}")
    return raw


def recover_signer(message: str, signature: str) -> str:
    """Address that produced `signature` over `message`. Raises ValueError on malformed input."""
    raw = _normalize_signature(signature)
    try:
        return Account.recover_message(encode_defunct(text=message), signature=raw)
    except Exception as exc:
        raise ValueError(f"signature recovery failed: {exc}") from exc


class SignatureVerifier:
    def __init__(self, chain_id: str = DEFAULT_CHAIN_ID, expected_signer: str = DEFAULT_EXPECTED_SIGNER) -> None:
        self.chain_id = chain_id
        self.expected_signer = expected_signer

    def verify_message(self, message: str, signature: Optional[str]) -> VerificationResult:
        try:
            recovered = recover_signer(message, signature or "")
        except ValueError as exc:
            return VerificationResult(False, None, self.expected_signer, message, str(exc))

        if recovered.lower() != self.expected_signer.lower():
            return VerificationResult(
                False,
                recovered,
                self.expected_signer,
                message,
                f"Signer mismatch: recovered {recovered}, expected {self.expected_signer}",
            )
        return VerificationResult(True, recovered, self.expected_signer, message)

    def verify(self, request: ChatRequest, response: ChatResponse) -> VerificationResult:
        message = build_signed_message(
            self.chain_id,
            response.model,
            request.messages,
            response.output_for_verification,
        )
        return self.verify_message(message, response.signature)

    def verify_data(self, data: VerificationData) -> VerificationResult:
        message = build_signed_message(self.chain_id, data.response_model, data.request_prompt, data.response_output)
        return self.verify_message(message, data.signature)


def create_audit_hashes(request: ChatRequest, response: ChatResponse) -> dict:
    """keccak-256 of the canonical request and response, for audit logs."""
    request_doc = {"model": request.model, "messages": [m.to_dict() for m in request.messages]}
    response_doc = response.raw or {
        "id": response.id,
        "model": response.model,
        "content": response.content,
        "tool_calls": response.tool_calls,
        "signature": response.signature,
    }
    return {
        "request_hash": "0x" + keccak(text=dumps(request_doc)).hex(),
        "response_hash": "0x" + keccak(text=dumps(response_doc)).hex(),
    }
