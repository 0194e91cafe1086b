"""
Single-shot call to the reasoning-only model used by the deterministic flow.

No tools, two messages, low temperature. Failures never propagate: the
caller always gets content it can feed to parse_decision(), falling back to
a serialized HOLD decision that names the failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from eigentrader.core.errors import ConfigurationError, ProviderUnavailable
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.client import EigenAIClient
from eigentrader.eigenai.types import ROLE_SYSTEM, ROLE_USER, ChatMessage, ChatRequest, VerificationData
from eigentrader.trading.decision import hold_decision

log = logging.getLogger("eigentrader")

DECISION_MODE_SUFFIX = (
    "\n\nYou are now in DECISION MODE. Based on the gathered data, make your final trading decision."
)


@dataclass
class ReasoningResult:
    content: str
    signature: Optional[str] = None
    verification: Optional[VerificationData] = None
    error: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.error is not None


class ReasoningClient:
    def __init__(
        self,
        client: Optional[EigenAIClient],
        model_id: str,
        max_tokens: int = 8192,
        temperature: float = 0.3,
    ) -> None:
        self._client = client
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.temperature = temperature

    def build_request(self, system_prompt: str, user_prompt: str) -> ChatRequest:
        return ChatRequest(
            messages=[
                ChatMessage(ROLE_SYSTEM, system_prompt + DECISION_MODE_SUFFIX),
                ChatMessage(ROLE_USER, user_prompt),
            ],
            model=self.model_id,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

    @staticmethod
    def _fallback(reason: str) -> ReasoningResult:
        return ReasoningResult(content=hold_decision(reason).to_json(), error=reason)

    async def decide(self, system_prompt: str, user_prompt: str) -> ReasoningResult:
        if self._client is None:
            log.error(dumps({"event": "reasoning_unconfigured"}))
            return self._fallback("EigenAI API key not configured")

        request = self.build_request(system_prompt, user_prompt)
        log.info(dumps({
            "event": "reasoning_request",
            "model": self.model_id,
            "system_chars": len(system_prompt),
            "user_chars": len(user_prompt),
        }))
        try:
            response = await self._client.complete(request)
        except ProviderUnavailable as exc:
            log.error(dumps({"event": "reasoning_failed", "status": exc.status, "code": exc.code, "error": str(exc)}))
            if exc.status:
                return self._fallback(f"Qwen API error: {exc.status}")
            return self._fallback("Network error calling Qwen")
        except ConfigurationError as exc:
            log.error(dumps({"event": "reasoning_failed", "error": str(exc)}))
            return self._fallback(f"EigenAI configuration error: {exc}")

        verification = None
        if response.signature:
            verification = VerificationData(
                request_prompt=request.request_prompt,
                response_model=response.model or self.model_id,
                response_output=response.content,
                signature=response.signature,
                wallet_address=self._client.wallet_address,
                usage=response.usage,
            )
        log.info(dumps({
            "event": "reasoning_response",
            "model": response.model or self.model_id,
            "content_chars": len(response.content),
            "signed": bool(response.signature),
        }))
        return ReasoningResult(content=response.content, signature=response.signature, verification=verification)
