"""
Wire types for the EigenAI chat-completions API and the verification payload.

Two message shapes live here:

- Prompt messages: the accumulated form produced by the agent loop, where one
  assistant message carries every tool call so far and one tool message
  carries every result.
- Chat messages: the strict OpenAI-style turns the provider accepts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from eigentrader.core.json_utils import dumps

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"

# Grant lifetime on the provider side.
GRANT_TTL_SEC = 3600.0


@dataclass
class Grant:
    message: str
    signature: bytes
    signer_address: str
    cached_at: float
    remaining_tokens: Optional[int] = None

    def is_valid(self, now: float) -> bool:
        if now - self.cached_at >= GRANT_TTL_SEC:
            return False
        return self.remaining_tokens is None or self.remaining_tokens > 0

    @property
    def signature_hex(self) -> str:
        return "0x" + bytes(self.signature).hex()


@dataclass(frozen=True)
class AuthFields:
    grant_message: str
    grant_signature: str
    wallet_address: str

    def as_body(self) -> Dict[str, str]:
        return {
            "grantMessage": self.grant_message,
            "grantSignature": self.grant_signature,
            "walletAddress": self.wallet_address,
        }


# --- accumulated prompt form -------------------------------------------------

@dataclass
class TextPart:
    text: str


@dataclass
class ToolCallPart:
    tool_call_id: str
    tool_name: str
    input: Any = None


@dataclass
class ToolResultPart:
    tool_call_id: str
    tool_name: str
    output: Any = None


PromptContent = Union[str, List[Union[TextPart, ToolCallPart, ToolResultPart]]]


@dataclass
class PromptMessage:
    role: str
    content: PromptContent


# --- provider wire form ------------------------------------------------------

@dataclass
class ChatMessage:
    role: str
    content: Optional[str]
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            out["tool_calls"] = self.tool_calls
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        return out


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def tool_choice_to_wire(choice: Union[str, Dict[str, Any], None]) -> Union[str, Dict[str, Any]]:
    """auto | none | required | {"tool": name} -> OpenAI tool_choice."""
    if choice is None:
        return "auto"
    if isinstance(choice, str):
        if choice not in ("auto", "none", "required"):
            return {"type": "function", "function": {"name": choice}}
        return choice
    name = choice.get("tool") or choice.get("name")
    return {"type": "function", "function": {"name": name}}


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Usage":
        if not isinstance(data, dict):
            return cls()
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        total = data.get("total_tokens")
        return cls(prompt, completion, int(total) if total is not None else prompt + completion)

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ChatRequest:
    messages: List[ChatMessage]
    model: str
    max_tokens: int = 4096
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    tools: Optional[List[ToolSpec]] = None
    tool_choice: Union[str, Dict[str, Any], None] = None
    stream: bool = False

    def to_body(self, auth: Optional[AuthFields] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "messages": [m.to_dict() for m in self.messages],
            "model": self.model,
            "max_tokens": self.max_tokens,
        }
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.top_p is not None:
            body["top_p"] = self.top_p
        if self.tools:
            body["tools"] = [t.to_openai() for t in self.tools]
            body["tool_choice"] = tool_choice_to_wire(self.tool_choice)
        if self.stream:
            body["stream"] = True
        if auth is not None:
            body.update(auth.as_body())
        return body

    @property
    def request_prompt(self) -> str:
        return build_request_prompt(self.messages)


@dataclass
class ChatResponse:
    id: str
    model: str
    content: str
    tool_calls: List[Dict[str, Any]]
    finish_reason: str
    usage: Usage
    signature: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatResponse":
        choices = data.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices and isinstance(choices[0], dict) else {}
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        content = message.get("content")
        tool_calls = message.get("tool_calls")
        signature = data.get("signature")
        return cls(
            id=str(data.get("id") or ""),
            model=str(data.get("model") or ""),
            content=content if isinstance(content, str) else "",
            tool_calls=[c for c in tool_calls if isinstance(c, dict)] if isinstance(tool_calls, list) else [],
            finish_reason=map_finish_reason(choice.get("finish_reason")),
            usage=Usage.from_dict(data.get("usage")),
            signature=str(signature) if signature else None,
            raw=data,
        )

    @property
    def output_for_verification(self) -> str:
        """Text content, or the serialized tool calls when there is no text."""
        return self.content or dumps(self.tool_calls)


@dataclass
class VerificationData:
    request_prompt: str
    response_model: str
    response_output: str
    signature: str
    wallet_address: Optional[str] = None
    usage: Usage = field(default_factory=Usage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestPrompt": self.request_prompt,
            "responseModel": self.response_model,
            "responseOutput": self.response_output,
            "signature": self.signature,
            "walletAddress": self.wallet_address,
            "usage": self.usage.to_dict(),
        }


def build_request_prompt(messages: List[ChatMessage]) -> str:
    return "".join(m.content or "" for m in messages)


def map_finish_reason(reason: Optional[str]) -> str:
    return {
        "stop": "stop",
        "length": "length",
        "tool_calls": "tool-calls",
        "content_filter": "content-filter",
    }.get(reason or "stop", "stop")


def parse_error_code(body: Any) -> str:
    """Classify a provider error body. The explicit code wins over message text."""
    if not isinstance(body, dict):
        return "unknown"
    raw_error = body.get("error")
    error = raw_error if isinstance(raw_error, dict) else {}
    message = error.get("message") or body.get("message") or (raw_error if isinstance(raw_error, str) else "")
    message = str(message).lower()
    code = str(error.get("code") or body.get("code") or "")

    if code == "grant_expired" or "grant expired" in message:
        return "grant_expired"
    if code == "grant_not_found" or "no grant" in message or "grant not found" in message:
        return "grant_not_found"
    if code == "insufficient_tokens" or "insufficient" in message:
        return "insufficient_tokens"
    if code == "invalid_signature" or "invalid signature" in message:
        return "invalid_signature"
    if code == "rate_limited" or "rate limit" in message:
        return "rate_limited"
    return "unknown"
