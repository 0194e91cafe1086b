"""
Generation contract on top of the EigenAI chat API.

InferenceAdapter does three things the raw client does not:

1. Unzips the agent loop's accumulated conversation (one assistant message
   with every tool call, one tool message with every result) into the strict
   call/result turns the provider requires.
2. Bounds the tool loop. The tool-calling model never stops calling tools on
   its own, so once the conversation holds `max_tool_results` tool results
   the adapter stops calling the provider and returns a synthetic decision.
3. Returns the verification payload with the result instead of firing it
   through a callback.

Results are tagged: `Completed` carries a real provider response, `Exhausted`
carries a templated decision. Callers must check which one they got.
"""

from __future__ import annotations

import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from eigentrader.core.errors import ProviderUnavailable
from eigentrader.core.json_utils import dumps, loads
from eigentrader.eigenai.client import EigenAIClient
from eigentrader.eigenai.types import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    PromptMessage,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    ToolSpec,
    Usage,
    VerificationData,
    map_finish_reason,
)
from eigentrader.trading.decision import TokenDecision, TradeAction, TradeDecision

log = logging.getLogger("eigentrader")

MAX_TOOL_RESULTS = 8
EXECUTE_SWAP_TOOL = "executeSwap"

EXECUTED_REASONING = "Trade was executed via executeSwap tool call."
EXECUTED_RATIONALE = "Trade executed - see swap transaction logs for details"
HOLD_REASONING = (
    "After gathering market data (prices, indicators, sentiment, pool metrics), "
    "no clear trading opportunity was identified. Holding current positions."
)
HOLD_RATIONALE = "Insufficient conviction for trade based on gathered data"


class AdapterState(Enum):
    NORMAL = auto()
    EXHAUSTED = auto()


@dataclass
class Completed:
    request: ChatRequest
    response: ChatResponse
    verification: Optional[VerificationData] = None
    state: AdapterState = AdapterState.NORMAL

    @property
    def text(self) -> str:
        return self.response.content

    @property
    def tool_calls(self) -> List[Dict[str, Any]]:
        return self.response.tool_calls


@dataclass
class Exhausted:
    decision: TradeDecision
    tool_result_count: int
    execute_swap_called: bool
    state: AdapterState = AdapterState.EXHAUSTED

    @property
    def text(self) -> str:
        return self.decision.to_json()


Outcome = Union[Completed, Exhausted]


@dataclass
class StreamPart:
    """
    One streaming event. `type` is one of: stream-start, text-start,
    text-delta, text-end, response-metadata, finish.
    """
    type: str
    id: Optional[str] = None
    delta: Optional[str] = None
    model_id: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None
    signature: Optional[str] = None
    verification: Optional[VerificationData] = None
    synthetic: bool = False
    error: Optional[str] = None


def stringify_tool_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    if isinstance(output, list):
        parts = []
        for item in output:
            if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
                parts.append(str(item["text"]))
            elif isinstance(item, TextPart):
                parts.append(item.text)
            else:
                parts.append(dumps(item))
        return "".join(parts)
    return dumps(output)


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    return "".join(p.text for p in content if isinstance(p, TextPart))


def convert_prompt_to_messages(prompt: Sequence[PromptMessage]) -> List[ChatMessage]:
    """
    Accumulated prompt -> strict provider turns.

    System and user messages pass through in order. Every tool call becomes
    its own assistant message immediately followed by its result, matched by
    call id. A call with no result gets no result message. Assistant text is
    kept only if no tool call has been seen yet.
    """
    messages: List[ChatMessage] = []
    calls: List[ToolCallPart] = []
    results: Dict[str, str] = {}

    for msg in prompt:
        if msg.role == ROLE_SYSTEM:
            messages.append(ChatMessage(ROLE_SYSTEM, _text_of(msg.content)))
        elif msg.role == ROLE_USER:
            messages.append(ChatMessage(ROLE_USER, _text_of(msg.content)))
        elif msg.role == ROLE_ASSISTANT:
            parts = [TextPart(msg.content)] if isinstance(msg.content, str) else msg.content
            for part in parts:
                if isinstance(part, ToolCallPart):
                    calls.append(part)
                elif isinstance(part, TextPart) and part.text.strip() and not calls:
                    messages.append(ChatMessage(ROLE_ASSISTANT, part.text))
        elif msg.role == ROLE_TOOL:
            parts = [] if isinstance(msg.content, str) else msg.content
            for part in parts:
                if isinstance(part, ToolResultPart):
                    results[part.tool_call_id] = stringify_tool_output(part.output)

    for call in calls:
        arguments = call.input if isinstance(call.input, str) else dumps(call.input if call.input is not None else {})
        messages.append(
            ChatMessage(
                ROLE_ASSISTANT,
                None,
                tool_calls=[{
                    "id": call.tool_call_id,
                    "type": "function",
                    "function": {"name": call.tool_name, "arguments": arguments},
                }],
            )
        )
        if call.tool_call_id in results:
            messages.append(ChatMessage(ROLE_TOOL, results[call.tool_call_id], tool_call_id=call.tool_call_id))
    return messages


def count_tool_results(messages: Sequence[ChatMessage]) -> int:
    return sum(1 for m in messages if m.role == ROLE_TOOL)


def was_tool_called(messages: Sequence[ChatMessage], tool_name: str = EXECUTE_SWAP_TOOL) -> bool:
    for m in messages:
        if m.role != ROLE_ASSISTANT or not m.tool_calls:
            continue
        for tc in m.tool_calls:
            if (tc.get("function") or {}).get("name") == tool_name:
                return True
    return False


def synthesize_decision(execute_swap_called: bool) -> TradeDecision:
    if execute_swap_called:
        return TradeDecision(
            reasoning=EXECUTED_REASONING,
            trade_decisions=[TokenDecision(
                token="UNKNOWN",
                action=TradeAction.EXECUTED.value,
                amount_usd=0.0,
                rationale=EXECUTED_RATIONALE,
            )],
        )
    return TradeDecision(
        reasoning=HOLD_REASONING,
        trade_decisions=[TokenDecision(
            token="ALL",
            action=TradeAction.HOLD.value,
            amount_usd=0.0,
            rationale=HOLD_RATIONALE,
        )],
    )


class InferenceAdapter:
    def __init__(
        self,
        client: EigenAIClient,
        model_id: str,
        max_tool_results: int = MAX_TOOL_RESULTS,
        max_tokens: int = 4096,
        metrics: Any = None,
    ) -> None:
        self._client = client
        self.model_id = model_id
        self.max_tool_results = max_tool_results
        self.max_tokens = max_tokens
        self._metrics = metrics

    def build_request(
        self,
        messages: List[ChatMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
        tool_choice: Union[str, Dict[str, Any], None] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stream: bool = False,
    ) -> ChatRequest:
        return ChatRequest(
            messages=messages,
            model=self.model_id,
            max_tokens=max_tokens or self.max_tokens,
            temperature=temperature,
            top_p=top_p,
            tools=list(tools) if tools else None,
            tool_choice=tool_choice,
            stream=stream,
        )

    def check_exhaustion(self, messages: Sequence[ChatMessage]) -> Optional[Exhausted]:
        """Exhausted outcome if the conversation already holds the tool-result ceiling."""
        count = count_tool_results(messages)
        if count < self.max_tool_results:
            return None
        swapped = was_tool_called(messages, EXECUTE_SWAP_TOOL)
        decision = synthesize_decision(swapped)
        if self._metrics is not None:
            self._metrics.synthetic_decisions.labels(action=decision.action).inc()
        log.info(dumps({
            "event": "tool_results_exhausted",
            "tool_results": count,
            "limit": self.max_tool_results,
            "execute_swap_called": swapped,
        }))
        return Exhausted(decision=decision, tool_result_count=count, execute_swap_called=swapped)

    def _verification(self, request: ChatRequest, response: ChatResponse) -> Optional[VerificationData]:
        if not response.signature:
            return None
        return VerificationData(
            request_prompt=request.request_prompt,
            response_model=response.model or request.model,
            response_output=response.output_for_verification,
            signature=response.signature,
            wallet_address=self._client.wallet_address,
            usage=response.usage,
        )

    async def generate(
        self,
        prompt: Sequence[PromptMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
        tool_choice: Union[str, Dict[str, Any], None] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Outcome:
        messages = convert_prompt_to_messages(prompt)
        exhausted = self.check_exhaustion(messages)
        if exhausted is not None:
            return exhausted

        request = self.build_request(messages, tools, tool_choice, temperature, top_p, max_tokens)
        response = await self._client.complete(request)
        return Completed(request=request, response=response, verification=self._verification(request, response))

    async def stream(
        self,
        prompt: Sequence[PromptMessage],
        tools: Optional[Sequence[ToolSpec]] = None,
        tool_choice: Union[str, Dict[str, Any], None] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[StreamPart]:
        """
        Stream parts for one completion. Signature and usage only arrive in the
        last chunks, so they are buffered and attached to the final `finish`
        part. The stream always ends with text-end, response-metadata and
        finish, even if the transport closes early or fails mid-body. A
        failure before the first byte raises ProviderUnavailable instead.
        """
        text_id = f"text-{int(time.time() * 1000)}"
        messages = convert_prompt_to_messages(prompt)
        exhausted = self.check_exhaustion(messages)
        if exhausted is not None:
            yield StreamPart("stream-start")
            yield StreamPart("text-start", id=text_id)
            yield StreamPart("text-delta", id=text_id, delta=exhausted.text)
            yield StreamPart("text-end", id=text_id)
            yield StreamPart("response-metadata", id=f"synthetic-{text_id}", model_id=self.model_id)
            yield StreamPart("finish", finish_reason="stop", usage=Usage(), synthetic=True)
            return

        request = self.build_request(messages, tools, tool_choice, temperature, top_p, max_tokens, stream=True)
        content: List[str] = []
        signature = ""
        usage = Usage()
        model = self.model_id
        response_id = ""
        finish_reason = "stop"
        error: Optional[str] = None
        started = False

        async with aclosing(self._client.stream_lines(request)) as lines:
            try:
                async for line in lines:
                    if not started:
                        started = True
                        yield StreamPart("stream-start")
                        yield StreamPart("text-start", id=text_id)
                    chunk = self._parse_sse(line)
                    if chunk is None:
                        continue
                    model = chunk.get("model") or model
                    response_id = chunk.get("id") or response_id
                    choices = chunk.get("choices") or []
                    choice = choices[0] if choices and isinstance(choices[0], dict) else {}
                    delta = (choice.get("delta") or {}).get("content")
                    if delta:
                        content.append(delta)
                        yield StreamPart("text-delta", id=text_id, delta=delta)
                    if choice.get("finish_reason"):
                        finish_reason = map_finish_reason(choice["finish_reason"])
                    if chunk.get("signature"):
                        signature = chunk["signature"]
                    if chunk.get("usage"):
                        usage = Usage.from_dict(chunk["usage"])
            except ProviderUnavailable as exc:
                if not started:
                    raise
                error = str(exc)
                finish_reason = "error"
                log.warning(dumps({"event": "stream_interrupted", "error": error}))

        if not started:
            yield StreamPart("stream-start")
            yield StreamPart("text-start", id=text_id)
        yield StreamPart("text-end", id=text_id)
        yield StreamPart("response-metadata", id=response_id, model_id=model)

        verification = None
        if signature and error is None:
            verification = VerificationData(
                request_prompt=request.request_prompt,
                response_model=model,
                response_output="".join(content),
                signature=signature,
                wallet_address=self._client.wallet_address,
                usage=usage,
            )
        yield StreamPart(
            "finish",
            finish_reason=finish_reason,
            usage=usage,
            signature=signature or None,
            verification=verification,
            error=error,
        )

    @staticmethod
    def _parse_sse(line: str) -> Optional[Dict[str, Any]]:
        if not line.startswith("data:"):
            return None
        data = line[5:].strip()
        if not data or data == "[DONE]":
            return None
        try:
            chunk = loads(data)
        except ValueError:
            log.debug(dumps({"event": "stream_chunk_invalid", "key": "sse", "sample": data[:80]}))
            return None
        return chunk if isinstance(chunk, dict) else None
