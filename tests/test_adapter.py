"""
Tests for InferenceAdapter: prompt unzipping, tool-result exhaustion and streaming.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from eigentrader.core.errors import ProviderUnavailable
from eigentrader.core.json_utils import loads
from eigentrader.eigenai.adapter import (
    EXECUTED_RATIONALE,
    HOLD_RATIONALE,
    AdapterState,
    Completed,
    Exhausted,
    InferenceAdapter,
    convert_prompt_to_messages,
    stringify_tool_output,
)
from eigentrader.eigenai.types import (
    ChatResponse,
    PromptMessage,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    Usage,
)

MODEL = "gpt-oss-120b-f16"


def base_prompt():
    return [
        PromptMessage("system", [TextPart("You trade.")]),
        PromptMessage("user", [TextPart("Analyze WETH/USDC")]),
    ]


def tool_prompt(names):
    calls = [ToolCallPart(f"c{i}", name, {"token": "WETH"}) for i, name in enumerate(names)]
    results = [ToolResultPart(f"c{i}", name, {"ok": i}) for i, name in enumerate(names)]
    return base_prompt() + [PromptMessage("assistant", calls), PromptMessage("tool", results)]


def fake_client(response=None):
    client = MagicMock()
    client.wallet_address = "0xWallet"
    client.complete = AsyncMock(return_value=response)
    return client


class TestConvertPrompt:
    """Accumulated prompt -> strict provider turns."""

    def test_fixture_unzip(self):
        prompt = base_prompt() + [
            PromptMessage("assistant", [
                ToolCallPart("a", "getWalletBalance", {}),
                ToolCallPart("b", "getTokenPrice", {"token": "WETH"}),
                ToolCallPart("c", "getIndicators", {"token": "WETH"}),
            ]),
            PromptMessage("tool", [
                ToolResultPart("a", "getWalletBalance", "USDC: 100"),
                ToolResultPart("c", "getIndicators", [{"type": "text", "text": "RSI 40"}]),
            ]),
        ]
        msgs = convert_prompt_to_messages(prompt)
        assert [m.role for m in msgs] == ["system", "user", "assistant", "tool", "assistant", "assistant", "tool"]
        assert msgs[2].tool_calls[0]["id"] == "a"
        assert msgs[3].tool_call_id == "a" and msgs[3].content == "USDC: 100"
        # call "b" has no result, so no tool message follows it
        assert msgs[4].tool_calls[0]["function"]["name"] == "getTokenPrice"
        assert loads(msgs[4].tool_calls[0]["function"]["arguments"]) == {"token": "WETH"}
        assert msgs[6].tool_call_id == "c" and msgs[6].content == "RSI 40"

    def test_assistant_text_dropped_after_tool_calls(self):
        prompt = base_prompt() + [
            PromptMessage("assistant", [TextPart("thinking first")]),
            PromptMessage("assistant", [ToolCallPart("a", "getWalletBalance", {}), TextPart("and more")]),
        ]
        msgs = convert_prompt_to_messages(prompt)
        texts = [m.content for m in msgs if m.role == "assistant" and m.content]
        assert texts == ["thinking first"]

    def test_stringify_non_text_output(self):
        assert stringify_tool_output({"a": 1}) == '{"a":1}'
        assert stringify_tool_output("plain") == "plain"


class TestExhaustion:
    """Tool-result ceiling produces synthetic decisions without a provider call."""

    @pytest.mark.asyncio
    async def test_hold_when_no_swap(self):
        client = fake_client()
        adapter = InferenceAdapter(client, MODEL, max_tool_results=8)
        outcome = await adapter.generate(tool_prompt(["getTokenPrice"] * 8))

        assert isinstance(outcome, Exhausted)
        assert outcome.state is AdapterState.EXHAUSTED
        assert outcome.decision.action == "HOLD"
        assert outcome.decision.first.rationale == HOLD_RATIONALE
        assert loads(outcome.text)["trade_decisions"][0]["action"] == "HOLD"
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_executed_when_swap_called(self):
        client = fake_client()
        adapter = InferenceAdapter(client, MODEL, max_tool_results=8)
        outcome = await adapter.generate(tool_prompt(["getTokenPrice"] * 7 + ["executeSwap"]))

        assert isinstance(outcome, Exhausted)
        assert outcome.execute_swap_called
        assert outcome.decision.action == "EXECUTED"
        assert outcome.decision.first.rationale == EXECUTED_RATIONALE
        client.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_below_ceiling_calls_provider(self):
        response = ChatResponse("r", MODEL, "done", [], "stop", Usage(1, 2, 3), "0xsig")
        client = fake_client(response)
        adapter = InferenceAdapter(client, MODEL, max_tool_results=8)
        outcome = await adapter.generate(tool_prompt(["getTokenPrice"] * 7))

        assert isinstance(outcome, Completed)
        assert outcome.state is AdapterState.NORMAL
        assert outcome.text == "done"
        client.complete.assert_awaited_once()
        request = client.complete.await_args.args[0]
        assert request.model == MODEL

    @pytest.mark.asyncio
    async def test_completed_carries_verification(self):
        response = ChatResponse("r", MODEL, "answer", [], "stop", Usage(1, 2, 3), "0xsig")
        adapter = InferenceAdapter(fake_client(response), MODEL)
        outcome = await adapter.generate(base_prompt())

        v = outcome.verification
        assert v.request_prompt == "You trade.Analyze WETH/USDC"
        assert v.response_output == "answer"
        assert v.signature == "0xsig"
        assert v.wallet_address == "0xWallet"

    @pytest.mark.asyncio
    async def test_unsigned_response_has_no_verification(self):
        response = ChatResponse("r", MODEL, "answer", [], "stop", Usage(), None)
        outcome = await InferenceAdapter(fake_client(response), MODEL).generate(base_prompt())
        assert outcome.verification is None


def streaming_client(lines, fail_after=None, fail_before=False):
    client = MagicMock()
    client.wallet_address = None

    async def stream_lines(request):
        if fail_before:
            raise ProviderUnavailable("connect failed", status=0)
        for i, line in enumerate(lines):
            if fail_after is not None and i == fail_after:
                raise ProviderUnavailable("connection reset", status=0)
            yield line

    client.stream_lines = stream_lines
    return client


async def collect(adapter, prompt):
    return [part async for part in adapter.stream(prompt)]


class TestStreaming:
    LINES = [
        'data: {"id": "s1", "model": "m1", "choices": [{"delta": {"content": "Hel"}}]}',
        "",
        'data: {"id": "s1", "choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]}',
        'data: {"id": "s1", "choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 2}, "signature": "0xabc"}',
        "data: [DONE]",
    ]

    @pytest.mark.asyncio
    async def test_normal_stream(self):
        parts = await collect(InferenceAdapter(streaming_client(self.LINES), MODEL), base_prompt())
        types = [p.type for p in parts]
        assert types == ["stream-start", "text-start", "text-delta", "text-delta", "text-end", "response-metadata", "finish"]
        assert "".join(p.delta for p in parts if p.type == "text-delta") == "Hello"
        finish = parts[-1]
        assert finish.finish_reason == "stop"
        assert finish.usage.total_tokens == 7
        assert finish.verification.response_output == "Hello"
        assert finish.verification.response_model == "m1"
        assert finish.verification.signature == "0xabc"

    @pytest.mark.asyncio
    async def test_abrupt_close_still_finishes(self):
        """Transport ends without [DONE] or signature: terminal parts are still emitted."""
        parts = await collect(InferenceAdapter(streaming_client(self.LINES[:1]), MODEL), base_prompt())
        assert [p.type for p in parts][-3:] == ["text-end", "response-metadata", "finish"]
        assert parts[-1].verification is None
        assert parts[-1].finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_mid_stream_error(self):
        parts = await collect(InferenceAdapter(streaming_client(self.LINES, fail_after=3), MODEL), base_prompt())
        finish = parts[-1]
        assert finish.type == "finish"
        assert finish.finish_reason == "error"
        assert finish.verification is None
        assert "connection reset" in finish.error

    @pytest.mark.asyncio
    async def test_error_before_first_line_raises(self):
        adapter = InferenceAdapter(streaming_client([], fail_before=True), MODEL)
        with pytest.raises(ProviderUnavailable):
            await collect(adapter, base_prompt())

    @pytest.mark.asyncio
    async def test_malformed_chunk_skipped(self):
        lines = ["data: {not json", self.LINES[0]]
        parts = await collect(InferenceAdapter(streaming_client(lines), MODEL), base_prompt())
        assert [p.delta for p in parts if p.type == "text-delta"] == ["Hel"]

    @pytest.mark.asyncio
    async def test_exhausted_stream_is_synthetic(self):
        client = streaming_client([])
        client.stream_lines = MagicMock()
        parts = await collect(InferenceAdapter(client, MODEL, max_tool_results=2), tool_prompt(["a", "b"]))
        assert parts[-1].synthetic
        assert loads(parts[2].delta)["trade_decisions"][0]["action"] == "HOLD"
        client.stream_lines.assert_not_called()
