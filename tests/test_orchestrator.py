"""
Tests for the deterministic flow: data gathering, prompt building, execution guards
and the per-iteration diary record.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from eigentrader.config.tokens import TOKENS
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.reasoning import ReasoningResult
from eigentrader.eigenai.types import Usage, VerificationData
from eigentrader.monitoring.metrics import AgentMetrics
from eigentrader.orchestrator.deterministic import (
    DeterministicOrchestrator,
    GuardConfig,
    TradingContext,
    build_decision_prompt,
    format_history,
    format_tool_results,
)
from eigentrader.state.diary import DiaryEntry, TradingDiary
from eigentrader.trading.decision import TokenDecision, TradeDecision
from eigentrader.trading.tools import ToolResult


class FakeTools:
    def __init__(self, quote_out="0.004", swap=None, quote_error=None, fail=()):
        self.calls = []
        self.quote_out = quote_out
        self.swap = swap if swap is not None else {"success": True, "tx_hash": "0xabc"}
        self.quote_error = quote_error
        self.fail = set(fail)

    async def _record(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    async def get_wallet_balance(self):
        await self._record("getWalletBalance")
        return {"USDC": 100.0, "WETH": 0.05}

    async def get_token_price(self, token):
        await self._record("getTokenPrice", token)
        return {"token": token, "price_usd": 2500.0}

    async def get_indicators(self, token):
        await self._record("getIndicators", token)
        return {"rsi": 41.2}

    async def get_pool_metrics(self, token_a, token_b):
        await self._record("getPoolMetrics", token_a, token_b)
        return {"reserve0": "1", "reserve1": "2"}

    async def get_quote(self, token_in, token_out, amount_in, via=None):
        await self._record("getQuote", token_in, token_out, amount_in, via)
        if self.quote_error:
            raise RuntimeError(self.quote_error)
        return {"success": True, "amount_out": self.quote_out}

    async def execute_swap(self, token_in, token_out, amount_in, min_amount_out, slippage_pct, via=None):
        await self._record("executeSwap", token_in, token_out, amount_in, min_amount_out, slippage_pct, via)
        return self.swap


def oracle(prices):
    o = MagicMock()
    o.get_price_usd = AsyncMock(side_effect=lambda address: prices.get(address.lower(), 0.0))
    return o


WETH = TOKENS["WETH"].address.lower()
USDC = TOKENS["USDC"].address.lower()


def decision(action, token="WETH", amount=10.0):
    return TradeDecision("because", [TokenDecision(token, action, amount, "signal")])


def orchestrator(tmp_path, tools=None, prices=None, reasoning=None, recorder=None, metrics=None):
    return DeterministicOrchestrator(
        tools or FakeTools(),
        reasoning or MagicMock(),
        TradingDiary(str(tmp_path)),
        oracle(prices if prices is not None else {WETH: 2500.0, USDC: 1.0}),
        recorder=recorder,
        pairs=[("USDC", "WETH")],
        guard=GuardConfig(max_price_impact_pct=5.0, slippage_pct=1.0, min_trade_usd=1.0),
        metrics=metrics,
    )


def ctx(base="USDC", target="WETH", history=None):
    return TradingContext(target, base, "2026-01-01T00:00:00+00:00", 7, history or [], "No trades recorded yet.")


class TestGather:
    @pytest.mark.asyncio
    async def test_fixed_order_usdc_base(self, tmp_path):
        tools = FakeTools()
        results = await orchestrator(tmp_path, tools).gather("WETH", "USDC")
        assert [(r.tool, r.args) for r in results] == [
            ("getWalletBalance", {}),
            ("getTokenPrice", {"token": "WETH"}),
            ("getIndicators", {"token": "WETH"}),
            ("getPoolMetrics", {"tokenA": "WETH", "tokenB": "USDC"}),
            ("getQuote", {"tokenIn": "USDC", "tokenOut": "WETH", "amountIn": "10"}),
            ("getQuote", {"tokenIn": "WETH", "tokenOut": "USDC", "amountIn": "1"}),
        ]

    @pytest.mark.asyncio
    async def test_non_usdc_base_adds_price(self, tmp_path):
        results = await orchestrator(tmp_path).gather("AERO", "WETH")
        assert len(results) == 7
        assert results[2].tool == "getTokenPrice" and results[2].args == {"token": "WETH"}


    @pytest.mark.asyncio
    async def test_results_are_indented_json(self, tmp_path):
        results = await orchestrator(tmp_path).gather("WETH", "USDC")
        assert results[0].result == '{\n  "USDC": 100.0,\n  "WETH": 0.05\n}'

    @pytest.mark.asyncio
    async def test_tool_failure_captured(self, tmp_path):
        tools = FakeTools(fail={"getIndicators"})
        results = await orchestrator(tmp_path, tools).gather("WETH", "USDC")
        assert len(results) == 6
        failed = [r for r in results if not r.ok]
        assert failed[0].tool == "getIndicators"
        assert "unavailable" in failed[0].error


class TestPrompt:
    def test_format_tool_results(self):
        text = format_tool_results([
            ToolResult("getTokenPrice", {"token": "WETH"}, result='{"p":1}'),
            ToolResult("getIndicators", {"token": "WETH"}, error="timeout"),
        ])
        assert text == '### getTokenPrice(token=WETH)\n{"p":1}\n\n---\n\n### getIndicators(token=WETH)\nERROR: timeout'

    def test_format_history(self):
        assert format_history([]) == "No previous trading history."
        entry = DiaryEntry(1, "2026-01-01T00:00:00+00:00", "USDC", "WETH", "BUY", "r" * 150)
        line = format_history([entry])
        assert line == "[2026-01-01T00:00:00+00:00] USDC/WETH: BUY - " + "r" * 100 + "..."

    def test_pair_notation_matches_trading_pairs(self):
        context = ctx()
        entry = DiaryEntry(1, context.timestamp, context.base_token, context.target_token, "HOLD", "r")
        assert context.pair == entry.token_pair == "USDC/WETH"

    def test_prompt_contents(self):
        system, user = build_decision_prompt(ctx(), [ToolResult("getWalletBalance", {}, result="{}")], [("USDC", "WETH")])
        assert "Aerodrome" in system
        assert "- WETH (Wrapped Ether)" in system
        assert "NEVER use any other token symbols" in system
        assert "## Trading Analysis Request" in user
        assert "Iteration: #7" in user
        assert "### getWalletBalance()" in user
        assert "CRITICAL BALANCE CONSTRAINTS" in user
        assert user.rstrip().endswith("Your response must start with { and end with } - no other text allowed.")


class TestExecutionGuards:
    """Outcome tags appended to the decision rationale."""

    @pytest.mark.asyncio
    async def test_buy_executed(self, tmp_path):
        tools = FakeTools(quote_out="0.004")
        d = decision("BUY")
        report = await orchestrator(tmp_path, tools).execute_trade_decision(d)

        assert report.outcome == "executed"
        assert d.first.rationale == "signal [EXECUTED: TX 0xabc]"
        swap = [c for c in tools.calls if c[0] == "executeSwap"][0]
        assert swap[1] == ("USDC", "WETH", "10", "0.00396000", 1.0, None)

    @pytest.mark.asyncio
    async def test_price_impact_rejection(self, tmp_path):
        tools = FakeTools(quote_out="0.004")
        d = decision("BUY")
        report = await orchestrator(tmp_path, tools, prices={WETH: 2000.0, USDC: 1.0}).execute_trade_decision(d)

        assert report.outcome == "rejected"
        assert d.first.rationale.endswith("[REJECTED: 20.0% price impact exceeds 5% max]")
        assert not any(c[0] == "executeSwap" for c in tools.calls)

    @pytest.mark.asyncio
    async def test_unknown_output_price_rejects(self, tmp_path):
        tools = FakeTools()
        d = decision("BUY")
        report = await orchestrator(tmp_path, tools, prices={USDC: 1.0}).execute_trade_decision(d)
        assert report.outcome == "rejected"
        assert "[REJECTED: no spot price for WETH" in d.first.rationale
        assert not any(c[0] == "executeSwap" for c in tools.calls)

    @pytest.mark.asyncio
    async def test_quote_error(self, tmp_path):
        d = decision("BUY")
        report = await orchestrator(tmp_path, FakeTools(quote_error="no route")).execute_trade_decision(d)
        assert report.outcome == "failed"
        assert d.first.rationale.endswith("[EXECUTION FAILED: Quote error - no route]")

    @pytest.mark.asyncio
    async def test_swap_failure(self, tmp_path):
        d = decision("BUY")
        report = await orchestrator(tmp_path, FakeTools(swap={"success": False, "error": "reverted"})).execute_trade_decision(d)
        assert report.outcome == "failed"
        assert report.error == "reverted"
        assert d.first.rationale.endswith("[EXECUTION FAILED: reverted]")

    @pytest.mark.asyncio
    async def test_dry_run(self, tmp_path):
        d = decision("BUY")
        report = await orchestrator(tmp_path, FakeTools(swap={"success": False, "dry_run": True})).execute_trade_decision(d)
        assert report.outcome == "dry_run"
        assert d.first.rationale.endswith("[DRY RUN: Trade simulated only]")

    @pytest.mark.asyncio
    async def test_sell_sized_in_token_units(self, tmp_path):
        tools = FakeTools(quote_out="24.9")
        d = decision("SELL", amount=25.0)
        report = await orchestrator(tmp_path, tools).execute_trade_decision(d)

        assert report.outcome == "executed"
        quote = [c for c in tools.calls if c[0] == "getQuote"][0]
        assert quote[1] == ("WETH", "USDC", "0.01", None)

    @pytest.mark.asyncio
    async def test_hold_and_dust_skip_execution(self, tmp_path):
        tools = FakeTools()
        orch = orchestrator(tmp_path, tools)
        hold = decision("HOLD", token="ALL", amount=0)
        dust = decision("BUY", amount=0.5)
        assert (await orch.execute_trade_decision(hold)).outcome == "skipped"
        assert (await orch.execute_trade_decision(dust)).outcome == "skipped"
        assert hold.first.rationale == "signal"
        assert tools.calls == []


class TestRunIteration:
    @pytest.mark.asyncio
    async def test_full_iteration_logs_and_records(self, tmp_path):
        content = dumps({
            "reasoning": "uptrend",
            "trade_decisions": [{"token": "WETH", "action": "BUY", "amount_usd": 10, "via": None, "rationale": "go"}],
        })
        verification = VerificationData("p", "qwen3-32b-128k-bf16", content, "0xsig", None, Usage())
        reasoning = MagicMock()
        reasoning.decide = AsyncMock(return_value=ReasoningResult(content, "0xsig", verification))
        recorder = MagicMock()
        recorder.record = AsyncMock(return_value="inf-1")
        metrics = AgentMetrics()
        orch = orchestrator(tmp_path, reasoning=reasoning, recorder=recorder, metrics=metrics)

        result = await orch.run_iteration(ctx())

        assert result.inference_id == "inf-1"
        assert recorder.record.await_args.kwargs["decision_ref"] == result.entry.id
        entries = await TradingDiary(str(tmp_path)).read_all()
        assert len(entries) == 1
        e = entries[0]
        assert e.id == result.entry.id
        assert (e.token_in, e.token_out, e.action) == ("USDC", "WETH", "BUY")
        assert e.executed and e.tx_hash == "0xabc"
        assert e.rationale == "go [EXECUTED: TX 0xabc]"
        assert len(e.context_snapshot) == 6
        assert metrics.trade_outcomes.labels(outcome="executed")._value.get() == 1

    @pytest.mark.asyncio
    async def test_iteration_error_logs_hold(self, tmp_path):
        reasoning = MagicMock()
        reasoning.decide = AsyncMock(side_effect=RuntimeError("kaboom"))
        result = await orchestrator(tmp_path, reasoning=reasoning).run_iteration(ctx())

        assert result.error == "kaboom"
        entries = await TradingDiary(str(tmp_path)).read_all()
        assert entries[0].action == "HOLD"
        assert entries[0].reasoning == "Error during iteration: kaboom"
        assert entries[0].execution_error == "kaboom"
        assert not entries[0].executed

    @pytest.mark.asyncio
    async def test_fallback_decision_holds(self, tmp_path):
        reasoning = MagicMock()
        fallback = '{"reasoning":"Qwen API error: 502","trade_decisions":[{"token":"ALL","action":"HOLD","amount_usd":0,"rationale":"Qwen API error: 502"}]}'
        reasoning.decide = AsyncMock(return_value=ReasoningResult(fallback, error="Qwen API error: 502"))
        tools = FakeTools()
        result = await orchestrator(tmp_path, tools, reasoning=reasoning).run_iteration(ctx())
        assert result.entry.action == "HOLD"
        assert result.inference_id is None
        assert not any(c[0] == "executeSwap" for c in tools.calls)
