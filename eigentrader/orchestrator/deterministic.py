"""
DeterministicOrchestrator: one trading iteration without model-driven tool use.

The tool-calling model cannot be trusted to pick tools or to stop, so this
flow gathers a fixed set of data points by calling the tools directly, asks a
reasoning-only model for a decision once, and executes that decision behind
the execution guards:

    gather -> prompt -> reason (record signed inference) -> parse -> guard/execute -> diary

Execution outcomes are appended to the decision rationale as tags:
    [EXECUTED: TX <hash>]  [DRY RUN: Trade simulated only]
    [REJECTED: <reason>]   [EXECUTION FAILED: <reason>]

Every iteration writes one diary entry, including iterations that blow up.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from eigentrader.config.tokens import QUOTE_SYMBOL, resolve_token, valid_tokens_prompt
from eigentrader.core.errors import ExecutionFailed, ExecutionRejected
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.reasoning import ReasoningClient
from eigentrader.risk.price_impact import check_price_impact
from eigentrader.state.diary import DiaryEntry, TradingDiary, new_entry_id, was_executed
from eigentrader.state.recorder import InferenceRecorder
from eigentrader.trading.decision import TradeAction, TradeDecision, parse_decision
from eigentrader.trading.price_oracle import DexScreenerPriceOracle
from eigentrader.trading.tools import MarketTools, QuoteOutcome, SwapOutcome, ToolResult, to_result_text

log = logging.getLogger("eigentrader")

SAMPLE_BUY_AMOUNT = "10"
SAMPLE_SELL_AMOUNT = "1"
HISTORY_LIMIT = 10


@dataclass
class GuardConfig:
    max_price_impact_pct: float = 5.0
    slippage_pct: float = 1.0
    min_trade_usd: float = 1.0


@dataclass
class TradingContext:
    target_token: str
    base_token: str
    timestamp: str
    iteration_number: int
    recent_history: List[DiaryEntry] = field(default_factory=list)
    performance_summary: str = "No trades recorded yet."

    @property
    def pair(self) -> str:
        return f"{self.base_token}/{self.target_token}"


@dataclass
class ExecutionReport:
    outcome: str  # skipped | executed | dry_run | rejected | failed
    tag: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class IterationResult:
    entry: DiaryEntry
    decision: Optional[TradeDecision] = None
    report: Optional[ExecutionReport] = None
    tool_results: List[ToolResult] = field(default_factory=list)
    inference_id: Optional[str] = None
    error: Optional[str] = None


def format_tool_results(results: Sequence[ToolResult]) -> str:
    blocks = []
    for r in results:
        args = ", ".join(f"{k}={v}" for k, v in r.args.items())
        header = f"### {r.tool}({args})"
        blocks.append(f"{header}\nERROR: {r.error}" if r.error else f"{header}\n{r.result}")
    return "\n\n---\n\n".join(blocks)


def format_history(history: Sequence[DiaryEntry]) -> str:
    if not history:
        return "No previous trading history."
    return "\n".join(
        f"[{e.timestamp}] {e.token_pair}: {e.action} - {e.reasoning[:100]}..."
        for e in history[:HISTORY_LIMIT]
    )


def build_decision_prompt(
    ctx: TradingContext,
    results: Sequence[ToolResult],
    pairs: Sequence[Tuple[str, str]] = (),
    market_data: Optional[str] = None,
) -> Tuple[str, str]:
    """(system_prompt, user_prompt) for the reasoning model."""
    pairs = list(pairs) or [(ctx.base_token, ctx.target_token)]
    system_prompt = f"""You are an autonomous trading agent managing a live portfolio on Aerodrome DEX (Base chain).

## Role & Mindset
- You are here to MAKE MONEY through spot trading on Aerodrome.
- Good trades are wins, bad trades are mistakes. Treat both seriously.
- When signals align clearly, act decisively.
- Size positions by conviction: higher conviction, larger position.

{valid_tokens_prompt(pairs)}

NEVER use any other token symbols. Do NOT invent tokens.
Token symbols are CASE-SENSITIVE and must match EXACTLY."""

    user_prompt = f"""## Trading Analysis Request

Analyze {ctx.pair} on Aerodrome DEX.

Current time: {ctx.timestamp}
Iteration: #{ctx.iteration_number}

## Recent Trading History
{format_history(ctx.recent_history)}

## Portfolio Performance
{ctx.performance_summary}

## Gathered Market Data

{market_data if market_data is not None else format_tool_results(results)}

## Your Task

Based on the data above, make a trading decision.

IMPORTANT: Output ONLY a raw JSON object. No markdown, no explanation, just JSON.

Required JSON format:
{{
  "reasoning": "Your analysis of the market data...",
  "trade_decisions": [
    {{
      "token": "{ctx.target_token}",
      "action": "BUY" | "SELL" | "HOLD",
      "amount_usd": number,
      "via": null,
      "rationale": "Why this specific action..."
    }}
  ]
}}

CRITICAL BALANCE CONSTRAINTS:
- For BUY orders: amount_usd MUST NOT exceed your {QUOTE_SYMBOL} balance from getWalletBalance
- For SELL orders: you can only sell tokens you actually hold
- If balance is too low for a meaningful trade, use action "HOLD"

ROUTING:
- Use "via": null for direct swaps (recommended for {ctx.pair})
- Direct pools exist for the pairs you're analyzing

If no clear opportunity exists, use action "HOLD".
Your response must start with {{ and end with }} - no other text allowed."""
    return system_prompt, user_prompt


def _fmt_amount(value: float, decimals: int = 8) -> str:
    text = f"{value:.{min(decimals, 8)}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


class DeterministicOrchestrator:
    def __init__(
        self,
        tools: MarketTools,
        reasoning: ReasoningClient,
        diary: TradingDiary,
        price_oracle: DexScreenerPriceOracle,
        recorder: Optional[InferenceRecorder] = None,
        pairs: Sequence[Tuple[str, str]] = (),
        guard: Optional[GuardConfig] = None,
        metrics: Any = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._tools = tools
        self._reasoning = reasoning
        self._diary = diary
        self._oracle = price_oracle
        self._recorder = recorder
        self._pairs = list(pairs)
        self.guard = guard or GuardConfig()
        self._metrics = metrics
        self._log = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    # ----- gather -----

    async def _capture(
        self, tool: str, args: Dict[str, str], call: Callable[[], Awaitable[Any]]
    ) -> ToolResult:
        try:
            value = await call()
        except Exception as exc:
            self._log("tool_call_failed", tool=tool, args=args, error=str(exc))
            return ToolResult(tool=tool, args=args, error=str(exc) or exc.__class__.__name__)
        return ToolResult(tool=tool, args=args, result=to_result_text(value, pretty=True))

    async def gather(self, target: str, base: str) -> List[ToolResult]:
        """Fixed, sequential data collection. Per-call failures are captured, not raised."""
        t = self._tools
        results = [
            await self._capture("getWalletBalance", {}, t.get_wallet_balance),
            await self._capture("getTokenPrice", {"token": target}, lambda: t.get_token_price(target)),
        ]
        if base != QUOTE_SYMBOL:
            results.append(await self._capture("getTokenPrice", {"token": base}, lambda: t.get_token_price(base)))
        results.append(await self._capture("getIndicators", {"token": target}, lambda: t.get_indicators(target)))
        results.append(await self._capture(
            "getPoolMetrics", {"tokenA": target, "tokenB": base}, lambda: t.get_pool_metrics(target, base)
        ))
        results.append(await self._capture(
            "getQuote",
            {"tokenIn": QUOTE_SYMBOL, "tokenOut": target, "amountIn": SAMPLE_BUY_AMOUNT},
            lambda: t.get_quote(QUOTE_SYMBOL, target, SAMPLE_BUY_AMOUNT),
        ))
        results.append(await self._capture(
            "getQuote",
            {"tokenIn": target, "tokenOut": QUOTE_SYMBOL, "amountIn": SAMPLE_SELL_AMOUNT},
            lambda: t.get_quote(target, QUOTE_SYMBOL, SAMPLE_SELL_AMOUNT),
        ))
        return results

    # ----- guard + execute -----

    async def _guarded_swap(self, action: str, token: str, amount_usd: float, via: Optional[str]) -> ExecutionReport:
        meta = resolve_token(token)
        if meta is None:
            raise ExecutionRejected(f"unknown token {token}")
        quote_meta = resolve_token(QUOTE_SYMBOL)
        if action == TradeAction.BUY.value:
            token_in, token_out, in_meta, out_meta = QUOTE_SYMBOL, meta.symbol, quote_meta, meta
            amount_in = amount_usd
        else:
            token_in, token_out, in_meta, out_meta = meta.symbol, QUOTE_SYMBOL, meta, quote_meta
            spot_in = await self._oracle.get_price_usd(meta.address)
            if spot_in <= 0:
                raise ExecutionRejected(f"no spot price for {meta.symbol}; cannot size sell")
            amount_in = amount_usd / spot_in
        amount_in_str = _fmt_amount(amount_in, in_meta.decimals)

        # Fresh quote for the decided size; sample quotes from gather are never reused.
        try:
            quote = QuoteOutcome.from_any(await self._tools.get_quote(token_in, token_out, amount_in_str, via))
        except Exception as exc:
            raise ExecutionFailed(f"Quote error - {exc}") from exc
        if not quote.success or not quote.amount_out:
            raise ExecutionFailed(f"Quote error - {quote.error or 'Unknown'}")
        try:
            expected_out = float(quote.amount_out)
        except ValueError as exc:
            raise ExecutionFailed(f"Quote error - bad amountOut {quote.amount_out!r}") from exc

        price_out = await self._oracle.get_price_usd(out_meta.address)
        if price_out <= 0:
            raise ExecutionRejected(f"no spot price for {out_meta.symbol}; price impact unknown")
        check = check_price_impact(amount_usd, expected_out * price_out, self.guard.max_price_impact_pct)
        self._log(
            "price_impact",
            token_in=token_in,
            token_out=token_out,
            amount_usd=amount_usd,
            out_usd=round(expected_out * price_out, 6),
            impact_pct=round(check.impact_pct, 4),
        )
        if not check.accepted:
            raise ExecutionRejected(check.reason)

        min_out = f"{expected_out * (1 - self.guard.slippage_pct / 100):.8f}"
        try:
            swap = SwapOutcome.from_any(await self._tools.execute_swap(
                token_in, token_out, amount_in_str, min_out, self.guard.slippage_pct, via
            ))
        except Exception as exc:
            raise ExecutionFailed(str(exc) or exc.__class__.__name__) from exc

        if swap.success and swap.tx_hash:
            return ExecutionReport("executed", f"[EXECUTED: TX {swap.tx_hash}]", tx_hash=swap.tx_hash)
        if swap.dry_run:
            return ExecutionReport("dry_run", "[DRY RUN: Trade simulated only]")
        raise ExecutionFailed(swap.error or "Unknown")

    async def execute_trade_decision(self, decision: TradeDecision) -> ExecutionReport:
        """Guard and execute the first decision; the outcome tag is appended to its rationale."""
        first = decision.first
        if first is None or not first.is_trade:
            return ExecutionReport("skipped")
        if first.amount_usd < self.guard.min_trade_usd:
            self._log("trade_skipped", reason="amount below minimum", amount_usd=first.amount_usd)
            return ExecutionReport("skipped")

        try:
            report = await self._guarded_swap(first.action, first.token, first.amount_usd, first.via)
        except ExecutionRejected as exc:
            report = ExecutionReport("rejected", f"[REJECTED: {exc}]", error=str(exc))
        except ExecutionFailed as exc:
            report = ExecutionReport("failed", f"[EXECUTION FAILED: {exc}]", error=str(exc))

        first.annotate(report.tag)
        if self._metrics is not None:
            self._metrics.trade_outcomes.labels(outcome=report.outcome).inc()
        self._log(
            "trade_outcome",
            action=first.action,
            token=first.token,
            amount_usd=first.amount_usd,
            outcome=report.outcome,
            tag=report.tag,
        )
        return report

    # ----- iteration -----

    async def run_iteration(self, ctx: TradingContext) -> IterationResult:
        entry_id = new_entry_id()
        started = time.monotonic()
        self._log("iteration_start", pair=ctx.pair, iteration=ctx.iteration_number, flow="deterministic")
        result: IterationResult
        tool_results: List[ToolResult] = []
        try:
            tool_results = await self.gather(ctx.target_token, ctx.base_token)
            system_prompt, user_prompt = build_decision_prompt(ctx, tool_results, self._pairs)
            reasoning = await self._reasoning.decide(system_prompt, user_prompt)

            inference_id = None
            if self._recorder is not None:
                inference_id = await self._recorder.record(reasoning.verification, decision_ref=entry_id)

            decision = parse_decision(reasoning.content)
            report = await self.execute_trade_decision(decision)

            first = decision.first
            rationale = first.rationale if first else None
            entry = DiaryEntry(
                id=entry_id,
                iteration_number=ctx.iteration_number,
                timestamp=ctx.timestamp,
                token_in=ctx.base_token,
                token_out=ctx.target_token,
                action=first.action if first else TradeAction.HOLD.value,
                reasoning=decision.reasoning,
                rationale=rationale,
                amount_usd=first.amount_usd if first else None,
                executed=was_executed(rationale),
                tx_hash=report.tx_hash,
                execution_error=report.error if report.outcome == "failed" else None,
                context_snapshot=[r.to_dict() for r in tool_results],
            )
            result = IterationResult(entry, decision, report, tool_results, inference_id)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log.exception(dumps({"event": "iteration_error", "pair": ctx.pair, "error": message}))
            entry = DiaryEntry(
                id=entry_id,
                iteration_number=ctx.iteration_number,
                timestamp=ctx.timestamp,
                token_in=ctx.base_token,
                token_out=ctx.target_token,
                action=TradeAction.HOLD.value,
                reasoning=f"Error during iteration: {message}",
                executed=False,
                execution_error=message,
                context_snapshot=[r.to_dict() for r in tool_results],
            )
            result = IterationResult(entry, tool_results=tool_results, error=message)

        await write_diary_entry(self._diary, result.entry)
        elapsed = time.monotonic() - started
        if self._metrics is not None:
            self._metrics.iterations.labels(pair=ctx.pair, action=result.entry.action).inc()
            self._metrics.iteration_duration_sec.observe(elapsed)
        self._log(
            "iteration_complete",
            pair=ctx.pair,
            action=result.entry.action,
            executed=result.entry.executed,
            duration_sec=round(elapsed, 2),
        )
        return result


async def write_diary_entry(diary: TradingDiary, entry: DiaryEntry) -> None:
    """Diary write that falls back to the log so no iteration goes unrecorded."""
    try:
        await diary.append(entry)
    except OSError as exc:
        log.error(dumps({"event": "diary_write_failed", "error": str(exc), "entry": entry.to_dict()}))


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")
