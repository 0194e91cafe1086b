"""
ToolCallingAgent: the model picks tools, the adapter bounds the loop.

Each step sends the accumulated conversation (one assistant message holding
every tool call so far, one tool message holding every result) through the
InferenceAdapter. The loop ends on a text answer, on an Exhausted outcome, or
at `max_steps`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

from eigentrader.core.errors import ProviderUnavailable
from eigentrader.core.json_utils import dumps, loads
from eigentrader.eigenai.adapter import EXECUTE_SWAP_TOOL, Completed, InferenceAdapter
from eigentrader.eigenai.types import (
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_TOOL,
    ROLE_USER,
    PromptMessage,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from eigentrader.orchestrator.deterministic import (
    ExecutionReport,
    IterationResult,
    TradingContext,
    build_decision_prompt,
    write_diary_entry,
)
from eigentrader.state.diary import DiaryEntry, TradingDiary, new_entry_id, was_executed
from eigentrader.state.recorder import InferenceRecorder
from eigentrader.trading.decision import TradeAction, TradeDecision, hold_decision, parse_decision
from eigentrader.trading.tools import TOOL_SPECS, MarketTools, SwapOutcome, ToolResult, call_tool, to_result_text

log = logging.getLogger("eigentrader")

DEFAULT_MAX_STEPS = 20

TOOL_MODE_INSTRUCTIONS = (
    "Use the tools to gather what you need (wallet balance, prices, indicators, pool metrics, quotes). "
    "Always get a fresh quote before executeSwap and pass a minAmountOut derived from it. "
    "When you are done, answer with the JSON decision only."
)


def _parse_arguments(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ToolCallingAgent:
    def __init__(
        self,
        adapter: InferenceAdapter,
        tools: MarketTools,
        diary: TradingDiary,
        recorder: Optional[InferenceRecorder] = None,
        pairs: Sequence[Tuple[str, str]] = (),
        max_steps: int = DEFAULT_MAX_STEPS,
        temperature: Optional[float] = None,
        metrics: Any = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._adapter = adapter
        self._tools = tools
        self._diary = diary
        self._recorder = recorder
        self._pairs = list(pairs)
        self.max_steps = max_steps
        self.temperature = temperature
        self._metrics = metrics
        self._log = log_event or self._default_log

        self._stats = {
            "steps": 0, "tool_calls": 0, "tool_errors": 0, "exhausted": 0, "provider_errors": 0,
            "iteration_errors": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def get_stats(self) -> dict:
        return dict(self._stats)

    @staticmethod
    def build_prompt(
        base: Sequence[PromptMessage], calls: Sequence[ToolCallPart], results: Sequence[ToolResultPart]
    ) -> List[PromptMessage]:
        prompt = list(base)
        if calls:
            prompt.append(PromptMessage(ROLE_ASSISTANT, list(calls)))
        if results:
            prompt.append(PromptMessage(ROLE_TOOL, list(results)))
        return prompt

    async def _run_tool(self, call: ToolCallPart, swaps: List[SwapOutcome]) -> Tuple[ToolResultPart, ToolResult]:
        args = call.input if isinstance(call.input, dict) else {}
        str_args = {k: str(v) for k, v in args.items()}
        self._stats["tool_calls"] += 1
        try:
            value = await call_tool(self._tools, call.tool_name, args)
        except Exception as exc:
            self._stats["tool_errors"] += 1
            message = str(exc) or exc.__class__.__name__
            self._log("tool_call_failed", tool=call.tool_name, args=str_args, error=message)
            return (
                ToolResultPart(call.tool_call_id, call.tool_name, {"success": False, "error": message}),
                ToolResult(call.tool_name, str_args, error=message),
            )
        if call.tool_name == EXECUTE_SWAP_TOOL:
            swaps.append(SwapOutcome.from_any(value))
        text = to_result_text(value)
        return ToolResultPart(call.tool_call_id, call.tool_name, text), ToolResult(call.tool_name, str_args, text)

    async def _loop(
        self, ctx: TradingContext, entry_id: str, gathered: List[ToolResult], swaps: List[SwapOutcome]
    ) -> Tuple[TradeDecision, Optional[str]]:
        system_prompt, user_prompt = build_decision_prompt(ctx, [], self._pairs, market_data=TOOL_MODE_INSTRUCTIONS)
        base = [
            PromptMessage(ROLE_SYSTEM, [TextPart(system_prompt)]),
            PromptMessage(ROLE_USER, [TextPart(user_prompt)]),
        ]
        calls: List[ToolCallPart] = []
        results: List[ToolResultPart] = []
        inference_id: Optional[str] = None

        for step in range(self.max_steps):
            self._stats["steps"] += 1
            try:
                outcome = await self._adapter.generate(
                    self.build_prompt(base, calls, results),
                    tools=TOOL_SPECS,
                    tool_choice="auto",
                    temperature=self.temperature,
                )
            except ProviderUnavailable as exc:
                self._stats["provider_errors"] += 1
                self._log("provider_unavailable", step=step, status=exc.status, code=exc.code, error=str(exc))
                return hold_decision(f"Inference unavailable: {exc}"), inference_id

            if not isinstance(outcome, Completed):
                self._stats["exhausted"] += 1
                return outcome.decision, inference_id

            if self._recorder is not None and outcome.verification is not None:
                inference_id = await self._recorder.record(outcome.verification, decision_ref=entry_id) or inference_id

            if not outcome.tool_calls:
                return parse_decision(outcome.text), inference_id

            for raw in outcome.tool_calls:
                fn = raw.get("function") or {}
                call = ToolCallPart(
                    tool_call_id=str(raw.get("id") or f"call_{len(calls)}"),
                    tool_name=str(fn.get("name") or ""),
                    input=_parse_arguments(fn.get("arguments")),
                )
                calls.append(call)
                part, result = await self._run_tool(call, swaps)
                results.append(part)
                gathered.append(result)

        self._log("agent_step_limit", max_steps=self.max_steps, tool_calls=len(calls))
        return hold_decision(f"Agent step limit reached ({self.max_steps})"), inference_id

    @staticmethod
    def swap_report(swaps: Sequence[SwapOutcome]) -> ExecutionReport:
        """Outcome tag for the swaps the model ran during the iteration."""
        executed = next((s for s in swaps if s.success and s.tx_hash), None)
        failed = next((s for s in reversed(swaps) if not s.success and not s.dry_run), None)
        if executed is not None:
            return ExecutionReport("executed", f"[EXECUTED: TX {executed.tx_hash}]", tx_hash=executed.tx_hash)
        if any(s.dry_run for s in swaps):
            return ExecutionReport("dry_run", "[DRY RUN: Trade simulated only]")
        if failed is not None:
            error = failed.error or "Unknown"
            return ExecutionReport("failed", f"[EXECUTION FAILED: {error}]", error=error)
        return ExecutionReport("skipped")

    async def run_iteration(self, ctx: TradingContext) -> IterationResult:
        entry_id = new_entry_id()
        started = time.monotonic()
        self._log("iteration_start", pair=ctx.pair, iteration=ctx.iteration_number, flow="tool_calling")
        gathered: List[ToolResult] = []
        swaps: List[SwapOutcome] = []
        result: IterationResult
        try:
            decision, inference_id = await self._loop(ctx, entry_id, gathered, swaps)
            report = self.swap_report(swaps)
            first = decision.first
            if first is not None and report.tag:
                first.annotate(report.tag)
            if self._metrics is not None and report.outcome != "skipped":
                self._metrics.trade_outcomes.labels(outcome=report.outcome).inc()

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
                execution_error=report.error,
                flow="tool_calling",
                context_snapshot=[r.to_dict() for r in gathered],
            )
            result = IterationResult(entry, decision, report, list(gathered), inference_id)
        except Exception as exc:
            self._stats["iteration_errors"] += 1
            message = str(exc) or exc.__class__.__name__
            log.exception(dumps({"event": "iteration_error", "pair": ctx.pair, "flow": "tool_calling", "error": message}))
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
                flow="tool_calling",
                context_snapshot=[r.to_dict() for r in gathered],
            )
            result = IterationResult(entry, tool_results=list(gathered), error=message)

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
            tool_calls=len(gathered),
            duration_sec=round(elapsed, 2),
        )
        return result
