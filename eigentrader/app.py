"""
Trading loop: runs iterations for each configured pair, one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence, Tuple

from eigentrader.core.json_utils import dumps
from eigentrader.orchestrator.deterministic import IterationResult, TradingContext, utc_timestamp
from eigentrader.recall.submission_service import SubmissionService
from eigentrader.state.diary import TradingDiary, performance_summary

log = logging.getLogger("eigentrader")


class IterationRunner(Protocol):
    async def run_iteration(self, ctx: TradingContext) -> IterationResult: ...


class TradingLoop:
    def __init__(
        self,
        runner: IterationRunner,
        diary: TradingDiary,
        pairs: Sequence[Tuple[str, str]],
        interval_sec: float = 300.0,
        submission: Optional[SubmissionService] = None,
        history_limit: int = 10,
    ) -> None:
        self.runner = runner
        self.diary = diary
        self.pairs = list(pairs)
        self.interval_sec = interval_sec
        self.submission = submission
        self.history_limit = history_limit
        self._stop = asyncio.Event()
        self._iteration = 0

    def stop(self) -> None:
        self._stop.set()

    async def build_context(self, base: str, target: str) -> TradingContext:
        history = await self.diary.recent_for_pair(base, target, limit=self.history_limit)
        return TradingContext(
            target_token=target,
            base_token=base,
            timestamp=utc_timestamp(),
            iteration_number=self._iteration,
            recent_history=history,
            performance_summary=performance_summary(history),
        )

    async def run_cycle(self) -> List[IterationResult]:
        """One pass over every pair. Iterations never overlap."""
        results: List[IterationResult] = []
        for base, target in self.pairs:
            if self._stop.is_set():
                break
            self._iteration += 1
            ctx = await self.build_context(base, target)
            try:
                results.append(await self.runner.run_iteration(ctx))
            except Exception as exc:
                # runners record their own HOLD entries; this only keeps the loop alive
                log.exception(dumps({"event": "iteration_crashed", "pair": ctx.pair, "error": str(exc)}))
        return results

    async def run(self) -> None:
        self._iteration = await self.diary.last_iteration_number()
        if self.submission is not None:
            await self.submission.start()
        log.info(dumps({
            "event": "trading_loop_started",
            "pairs": [f"{b}/{t}" for b, t in self.pairs],
            "interval_sec": self.interval_sec,
            "resume_from": self._iteration,
        }))
        try:
            while not self._stop.is_set():
                await self.run_cycle()
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval_sec)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self.submission is not None:
                await self.submission.stop()
            log.info(dumps({"event": "trading_loop_stopped", "iterations": self._iteration}))
