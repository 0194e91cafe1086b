"""
SubmissionService: forwards signed inferences to the Recall registry.

Each tick submits only the single most recent pending inference. A failed
attempt leaves the record pending; the next tick is the retry.

Usage:
    service = SubmissionService(registry, tracker, competition_id, interval_sec=900)
    await service.start()   # submits immediately, then every interval
    ...
    await service.stop()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from eigentrader.core.json_utils import dumps
from eigentrader.recall.client import RegistryClient, RegistryResult
from eigentrader.state.verification_tracker import STATUS_PENDING, VerificationTracker

log = logging.getLogger("eigentrader")

DEFAULT_INTERVAL_SEC = 900.0


@dataclass
class SubmissionOutcome:
    success: bool
    inference_id: str
    submission_id: Optional[str] = None
    verified: Optional[bool] = None
    error: Optional[str] = None


class SubmissionService:
    def __init__(
        self,
        registry: Optional[RegistryClient],
        tracker: VerificationTracker,
        competition_id: Optional[str],
        interval_sec: float = DEFAULT_INTERVAL_SEC,
        metrics: Any = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self.competition_id = competition_id
        self.interval_sec = interval_sec
        self._metrics = metrics
        self._log = log_event or self._default_log

        self._task: Optional[asyncio.Task] = None
        self._running = False

        self._stats = {
            "attempts": 0,
            "submitted": 0,
            "failures": 0,
            "idle_ticks": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    @property
    def is_configured(self) -> bool:
        return self._registry is not None and bool(self.competition_id)

    @property
    def is_running(self) -> bool:
        return self._running

    async def submit_once(self) -> Optional[SubmissionOutcome]:
        """Submit the newest pending inference. None when there was nothing to do."""
        if not self.is_configured:
            return None

        record = await self._tracker.get_most_recent_unsubmitted()
        if self._metrics is not None:
            self._metrics.pending_inferences.set(await self._tracker.count(STATUS_PENDING))
        if record is None:
            self._stats["idle_ticks"] += 1
            return None

        self._stats["attempts"] += 1
        result: RegistryResult = await self._registry.submit_signature(
            competition_id=self.competition_id,
            request_prompt=record.request_prompt,
            response_model=record.response_model,
            response_output=record.response_output,
            signature=record.signature,
        )
        if not result.success:
            self._stats["failures"] += 1
            if self._metrics is not None:
                self._metrics.registry_submissions.labels(status="failed").inc()
            log.warning(dumps({
                "event": "registry_submit_failed",
                "key": record.id,
                "inference_id": record.id,
                "status": result.status,
                "error": result.error,
            }))
            return SubmissionOutcome(False, record.id, error=result.error)

        data = result.data if isinstance(result.data, dict) else {}
        submission_id = data.get("submissionId")
        await self._tracker.mark_submitted([record.id], submission_id)
        self._stats["submitted"] += 1
        if self._metrics is not None:
            self._metrics.registry_submissions.labels(status="submitted").inc()

        badge = data.get("badgeStatus") or {}
        self._log(
            "registry_submitted",
            inference_id=record.id,
            submission_id=submission_id,
            verified=data.get("verified"),
            badge_active=badge.get("isBadgeActive"),
            signatures_24h=badge.get("signaturesLast24h"),
        )
        return SubmissionOutcome(True, record.id, submission_id=submission_id, verified=data.get("verified"))

    async def start(self) -> bool:
        """
        Submit once now and schedule the periodic loop.
        Returns False if not configured. A second start() is a no-op.
        """
        if not self.is_configured:
            self._log(
                "registry_not_configured",
                hint="set RECALL_API_URL, RECALL_API_KEY and RECALL_COMPETITION_ID",
            )
            return False
        if self._running:
            return True

        self._running = True
        self._log("registry_service_started", interval_sec=self.interval_sec)
        await self._tick()
        self._task = asyncio.create_task(self._loop())
        return True

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._running:
            self._running = False
            self._log("registry_service_stopped", **self._stats)

    async def _tick(self) -> None:
        try:
            await self.submit_once()
        except Exception as e:
            self._stats["failures"] += 1
            self._log("registry_tick_error", error=str(e))

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_sec)
            except asyncio.CancelledError:
                break
            await self._tick()

    async def get_badge_status(self) -> Optional[RegistryResult]:
        if not self.is_configured:
            return None
        return await self._registry.get_badge_status(self.competition_id)

    def get_stats(self) -> dict:
        return {**self._stats, "running": self._running, "interval_sec": self.interval_sec}
