"""
Trading diary: one newline-delimited JSON record per iteration.

Every iteration writes exactly one entry, including failed ones, so the
diary doubles as the audit trail of intent (action, rationale) and outcome
(the execution tag appended to the rationale).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from eigentrader.core.json_utils import dumps, loads

log = logging.getLogger("eigentrader")

EXECUTED_MARKERS = ("[EXECUTED: TX", "[DRY RUN:")


def new_entry_id() -> str:
    return str(uuid.uuid4())


def was_executed(rationale: Optional[str]) -> bool:
    return bool(rationale) and any(m in rationale for m in EXECUTED_MARKERS)


@dataclass
class DiaryEntry:
    iteration_number: int
    timestamp: str
    token_in: str
    token_out: str
    action: str
    reasoning: str
    rationale: Optional[str] = None
    amount_usd: Optional[float] = None
    executed: bool = False
    tx_hash: Optional[str] = None
    execution_error: Optional[str] = None
    flow: str = "deterministic"
    context_snapshot: List[Dict[str, Any]] = field(default_factory=list)
    id: str = field(default_factory=new_entry_id)

    @property
    def token_pair(self) -> str:
        return f"{self.token_in}/{self.token_out}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiaryEntry":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class TradingDiary:
    def __init__(self, state_dir: str, filename: str = "trading_diary.ndjson") -> None:
        self.path = Path(state_dir) / filename
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def append(self, entry: DiaryEntry) -> None:
        line = dumps(entry.to_dict()) + "\n"
        async with self._lock:
            loop = asyncio.get_running_loop()

            def _append() -> None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)

            await loop.run_in_executor(None, _append)
        log.info(dumps({
            "event": "diary_entry",
            "id": entry.id,
            "iteration": entry.iteration_number,
            "pair": entry.token_pair,
            "action": entry.action,
            "executed": entry.executed,
        }))

    async def read_all(self) -> List[DiaryEntry]:
        async with self._lock:
            loop = asyncio.get_running_loop()

            def _read() -> List[DiaryEntry]:
                if not self.path.exists():
                    return []
                out: List[DiaryEntry] = []
                with self.path.open("r", encoding="utf-8") as fh:
                    for ln in fh:
                        ln = ln.strip()
                        if not ln:
                            continue
                        try:
                            out.append(DiaryEntry.from_dict(loads(ln)))
                        except (ValueError, TypeError):
                            continue
                return out

            return await loop.run_in_executor(None, _read)

    async def recent_for_pair(self, token_in: str, token_out: str, limit: int = 10) -> List[DiaryEntry]:
        """Newest first."""
        entries = [e for e in await self.read_all() if e.token_in == token_in and e.token_out == token_out]
        entries.reverse()
        return entries[:limit]

    async def last_iteration_number(self) -> int:
        entries = await self.read_all()
        return max((e.iteration_number for e in entries), default=0)


def performance_summary(entries: List[DiaryEntry]) -> str:
    """Plain-text summary of a pair's recent diary for the decision prompt."""
    if not entries:
        return "No trades recorded yet."
    buys = sum(1 for e in entries if e.executed and e.action == "BUY")
    sells = sum(1 for e in entries if e.executed and e.action == "SELL")
    holds = sum(1 for e in entries if e.action == "HOLD")
    rejected = sum(1 for e in entries if e.rationale and "[REJECTED:" in e.rationale)
    failed = sum(1 for e in entries if e.execution_error or (e.rationale and "[EXECUTION FAILED:" in e.rationale))
    volume = sum(e.amount_usd or 0.0 for e in entries if e.executed)
    return (
        f"Last {len(entries)} iterations: {buys} buys and {sells} sells executed "
        f"(${volume:,.2f} notional), {holds} holds, {rejected} rejected by guards, {failed} failed."
    )
