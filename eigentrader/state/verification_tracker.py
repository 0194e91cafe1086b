"""
Append-only store of signed inferences awaiting registry submission.

SQLite file, one row per completed inference that carried a signature. The
schema enforces the audit rules with triggers: the inference columns can
never change, the submission columns change once (pending -> submitted) and
rows are never deleted. Blocking SQLite calls run in the default executor,
serialized by an asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from eigentrader.eigenai.signature_verifier import VerificationResult
from eigentrader.eigenai.types import VerificationData

STATUS_PENDING = "pending"
STATUS_SUBMITTED = "submitted"

VERIFIED = "verified"
INVALID = "invalid"
UNVERIFIED = "unverified"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS eigenai_inferences (
    seq                 INTEGER PRIMARY KEY AUTOINCREMENT,
    id                  TEXT NOT NULL UNIQUE,
    request_prompt      TEXT NOT NULL,
    response_model      TEXT NOT NULL,
    response_output     TEXT NOT NULL,
    signature           TEXT NOT NULL,
    wallet_address      TEXT,
    prompt_tokens       INTEGER NOT NULL DEFAULT 0,
    completion_tokens   INTEGER NOT NULL DEFAULT 0,
    total_tokens        INTEGER NOT NULL DEFAULT 0,
    decision_ref        TEXT,
    verification_status TEXT NOT NULL DEFAULT 'unverified',
    recovered_signer    TEXT,
    submission_status   TEXT NOT NULL DEFAULT 'pending'
                        CHECK (submission_status IN ('pending', 'submitted')),
    submission_id       TEXT,
    inferred_at         REAL NOT NULL,
    submitted_at        REAL,
    created_at          REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_eigenai_inferences_pending
    ON eigenai_inferences (submission_status, inferred_at);

CREATE TRIGGER IF NOT EXISTS eigenai_inferences_immutable
BEFORE UPDATE OF id, request_prompt, response_model, response_output, signature, wallet_address,
                 prompt_tokens, completion_tokens, total_tokens, decision_ref,
                 verification_status, recovered_signer, inferred_at, created_at
ON eigenai_inferences
BEGIN
    SELECT RAISE(ABORT, 'inference records are immutable');
END;

CREATE TRIGGER IF NOT EXISTS eigenai_inferences_submit_once
BEFORE UPDATE OF submission_status, submission_id, submitted_at ON eigenai_inferences
WHEN OLD.submission_status = 'submitted'
BEGIN
    SELECT RAISE(ABORT, 'inference already submitted');
END;

CREATE TRIGGER IF NOT EXISTS eigenai_inferences_append_only
BEFORE DELETE ON eigenai_inferences
BEGIN
    SELECT RAISE(ABORT, 'inference records are append-only');
END;
"""

_COLUMNS = (
    "id, request_prompt, response_model, response_output, signature, wallet_address, "
    "prompt_tokens, completion_tokens, total_tokens, decision_ref, verification_status, "
    "recovered_signer, submission_status, submission_id, inferred_at, submitted_at, created_at"
)


@dataclass(frozen=True)
class InferenceRecord:
    id: str
    request_prompt: str
    response_model: str
    response_output: str
    signature: str
    wallet_address: Optional[str]
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    decision_ref: Optional[str]
    verification_status: str
    recovered_signer: Optional[str]
    submission_status: str
    submission_id: Optional[str]
    inferred_at: float
    submitted_at: Optional[float]
    created_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "InferenceRecord":
        return cls(**{k: row[k] for k in row.keys()})

    @property
    def submitted(self) -> bool:
        return self.submission_status == STATUS_SUBMITTED


def get_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


class VerificationTracker:
    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        self.db_path = db_path
        self._clock = clock
        self._lock = asyncio.Lock()
        self._ready = False

    def _init_schema(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = get_connection(self.db_path)
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    async def _run(self, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        async with self._lock:
            loop = asyncio.get_running_loop()
            if not self._ready:
                await loop.run_in_executor(None, self._init_schema)
                self._ready = True

            def _call() -> Any:
                conn = get_connection(self.db_path)
                try:
                    with conn:
                        return fn(conn)
                finally:
                    conn.close()

            return await loop.run_in_executor(None, _call)

    async def init(self) -> None:
        await self._run(lambda conn: None)

    async def save_inference(
        self,
        data: VerificationData,
        decision_ref: Optional[str] = None,
        verification: Optional[VerificationResult] = None,
    ) -> str:
        """Persist one signed inference; returns its id."""
        if not data.signature:
            raise ValueError("only signed inferences are tracked")
        record_id = str(uuid.uuid4())
        now = self._clock()
        if verification is None:
            status, recovered = UNVERIFIED, None
        else:
            status = VERIFIED if verification.is_valid else INVALID
            recovered = verification.recovered_address

        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"INSERT INTO eigenai_inferences ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record_id,
                    data.request_prompt,
                    data.response_model,
                    data.response_output,
                    data.signature,
                    data.wallet_address,
                    data.usage.prompt_tokens,
                    data.usage.completion_tokens,
                    data.usage.total_tokens,
                    decision_ref,
                    status,
                    recovered,
                    STATUS_PENDING,
                    None,
                    now,
                    None,
                    now,
                ),
            )

        await self._run(_insert)
        return record_id

    async def get_unsubmitted(self, limit: int = 100) -> List[InferenceRecord]:
        """Pending records, oldest first."""
        def _select(conn: sqlite3.Connection) -> List[InferenceRecord]:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM eigenai_inferences WHERE submission_status = ? "
                "ORDER BY inferred_at ASC, seq ASC LIMIT ?",
                (STATUS_PENDING, limit),
            ).fetchall()
            return [InferenceRecord.from_row(r) for r in rows]

        return await self._run(_select)

    async def get_most_recent_unsubmitted(self) -> Optional[InferenceRecord]:
        """Newest pending record. Newest means latest inferred_at, then latest insert."""
        def _select(conn: sqlite3.Connection) -> Optional[InferenceRecord]:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM eigenai_inferences WHERE submission_status = ? "
                "ORDER BY inferred_at DESC, seq DESC LIMIT 1",
                (STATUS_PENDING,),
            ).fetchone()
            return InferenceRecord.from_row(row) if row else None

        return await self._run(_select)

    async def mark_submitted(self, ids: Sequence[str], submission_id: Optional[str] = None) -> int:
        """
        Flip pending records to submitted. Already-submitted ids are left
        alone, so repeating a call is harmless. Returns rows changed.
        """
        if not ids:
            return 0
        now = self._clock()
        placeholders = ", ".join("?" for _ in ids)

        def _update(conn: sqlite3.Connection) -> int:
            cur = conn.execute(
                "UPDATE eigenai_inferences SET submission_status = ?, submission_id = ?, submitted_at = ? "
                f"WHERE submission_status = ? AND id IN ({placeholders})",
                (STATUS_SUBMITTED, submission_id, now, STATUS_PENDING, *ids),
            )
            return cur.rowcount

        return await self._run(_update)

    async def get_by_id(self, record_id: str) -> Optional[InferenceRecord]:
        def _select(conn: sqlite3.Connection) -> Optional[InferenceRecord]:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM eigenai_inferences WHERE id = ?", (record_id,)
            ).fetchone()
            return InferenceRecord.from_row(row) if row else None

        return await self._run(_select)

    async def count(self, submission_status: Optional[str] = None) -> int:
        def _count(conn: sqlite3.Connection) -> int:
            if submission_status is None:
                return conn.execute("SELECT COUNT(*) FROM eigenai_inferences").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM eigenai_inferences WHERE submission_status = ?", (submission_status,)
            ).fetchone()[0]

        return await self._run(_count)
