"""
Verify-then-persist for signed inferences.

Verification is an audit concern: a signature that does not recover to the
expected signer is logged with both addresses and the record is still
stored with status `invalid`. Storage failures are logged and swallowed so
the trading iteration carries on.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from eigentrader.core.errors import VerificationMismatch
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.signature_verifier import SignatureVerifier, VerificationResult
from eigentrader.eigenai.types import VerificationData
from eigentrader.state.verification_tracker import VerificationTracker

log = logging.getLogger("eigentrader")


class InferenceRecorder:
    def __init__(self, tracker: VerificationTracker, verifier: SignatureVerifier, metrics: Any = None) -> None:
        self._tracker = tracker
        self._verifier = verifier
        self._metrics = metrics

    async def record(
        self, data: Optional[VerificationData], decision_ref: Optional[str] = None
    ) -> Optional[str]:
        """Returns the stored record id, or None if nothing was stored."""
        if data is None or not data.signature:
            return None

        result: VerificationResult = self._verifier.verify_data(data)
        if self._metrics is not None:
            self._metrics.signature_checks.labels(result="valid" if result.is_valid else "invalid").inc()
        if not result.is_valid:
            mismatch = VerificationMismatch(result.recovered_address, result.expected_signer)
            log.warning(dumps({
                "event": "signature_mismatch",
                "recovered": mismatch.recovered,
                "expected": mismatch.expected,
                "model": data.response_model,
                "error": result.error,
            }))

        try:
            record_id = await self._tracker.save_inference(data, decision_ref=decision_ref, verification=result)
        except (sqlite3.Error, OSError, ValueError) as exc:
            log.error(dumps({"event": "inference_save_failed", "error": str(exc)}))
            return None

        if self._metrics is not None:
            self._metrics.inferences_saved.inc()
        log.info(dumps({
            "event": "inference_saved",
            "id": record_id,
            "model": data.response_model,
            "verified": result.is_valid,
            "decision_ref": decision_ref,
        }))
        return record_id
