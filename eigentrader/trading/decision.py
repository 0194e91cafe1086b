"""
Trade decision contract and a fail-soft parser for model output.

Reasoning models wrap their JSON in commentary, markdown fences or
<think>...</think> blocks. parse_decision() strips the think blocks, takes the
first-to-last brace substring and validates it; anything unusable becomes a
HOLD decision whose rationale names the failure. It never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from eigentrader.core.errors import ParseFailure
from eigentrader.core.json_utils import dumps, loads

log = logging.getLogger("eigentrader")

_THINK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)

NO_JSON_REASON = "Could not parse decision - no JSON found"
JSON_ERROR_REASON = "JSON parse error"
INVALID_STRUCTURE_REASON = "Invalid structure - holding for safety"


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    # Synthetic acknowledgement that a swap already ran inside a tool loop.
    EXECUTED = "EXECUTED"


@dataclass
class TokenDecision:
    token: str
    action: str
    amount_usd: float = 0.0
    rationale: str = ""
    via: Optional[str] = None

    @property
    def is_trade(self) -> bool:
        return self.action in (TradeAction.BUY.value, TradeAction.SELL.value)

    def annotate(self, tag: str) -> None:
        """Append an execution outcome tag such as [EXECUTED: TX 0x..]."""
        self.rationale = f"{self.rationale} {tag}" if self.rationale else tag

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "action": self.action,
            "amount_usd": self.amount_usd,
            "via": self.via,
            "rationale": self.rationale,
        }


@dataclass
class TradeDecision:
    reasoning: str
    trade_decisions: List[TokenDecision] = field(default_factory=list)

    @property
    def first(self) -> Optional[TokenDecision]:
        return self.trade_decisions[0] if self.trade_decisions else None

    @property
    def action(self) -> str:
        first = self.first
        return first.action if first else TradeAction.HOLD.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reasoning": self.reasoning,
            "trade_decisions": [d.to_dict() for d in self.trade_decisions],
        }

    def to_json(self) -> str:
        return dumps(self.to_dict())


def hold_decision(reason: str, reasoning: Optional[str] = None, token: str = "ALL") -> TradeDecision:
    return TradeDecision(
        reasoning=reasoning if reasoning is not None else reason,
        trade_decisions=[TokenDecision(token=token, action=TradeAction.HOLD.value, amount_usd=0.0, rationale=reason)],
    )


def _to_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if amount != amount or amount in (float("inf"), float("-inf")):
        return 0.0
    return amount


def _extract_payload(text: str) -> Dict[str, Any]:
    cleaned = _THINK_RE.sub("", text or "")
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ParseFailure(NO_JSON_REASON)
    try:
        payload = loads(cleaned[start:end + 1])
    except ValueError as exc:
        raise ParseFailure(JSON_ERROR_REASON) from exc
    if not isinstance(payload, dict):
        raise ParseFailure(INVALID_STRUCTURE_REASON)
    return payload


def _token_decision(raw: Any) -> TokenDecision:
    if not isinstance(raw, dict):
        raise ParseFailure(INVALID_STRUCTURE_REASON)
    action = str(raw.get("action") or "").strip().upper()
    rationale = str(raw.get("rationale") or "")
    if action not in TradeAction.__members__:
        rationale = f"{rationale} [unrecognized action {action or 'missing'}; holding]".strip()
        action = TradeAction.HOLD.value
    via = raw.get("via")
    return TokenDecision(
        token=str(raw.get("token") or "ALL"),
        action=action,
        amount_usd=_to_amount(raw.get("amount_usd")),
        rationale=rationale,
        via=str(via) if via else None,
    )


def parse_decision(text: str) -> TradeDecision:
    try:
        payload = _extract_payload(text)
    except ParseFailure as exc:
        log.warning(dumps({"event": "decision_parse_failed", "reason": str(exc)}))
        return hold_decision(str(exc))

    reasoning = str(payload.get("reasoning") or "")
    entries = payload.get("trade_decisions")
    if not isinstance(entries, list) or not entries:
        log.warning(dumps({"event": "decision_parse_failed", "reason": INVALID_STRUCTURE_REASON}))
        return hold_decision(INVALID_STRUCTURE_REASON, reasoning=reasoning or "Invalid structure")
    try:
        decisions = [_token_decision(e) for e in entries]
    except ParseFailure as exc:
        log.warning(dumps({"event": "decision_parse_failed", "reason": str(exc)}))
        return hold_decision(str(exc), reasoning=reasoning or "Invalid structure")
    return TradeDecision(reasoning=reasoning, trade_decisions=decisions)
