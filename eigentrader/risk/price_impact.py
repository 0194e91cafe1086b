"""
Price-impact guard for spot swaps.

impact% = (amount_in_usd - amount_out_usd) / amount_in_usd * 100

Impact strictly above the ceiling is rejected; exactly at the ceiling is
accepted; negative impact (receiving more than sent) is always accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_IMPACT_PCT = 5.0


@dataclass(frozen=True)
class PriceImpactCheck:
    accepted: bool
    impact_pct: float
    max_impact_pct: float
    reason: Optional[str] = None


def calculate_price_impact(amount_in_usd: float, amount_out_usd: float) -> float:
    if amount_in_usd <= 0:
        return 0.0
    return (amount_in_usd - amount_out_usd) / amount_in_usd * 100


def check_price_impact(
    amount_in_usd: float,
    amount_out_usd: float,
    max_impact_pct: float = DEFAULT_MAX_IMPACT_PCT,
) -> PriceImpactCheck:
    impact = calculate_price_impact(amount_in_usd, amount_out_usd)
    # Round away float noise so (100, 95) lands exactly on 5.0.
    if round(impact, 9) > max_impact_pct:
        return PriceImpactCheck(
            accepted=False,
            impact_pct=impact,
            max_impact_pct=max_impact_pct,
            reason=f"{impact:.1f}% price impact exceeds {max_impact_pct:g}% max",
        )
    return PriceImpactCheck(accepted=True, impact_pct=impact, max_impact_pct=max_impact_pct)
