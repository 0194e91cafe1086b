"""
Risk package.

Execution guards applied before any swap is sent.
"""

from eigentrader.risk.price_impact import PriceImpactCheck, calculate_price_impact, check_price_impact

__all__ = [
    "PriceImpactCheck",
    "calculate_price_impact",
    "check_price_impact",
]
