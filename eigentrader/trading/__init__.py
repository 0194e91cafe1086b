"""
Trading package.

Decision contract and parser, the market-tool interface and the spot price oracle.
"""

from eigentrader.trading.decision import TokenDecision, TradeAction, TradeDecision, hold_decision, parse_decision
from eigentrader.trading.price_oracle import DexScreenerPriceOracle
from eigentrader.trading.tools import (
    TOOL_SPECS,
    MarketTools,
    QuoteOutcome,
    SwapOutcome,
    ToolResult,
    call_tool,
    load_tools,
)

__all__ = [
    "TokenDecision",
    "TradeAction",
    "TradeDecision",
    "hold_decision",
    "parse_decision",
    "DexScreenerPriceOracle",
    "TOOL_SPECS",
    "MarketTools",
    "QuoteOutcome",
    "SwapOutcome",
    "ToolResult",
    "call_tool",
    "load_tools",
]
