"""
Narrow interface to the market-data and swap tools.

The tools themselves (balances, prices, indicators, Aerodrome pools, quotes
and the on-chain swap) are external collaborators. The agent only needs an
object with these coroutine methods; TOOLS_FACTORY names a `module:callable`
that builds one from Settings.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from eigentrader.core.errors import ConfigurationError
from eigentrader.core.json_utils import dumps, dumps_pretty
from eigentrader.eigenai.types import ToolSpec


@runtime_checkable
class MarketTools(Protocol):
    async def get_wallet_balance(self) -> Any: ...

    async def get_token_price(self, token: str) -> Any: ...

    async def get_indicators(self, token: str) -> Any: ...

    async def get_pool_metrics(self, token_a: str, token_b: str) -> Any: ...

    async def get_quote(self, token_in: str, token_out: str, amount_in: str, via: Optional[str] = None) -> Any: ...

    async def execute_swap(
        self,
        token_in: str,
        token_out: str,
        amount_in: str,
        min_amount_out: str,
        slippage_pct: float,
        via: Optional[str] = None,
    ) -> Any: ...


@dataclass
class ToolResult:
    """One gathered data point: JSON result text or error text."""
    tool: str
    args: Dict[str, str]
    result: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {"tool": self.tool, "args": self.args, "result": self.result, "error": self.error}


@dataclass
class QuoteOutcome:
    success: bool
    amount_out: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_any(cls, raw: Any) -> "QuoteOutcome":
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            return cls(False, error=f"Unexpected quote payload: {raw!r}")
        token_out = raw.get("tokenOut") or {}
        amount_out = raw.get("amount_out") or (token_out.get("amountOut") if isinstance(token_out, dict) else None)
        return cls(bool(raw.get("success")), str(amount_out) if amount_out else None, raw.get("error"))


@dataclass
class SwapOutcome:
    success: bool
    tx_hash: Optional[str] = None
    dry_run: bool = False
    error: Optional[str] = None

    @classmethod
    def from_any(cls, raw: Any) -> "SwapOutcome":
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            return cls(False, error=f"Unexpected swap payload: {raw!r}")
        return cls(
            success=bool(raw.get("success")),
            tx_hash=raw.get("tx_hash") or raw.get("txHash"),
            dry_run=bool(raw.get("dry_run") or raw.get("dryRun")),
            error=raw.get("error"),
        )


def to_result_text(value: Any, pretty: bool = False) -> str:
    """Tool output as text; pretty=True indents JSON for prompt blocks."""
    if isinstance(value, str):
        return value
    if hasattr(value, "__dict__") and not isinstance(value, dict):
        value = value.__dict__
    return dumps_pretty(value) if pretty else dumps(value)


def _obj(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_STR = {"type": "string"}

TOOL_SPECS: List[ToolSpec] = [
    ToolSpec("getWalletBalance", "Get the agent wallet's token balances on Base.", _obj({}, [])),
    ToolSpec(
        "getTokenPrice",
        "Get the current USD price of a token.",
        _obj({"token": {**_STR, "description": "Token symbol, e.g. 'WETH'"}}, ["token"]),
    ),
    ToolSpec(
        "getIndicators",
        "Get technical indicators (EMA, RSI, MACD, ATR) for a token.",
        _obj({"token": _STR}, ["token"]),
    ),
    ToolSpec(
        "getPoolMetrics",
        "Get raw Aerodrome pool reserves for a token pair.",
        _obj({"tokenA": _STR, "tokenB": _STR}, ["tokenA", "tokenB"]),
    ),
    ToolSpec(
        "getQuote",
        "Get a swap quote from Aerodrome for a human-readable input amount.",
        _obj({"tokenIn": _STR, "tokenOut": _STR, "amountIn": _STR, "via": _STR}, ["tokenIn", "tokenOut", "amountIn"]),
    ),
    ToolSpec(
        "executeSwap",
        "Execute a swap on Aerodrome. Requires a minimum output amount.",
        _obj(
            {
                "tokenIn": _STR,
                "tokenOut": _STR,
                "amountIn": _STR,
                "minAmountOut": _STR,
                "slippagePercent": {"type": "number"},
                "via": _STR,
            },
            ["tokenIn", "tokenOut", "amountIn", "minAmountOut"],
        ),
    ),
]


async def call_tool(tools: MarketTools, name: str, args: Dict[str, Any]) -> Any:
    """Dispatch a model-requested tool call by its wire name."""
    if name == "getWalletBalance":
        return await tools.get_wallet_balance()
    if name == "getTokenPrice":
        return await tools.get_token_price(str(args["token"]))
    if name == "getIndicators":
        return await tools.get_indicators(str(args["token"]))
    if name == "getPoolMetrics":
        return await tools.get_pool_metrics(str(args["tokenA"]), str(args["tokenB"]))
    if name == "getQuote":
        return await tools.get_quote(str(args["tokenIn"]), str(args["tokenOut"]), str(args["amountIn"]), args.get("via"))
    if name == "executeSwap":
        return await tools.execute_swap(
            str(args["tokenIn"]),
            str(args["tokenOut"]),
            str(args["amountIn"]),
            str(args["minAmountOut"]),
            float(args.get("slippagePercent", 0.5)),
            args.get("via"),
        )
    raise KeyError(f"Unknown tool: {name}")


def load_tools(factory_path: Optional[str], settings: Any) -> MarketTools:
    """Import `module:callable` and build the tool implementation from settings."""
    if not factory_path:
        raise ConfigurationError("TOOLS_FACTORY is not set; point it at a 'module:callable' returning market tools")
    module_name, _, attr = factory_path.partition(":")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Cannot load TOOLS_FACTORY {factory_path!r}: {exc}") from exc
    tools = factory(settings)
    if not isinstance(tools, MarketTools):
        raise ConfigurationError(f"TOOLS_FACTORY {factory_path!r} did not return a MarketTools implementation")
    return tools
