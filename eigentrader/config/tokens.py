"""
Token registry for spot trading on Base (Aerodrome).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class TokenMetadata:
    symbol: str
    address: str
    decimals: int
    name: str
    is_stablecoin: bool = False


_TOKENS: Tuple[TokenMetadata, ...] = (
    TokenMetadata("WETH", "0x4200000000000000000000000000000000000006", 18, "Wrapped Ether"),
    TokenMetadata("USDC", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6, "USD Coin", True),
    TokenMetadata("USDbC", "0xd9aAEc86B65D86f6A7B5B1b0c42FFA531710b6CA", 6, "Bridged USD Coin", True),
    TokenMetadata("DAI", "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb", 18, "Dai Stablecoin", True),
    TokenMetadata("AERO", "0x940181a94A35A4569E4529A3CDfB74e38FD98631", 18, "Aerodrome Finance"),
    TokenMetadata("cbETH", "0x2Ae3F1Ec7F1F5012CFEab0185bfc7aa3cf0DEc22", 18, "Coinbase Wrapped Staked ETH"),
    TokenMetadata("cbBTC", "0xcbB7C0000aB88B473b1f5aFd9ef808440eed33Bf", 8, "Coinbase Wrapped BTC"),
    TokenMetadata("WBTC", "0x0555E30da8f98308EdB960aa94C0Db47230d2B9c", 8, "Wrapped BTC"),
    TokenMetadata("VIRTUAL", "0x0b3e328455c4059EEb9e3f84b5543F74E24e7E1b", 18, "Virtual Protocol"),
    TokenMetadata("EIGEN", "0x2081ab0d9ec9e4303234ab26d86b20b3367946ee", 18, "Eigen"),
    TokenMetadata("BRETT", "0x532f27101965dd16442E59d40670FaF5eBB142E4", 18, "Based Brett"),
    TokenMetadata("DEGEN", "0x4ed4E862860beD51a9570b96d89aF5E1B0Efefed", 18, "Degen"),
    TokenMetadata("TOSHI", "0xAC1Bd2486aAf3B5C0fc3Fd868558b082a531B2B4", 18, "Toshi"),
    TokenMetadata("MIGGLES", "0xB1a03EdA10342529bBF8EB700a06C60441fEf25d", 18, "Mr Miggles"),
    TokenMetadata("PONKE", "0x4a0c64af541439898448659aedcec8e8e819fc53", 18, "Ponke"),
)

TOKENS: Dict[str, TokenMetadata] = {t.symbol: t for t in _TOKENS}

STABLECOIN_ADDRESSES = frozenset(t.address.lower() for t in _TOKENS if t.is_stablecoin)

# Quote asset used for every BUY/SELL leg.
QUOTE_SYMBOL = "USDC"


def resolve_token(symbol_or_address: str) -> Optional[TokenMetadata]:
    """Look up by symbol (case-insensitive) or by address."""
    if not symbol_or_address:
        return None
    upper = symbol_or_address.upper()
    for token in _TOKENS:
        if token.symbol.upper() == upper:
            return token
    lower = symbol_or_address.lower()
    for token in _TOKENS:
        if token.address.lower() == lower:
            return token
    return None


def is_stablecoin(symbol_or_address: str) -> bool:
    token = resolve_token(symbol_or_address)
    return bool(token and token.is_stablecoin)


def parse_trading_pairs(raw: str) -> List[Tuple[str, str]]:
    """
    Parse "USDC/WETH,USDC/AERO" into [(base, target), ...].
    Unknown symbols raise ValueError.
    """
    pairs: List[Tuple[str, str]] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        if "/" not in chunk:
            raise ValueError(f"Trading pair must look like BASE/TARGET, got {chunk!r}")
        base_raw, target_raw = (p.strip() for p in chunk.split("/", 1))
        base, target = resolve_token(base_raw), resolve_token(target_raw)
        if base is None or target is None:
            raise ValueError(f"Unknown token in trading pair {chunk!r}")
        pairs.append((base.symbol, target.symbol))
    return pairs


def valid_tokens_prompt(pairs: Iterable[Tuple[str, str]]) -> str:
    """Prompt section listing the only symbols the model may use."""
    symbols: List[str] = [QUOTE_SYMBOL]
    for base, target in pairs:
        for sym in (base, target):
            if sym not in symbols:
                symbols.append(sym)
    lines = ["## Valid Tokens", "You may ONLY use these token symbols:"]
    for sym in symbols:
        meta = TOKENS[sym]
        lines.append(f"- {meta.symbol} ({meta.name})")
    return "\n".join(lines)
