"""
Independent USD spot price for a token, used by the price-impact guard.

Stablecoins short-circuit to 1.0. Everything else comes from DexScreener:
Base-chain pairs only, preferring pairs where the token is the base token,
highest liquidity first. Any failure returns 0.0 (unknown).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from eigentrader.config.tokens import STABLECOIN_ADDRESSES
from eigentrader.core.json_utils import dumps

log = logging.getLogger("eigentrader")

DEXSCREENER_API_URL = "https://api.dexscreener.com/latest"
CHAIN_ID = "base"


def _liquidity(pair: Dict[str, Any]) -> float:
    try:
        return float((pair.get("liquidity") or {}).get("usd") or 0)
    except (TypeError, ValueError):
        return 0.0


def _price(pair: Dict[str, Any]) -> float:
    try:
        return float(pair.get("priceUsd") or 0)
    except (TypeError, ValueError):
        return 0.0


def select_price(pairs: List[Dict[str, Any]], token_address: str) -> float:
    chain_pairs = [p for p in pairs if isinstance(p, dict) and p.get("chainId") == CHAIN_ID]
    if not chain_pairs:
        return 0.0
    token_lower = token_address.lower()
    as_base = [p for p in chain_pairs if str((p.get("baseToken") or {}).get("address", "")).lower() == token_lower]
    candidates = as_base or chain_pairs
    return _price(max(candidates, key=_liquidity))


class DexScreenerPriceOracle:
    def __init__(
        self,
        base_url: str = DEXSCREENER_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def get_price_usd(self, token_address: str) -> float:
        if token_address.lower() in STABLECOIN_ADDRESSES:
            return 1.0
        try:
            resp = await self.client.get(f"{self.base_url}/dex/tokens/{token_address}")
            if resp.status_code >= 400:
                log.warning(dumps({"event": "price_lookup_failed", "key": token_address, "status": resp.status_code}))
                return 0.0
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning(dumps({"event": "price_lookup_failed", "key": token_address, "error": str(exc)}))
            return 0.0
        pairs = data.get("pairs") if isinstance(data, dict) else None
        return select_price(pairs or [], token_address)
