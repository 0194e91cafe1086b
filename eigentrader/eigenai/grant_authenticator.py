"""
Grant-based authentication for EigenAI wallet-signing mode.

The provider hands out a challenge message per wallet; signing it with the
wallet key (EIP-191 personal_sign) yields a grant that is attached to every
chat request. A grant is reused until it is an hour old or the provider
reports no remaining tokens, whichever comes first.

Usage:
    auth = GrantAuthenticator(api_url, private_key)
    fields = await auth.get_authentication_fields()
    body.update(fields.as_body())
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

from eigentrader.config.config import is_valid_private_key
from eigentrader.core.errors import ConfigurationError, ProviderUnavailable
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.types import AuthFields, Grant

log = logging.getLogger("eigentrader")


class GrantAuthenticator:
    """
    Owns the grant cache for one signing key.

    The cache is a plain attribute with no lock: the trading loop runs one
    iteration at a time, so at most one refresh is in flight. The cache is
    only assigned after every await of a refresh has completed, so a
    cancelled refresh leaves the previous grant untouched.
    """

    def __init__(
        self,
        api_url: str,
        private_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        metrics: Any = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._private_key = private_key
        self._account = None
        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            self._client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True
        self._clock = clock
        self._metrics = metrics
        self._log = log_event or self._default_log
        self._grant: Optional[Grant] = None

        self._stats = {
            "refreshes": 0,
            "cache_hits": 0,
            "status_failures": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _signer(self):
        if self._account is None:
            if not self._private_key:
                raise ConfigurationError("EIGENAI_PRIVATE_KEY is required for wallet-signing mode")
            if not is_valid_private_key(self._private_key):
                raise ConfigurationError("EIGENAI_PRIVATE_KEY must be 0x followed by 64 hex characters")
            self._account = Account.from_key(self._private_key)
        return self._account

    @property
    def wallet_address(self) -> str:
        return self._signer().address

    @property
    def cached_grant(self) -> Optional[Grant]:
        return self._grant

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def clear_cache(self) -> None:
        if self._grant is not None:
            self._log("grant_cache_cleared", address=self._grant.signer_address)
        self._grant = None

    async def _fetch_challenge(self, address: str) -> str:
        url = f"{self._api_url}/message"
        try:
            resp = await self._client.get(url, params={"address": address})
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Failed to fetch grant message from {url}: {exc}") from exc
        if resp.status_code >= 400:
            raise ProviderUnavailable(
                f"Failed to fetch grant message: {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderUnavailable("Grant message response was not JSON", status=resp.status_code) from exc
        message = data.get("message") if isinstance(data, dict) else None
        if not message or (isinstance(data, dict) and data.get("success") is False):
            raise ProviderUnavailable("Grant message response missing message", status=resp.status_code, body=resp.text)
        return str(message)

    async def check_grant_status(self) -> Dict[str, Any]:
        """
        Raw /checkGrant payload: {success, hasGrant, grant?: {remainingTokens, totalTokens, expiresAt}}.
        Raises ProviderUnavailable on transport or status failure.
        """
        address = self.wallet_address
        url = f"{self._api_url}/checkGrant"
        try:
            resp = await self._client.get(url, params={"address": address})
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Failed to check grant status from {url}: {exc}") from exc
        if resp.status_code >= 400:
            raise ProviderUnavailable(
                f"Failed to check grant status: {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderUnavailable("Grant status response was not JSON", status=resp.status_code) from exc
        return data if isinstance(data, dict) else {}

    def _sign(self, message: str) -> bytes:
        signed = self._signer().sign_message(encode_defunct(text=message))
        return bytes(signed.signature)

    async def get_or_renew_grant(self, force_refresh: bool = False) -> Grant:
        signer = self._signer()
        grant = self._grant
        if grant is not None and not force_refresh and grant.is_valid(self._clock()):
            self._stats["cache_hits"] += 1
            if self._metrics is not None:
                self._metrics.grant_cache_hits.inc()
            return grant

        message = await self._fetch_challenge(signer.address)
        signature = self._sign(message)

        remaining: Optional[int] = None
        try:
            status = await self.check_grant_status()
            info = status.get("grant") or {}
            if info.get("remainingTokens") is not None:
                remaining = int(info["remainingTokens"])
        except (ProviderUnavailable, ValueError, TypeError, AttributeError) as exc:
            self._stats["status_failures"] += 1
            self._log("grant_status_unavailable", key=signer.address, error=str(exc))

        grant = Grant(
            message=message,
            signature=signature,
            signer_address=signer.address,
            cached_at=self._clock(),
            remaining_tokens=remaining,
        )
        self._grant = grant
        self._stats["refreshes"] += 1
        if self._metrics is not None:
            self._metrics.grant_refreshes.inc()
        self._log(
            "grant_authenticated",
            address=signer.address,
            remaining_tokens=remaining,
            forced=force_refresh,
        )
        return grant

    async def get_authentication_fields(self, force_refresh: bool = False) -> AuthFields:
        grant = await self.get_or_renew_grant(force_refresh)
        return AuthFields(
            grant_message=grant.message,
            grant_signature=grant.signature_hex,
            wallet_address=grant.signer_address,
        )
