"""
HTTP transport for EigenAI chat completions.

Two authentication modes:
- API key: `X-API-Key` header, POST /v1/chat/completions
- Wallet:  grantMessage/grantSignature/walletAddress in the body, POST /api/chat/completions

In wallet mode a grant-class rejection clears the cached grant and the request
is retried once with a freshly signed grant. Every other failure surfaces as
ProviderUnavailable carrying the HTTP status and the classified error code.
"""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx

from eigentrader.core.errors import ConfigurationError, ProviderUnavailable
from eigentrader.core.json_utils import dumps
from eigentrader.eigenai.grant_authenticator import GrantAuthenticator
from eigentrader.eigenai.types import AuthFields, ChatRequest, ChatResponse, parse_error_code

log = logging.getLogger("eigentrader")

API_KEY_PATH = "/v1/chat/completions"
WALLET_PATH = "/api/chat/completions"


class EigenAIClient:
    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        authenticator: Optional[GrantAuthenticator] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        metrics: Any = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        if not api_key and authenticator is None:
            raise ConfigurationError("EigenAI needs EIGENAI_API_KEY or a wallet grant authenticator")
        self.api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._authenticator = authenticator
        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            self._client = httpx.AsyncClient(http2=True, timeout=timeout)
            self._owns_client = True
        self._metrics = metrics
        self._log = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def auth_mode(self) -> str:
        return "api_key" if self._api_key else "wallet"

    @property
    def endpoint(self) -> str:
        path = API_KEY_PATH if self.auth_mode == "api_key" else WALLET_PATH
        return f"{self.api_url}{path}"

    @property
    def wallet_address(self) -> Optional[str]:
        if self.auth_mode == "wallet" and self._authenticator is not None:
            return self._authenticator.wallet_address
        return None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        return headers

    async def _auth_fields(self, force_refresh: bool) -> Optional[AuthFields]:
        if self.auth_mode == "api_key":
            return None
        return await self._authenticator.get_authentication_fields(force_refresh=force_refresh)

    def _error_from(self, resp: httpx.Response) -> ProviderUnavailable:
        try:
            body = resp.json()
        except ValueError:
            body = {"message": resp.text}
        return ProviderUnavailable(
            f"EigenAI API error: {resp.status_code}",
            status=resp.status_code,
            code=parse_error_code(body),
            body=resp.text,
        )

    def _should_retry(self, err: ProviderUnavailable, attempt: int) -> bool:
        if attempt > 0 or self.auth_mode != "wallet" or not err.is_grant_error:
            return False
        self._authenticator.clear_cache()
        self._log("grant_rejected_retrying", status=err.status, code=err.code)
        return True

    def _count(self, model: str, outcome: str, started: float) -> None:
        if self._metrics is None:
            return
        self._metrics.inference_requests.labels(model=model, outcome=outcome).inc()
        self._metrics.inference_latency_ms.labels(model=model).observe((time.monotonic() - started) * 1000)

    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Non-streaming completion."""
        started = time.monotonic()
        for attempt in (0, 1):
            auth = await self._auth_fields(force_refresh=attempt > 0)
            body = request.to_body(auth)
            try:
                resp = await self._client.post(self.endpoint, content=dumps(body), headers=self._headers())
            except httpx.HTTPError as exc:
                self._count(request.model, "network_error", started)
                raise ProviderUnavailable(f"Network error calling EigenAI: {exc}", status=0) from exc

            if resp.status_code >= 400:
                err = self._error_from(resp)
                if self._should_retry(err, attempt):
                    continue
                self._count(request.model, "http_error", started)
                raise err

            try:
                data = resp.json()
            except ValueError as exc:
                self._count(request.model, "bad_response", started)
                raise ProviderUnavailable("EigenAI response was not JSON", status=resp.status_code) from exc
            if not isinstance(data, dict):
                self._count(request.model, "bad_response", started)
                raise ProviderUnavailable("EigenAI response was not a JSON object", status=resp.status_code)
            self._count(request.model, "ok", started)
            return ChatResponse.from_dict(data)
        raise ProviderUnavailable("EigenAI grant retry exhausted")

    async def stream_lines(self, request: ChatRequest) -> AsyncIterator[str]:
        """
        Raw SSE lines of a streaming completion. Transport failures, before or
        during the body, surface as ProviderUnavailable.
        """
        started = time.monotonic()
        for attempt in (0, 1):
            auth = await self._auth_fields(force_refresh=attempt > 0)
            body = request.to_body(auth)
            try:
                async with self._client.stream(
                    "POST", self.endpoint, content=dumps(body), headers=self._headers()
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        err = self._error_from(resp)
                        if self._should_retry(err, attempt):
                            continue
                        self._count(request.model, "http_error", started)
                        raise err
                    async for line in resp.aiter_lines():
                        yield line
            except httpx.HTTPError as exc:
                self._count(request.model, "network_error", started)
                raise ProviderUnavailable(f"Network error during EigenAI stream: {exc}", status=0) from exc
            self._count(request.model, "ok", started)
            return
