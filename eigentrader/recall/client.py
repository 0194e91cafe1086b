"""
Async HTTP client for the Recall verification registry.

Bearer-token auth. Every call returns a RegistryResult; HTTP errors carry the
status, transport errors come back as status 0. Nothing here raises on a
failed request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from eth_account.messages import encode_defunct

from eigentrader.core.errors import ConfigurationError


@dataclass
class RegistryResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    status: Optional[int] = None


def wallet_verification_message(nonce: str, domain: str, timestamp: Optional[str] = None) -> str:
    """Exact text the registry expects for the wallet-ownership proof."""
    if timestamp is None:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return (
        "VERIFY_WALLET_OWNERSHIP\n"
        f"Timestamp: {timestamp}\n"
        f"Domain: {domain}\n"
        "Purpose: WALLET_VERIFICATION\n"
        f"Nonce: {nonce}"
    )


class RegistryClient:
    def __init__(
        self,
        api_url: Optional[str],
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        if not api_url:
            raise ConfigurationError("Recall API URL is required. Set RECALL_API_URL.")
        if not api_key:
            raise ConfigurationError("Recall API key is required. Set RECALL_API_KEY.")
        self.api_url = api_url.rstrip("/")
        self._api_key = api_key
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"}

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> RegistryResult:
        try:
            resp = await self.client.request(
                method, f"{self.api_url}{path}", headers=self._headers(), json=body, params=params
            )
        except httpx.HTTPError as exc:
            return RegistryResult(False, error=f"Network error: {exc}", status=0)

        try:
            data = resp.json()
        except ValueError:
            data = None
        if resp.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            return RegistryResult(False, data=data, error=error or f"HTTP {resp.status_code}", status=resp.status_code)
        if isinstance(data, dict) and data.get("success") is False:
            return RegistryResult(
                False, data=data, error=data.get("error") or data.get("message") or "Request failed", status=resp.status_code
            )
        return RegistryResult(True, data=data, status=resp.status_code)

    async def submit_signature(
        self,
        competition_id: str,
        request_prompt: str,
        response_model: str,
        response_output: str,
        signature: str,
    ) -> RegistryResult:
        return await self._request("POST", "/api/eigenai/signatures", body={
            "competitionId": competition_id,
            "requestPrompt": request_prompt,
            "responseModel": response_model,
            "responseOutput": response_output,
            "signature": signature,
        })

    async def get_badge_status(self, competition_id: str) -> RegistryResult:
        return await self._request("GET", "/api/eigenai/badge", params={"competitionId": competition_id})

    async def get_submissions(
        self,
        competition_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        status: Optional[str] = None,
    ) -> RegistryResult:
        params: Dict[str, Any] = {"competitionId": competition_id}
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        if status:
            params["status"] = status
        return await self._request("GET", "/api/eigenai/submissions", params=params)

    async def get_competition_stats(self, competition_id: str) -> RegistryResult:
        return await self._request("GET", f"/api/eigenai/competitions/{competition_id}/stats")

    async def verify_wallet_ownership(self, account: Any) -> RegistryResult:
        """
        One-time proof that the trading wallet belongs to this agent:
        fetch a nonce, sign the verification message with `account`
        (an eth_account LocalAccount), post it back.
        """
        nonce_result = await self._request("GET", "/api/auth/agent/nonce")
        if not nonce_result.success:
            return nonce_result
        nonce = nonce_result.data.get("nonce") if isinstance(nonce_result.data, dict) else None
        if not nonce:
            return RegistryResult(False, data=nonce_result.data, error="Invalid nonce response: missing nonce field",
                                  status=nonce_result.status)

        message = wallet_verification_message(nonce, self.api_url)
        signed = account.sign_message(encode_defunct(text=message))
        signature = "0x" + signed.signature.hex().removeprefix("0x")

        result = await self._request("POST", "/api/auth/verify", body={"message": message, "signature": signature})
        if result.success:
            data = result.data if isinstance(result.data, dict) else {}
            result.data = {**data, "walletAddress": data.get("walletAddress") or account.address}
        return result
