"""
Tests for the EigenAI HTTP client: auth modes, grant retry, error mapping.
"""
import httpx
import pytest

from conftest import WALLET_KEY
from eigentrader.core.errors import ConfigurationError, ProviderUnavailable
from eigentrader.core.json_utils import loads
from eigentrader.eigenai.client import EigenAIClient
from eigentrader.eigenai.grant_authenticator import GrantAuthenticator
from eigentrader.eigenai.types import ChatMessage, ChatRequest, ToolSpec
from eigentrader.monitoring.metrics import AgentMetrics

API = "https://eigen.test"

COMPLETION = {
    "id": "chatcmpl-1",
    "model": "gpt-oss-120b-f16",
    "choices": [{"message": {"role": "assistant", "content": "hi"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
    "signature": "0xdeadbeef",
}


def request():
    return ChatRequest([ChatMessage("user", "hello")], model="gpt-oss-120b-f16")


class TestApiKeyMode:
    @pytest.mark.asyncio
    async def test_header_and_path(self):
        seen = {}

        def handler(req: httpx.Request) -> httpx.Response:
            seen["path"] = req.url.path
            seen["key"] = req.headers.get("X-API-Key")
            seen["body"] = loads(req.content)
            return httpx.Response(200, json=COMPLETION)

        client = EigenAIClient(API, api_key="k-123", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        response = await client.complete(request())

        assert seen["path"] == "/v1/chat/completions"
        assert seen["key"] == "k-123"
        assert "grantMessage" not in seen["body"]
        assert response.content == "hi"
        assert response.signature == "0xdeadbeef"
        assert response.usage.total_tokens == 4
        assert client.wallet_address is None

    @pytest.mark.asyncio
    async def test_tools_serialized(self):
        seen = {}

        def handler(req):
            seen["body"] = loads(req.content)
            return httpx.Response(200, json=COMPLETION)

        client = EigenAIClient(API, api_key="k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        req = request()
        req.tools = [ToolSpec("getWalletBalance", "balances")]
        req.tool_choice = "auto"
        await client.complete(req)
        assert seen["body"]["tools"][0]["function"]["name"] == "getWalletBalance"
        assert seen["body"]["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_http_error_maps_to_provider_unavailable(self):
        def handler(req):
            return httpx.Response(429, json={"error": {"message": "Rate limit exceeded"}})

        client = EigenAIClient(API, api_key="k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ProviderUnavailable) as exc_info:
            await client.complete(request())
        assert exc_info.value.status == 429
        assert exc_info.value.code == "rate_limited"
        assert not exc_info.value.is_grant_error

    @pytest.mark.asyncio
    async def test_network_error_has_status_zero(self):
        def handler(req):
            raise httpx.ConnectError("refused", request=req)

        client = EigenAIClient(API, api_key="k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ProviderUnavailable) as exc_info:
            await client.complete(request())
        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_non_object_body_is_provider_unavailable(self):
        metrics = AgentMetrics()
        for payload in ([], "ok", 42):
            def handler(req, payload=payload):
                return httpx.Response(200, json=payload)

            client = EigenAIClient(
                API, api_key="k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), metrics=metrics
            )
            with pytest.raises(ProviderUnavailable) as exc_info:
                await client.complete(request())
            assert exc_info.value.status == 200
        bad = metrics.inference_requests.labels(model="gpt-oss-120b-f16", outcome="bad_response")
        assert bad._value.get() == 3

    @pytest.mark.asyncio
    async def test_odd_shapes_inside_object_are_tolerated(self):
        def handler(req):
            return httpx.Response(200, json={"choices": "nope", "usage": [1], "signature": 123})

        client = EigenAIClient(API, api_key="k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        response = await client.complete(request())
        assert response.content == ""
        assert response.tool_calls == []
        assert response.usage.total_tokens == 0
        assert response.signature == "123"

    def test_requires_a_credential(self):
        with pytest.raises(ConfigurationError):
            EigenAIClient(API)


class TestWalletMode:
    """Grant fields in the body and one retry on grant rejection."""

    def make(self, chat_responses):
        counts = {"message": 0, "chat": 0}
        bodies = []

        def handler(req: httpx.Request) -> httpx.Response:
            if req.url.path == "/message":
                counts["message"] += 1
                return httpx.Response(200, json={"message": f"grant #{counts['message']}"})
            if req.url.path == "/checkGrant":
                return httpx.Response(200, json={"grant": {"remainingTokens": 10}})
            if req.url.path == "/api/chat/completions":
                bodies.append(loads(req.content))
                status, payload = chat_responses[min(counts["chat"], len(chat_responses) - 1)]
                counts["chat"] += 1
                return httpx.Response(status, json=payload)
            return httpx.Response(404)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        auth = GrantAuthenticator(API, WALLET_KEY, client=http)
        return EigenAIClient(API, authenticator=auth, client=http), counts, bodies

    @pytest.mark.asyncio
    async def test_body_carries_grant(self, wallet_account):
        client, counts, bodies = self.make([(200, COMPLETION)])
        await client.complete(request())
        assert bodies[0]["walletAddress"] == wallet_account.address
        assert bodies[0]["grantMessage"] == "grant #1"
        assert bodies[0]["grantSignature"].startswith("0x")
        assert client.wallet_address == wallet_account.address

    @pytest.mark.asyncio
    async def test_grant_rejection_retries_once_with_fresh_grant(self):
        client, counts, bodies = self.make([
            (401, {"error": {"code": "grant_expired", "message": "Grant expired"}}),
            (200, COMPLETION),
        ])
        response = await client.complete(request())
        assert response.content == "hi"
        assert counts["chat"] == 2
        assert counts["message"] == 2
        assert bodies[1]["grantMessage"] == "grant #2"

    @pytest.mark.asyncio
    async def test_second_grant_rejection_surfaces(self):
        client, counts, _ = self.make([(403, {"error": {"message": "invalid signature"}})])
        with pytest.raises(ProviderUnavailable) as exc_info:
            await client.complete(request())
        assert exc_info.value.code == "invalid_signature"
        assert counts["chat"] == 2

    @pytest.mark.asyncio
    async def test_non_grant_error_not_retried(self):
        client, counts, _ = self.make([(500, {"error": {"message": "internal"}})])
        with pytest.raises(ProviderUnavailable):
            await client.complete(request())
        assert counts["chat"] == 1

    @pytest.mark.asyncio
    async def test_stream_lines(self):
        sse = 'data: {"choices": [{"delta": {"content": "x"}}]}\n\ndata: [DONE]\n\n'

        def handler(req):
            if req.url.path == "/message":
                return httpx.Response(200, json={"message": "grant"})
            if req.url.path == "/checkGrant":
                return httpx.Response(200, json={})
            assert loads(req.content)["stream"] is True
            return httpx.Response(200, text=sse, headers={"Content-Type": "text/event-stream"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = EigenAIClient(API, authenticator=GrantAuthenticator(API, WALLET_KEY, client=http), client=http)
        req = request()
        req.stream = True
        lines = [line async for line in client.stream_lines(req)]
        assert lines[0].startswith("data: {")
        assert "data: [DONE]" in lines
