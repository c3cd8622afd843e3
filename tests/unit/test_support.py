"""Unit tests for support lookup providers."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
from pydantic import ValidationError

from receiptwise.errors import SupportLookupError
from receiptwise.integrations.anthropic_chat import ConversationError
from receiptwise.integrations.support import (
    SERPER_URL,
    GenerativeSupportProvider,
    SerperSupportProvider,
    SupportLookup,
    _is_retryable_error,
)
from receiptwise.models import SupportResult

pytestmark = pytest.mark.unit

ORGANIC = [
    {"title": f"Result {i}", "link": f"https://example.com/{i}", "snippet": f"Snippet {i}"}
    for i in range(5)
]


def serper_client(*responses):
    """An AsyncClient whose transport replays ``responses`` and records requests."""
    queue = list(responses)
    requests = []

    def handler(request):
        requests.append(request)
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, requests


class FakeProvider:
    def __init__(self, name, result=None, error=None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = 0

    async def lookup(self, product_name):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class TestRetryClassification:
    def test_transport_errors_are_retried(self):
        assert _is_retryable_error(httpx.ConnectError("refused"))
        assert _is_retryable_error(httpx.ReadTimeout("slow"))

    @pytest.mark.parametrize(
        ("status", "expected"), [(429, True), (503, True), (401, False), (500, False)]
    )
    def test_status_errors(self, status, expected):
        request = httpx.Request("POST", SERPER_URL)
        error = httpx.HTTPStatusError(
            "failed", request=request, response=httpx.Response(status, request=request)
        )
        assert _is_retryable_error(error) is expected

    def test_other_errors_are_not_retried(self):
        assert not _is_retryable_error(ValueError("bad json"))


class TestSerperSupportProvider:
    @pytest.mark.asyncio
    async def test_lookup_returns_top_three_results(self):
        client, requests = serper_client(httpx.Response(200, json={"organic": ORGANIC}))
        provider = SerperSupportProvider(api_key="serper-key", client=client)

        result = await provider.lookup("Acme Electronics")

        assert result.provider == "web-search"
        assert [r.title for r in result.results] == ["Result 0", "Result 1", "Result 2"]
        assert result.results[0].link == "https://example.com/0"
        assert result.message is None

        request = requests[0]
        assert str(request.url) == SERPER_URL
        assert request.headers["X-API-KEY"] == "serper-key"
        assert json.loads(request.content) == {
            "q": "Acme Electronics official support page customer service",
            "num": 5,
        }

    @pytest.mark.asyncio
    async def test_no_organic_results(self):
        client, _ = serper_client(httpx.Response(200, json={}))
        provider = SerperSupportProvider(api_key="serper-key", client=client)

        result = await provider.lookup("Acme")

        assert result.results == []

    @pytest.mark.asyncio
    async def test_null_organic_results(self):
        client, _ = serper_client(httpx.Response(200, json={"organic": None, "credits": 1}))
        provider = SerperSupportProvider(api_key="serper-key", client=client)

        result = await provider.lookup("Acme")

        assert result.results == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            [],
            "quota exceeded",
            {"organic": {"title": "not a list"}},
            {"organic": ["not an object"]},
            {"organic": [{"title": None}]},
        ],
    )
    async def test_unexpected_body_raises_validation_error(self, body):
        client, _ = serper_client(httpx.Response(200, json=body))
        provider = SerperSupportProvider(api_key="serper-key", client=client)

        with pytest.raises(ValidationError):
            await provider.lookup("Acme")

    @pytest.mark.asyncio
    async def test_service_unavailable_is_retried(self):
        client, requests = serper_client(
            httpx.Response(503),
            httpx.Response(200, json={"organic": ORGANIC[:1]}),
        )
        provider = SerperSupportProvider(api_key="serper-key", client=client)

        result = await provider.lookup("Acme")

        assert len(requests) == 2
        assert len(result.results) == 1

    @pytest.mark.asyncio
    async def test_bad_key_is_not_retried(self):
        client, requests = serper_client(httpx.Response(401), httpx.Response(200, json={}))
        provider = SerperSupportProvider(api_key="wrong", client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await provider.lookup("Acme")

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_aclose_closes_client(self):
        client, _ = serper_client()
        provider = SerperSupportProvider(api_key="serper-key", client=client)

        await provider.aclose()

        assert client.is_closed


class TestGenerativeSupportProvider:
    @pytest.mark.asyncio
    async def test_lookup_asks_the_conversation(self):
        conversation = AsyncMock()
        conversation.reply.return_value = "Visit acme.example/support or call 1800-000."
        provider = GenerativeSupportProvider(conversation)

        result = await provider.lookup("Acme Electronics")

        assert result == SupportResult(
            provider="generative", message="Visit acme.example/support or call 1800-000."
        )
        history, prompt = conversation.reply.call_args.args
        assert history == []
        assert '"Acme Electronics"' in prompt


class TestSupportLookup:
    @pytest.mark.asyncio
    async def test_first_provider_answers(self):
        web = FakeProvider("web-search", result=SupportResult(provider="web-search"))
        generative = FakeProvider("generative", result=SupportResult(provider="generative"))

        result = await SupportLookup([web, generative]).lookup("Acme")

        assert result.provider == "web-search"
        assert generative.calls == 0

    @pytest.mark.asyncio
    async def test_falls_back_in_order(self, caplog):
        request = httpx.Request("POST", SERPER_URL)
        web = FakeProvider("web-search", error=httpx.ConnectError("down", request=request))
        generative = FakeProvider("generative", result=SupportResult(provider="generative"))

        result = await SupportLookup([web, generative]).lookup("Acme")

        assert result.provider == "generative"
        assert web.calls == 1
        assert "web-search failed" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_search_body_falls_back(self, caplog):
        client, requests = serper_client(httpx.Response(200, json=[]))
        web = SerperSupportProvider(api_key="serper-key", client=client)
        generative = FakeProvider("generative", result=SupportResult(provider="generative"))

        result = await SupportLookup([web, generative]).lookup("Acme")

        assert result.provider == "generative"
        assert len(requests) == 1
        assert "web-search failed" in caplog.text

    @pytest.mark.asyncio
    async def test_all_providers_fail(self):
        web = FakeProvider("web-search", error=ValueError("not json"))
        generative = FakeProvider("generative", error=ConversationError("Model refused to answer"))

        with pytest.raises(SupportLookupError) as exc_info:
            await SupportLookup([web, generative]).lookup("Acme")

        assert str(exc_info.value) == "Could not find support information"
        assert exc_info.value.kind == "support_lookup"

    @pytest.mark.asyncio
    async def test_no_providers(self):
        with pytest.raises(SupportLookupError):
            await SupportLookup([]).lookup("Acme")
