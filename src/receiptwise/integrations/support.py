"""Support lookup: where to get customer service for a store or product.

Two providers satisfy the same contract: a web-search provider returning
ranked result snippets and a generative fallback returning a free-text
summary. ``SupportLookup`` uses the first one that answers.
"""

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

import httpx
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from receiptwise.errors import ExternalServiceError, SupportLookupError
from receiptwise.integrations.anthropic_chat import AnthropicConversation
from receiptwise.logging import get_logger
from receiptwise.models import SearchSnippet, SupportResult
from receiptwise.templates import prompt_environment

LOG = get_logger("support")

SERPER_URL = "https://google.serper.dev/search"


class SerperResponse(BaseModel):
    """The part of a Serper search response we read.

    Other keys are ignored. A body of any other shape raises ValidationError.
    """

    organic: list[SearchSnippet] | None = None


def _is_retryable_error(exception: BaseException) -> bool:
    """Determine if a web-search failure should trigger a retry.

    Retries on:
    - Network errors and timeouts (httpx.TransportError)
    - HTTP 429 (rate limit exceeded)
    - HTTP 503 (service unavailable)

    Does NOT retry on other HTTP errors (bad key, bad request, ...).
    """
    if isinstance(exception, httpx.TransportError):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in (429, 503)

    return False


class SupportProvider(Protocol):
    name: str

    async def lookup(self, product_name: str) -> SupportResult: ...


class SerperSupportProvider:
    """Web-search provider backed by the Serper Google Search API."""

    name = "web-search"

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        max_results: int = 3,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.max_results = max_results
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily create the HTTP client on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception(_is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _search(self, query: str) -> Any:
        response = await self.client.post(
            SERPER_URL,
            headers={"X-API-KEY": self.api_key},
            json={"q": query, "num": 5},
        )
        response.raise_for_status()
        return response.json()

    async def lookup(self, product_name: str) -> SupportResult:
        """Search the web for the official support page of ``product_name``.

        Raises:
            httpx.HTTPError: For non-retryable errors or after max retries
            pydantic.ValidationError: If the response body is not a Serper result
        """
        data = await self._search(f"{product_name} official support page customer service")
        response = SerperResponse.model_validate(data)
        organic = response.organic or []
        return SupportResult(provider=self.name, results=organic[: self.max_results])


class GenerativeSupportProvider:
    """Fallback provider asking the conversational model what it knows."""

    name = "generative"

    def __init__(
        self,
        conversation: AnthropicConversation,
        prompts_dir: str | Path | None = None,
    ) -> None:
        self.conversation = conversation
        self.jinja_env = prompt_environment(prompts_dir)

    async def lookup(self, product_name: str) -> SupportResult:
        prompt = self.jinja_env.get_template("support_fallback.jinja2").render(
            PRODUCT_NAME=product_name
        )
        message = await self.conversation.reply([], prompt)
        return SupportResult(provider=self.name, message=message)


class SupportLookup:
    """Try each provider in order and return the first answer."""

    def __init__(self, providers: Sequence[SupportProvider]) -> None:
        self.providers = list(providers)

    async def lookup(self, product_name: str) -> SupportResult:
        """
        Find support information for a store or product.

        Raises:
            SupportLookupError: If every provider failed
        """
        for provider in self.providers:
            try:
                return await provider.lookup(product_name)
            except (httpx.HTTPError, ValueError, ExternalServiceError) as e:
                LOG.warning(
                    "Support lookup via %s failed for %r: %s", provider.name, product_name, e
                )
        raise SupportLookupError("Could not find support information")
