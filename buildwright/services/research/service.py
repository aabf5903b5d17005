"""
Research Service.

Web search and page fetching used by the research agent. Both calls go
through the session's circuit breaker and retry policy at the tool layer;
this module only speaks HTTP.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from ...core.config import SearchConfig
from ...core.exceptions import ProviderError
from ...core.logging import get_logger

logger = get_logger(__name__)

_DROPPED_TAGS = ["script", "style", "noscript", "svg", "template"]


class SearchHit(BaseModel):
    """A single web search result."""

    title: str
    url: str
    snippet: str = Field(default="")


class SearchCapability(ABC):
    """External research capability injected into agents."""

    @abstractmethod
    async def search(self, query: str, max_results: int = 5) -> list[SearchHit]:
        ...

    @abstractmethod
    async def fetch(self, url: str) -> str:
        ...


def html_to_text(html: str) -> str:
    """Strip markup from a page, keeping readable text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_DROPPED_TAGS):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ", strip=True).split())


class HttpResearchService(SearchCapability):
    """Search through a JSON search API and fetch pages over HTTP.

    The search endpoint receives ``query`` and ``max_results`` as JSON and is
    expected to answer with ``{"results": [{"title", "url", "content"|"snippet"}]}``.
    """

    def __init__(self, config: SearchConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        if response.is_error:
            raise ProviderError(
                message=f"{operation} returned HTTP {response.status_code}",
                service_name="research",
                operation=operation,
                status_code=response.status_code,
            )

    async def search(self, query: str, max_results: int = 5) -> list[SearchHit]:
        if not self.config.endpoint:
            raise ProviderError(
                message="No search endpoint configured",
                service_name="research",
                operation="search",
            )
        headers: dict[str, str] = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key.get_secret_value()}"
        try:
            response = await self._get_client().post(
                self.config.endpoint,
                json={"query": query, "max_results": max_results},
                headers=headers,
            )
        except httpx.TransportError as e:
            raise ProviderError(
                message=f"Search request failed: {e}",
                service_name="research",
                operation="search",
                retryable=True,
                cause=e,
            )
        self._raise_for_status(response, "search")

        payload: dict[str, Any] = response.json()
        hits = [
            SearchHit(
                title=item.get("title", ""),
                url=item.get("url", ""),
                snippet=item.get("snippet") or item.get("content") or "",
            )
            for item in payload.get("results", [])
            if item.get("url")
        ]
        logger.debug("Search completed", query=query, hits=len(hits))
        return hits[:max_results]

    async def fetch(self, url: str) -> str:
        try:
            response = await self._get_client().get(url)
        except httpx.TransportError as e:
            raise ProviderError(
                message=f"Fetch failed: {e}",
                service_name="research",
                operation="fetch",
                retryable=True,
                cause=e,
            )
        self._raise_for_status(response, "fetch")

        text = response.text
        if "html" in response.headers.get("content-type", ""):
            text = html_to_text(text)
        return text[: self.config.max_fetch_chars]
