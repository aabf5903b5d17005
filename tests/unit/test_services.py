"""Unit tests for the research and deployment services."""

import json

import httpx
import pytest
from pydantic import SecretStr

from buildwright.core.config import SearchConfig
from buildwright.core.exceptions import ProviderError, ValidationError
from buildwright.services.deployment import LocalDirectoryDeployer, slugify
from buildwright.services.research import HttpResearchService, html_to_text


def research_service(handler, **config):
    config.setdefault("endpoint", "https://search.example.com/api")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpResearchService(SearchConfig(**config), client=client)


class TestHelpers:
    """Tests for text helpers."""

    @pytest.mark.parametrize(
        "name,expected",
        [("Todo App", "todo-app"), ("  My  Cool_App!! ", "my-cool-app"), ("!!!", "project")],
    )
    def test_slugify(self, name, expected):
        """Test project name slugs."""
        assert slugify(name) == expected

    def test_html_to_text(self):
        """Test that scripts, styles and tags are stripped."""
        html = "<html><style>p{}</style><script>alert(1)</script><p>Todo &amp; notes</p>\n<b>fast</b></html>"

        assert html_to_text(html) == "Todo & notes fast"

    def test_html_to_text_ignores_attributes(self):
        """Test that attribute values containing '>' never leak into the text."""
        html = '<div title="a > b">Hello</div><noscript>enable js</noscript>'

        assert html_to_text(html) == "Hello"


@pytest.mark.asyncio
class TestHttpResearchService:
    """Tests for HTTP search and fetch."""

    async def test_search(self):
        """Test the search request and result mapping."""
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"title": "A", "url": "https://a.example", "content": "about a"},
                        {"title": "No url"},
                        {"title": "B", "url": "https://b.example", "snippet": "about b"},
                    ]
                },
            )

        service = research_service(handler, api_key=SecretStr("key"))
        hits = await service.search("todo apps", max_results=5)

        assert seen == {"body": {"query": "todo apps", "max_results": 5}, "auth": "Bearer key"}
        assert [(h.url, h.snippet) for h in hits] == [("https://a.example", "about a"), ("https://b.example", "about b")]
        await service.aclose()

    async def test_search_server_error_is_retryable(self):
        """Test that a 502 becomes a retryable ProviderError."""
        service = research_service(lambda request: httpx.Response(502))

        with pytest.raises(ProviderError) as exc_info:
            await service.search("todo")

        assert exc_info.value.retryable

    async def test_search_without_endpoint(self):
        """Test that search fails cleanly when unconfigured."""
        service = research_service(lambda request: httpx.Response(200), endpoint=None)

        with pytest.raises(ProviderError):
            await service.search("todo")

    async def test_fetch_html_is_stripped_and_truncated(self):
        """Test page fetching."""

        def handler(request):
            return httpx.Response(200, html="<h1>Hello</h1><p>world of todos</p>")

        service = research_service(handler, max_fetch_chars=11)

        assert await service.fetch("https://a.example/page") == "Hello world"

    async def test_fetch_transport_error(self):
        """Test that connection failures are retryable."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        service = research_service(handler)

        with pytest.raises(ProviderError) as exc_info:
            await service.fetch("https://a.example/page")

        assert exc_info.value.retryable


@pytest.mark.asyncio
class TestLocalDirectoryDeployer:
    """Tests for the bundled deployer."""

    async def test_deploy_to_disk(self, storage, temp_dir):
        """Test that files are written under deployments/ with a file URL."""
        outcome = await LocalDirectoryDeployer(storage).deploy("Todo App", {"index.html": "<html/>", "/src/app.js": "1"})

        assert outcome.provider == "local"
        assert outcome.url == (temp_dir / "deployments" / "todo-app").resolve().as_uri()
        assert (temp_dir / "deployments" / "todo-app" / "src" / "app.js").read_text() == "1"

    async def test_deploy_nothing(self, storage):
        """Test that an empty deployment is rejected."""
        with pytest.raises(ValidationError):
            await LocalDirectoryDeployer(storage).deploy("Todo App", {})
