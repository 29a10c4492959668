"""Tests for the fetch tool and web scraper."""

import httpx
import pytest

from toolgate.errors import FetchError
from toolgate.models.profile import ToolApprovalState, default_profile
from toolgate.services.approval import ApprovalGate, StaticApprover
from toolgate.services.pipeline import ToolExecutionPipeline
from toolgate.tools.fetch import WebScraper, clean_html, html_to_markdown, is_url, looks_like_html
from toolgate.tools.registry import ToolsRegistry

PAGE = """<!DOCTYPE html>
<html>
<head><title>Docs</title><script>alert('x')</script><style>body {}</style></head>
<body>
<!-- tracking -->
<h1>Getting Started</h1>
<p>Install the <a href="https://example.com/pkg">package</a> first.</p>
<form><input name="q"></form>
</body>
</html>"""


def handler(request: httpx.Request) -> httpx.Response:
    match request.url.path:
        case "/page":
            return httpx.Response(200, text=PAGE, headers={"content-type": "text/html; charset=utf-8"})
        case "/data.json":
            return httpx.Response(200, text='{"ok": true}', headers={"content-type": "application/json"})
        case "/slow":
            raise httpx.ReadTimeout("timed out", request=request)
        case _:
            return httpx.Response(404)


@pytest.fixture
def scraper() -> WebScraper:
    return WebScraper(transport=httpx.MockTransport(handler))


@pytest.fixture
def fetch_pipeline(task, scraper) -> ToolExecutionPipeline:
    profile = default_profile()
    return ToolExecutionPipeline(task, ToolsRegistry(profile, scraper=scraper), ApprovalGate(profile, StaticApprover()))


class TestHtmlHelpers:
    """Tests for URL and HTML helpers."""

    def test_is_url(self):
        """Test URL validation."""
        assert is_url("https://example.com/docs")
        assert not is_url("not a url")
        assert not is_url("/just/a/path")

    def test_looks_like_html(self):
        """Test HTML sniffing."""
        assert looks_like_html("<div>hi</div>")
        assert not looks_like_html('{"a": 1}')

    def test_clean_html_strips_noise(self):
        """Test that scripts, styles, forms and comments are removed."""
        cleaned = clean_html(PAGE)

        assert "alert" not in cleaned
        assert "tracking" not in cleaned
        assert "<form" not in cleaned
        assert "Getting Started" in cleaned

    def test_html_to_markdown(self):
        """Test conversion with ATX headings and links."""
        markdown = html_to_markdown(PAGE)

        assert "# Getting Started" in markdown
        assert "[package](https://example.com/pkg)" in markdown


class TestWebScraper:
    """Tests for the scraper itself."""

    @pytest.mark.asyncio
    async def test_formats(self, scraper):
        """Test markdown conversion versus raw passthrough."""
        markdown = await scraper.scrape("https://example.com/page")
        html = await scraper.scrape("https://example.com/page", output_format="html")
        raw = await scraper.scrape("https://example.com/data.json", output_format="raw")

        assert "# Getting Started" in markdown
        assert "<script>" not in markdown
        assert html == PAGE
        assert raw == '{"ok": true}'

    @pytest.mark.asyncio
    async def test_markdown_leaves_non_html_alone(self, scraper):
        """Test that non-HTML content is returned unchanged in markdown format."""
        assert await scraper.scrape("https://example.com/data.json") == '{"ok": true}'

    @pytest.mark.asyncio
    async def test_http_error(self, scraper):
        """Test that non-success statuses raise."""
        with pytest.raises(FetchError, match="HTTP 404: Not Found"):
            await scraper.scrape("https://example.com/missing")

    @pytest.mark.asyncio
    async def test_timeout(self, scraper):
        """Test that transport timeouts are reported with the limit."""
        with pytest.raises(FetchError, match="Request timed out after 250ms"):
            await scraper.scrape("https://example.com/slow", timeout_ms=250)


class TestFetchTool:
    """Tests for the fetch tool through the pipeline."""

    @pytest.mark.asyncio
    async def test_fetch_markdown(self, fetch_pipeline, make_call):
        """Test a successful fetch."""
        result = await fetch_pipeline.execute(make_call("fetch", url="https://example.com/page"))

        assert "# Getting Started" in result.output.value

    @pytest.mark.asyncio
    async def test_http_error_output(self, fetch_pipeline, make_call):
        """Test that HTTP errors become error output."""
        result = await fetch_pipeline.execute(make_call("fetch", url="https://example.com/missing"))

        assert result.output.value == "Error: HTTP 404: Not Found"

    @pytest.mark.asyncio
    async def test_invalid_url(self, fetch_pipeline, make_call):
        """Test the invalid URL message."""
        result = await fetch_pipeline.execute(make_call("fetch", url="example"))

        assert result.output.value == "Error: Invalid URL provided: example. Please provide a valid URL."

    @pytest.mark.asyncio
    async def test_denied_with_subject(self, task, scraper, make_call):
        """Test the approval subject and denial message."""
        profile = default_profile()
        profile.tool_approvals["power---fetch"] = ToolApprovalState.ASK
        approver = StaticApprover(approved=False)
        pipeline = ToolExecutionPipeline(
            task, ToolsRegistry(profile, scraper=scraper), ApprovalGate(profile, approver)
        )

        result = await pipeline.execute(make_call("fetch", url="https://example.com/page", format="raw"))

        assert result.output.value == "URL fetch from 'https://example.com/page' denied by user. Reason: No reason given."
        assert approver.questions == [
            (
                "power---fetch",
                "Approve fetching content from URL 'https://example.com/page'?",
                "URL: https://example.com/page\nTimeout: 60000ms\nFormat: raw",
            )
        ]
