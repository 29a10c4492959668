"""URL fetch tool and the web scraper behind it."""

import re
from typing import Literal

import httpx
from bs4 import BeautifulSoup, Comment
from markdownify import markdownify
from pydantic import BaseModel, Field

from toolgate.config import ToolgateConfig
from toolgate.errors import FetchError
from toolgate.models.profile import POWER_TOOL_FETCH, POWER_TOOL_GROUP_NAME
from toolgate.services.cancellation import CancellationToken
from toolgate.tools.base import ToolContext, ToolDefinition, ToolOutput
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

FetchFormat = Literal["markdown", "html", "raw"]

FETCH_DESCRIPTION = (
    "Fetches and returns the content of a web page from a specified URL. Useful for retrieving web content, "
    'documentation, or external resources. Supports three formats: "markdown" (default, converts HTML to '
    'markdown), "html" (returns raw HTML), "raw" (fetches raw content via HTTP, ideal for API responses or raw '
    "files like GitHub raw files)."
)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/91.0.4472.124 Safari/537.36"
)

STRIPPED_TAGS = [
    "script",
    "style",
    "link",
    "noscript",
    "iframe",
    "svg",
    "meta",
    "img",
    "video",
    "audio",
    "canvas",
    "form",
    "button",
    "input",
    "select",
    "textarea",
]

HTML_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"<!DOCTYPE\s+html", r"<html", r"<head", r"<body", r"<div", r"<p>", r"<a\s+href=")
]


def is_url(value: str) -> bool:
    """Check that `value` parses as an absolute URL with a host."""
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError):
        return False
    return bool(url.scheme) and bool(url.host)


def looks_like_html(content: str) -> bool:
    return any(pattern.search(content) for pattern in HTML_PATTERNS)


def clean_html(content: str) -> str:
    """Drop scripts, media, forms and comments from an HTML document."""
    soup = BeautifulSoup(content, "html.parser")
    for element in soup.find_all(STRIPPED_TAGS):
        element.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    return str(soup)


def html_to_markdown(content: str) -> str:
    return markdownify(clean_html(content), heading_style="ATX").strip()


class WebScraper:
    """Fetches URLs over HTTP and optionally converts HTML to markdown."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, user_agent: str = USER_AGENT):
        """Initialize the scraper.

        Args:
            transport: Optional httpx transport, e.g. `httpx.MockTransport` in tests
            user_agent: User-Agent header sent with every request
        """
        self.transport = transport
        self.user_agent = user_agent

    async def _get(self, url: str, timeout_ms: int) -> httpx.Response:
        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=timeout_ms / 1000,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
        ) as client:
            return await client.get(url)

    async def scrape(
        self,
        url: str,
        timeout_ms: int = 60_000,
        cancel_token: CancellationToken | None = None,
        output_format: FetchFormat = "markdown",
    ) -> str:
        """Fetch `url` and render it in `output_format`.

        Raises:
            FetchError: On timeout or a non-success status
            httpx.HTTPError: On transport failures
            OperationCancelledError: If the token fires mid-request
        """
        logger.debug(f"Fetching {url} (format: {output_format}, timeout: {timeout_ms}ms)")
        request = self._get(url, timeout_ms)
        try:
            response = await (cancel_token.race(request) if cancel_token else request)
        except httpx.TimeoutException as e:
            raise FetchError(f"Request timed out after {timeout_ms}ms") from e

        if not response.is_success:
            raise FetchError(f"HTTP {response.status_code}: {response.reason_phrase}")

        text = response.text
        if output_format != "markdown":
            return text

        content_type = response.headers.get("content-type", "")
        if "text/html" in content_type or looks_like_html(text):
            return html_to_markdown(text)
        return text


class FetchInput(BaseModel):
    """Input schema for the fetch tool."""

    url: str = Field(..., description="The URL to fetch.")
    timeout: int | None = Field(
        None, ge=0, description="Timeout for the fetch operation in milliseconds. Default: 60000 ms."
    )
    format: FetchFormat = Field(
        "markdown",
        description=(
            'Format of the response: "markdown" (default, converts HTML to markdown), "html" (returns raw HTML), '
            '"raw" (fetches raw content via HTTP, ideal for API responses or raw files).'
        ),
    )


def create_fetch_tool(scraper: WebScraper | None = None, config: ToolgateConfig | None = None) -> ToolDefinition:
    config = config or ToolgateConfig()
    scraper = scraper or WebScraper()

    async def fetch_handler(args: FetchInput, ctx: ToolContext) -> ToolOutput:
        timeout = args.timeout if args.timeout is not None else config.fetch_timeout_ms
        ctx.invocation.timeout_ms = timeout

        approval = await ctx.request_approval(
            f"Approve fetching content from URL '{args.url}'?",
            subject=f"URL: {args.url}\nTimeout: {timeout}ms\nFormat: {args.format}",
        )
        if not approval.approved:
            return ctx.deny(f"URL fetch from '{args.url}' denied by user. Reason: {approval.reason}")

        if not is_url(args.url):
            return ctx.fail(f"Error: Invalid URL provided: {args.url}. Please provide a valid URL.")

        try:
            return await scraper.scrape(args.url, timeout, ctx.cancel_token, args.format)
        except (FetchError, httpx.HTTPError) as e:
            logger.info(f"Fetch of {args.url} failed: {e}")
            return ctx.fail(f"Error: {e}")

    return ToolDefinition(
        name=POWER_TOOL_FETCH,
        group=POWER_TOOL_GROUP_NAME,
        description=FETCH_DESCRIPTION,
        input_schema_class=FetchInput,
        handler=fetch_handler,
    )
