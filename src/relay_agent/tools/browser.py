"""
Browser tool backed by a persistent HTTP session.

The session (cookies, current page, history) is a long-lived resource owned
by the tool. Every action holds the session lock, and ``aclose`` tears the
session down.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import httpx
import structlog
from bs4 import BeautifulSoup

from .base import BaseTool, ToolConcurrency, ToolResult

logger = structlog.get_logger()

MAX_PAGE_CHARS = 10000
MAX_LINKS = 20


@dataclass
class Page:
    url: str
    title: str
    html: str


@dataclass
class BrowserSession:
    """Lock-guarded handle around one HTTP client and its navigation state."""

    user_agent: str = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36"
    timeout: float = 30.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    client: httpx.AsyncClient | None = None
    page: Page | None = None
    history: list[str] = field(default_factory=list)

    def ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        return self.client

    async def close(self) -> str:
        if self.client is None:
            return "browser not running"
        await self.client.aclose()
        self.client = None
        self.page = None
        self.history.clear()
        return "browser closed"


class BrowserTool(BaseTool):
    """Tool for browsing web pages in a persistent session."""

    concurrency = ToolConcurrency.MUTATING

    def __init__(self, session: BrowserSession | None = None):
        self.session = session or BrowserSession()

    @property
    def name(self) -> str:
        return "browse"

    @property
    def description(self) -> str:
        return (
            "Browse web pages in a persistent session that keeps cookies between calls. "
            "Actions: 'navigate' (open url), 'text' (current page text), 'links' "
            "(links on the current page), 'back' (previous page), 'close' (end session)."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "description": "One of navigate, text, links, back, close",
                    "enum": ["navigate", "text", "links", "back", "close"],
                },
                "url": {
                    "type": "string",
                    "description": "URL to open (navigate only); relative URLs resolve against the current page",
                },
            },
            "required": ["action"],
        }

    async def execute(self, action: str, url: str = "") -> ToolResult:
        async with self.session.lock:
            if action == "close":
                return ToolResult(success=True, output=await self.session.close())
            if action == "navigate":
                return await self._navigate(url)
            if action == "back":
                if len(self.session.history) < 2:
                    return ToolResult(success=False, error="no previous page")
                self.session.history.pop()
                return await self._navigate(self.session.history.pop())
            if self.session.page is None:
                return ToolResult(success=False, error="no page loaded - navigate first")
            if action == "text":
                return self._page_text(self.session.page)
            if action == "links":
                return self._page_links(self.session.page)
            return ToolResult(success=False, error=f"unknown action: {action}")

    async def aclose(self) -> None:
        async with self.session.lock:
            await self.session.close()

    async def _navigate(self, url: str) -> ToolResult:
        if not url:
            return ToolResult(success=False, error="url is required for navigate")
        if self.session.page is not None:
            url = urljoin(self.session.page.url, url)

        client = self.session.ensure_client()
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Browser error", url=url, error=str(e))
            return ToolResult(success=False, error=f"Failed to browse {url}: {e}")

        soup = BeautifulSoup(response.text, "html.parser")
        title = soup.title.string.strip() if soup.title and soup.title.string else "No title"
        page = Page(url=str(response.url), title=title, html=response.text)
        self.session.page = page
        self.session.history.append(page.url)
        return self._page_text(page)

    def _page_text(self, page: Page) -> ToolResult:
        soup = BeautifulSoup(page.html, "html.parser")
        for element in soup(["script", "style", "nav", "footer", "header", "aside"]):
            element.decompose()

        main_content = soup.find("main") or soup.find("article") or soup.find("body") or soup
        text = main_content.get_text(separator="\n", strip=True)
        text = "\n".join(line.strip() for line in text.split("\n") if line.strip())
        text = text[:MAX_PAGE_CHARS]

        return ToolResult(
            success=True,
            output=f"Title: {page.title}\nURL: {page.url}\n\n{text}",
            data={"title": page.title, "url": page.url, "content": text},
        )

    def _page_links(self, page: Page) -> ToolResult:
        soup = BeautifulSoup(page.html, "html.parser")
        links = []
        for a in soup.find_all("a", href=True)[:MAX_LINKS]:
            links.append({"text": a.get_text(strip=True)[:100], "url": urljoin(page.url, a["href"])})

        if not links:
            return ToolResult(success=True, output="No links found.", data={"links": []})
        output = "\n".join(f"- [{link['text']}]({link['url']})" for link in links)
        return ToolResult(success=True, output=output, data={"links": links})
