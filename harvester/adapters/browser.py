"""
Browser Session boundary for the Review Harvester.

The harvesting pipeline only talks to a ``BrowserSession``: page loads,
the page title and HTML, raw GET requests for review API pages, the
page's JSON-LD blocks, the consent signal, and a feed of network traffic
observed while the page rendered.

``HttpxBrowserSession`` is a plain-HTTP implementation. It renders no
JavaScript, so nothing is published to its observation feed and the
pipeline always synthesizes review API requests itself.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

import httpx
from bs4 import BeautifulSoup

from harvester.adapters.structured_data import find_jsonld_blocks
from harvester.config import config
from harvester.errors import FetchError
from harvester.utils.logger import LayerLogger


@dataclass
class ObservedExchange:
    """A request/response pair seen while a page rendered on its own."""
    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Union[str, bytes, None] = None

    @property
    def text(self) -> str:
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8", errors="replace")
        return self.body or ""


@dataclass
class FetchResponse:
    """Result of an explicit GET issued through the session."""
    status: int
    text: str
    url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


_CLOSED = object()


class ObservationFeed:
    """
    Bounded queue of observed exchanges.

    The browser publishes into it as traffic happens; the pipeline drains
    it with a timeout and keeps the first exchange that matches.
    """

    def __init__(self, maxsize: int = config.OBSERVATION_QUEUE_SIZE):
        self.maxsize = maxsize
        self.logger = LayerLogger("observation_feed")
        self.reset()

    def reset(self):
        """Forget everything; called on every page load."""
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._closed = False
        self.dropped = 0

    def publish(self, exchange: ObservedExchange) -> bool:
        """Enqueue without blocking; a full queue drops the exchange."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(exchange)
        except asyncio.QueueFull:
            self.dropped += 1
            self.logger.log_action("observation_publish", "dropped", url=exchange.url)
            return False
        return True

    def close(self):
        """No more exchanges will be published for the current page."""
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    @property
    def closed(self) -> bool:
        return self._closed

    async def first_match(
        self,
        predicate: Callable[[ObservedExchange], bool],
        timeout: float,
    ) -> Optional[ObservedExchange]:
        """
        Drain until an exchange satisfies ``predicate`` or time runs out.
        Returns immediately once the feed is closed and empty.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout, 0)
        while True:
            if self._closed and self._queue.empty():
                return None
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            try:
                item = await asyncio.wait_for(self._queue.get(), remaining)
            except asyncio.TimeoutError:
                return None
            if item is _CLOSED:
                continue
            if predicate(item):
                return item


class BrowserSession:
    """
    Interface the harvesting pipeline consumes.

    Implementations must raise ``FetchError`` when a navigation or request
    cannot be completed at the transport level.
    """

    def __init__(self):
        self.observations = ObservationFeed()

    async def navigate(self, url: str) -> None:
        raise NotImplementedError

    async def title(self) -> str:
        raise NotImplementedError

    async def content(self) -> str:
        raise NotImplementedError

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        raise NotImplementedError

    async def structured_data_blocks(self) -> List[str]:
        raise NotImplementedError

    async def consent_satisfied(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class HttpxBrowserSession(BrowserSession):
    """
    Plain HTTP session backed by ``httpx.AsyncClient``.
    Keeps the last loaded page in memory for title, HTML and JSON-LD access.
    """

    def __init__(
        self,
        timeout: int = config.REQUEST_TIMEOUT,
        proxy_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.logger = LayerLogger("browser_session")
        self._html = ""
        self._url: Optional[str] = None

        client_kwargs = {
            "timeout": timeout,
            "follow_redirects": True,
            "headers": self._get_headers(),
        }
        proxy = proxy_url or config.PROXY_URL
        if proxy:
            client_kwargs["proxy"] = proxy
        if transport is not None:
            client_kwargs["transport"] = transport
        self.client = httpx.AsyncClient(**client_kwargs)

    def _get_headers(self) -> dict:
        """Get request headers mimicking a browser."""
        return {
            "User-Agent": config.USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    async def navigate(self, url: str) -> None:
        self.observations.reset()
        self.logger.log_action("navigate", "started", url=url)
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            self.logger.log_error(
                f"Failed to load page: {str(e)}",
                error_type="http_error",
                url=url
            )
            raise FetchError(str(e), url=url) from e
        finally:
            # No JavaScript runs here, so nothing will ever be observed
            self.observations.close()

        self._url = str(response.url)
        self._html = response.text
        self.logger.log_action(
            "navigate",
            "completed",
            url=url,
            status_code=response.status_code,
            content_length=len(self._html)
        )

    async def title(self) -> str:
        soup = BeautifulSoup(self._html, "lxml")
        title_tag = soup.find("title")
        return title_tag.get_text().strip() if title_tag else ""

    async def content(self) -> str:
        return self._html

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        try:
            response = await self.client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise FetchError(str(e), url=url) from e
        return FetchResponse(status=response.status_code, text=response.text, url=str(response.url))

    async def structured_data_blocks(self) -> List[str]:
        return find_jsonld_blocks(self._html)

    async def close(self) -> None:
        await self.client.aclose()
