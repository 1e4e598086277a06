import json
from typing import Callable, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlsplit

import pytest

from harvester.adapters.browser import BrowserSession, FetchResponse, ObservedExchange
from harvester.adapters.sinks import DiagnosticStore, MemorySink
from harvester.errors import FetchError
from harvester.models.review import Target
from harvester.models.settings import HarvestSettings


def make_comment(i: int, **extra) -> dict:
    comment = {"id": i, "comment": f"Review number {i}", "rate": 5}
    comment.update(extra)
    return comment


def api_payload(comments: List[dict], **meta) -> dict:
    return {"isSuccess": True, "result": {"comments": comments, **meta}}


def paged_payload(total: int, size: int, page: int, **meta) -> dict:
    """One page of a listing holding ``total`` distinct comments."""
    start = (page - 1) * size
    comments = [make_comment(i) for i in range(start, min(start + size, total))]
    return api_payload(comments, totalCount=total, **meta)


def json_response(payload, status: int = 200) -> FetchResponse:
    return FetchResponse(status=status, text=json.dumps(payload))


def page_of(url: str) -> int:
    query = parse_qs(urlsplit(url).query)
    return int(query.get("page", ["1"])[0])


class FakeBrowser(BrowserSession):
    """In-memory browser session driven by a URL -> response handler."""

    def __init__(
        self,
        handler: Optional[Callable[[str], FetchResponse]] = None,
        title: str = "Product reviews",
        html: str = "<html><head><title>Product reviews</title></head></html>",
        blocks: Optional[List[str]] = None,
        observed: Optional[List[ObservedExchange]] = None,
        consent: bool = True,
        fail_navigation: bool = False,
        fail_once: Iterable[str] = (),
    ):
        super().__init__()
        self.handler = handler or (lambda url: json_response(api_payload([])))
        self._title = title
        self._html = html
        self.blocks = blocks or []
        self.observed = observed or []
        self.consent = consent
        self.fail_navigation = fail_navigation
        self.fail_once = set(fail_once)
        self.navigated: List[str] = []
        self.requests: List[tuple] = []

    async def navigate(self, url: str) -> None:
        self.navigated.append(url)
        if self.fail_navigation:
            raise FetchError("connection refused", url=url)
        self.observations.reset()
        for exchange in self.observed:
            self.observations.publish(exchange)
        self.observations.close()

    def _maybe_fail(self, method: str):
        if method in self.fail_once:
            self.fail_once.discard(method)
            raise FetchError(f"{method} failed: target closed")

    async def title(self) -> str:
        self._maybe_fail("title")
        return self._title

    async def content(self) -> str:
        self._maybe_fail("content")
        return self._html

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResponse:
        self.requests.append((url, headers))
        return self.handler(url)

    async def structured_data_blocks(self) -> List[str]:
        self._maybe_fail("structured_data_blocks")
        return list(self.blocks)

    async def consent_satisfied(self) -> bool:
        self._maybe_fail("consent_satisfied")
        return self.consent


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def target():
    return Target(
        product_id="123456",
        product_url="https://www.trendyol.com/brand/shoe-p-123456",
        review_page_url="https://www.trendyol.com/brand/shoe-p-123456/reviews",
        seed_url="https://www.trendyol.com/brand/shoe-p-123456/reviews",
    )


@pytest.fixture
def settings():
    return HarvestSettings(
        results_wanted=None,
        max_pages=None,
        page_size=15,
        retry_base_delay=0,
        retry_jitter=0,
        page_delay_min=0,
        page_delay_jitter=0,
        observe_timeout=0.1,
    )


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def diagnostics():
    return DiagnosticStore(directory=None)


@pytest.fixture
def sleeper():
    return SleepRecorder()
