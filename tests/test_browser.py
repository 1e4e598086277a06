import asyncio

import httpx
import pytest

from harvester.adapters.browser import (
    FetchResponse,
    HttpxBrowserSession,
    ObservationFeed,
    ObservedExchange,
)
from harvester.errors import FetchError


PAGE = """
<html>
<head>
  <title> Shoe - Reviews </title>
  <script type="application/ld+json">{"@type": "Product", "review": []}</script>
</head>
<body></body>
</html>
"""


def handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/reviews"):
        return httpx.Response(200, text=PAGE)
    if request.url.path.endswith("/comments"):
        return httpx.Response(200, json={"result": {"comments": []}})
    raise httpx.ConnectError("unreachable", request=request)


def test_session_loads_page_and_fetches_json():
    async def scenario():
        session = HttpxBrowserSession(transport=httpx.MockTransport(handler))
        try:
            await session.navigate("https://www.trendyol.com/x-p-1/reviews")
            title = await session.title()
            blocks = await session.structured_data_blocks()
            response = await session.get(
                "https://apigw.trendyol.com/api/review/comments?contentId=1",
                headers={"accept": "application/json"},
            )
            observed = await session.observations.first_match(lambda e: True, timeout=1)
        finally:
            await session.close()
        return title, blocks, response, observed

    title, blocks, response, observed = asyncio.run(scenario())

    assert title == "Shoe - Reviews"
    assert blocks == ['{"@type": "Product", "review": []}']
    assert response.ok
    assert '"comments"' in response.text
    assert observed is None


def test_transport_failures_raise_fetch_error():
    async def scenario():
        session = HttpxBrowserSession(transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(FetchError):
                await session.navigate("https://www.trendyol.com/down")
            assert session.observations.closed
            with pytest.raises(FetchError):
                await session.get("https://www.trendyol.com/down")
        finally:
            await session.close()

    asyncio.run(scenario())


def test_fetch_response_ok():
    assert FetchResponse(status=204, text="").ok
    assert not FetchResponse(status=403, text="").ok


def test_observation_feed_first_match():
    async def scenario():
        feed = ObservationFeed(maxsize=4)
        feed.publish(ObservedExchange(url="https://x/api/cart", status=200))
        feed.publish(ObservedExchange(url="https://x/api/reviews", status=200, body=b"{}"))
        feed.close()
        return await feed.first_match(lambda e: "reviews" in e.url, timeout=1)

    match = asyncio.run(scenario())

    assert match.url == "https://x/api/reviews"
    assert match.text == "{}"


def test_observation_feed_drops_when_full():
    async def scenario():
        feed = ObservationFeed(maxsize=1)
        accepted = [
            feed.publish(ObservedExchange(url=f"https://x/{i}", status=200))
            for i in range(3)
        ]
        return feed, accepted

    feed, accepted = asyncio.run(scenario())

    assert accepted == [True, False, False]
    assert feed.dropped == 2


def test_observation_feed_times_out_when_open():
    async def scenario():
        feed = ObservationFeed()
        return await feed.first_match(lambda e: True, timeout=0.05)

    assert asyncio.run(scenario()) is None


def test_closed_feed_rejects_publish():
    async def scenario():
        feed = ObservationFeed()
        feed.close()
        return feed.publish(ObservedExchange(url="https://x", status=200))

    assert asyncio.run(scenario()) is False
