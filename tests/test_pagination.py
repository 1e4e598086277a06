import asyncio
import json

from conftest import FakeBrowser, api_payload, json_response, make_comment, page_of, paged_payload

from harvester.adapters.browser import FetchResponse, ObservedExchange
from harvester.errors import FetchError
from harvester.layers.dedup import Deduplicator
from harvester.layers.endpoint_discovery import EndpointDiscoveryLayer
from harvester.layers.pagination import PaginationController, page_ceiling, safe_json_parse
from harvester.models.review import PageFetchResult


def make_controller(browser, settings, sink, diagnostics, sleeper):
    return PaginationController(
        browser=browser,
        settings=settings,
        dedup=Deduplicator(),
        output=sink,
        diagnostics=diagnostics,
        sleep=sleeper,
    )


def paged_handler(total, size):
    return lambda url: json_response(paged_payload(total, size, page_of(url)))


def run(controller, target, template, observed=None):
    return asyncio.run(controller.run(target, template, observed))


def test_safe_json_parse():
    assert safe_json_parse('{"a": 1}') == {"a": 1}
    assert safe_json_parse(b"[1]") == [1]
    assert safe_json_parse("<html>") is None
    assert safe_json_parse("") is None


def test_page_ceiling():
    assert page_ceiling(None, PageFetchResult(total_count=45), 15) == 3
    assert page_ceiling(2, PageFetchResult(total_count=45), 15) == 2
    assert page_ceiling(None, PageFetchResult(total_count=45, page_size=10), 15) == 5
    assert page_ceiling(10, PageFetchResult(total_pages=4, total_count=1000), 15) == 4
    assert page_ceiling(None, PageFetchResult(), 15) is None


def test_stops_at_inferred_page_ceiling(target, settings, sink, diagnostics, sleeper):
    browser = FakeBrowser(handler=paged_handler(total=45, size=15))
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)
    template = EndpointDiscoveryLayer().discover(target)

    outcome = run(controller, target, template)

    assert [page_of(url) for url, _ in browser.requests] == [1, 2, 3]
    assert outcome.saved == 45
    assert outcome.pages_fetched == 3
    assert not outcome.used_fallback
    assert len(sink) == 45
    assert len(sleeper.calls) == 2


def test_stops_at_max_pages(target, settings, sink, diagnostics, sleeper):
    settings = settings.model_copy(update={"max_pages": 2})
    browser = FakeBrowser(handler=paged_handler(total=100, size=15))
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert outcome.pages_fetched == 2
    assert outcome.saved == 30


def test_stops_on_empty_page(target, settings, sink, diagnostics, sleeper):
    def handler(url):
        if page_of(url) == 1:
            return json_response(api_payload([make_comment(1), make_comment(2)]))
        return json_response(api_payload([]))

    browser = FakeBrowser(handler=handler)
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert [page_of(url) for url, _ in browser.requests] == [1, 2]
    assert outcome.saved == 2


def test_quota_truncates_page(target, settings, sink, diagnostics, sleeper):
    settings = settings.model_copy(update={"results_wanted": 20})
    browser = FakeBrowser(handler=paged_handler(total=100, size=15))
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert outcome.saved == 20
    assert len(sink) == 20
    assert outcome.pages_fetched == 2


def test_duplicates_across_pages_are_skipped(target, settings, sink, diagnostics, sleeper):
    def handler(url):
        page = page_of(url)
        if page > 2:
            return json_response(api_payload([]))
        return json_response(api_payload([make_comment(1), make_comment(page + 1)]))

    browser = FakeBrowser(handler=handler)
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert outcome.saved == 3
    assert [r["reviewId"] for r in sink.records] == ["1", "2", "3"]


def test_retries_then_falls_back_to_structured_data(target, settings, sink, diagnostics, sleeper):
    block = json.dumps({"@type": "Product", "review": [{"reviewBody": "From the page"}]})
    browser = FakeBrowser(
        handler=lambda url: FetchResponse(status=200, text="<html>blocked</html>"),
        blocks=[block],
    )
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert len(browser.requests) == settings.retry_attempts
    assert len(sleeper.calls) == settings.retry_attempts - 1
    assert outcome.used_fallback
    assert outcome.pages_fetched == 0
    assert [r["comment"] for r in sink.records] == ["From the page"]
    assert diagnostics.has("api-failure-123456")


def test_fallback_after_partial_success_keeps_prior_reviews(target, settings, sink, diagnostics, sleeper):
    def handler(url):
        if page_of(url) == 1:
            return json_response(api_payload([make_comment(i) for i in range(15)], totalCount=45))
        return FetchResponse(status=503, text="")

    browser = FakeBrowser(handler=handler)
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert outcome.saved == 15
    assert outcome.used_fallback
    assert len(browser.requests) == 1 + settings.retry_attempts


def test_transport_errors_count_as_failed_attempts(target, settings, sink, diagnostics, sleeper):
    def handler(url):
        raise FetchError("connection reset", url=url)

    browser = FakeBrowser(handler=handler)
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert outcome.saved == 0
    assert outcome.used_fallback
    assert len(browser.requests) == settings.retry_attempts


def test_observed_response_seeds_first_page(target, settings, sink, diagnostics, sleeper):
    observed = ObservedExchange(
        url="https://apigw.trendyol.com/discovery-web-productgw-service/api/review/comments"
            "?contentId=123456&page=1&size=15&culture=en-US",
        status=200,
        body=json.dumps(api_payload([make_comment(i) for i in range(15)], totalCount=30)),
    )
    browser = FakeBrowser(handler=paged_handler(total=30, size=15))
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)
    template = EndpointDiscoveryLayer().discover(target, observed)

    outcome = run(controller, target, template, observed)

    assert [page_of(url) for url, _ in browser.requests] == [2]
    assert "culture=en-US" in browser.requests[0][0]
    assert outcome.saved == 30
    assert outcome.pages_fetched == 1


def test_non_json_observed_response_is_refetched(target, settings, sink, diagnostics, sleeper):
    observed = ObservedExchange(
        url="https://apigw.trendyol.com/discovery-web-productgw-service/api/review/comments?contentId=123456",
        status=200,
        body="<html>challenge</html>",
    )
    browser = FakeBrowser(handler=paged_handler(total=5, size=15))
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target, observed), observed)

    assert [page_of(url) for url, _ in browser.requests] == [1]
    assert outcome.saved == 5


def test_missing_template_goes_straight_to_fallback(target, settings, sink, diagnostics, sleeper):
    browser = FakeBrowser()
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, None)

    assert browser.requests == []
    assert outcome.used_fallback
    assert outcome.saved == 0


def test_reported_page_size_drives_ceiling(target, settings, sink, diagnostics, sleeper):
    settings = settings.model_copy(update={"page_size": 12})

    def handler(url):
        page = page_of(url)
        comments = [make_comment(page * 100 + i) for i in range(12)]
        return json_response(api_payload(comments, totalCount=45, size=15))

    browser = FakeBrowser(handler=handler)
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert outcome.pages_fetched == 3
    assert outcome.saved == 36


def test_empty_page_with_nonzero_total_stops_immediately(target, settings, sink, diagnostics, sleeper):
    browser = FakeBrowser(handler=lambda url: json_response(api_payload([], totalCount=45)))
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert len(browser.requests) == 1
    assert outcome.saved == 0
    assert not outcome.used_fallback


def test_fallback_review_already_seen_through_api_is_not_emitted(target, settings, sink, diagnostics, sleeper):
    def handler(url):
        if page_of(url) == 1:
            return json_response(api_payload([make_comment(5)], totalCount=30))
        return FetchResponse(status=503, text="")

    block = json.dumps({
        "@type": "Product",
        "review": [
            {"identifier": "5", "reviewBody": "Same review, page markup"},
            {"identifier": "6", "reviewBody": "Only in the markup"},
        ],
    })
    browser = FakeBrowser(handler=handler, blocks=[block])
    controller = make_controller(browser, settings, sink, diagnostics, sleeper)

    outcome = run(controller, target, EndpointDiscoveryLayer().discover(target))

    assert outcome.used_fallback
    assert outcome.saved == 2
    assert [r["reviewId"] for r in sink.records] == ["5", "6"]
    assert sink.records[0]["comment"] == "Review number 5"
