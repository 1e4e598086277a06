"""
Pagination Controller for the Review Harvester.
Drives the fetch -> normalize -> accumulate cycle for one target and decides
when to stop.

States:
    SEED        consume a response observed during page load as page 1
    FETCH       request page N through the template, with retries
    ACCUMULATE  normalize, deduplicate and emit the page's reviews
    DECIDE      stop on quota, page ceiling or an empty page; else next page
    FALLBACK    structured-data extraction, once, after fetch exhaustion
    DONE        terminal
"""
import asyncio
import json
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from harvester.adapters.browser import BrowserSession, FetchResponse, ObservedExchange
from harvester.adapters.sinks import DiagnosticStore, ReviewSink
from harvester.adapters.structured_data import StructuredDataExtractor
from harvester.errors import FetchError
from harvester.layers.dedup import Deduplicator
from harvester.layers.payload import PayloadNormalizer
from harvester.models.review import (
    ApiRequestTemplate,
    PageFetchResult,
    Review,
    ReviewSource,
    Target,
    TargetOutcome,
)
from harvester.models.settings import HarvestSettings
from harvester.utils.logger import LayerLogger


class PageState(str, Enum):
    SEED = "seed"
    FETCH = "fetch"
    ACCUMULATE = "accumulate"
    DECIDE = "decide"
    FALLBACK = "fallback"
    DONE = "done"


def safe_json_parse(text: Any) -> Any:
    """Decode a JSON body, None for anything that is not JSON."""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    if not text:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def page_ceiling(
    max_pages: Optional[int],
    result: PageFetchResult,
    requested_page_size: int,
) -> Optional[int]:
    """
    Highest page number worth requesting, None when unconstrained.

    The lower of the configured cap and the inferred page count: the
    reported ``total_pages`` if any, else ``ceil(total_count / page_size)``.
    """
    inferred = None
    if result.total_pages:
        inferred = int(math.ceil(result.total_pages))
    elif result.total_count:
        effective_page_size = result.page_size or requested_page_size
        if effective_page_size and effective_page_size > 0:
            inferred = int(math.ceil(result.total_count / effective_page_size))

    limits = [limit for limit in (max_pages, inferred) if limit]
    return min(limits) if limits else None


@dataclass
class TargetRun:
    """Mutable progress for one target; lives only while it is harvested."""
    target: Target
    template: Optional[ApiRequestTemplate]
    observed: Optional[ObservedExchange] = None
    page_no: int = 1
    saved: int = 0
    pages_fetched: int = 0
    payload: Any = None
    source: ReviewSource = ReviewSource.API
    last_result: PageFetchResult = field(default_factory=PageFetchResult)
    fallback_used: bool = False


class PaginationController:
    """
    Per-target state machine.

    The deduplicator and diagnostic store are owned by the harvest session
    and shared across targets; everything else is per target.
    """

    def __init__(
        self,
        browser: BrowserSession,
        settings: HarvestSettings,
        dedup: Deduplicator,
        output: ReviewSink,
        diagnostics: DiagnosticStore,
        normalizer: Optional[PayloadNormalizer] = None,
        extractor: Optional[StructuredDataExtractor] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.browser = browser
        self.settings = settings
        self.dedup = dedup
        self.output = output
        self.diagnostics = diagnostics
        self.normalizer = normalizer or PayloadNormalizer()
        self.extractor = extractor or StructuredDataExtractor()
        self.sleep = sleep
        self.logger = LayerLogger("pagination")
        self._handlers = {
            PageState.SEED: self._seed,
            PageState.FETCH: self._fetch,
            PageState.ACCUMULATE: self._accumulate,
            PageState.DECIDE: self._decide,
            PageState.FALLBACK: self._fallback,
        }

    async def run(
        self,
        target: Target,
        template: Optional[ApiRequestTemplate],
        observed: Optional[ObservedExchange] = None,
    ) -> TargetOutcome:
        """Harvest one target to completion."""
        run = TargetRun(target=target, template=template, observed=observed)
        self.logger.log_action(
            "harvest_target",
            "started",
            product_id=target.product_id,
            template_source=template.source.value if template else None,
            observed=observed is not None,
        )

        state = PageState.SEED
        while state is not PageState.DONE:
            state = await self._handlers[state](run)

        self.logger.log_action(
            "harvest_target",
            "completed",
            product_id=target.product_id,
            saved=run.saved,
            pages_fetched=run.pages_fetched,
            used_fallback=run.fallback_used,
        )
        return TargetOutcome(
            product_id=target.product_id,
            saved=run.saved,
            pages_fetched=run.pages_fetched,
            used_fallback=run.fallback_used,
        )

    async def _seed(self, run: TargetRun) -> PageState:
        if run.observed is not None:
            payload = safe_json_parse(run.observed.text) if 200 <= run.observed.status < 300 else None
            if payload is not None:
                self.logger.log_decision(
                    decision="seed_from_observed",
                    reason="review API responded during page load",
                    product_id=run.target.product_id,
                    url=run.observed.url,
                )
                run.payload = payload
                run.source = ReviewSource.OBSERVED
                run.page_no = 1
                return PageState.ACCUMULATE

        if run.template is None:
            self.logger.log_fallback(
                from_source="review_api",
                to_source="structured_data",
                reason="no request template",
                product_id=run.target.product_id,
            )
            return PageState.FALLBACK
        return PageState.FETCH

    async def _fetch(self, run: TargetRun) -> PageState:
        if run.template is None:
            return PageState.FALLBACK

        url = run.template.build_url(
            product_id=run.target.product_id,
            page=run.page_no,
            size=self.settings.page_size,
            sort_by=self.settings.sort_by.value,
            sort_direction=self.settings.sort_direction.value,
        )
        attempts = max(self.settings.retry_attempts, 1)
        for attempt in range(1, attempts + 1):
            response = await self._get(url, run.template.headers)
            payload = safe_json_parse(response.text) if response is not None and response.ok else None
            status = response.status if response is not None else None

            if payload is not None:
                self.logger.log_page_fetch(
                    url=url, page=run.page_no, status_code=status, result="ok", attempt=attempt,
                    product_id=run.target.product_id,
                )
                run.payload = payload
                run.source = ReviewSource.API
                run.pages_fetched += 1
                return PageState.ACCUMULATE

            self.logger.log_page_fetch(
                url=url, page=run.page_no, status_code=status, result="unusable_response",
                attempt=attempt, attempts=attempts, product_id=run.target.product_id,
            )
            if attempt < attempts:
                await self.sleep(self._backoff(attempt))

        self.logger.log_fallback(
            from_source="review_api",
            to_source="structured_data",
            reason=f"no JSON after {attempts} attempts",
            product_id=run.target.product_id,
            page=run.page_no,
        )
        await self._snapshot(f"api-failure-{run.target.product_id}")
        return PageState.FALLBACK

    async def _get(self, url: str, headers) -> Optional[FetchResponse]:
        try:
            return await self.browser.get(url, headers=dict(headers))
        except FetchError as e:
            self.logger.log_error(str(e), error_type="fetch_error", url=url)
            return None

    def _backoff(self, attempt: int) -> float:
        return self.settings.retry_base_delay * attempt + random.uniform(0, self.settings.retry_jitter)

    async def _accumulate(self, run: TargetRun) -> PageState:
        result = self.normalizer.extract(run.payload)
        run.last_result = result
        run.payload = None

        mapped = (self.normalizer.map_review(raw, run.target) for raw in result.comments)
        self._emit(run, mapped, source=run.source, received=len(result.comments), page=run.page_no)
        return PageState.DECIDE

    async def _decide(self, run: TargetRun) -> PageState:
        result = run.last_result
        product_id = run.target.product_id

        if not result.comments:
            self.logger.log_decision(
                decision="stop",
                reason="empty page",
                product_id=product_id,
                page=run.page_no,
                total_count=result.total_count,
            )
            return PageState.DONE

        if self.settings.quota_reached(run.saved):
            self.logger.log_decision(
                decision="stop",
                reason="quota reached",
                product_id=product_id,
                saved=run.saved,
            )
            return PageState.DONE

        ceiling = page_ceiling(self.settings.max_pages, result, self.settings.page_size)
        run.page_no += 1
        if ceiling is not None and run.page_no > ceiling:
            self.logger.log_decision(
                decision="stop",
                reason="page ceiling reached",
                product_id=product_id,
                ceiling=ceiling,
            )
            return PageState.DONE

        await self.sleep(self.settings.page_delay_min + random.uniform(0, self.settings.page_delay_jitter))
        return PageState.FETCH

    async def _fallback(self, run: TargetRun) -> PageState:
        if run.fallback_used:
            return PageState.DONE
        run.fallback_used = True

        try:
            blocks = await self.browser.structured_data_blocks()
        except FetchError as e:
            self.logger.log_error(
                str(e),
                error_type="structured_data_unavailable",
                product_id=run.target.product_id,
            )
            blocks = []
        reviews = self.extractor.extract(blocks, run.target)
        if not reviews:
            self.logger.log_warning(
                "structured_data_empty",
                product_id=run.target.product_id,
                saved=run.saved,
                blocks=len(blocks),
            )
            return PageState.DONE

        self._emit(run, reviews, source=ReviewSource.STRUCTURED_DATA, received=len(reviews))
        return PageState.DONE

    def _emit(
        self,
        run: TargetRun,
        reviews: Iterable[Optional[Review]],
        source: ReviewSource,
        received: int,
        **extra,
    ):
        """Push reviews through dedup into the output sink, stopping at quota."""
        accepted = duplicates = dropped = 0
        for review in reviews:
            if self.settings.quota_reached(run.saved):
                break
            if review is None:
                dropped += 1
                continue
            if not self.dedup.accept(review):
                duplicates += 1
                continue
            self.output.emit(review.to_record())
            run.saved += 1
            accepted += 1

        self.logger.log_normalization(
            source=source.value,
            received=received,
            accepted=accepted,
            duplicates=duplicates,
            dropped=dropped,
            product_id=run.target.product_id,
            **extra
        )

    async def _snapshot(self, label: str):
        if self.diagnostics.has(label):
            return
        try:
            content = await self.browser.content()
        except FetchError as e:
            self.logger.log_error(str(e), error_type="content_unavailable", label=label)
            content = ""
        self.diagnostics.save(label, content)
