"""
Harvest Session for the Review Harvester.
Owns all run-scoped state (dedup keys, per-target tally, diagnostic
labels) and processes targets one at a time.
"""
import re
from typing import Any, Callable, Iterable, List, Optional

from harvester.adapters.browser import BrowserSession
from harvester.adapters.sinks import DiagnosticStore, MemorySink, ReviewSink
from harvester.errors import FetchError, HarvesterError, NoTargetsError
from harvester.layers.dedup import Deduplicator
from harvester.layers.endpoint_discovery import EndpointDiscoveryLayer
from harvester.layers.pagination import PaginationController
from harvester.models.review import HarvestSummary, Target, TargetOutcome
from harvester.models.settings import HarvestSettings
from harvester.utils.logger import LayerLogger


BLOCKED_TITLE_RE = re.compile(
    r"(access denied|captcha|attention required|verify|robot|blocked)",
    re.IGNORECASE,
)


class HarvestSession:
    """
    One harvesting run.

    Targets are processed strictly sequentially; a failing target never
    aborts the run. Construct a fresh session per run.
    """

    def __init__(
        self,
        browser: BrowserSession,
        settings: Optional[HarvestSettings] = None,
        output: Optional[ReviewSink] = None,
        diagnostics: Optional[DiagnosticStore] = None,
        discovery: Optional[EndpointDiscoveryLayer] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.browser = browser
        self.settings = settings or HarvestSettings()
        self.output = output if output is not None else MemorySink()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticStore()
        self.discovery = discovery or EndpointDiscoveryLayer()
        self.dedup = Deduplicator()
        self.summary = HarvestSummary()
        self.logger = LayerLogger("harvest_session")

        controller_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.controller = PaginationController(
            browser=browser,
            settings=self.settings,
            dedup=self.dedup,
            output=self.output,
            diagnostics=self.diagnostics,
            **controller_kwargs
        )

    async def run(self, targets: Iterable[Target]) -> HarvestSummary:
        """
        Harvest every target and return the run tally.

        Raises:
            NoTargetsError: if ``targets`` is empty
        """
        targets = list(targets)
        if not targets:
            raise NoTargetsError("No targets to harvest.")

        self.logger.log_action(
            "harvest_run",
            "started",
            targets=[t.product_id for t in targets],
            results_wanted=self.settings.results_wanted,
            max_pages=self.settings.max_pages,
            page_size=self.settings.page_size,
            sort_by=self.settings.sort_by.value,
            sort_direction=self.settings.sort_direction.value,
        )

        for target in targets:
            outcome = await self.harvest_target(target)
            self.summary.targets.append(outcome)

        self.logger.log_action(
            "harvest_run",
            "completed",
            total_saved=self.summary.total_saved,
            saved_by_product=self.summary.saved_by_product(),
        )
        if self.summary.total_saved == 0:
            self.logger.log_warning(
                "no_reviews_harvested",
                hint="Check that the product ids are valid and the products have reviews.",
            )
        return self.summary

    async def harvest_target(self, target: Target) -> TargetOutcome:
        """Load the target's page, check preconditions and paginate."""
        product_id = target.product_id
        seed_url = target.resolved_seed_url

        already_saved = self.summary.saved_by_product().get(product_id, 0)
        if already_saved and self.settings.quota_reached(already_saved):
            self.logger.log_decision(
                decision="skip_target",
                reason="quota already met",
                product_id=product_id,
                saved=already_saved,
            )
            return TargetOutcome(product_id=product_id, status="skipped")

        try:
            await self.browser.navigate(seed_url)
        except FetchError as e:
            self.logger.log_error(
                f"Navigation failed: {str(e)}",
                error_type="navigation_failed",
                product_id=product_id,
                url=seed_url,
            )
            return TargetOutcome(product_id=product_id, status="navigation_failed")

        saved_before = len(self.dedup)
        try:
            return await self._harvest_loaded_page(target)
        except HarvesterError as e:
            saved = len(self.dedup) - saved_before
            self.logger.log_error(
                f"Target failed: {str(e)}",
                error_type="target_failed",
                product_id=product_id,
                saved=saved,
            )
            return TargetOutcome(product_id=product_id, saved=saved, status="failed")

    async def _harvest_loaded_page(self, target: Target) -> TargetOutcome:
        product_id = target.product_id

        title = await self._page_title()
        if title and BLOCKED_TITLE_RE.search(title):
            label = f"blocked-{product_id}"
            if not self.diagnostics.has(label):
                self.diagnostics.save(label, await self._page_content())
            self.logger.log_decision(
                decision="abort_target",
                reason="block or challenge page detected",
                product_id=product_id,
                title=title,
            )
            return TargetOutcome(product_id=product_id, status="blocked")

        if not await self.browser.consent_satisfied():
            self.logger.log_warning("consent_pending", product_id=product_id)
            return TargetOutcome(product_id=product_id, status="consent_pending")

        observed = await self.browser.observations.first_match(
            lambda exchange: (
                self.discovery.matches(exchange)
                and self.discovery.belongs_to(exchange, product_id)
            ),
            timeout=self.settings.observe_timeout,
        )
        template = self.discovery.discover(target, observed)
        return await self.controller.run(target, template, observed)

    async def _page_title(self) -> str:
        try:
            return await self.browser.title()
        except FetchError as e:
            self.logger.log_warning("title_unavailable", error=str(e))
            return ""

    async def _page_content(self) -> str:
        try:
            return await self.browser.content()
        except FetchError as e:
            self.logger.log_warning("content_unavailable", error=str(e))
            return ""

    @property
    def reviews(self) -> List[dict]:
        """Records collected so far when the output is a MemorySink."""
        return self.output.records if isinstance(self.output, MemorySink) else []
