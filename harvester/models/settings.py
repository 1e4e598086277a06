"""
Run input models.
HarvestRequest is the raw job input; HarvestSettings is its normalized form
consumed by the pipeline.
"""
from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field

from harvester.config import config


class SortBy(str, Enum):
    """Review API sort fields."""
    DATE = "Date"
    RATE = "Rate"
    HELPFULNESS = "Helpfulness"


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


SORT_ALIASES = {
    "date": SortBy.DATE,
    "newest": SortBy.DATE,
    "rate": SortBy.RATE,
    "rating": SortBy.RATE,
    "helpful": SortBy.HELPFULNESS,
    "helpfulness": SortBy.HELPFULNESS,
    "most helpful": SortBy.HELPFULNESS,
}


def normalize_sort_by(value: Any) -> SortBy:
    """Map a case-insensitive sort name or alias; unknown values sort by date."""
    raw = str(value or "").strip().lower()
    return SORT_ALIASES.get(raw, SortBy.DATE)


def normalize_sort_direction(value: Any) -> SortDirection:
    raw = str(value or "").strip().upper()
    return SortDirection(raw) if raw in ("ASC", "DESC") else SortDirection.DESC


def _as_count(value: Any, default: int) -> int:
    """Non-negative int, or the default for anything else."""
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return number if number >= 0 else default


class HarvestRequest(BaseModel):
    """Job input as supplied by the operator."""
    product_id: Optional[Union[str, int]] = None
    start_urls: List[Any] = Field(default_factory=list)
    results_wanted: Any = config.DEFAULT_RESULTS_WANTED
    max_pages: Any = config.DEFAULT_MAX_PAGES
    reviews_per_page: Any = config.DEFAULT_PAGE_SIZE
    sort_by: Optional[str] = "Date"
    sort_direction: Optional[str] = "DESC"
    proxy_url: Optional[str] = None


class HarvestSettings(BaseModel):
    """
    Normalized run settings.

    ``results_wanted`` and ``max_pages`` are None when unbounded (0 in the
    input).
    """
    results_wanted: Optional[int] = config.DEFAULT_RESULTS_WANTED or None
    max_pages: Optional[int] = config.DEFAULT_MAX_PAGES or None
    page_size: int = config.DEFAULT_PAGE_SIZE
    sort_by: SortBy = SortBy.DATE
    sort_direction: SortDirection = SortDirection.DESC

    retry_attempts: int = config.RETRY_ATTEMPTS
    retry_base_delay: float = config.RETRY_BASE_DELAY
    retry_jitter: float = config.RETRY_JITTER
    page_delay_min: float = config.PAGE_DELAY_MIN
    page_delay_jitter: float = config.PAGE_DELAY_JITTER
    observe_timeout: float = config.OBSERVE_TIMEOUT

    @classmethod
    def from_request(cls, request: HarvestRequest) -> "HarvestSettings":
        results_wanted = _as_count(request.results_wanted, config.DEFAULT_RESULTS_WANTED)
        max_pages = _as_count(request.max_pages, config.DEFAULT_MAX_PAGES)
        page_size = _as_count(request.reviews_per_page, config.DEFAULT_PAGE_SIZE)
        return cls(
            results_wanted=results_wanted or None,
            max_pages=max_pages or None,
            page_size=min(max(page_size, 1), config.MAX_PAGE_SIZE),
            sort_by=normalize_sort_by(request.sort_by),
            sort_direction=normalize_sort_direction(request.sort_direction),
        )

    def quota_reached(self, saved: int) -> bool:
        return self.results_wanted is not None and saved >= self.results_wanted
