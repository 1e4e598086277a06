"""
Review harvesting models.
Canonical records shared by every layer of the harvesting pipeline,
regardless of whether a review came from the review API or from
embedded structured data.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field

from harvester.config import config
from harvester.utils.fields import sanitize_item


# Fields that identify or locate a review rather than describe it
IDENTITY_FIELDS = frozenset({"productId", "reviewId", "reviewPageUrl", "productUrl"})

DEDUP_COMMENT_PREFIX = 80


class ReviewSource(str, Enum):
    """Where a review was obtained."""
    OBSERVED = "observed"
    API = "api"
    STRUCTURED_DATA = "structured_data"


class TemplateSource(str, Enum):
    """How an API request template was obtained."""
    OBSERVED = "observed"
    STATIC = "static"


class Target(BaseModel):
    """One product whose reviews are being collected."""
    product_id: str
    product_url: Optional[str] = None
    review_page_url: Optional[str] = None
    seed_url: Optional[str] = None

    def merged_with(self, other: "Target") -> "Target":
        """
        Fill gaps from another target for the same product.
        Values already present are never overwritten.
        """
        updates = {}
        for name in ("product_url", "review_page_url", "seed_url"):
            if not getattr(self, name) and getattr(other, name):
                updates[name] = getattr(other, name)
        return self.model_copy(update=updates) if updates else self

    @property
    def resolved_seed_url(self) -> str:
        return self.seed_url or config.HOME_URL

    @property
    def referer(self) -> str:
        return self.review_page_url or self.resolved_seed_url


class Review(BaseModel):
    """
    Canonical review record.

    Serialized with camelCase keys as a sparse record: empty values are
    dropped rather than emitted as nulls.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    product_id: str = Field(alias="productId")
    review_id: Optional[str] = Field(default=None, alias="reviewId")
    rating: Optional[float] = None
    title: Optional[str] = None
    comment: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    created_at_timestamp: Optional[int] = Field(default=None, alias="createdAtTimestamp")
    like_count: Optional[int] = Field(default=None, alias="likeCount")
    dislike_count: Optional[int] = Field(default=None, alias="dislikeCount")
    # None means unknown, not "not verified"
    is_verified_purchase: Optional[bool] = Field(default=None, alias="isVerifiedPurchase")
    product_size: Optional[str] = Field(default=None, alias="productSize")
    product_color: Optional[str] = Field(default=None, alias="productColor")
    has_image: bool = Field(default=False, alias="hasImage")
    review_page_url: Optional[str] = Field(default=None, alias="reviewPageUrl")
    product_url: Optional[str] = Field(default=None, alias="productUrl")

    @classmethod
    def from_fields(cls, fields: Dict[str, Any], target: Target) -> Optional["Review"]:
        """
        Sanitize mapped fields, attach the target's identity and build a
        review. Returns None when nothing beyond identity survives.
        """
        record = sanitize_item({
            **fields,
            "product_id": target.product_id,
            "review_page_url": target.review_page_url,
            "product_url": target.product_url,
        })
        review = cls(**record)
        return review if review.has_content() else None

    def to_record(self) -> Dict[str, Any]:
        """Sparse camelCase dict for output sinks."""
        return sanitize_item(self.model_dump(by_alias=True, exclude_none=True))

    def has_content(self) -> bool:
        """True when the review carries anything beyond its identity fields."""
        for key, value in self.to_record().items():
            if key in IDENTITY_FIELDS:
                continue
            if key == "hasImage" and not value:
                continue
            return True
        return False

    @property
    def dedup_key(self) -> str:
        if self.review_id:
            return f"{self.product_id}:{self.review_id}"
        timestamp = self.created_at_timestamp if self.created_at_timestamp is not None else ""
        prefix = (self.comment or "")[:DEDUP_COMMENT_PREFIX]
        return f"{self.product_id}:{timestamp}:{prefix}"


class PageFetchResult(BaseModel):
    """One decoded review API response."""
    comments: List[Any] = Field(default_factory=list)
    total_count: Optional[float] = None
    page_size: Optional[float] = None
    total_pages: Optional[float] = None


class ApiRequestTemplate(BaseModel):
    """
    How to reach the review API for one target.

    ``parameter_name_map`` maps logical parameters (content_id, page, size,
    sort, direction) to the query keys this API generation uses.
    ``query_items`` holds the observed query string in order; parameters
    not in the map are passed through untouched.
    """
    model_config = ConfigDict(frozen=True)

    base_url: str
    parameter_name_map: Dict[str, str]
    headers: Dict[str, str] = Field(default_factory=dict)
    query_items: Tuple[Tuple[str, str], ...] = ()
    source: TemplateSource = TemplateSource.STATIC

    def build_url(
        self,
        product_id: str,
        page: int,
        size: int,
        sort_by: str,
        sort_direction: str,
    ) -> str:
        """Substitute values into the template, keeping parameter order."""
        values = {
            "content_id": str(product_id),
            "page": str(page),
            "size": str(size),
            "sort": sort_by,
            "direction": sort_direction,
        }
        by_key = {
            key: values[logical]
            for logical, key in self.parameter_name_map.items()
            if logical in values
        }

        query: List[Tuple[str, str]] = []
        written = set()
        for key, value in self.query_items:
            if key in by_key:
                if key in written:
                    continue
                query.append((key, by_key[key]))
                written.add(key)
            else:
                query.append((key, value))
        for key, value in by_key.items():
            if key not in written:
                query.append((key, value))

        parts = urlsplit(self.base_url)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


class TargetOutcome(BaseModel):
    """What happened to one target during a run."""
    product_id: str
    saved: int = 0
    pages_fetched: int = 0
    used_fallback: bool = False
    status: str = "completed"


class HarvestSummary(BaseModel):
    """Run-level tally."""
    targets: List[TargetOutcome] = Field(default_factory=list)

    @property
    def total_saved(self) -> int:
        return sum(t.saved for t in self.targets)

    def saved_by_product(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for outcome in self.targets:
            totals[outcome.product_id] = totals.get(outcome.product_id, 0) + outcome.saved
        return totals
