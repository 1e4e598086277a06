"""
Payload Normalization Layer for the Review Harvester.
Extracts comment lists and pagination metadata from arbitrarily shaped
review API responses and maps raw comments into canonical reviews.

Schema drift across API generations is handled with ordered alias lists:
the first alias holding a usable value wins.
"""
from typing import Any, Dict, Optional

from harvester.models.review import PageFetchResult, Review, Target
from harvester.utils.fields import (
    as_text,
    get_int,
    get_number,
    parse_bool,
    parse_date,
    pick_alias,
)


ENVELOPE_KEYS = ("result", "data")
COMMENT_LIST_KEYS = ("reviews", "comments", "commentList", "items", "data", "results")
TOTAL_COUNT_KEYS = ("totalCount", "total", "count", "totalElements", "totalCommentCount")
PAGE_SIZE_KEYS = ("size", "pageSize", "perPage")
TOTAL_PAGES_KEYS = ("totalPages", "pageCount")

FIELD_ALIASES = {
    "review_id": ("id", "commentId", "reviewId", "reviewID"),
    "rating": ("rate", "rating", "starRating", "score"),
    "title": ("commentTitle", "title", "header"),
    "comment": ("comment", "text", "commentText", "review"),
    "created": ("commentDate", "creationDate", "createdDate", "createdAt", "date"),
    "like_count": ("likeCount", "helpfulCount", "like"),
    "dislike_count": ("dislikeCount", "unhelpfulCount", "dislike"),
    "is_verified_purchase": ("isVerified", "isBuyer", "isPurchased", "isVerifiedPurchase"),
    "product_size": ("productSize", "size", "sizeName", "variant.size"),
    "product_color": ("productColor", "color", "colorName", "variant.color"),
}
IMAGE_LIST_KEYS = ("images", "imageUrls", "media")
IMAGE_FLAG_KEYS = ("hasPhoto", "hasImage")


def _first_present(root: Dict[str, Any], keys) -> Any:
    for key in keys:
        if root.get(key) is not None:
            return root[key]
    return None


def extract_reviews_from_payload(payload: Any) -> PageFetchResult:
    """
    Decode one review API response.

    Missing or wrong-typed fields give an empty comment list and absent
    counts; this never raises.
    """
    if not isinstance(payload, dict):
        return PageFetchResult()

    root = payload
    for key in ENVELOPE_KEYS:
        if isinstance(payload.get(key), dict):
            root = payload[key]
            break

    comments = _first_present(root, COMMENT_LIST_KEYS)
    return PageFetchResult(
        comments=comments if isinstance(comments, list) else [],
        total_count=get_number(_first_present(root, TOTAL_COUNT_KEYS)),
        page_size=get_number(_first_present(root, PAGE_SIZE_KEYS)),
        total_pages=get_number(_first_present(root, TOTAL_PAGES_KEYS)),
    )


def has_image_flag(raw: Dict[str, Any]) -> bool:
    """A non-empty image list or a truthy has-photo flag."""
    for key in IMAGE_LIST_KEYS:
        images = raw.get(key)
        if isinstance(images, (list, tuple)) and len(images) > 0:
            return True
    return any(parse_bool(raw.get(key)) for key in IMAGE_FLAG_KEYS)


def map_review(raw: Any, target: Target) -> Optional[Review]:
    """Map one raw comment record into a canonical review."""
    if not isinstance(raw, dict):
        return None

    def field(name):
        return pick_alias(raw, FIELD_ALIASES[name])

    created = parse_date(field("created"))
    return Review.from_fields({
        "review_id": as_text(field("review_id")),
        "rating": get_number(field("rating")),
        "title": as_text(field("title")),
        "comment": as_text(field("comment")),
        "created_at": created[0] if created else None,
        "created_at_timestamp": created[1] if created else None,
        "like_count": get_int(field("like_count")),
        "dislike_count": get_int(field("dislike_count")),
        "is_verified_purchase": parse_bool(field("is_verified_purchase")),
        "product_size": as_text(field("product_size")),
        "product_color": as_text(field("product_color")),
        "has_image": has_image_flag(raw),
    }, target)


class PayloadNormalizer:
    """Payload decoding and comment mapping used by the pagination controller."""

    def extract(self, payload: Any) -> PageFetchResult:
        return extract_reviews_from_payload(payload)

    def map_review(self, raw: Any, target: Target) -> Optional[Review]:
        return map_review(raw, target)
