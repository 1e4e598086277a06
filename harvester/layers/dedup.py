"""
Deduplication for the Review Harvester.
Enforces at-most-once emission of a logical review across pages and
sources within one run.
"""
from typing import Set

from harvester.models.review import Review


class Deduplicator:
    """
    Run-scoped set of review identity keys.

    The key is ``productId:reviewId`` when the review has an id, otherwise
    ``productId:timestamp:first-80-chars-of-comment``.
    """

    def __init__(self):
        self._seen: Set[str] = set()

    def accept(self, review: Review) -> bool:
        """Return True the first time a key is seen, False for duplicates."""
        key = review.dedup_key
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def __contains__(self, review: Review) -> bool:
        return review.dedup_key in self._seen

    def __len__(self) -> int:
        return len(self._seen)
