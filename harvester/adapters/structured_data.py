"""
Structured Data Extractor for the Review Harvester.
Used as the fallback when the review API is unreachable: reads
schema.org reviews out of the page's embedded JSON-LD blocks.
"""
import json
import re
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from harvester.models.review import Review, Target
from harvester.utils.fields import as_text, get_int, get_number, parse_bool, parse_date, pick_first
from harvester.utils.logger import LayerLogger


REVIEW_KEYS = ("review", "reviews")
JSONLD_TYPE_RE = re.compile(r"^\s*application/ld\+json\s*(;.*)?$", re.IGNORECASE)


def find_jsonld_blocks(html: str) -> List[str]:
    """Raw text of every ``<script type="application/ld+json">`` on a page."""
    soup = BeautifulSoup(html or "", "lxml")
    blocks = []
    for script in soup.find_all("script", type=JSONLD_TYPE_RE):
        text = script.string or script.get_text()
        if text and text.strip():
            blocks.append(text)
    return blocks


class StructuredDataExtractor:
    """
    JSON-LD review extraction.

    Lower fidelity than the review API: only identifier, rating, title,
    body, date, likes, verified flag and image presence are available.
    """

    def __init__(self):
        self.logger = LayerLogger("structured_data")

    def extract(self, blocks: Iterable[str], target: Target) -> List[Review]:
        """Parse every block, collect review nodes and map them."""
        nodes = self.parse_blocks(blocks)
        raw_reviews = self.collect_reviews(nodes)

        reviews = []
        for raw in raw_reviews:
            review = self.map_review(raw, target)
            if review is not None:
                reviews.append(review)

        self.logger.log_action(
            "structured_data_extract",
            "completed",
            product_id=target.product_id,
            nodes=len(nodes),
            raw_reviews=len(raw_reviews),
            mapped=len(reviews),
        )
        return reviews

    def parse_blocks(self, blocks: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Parse JSON-LD blocks independently.
        A block that is not valid JSON is skipped.
        """
        nodes: List[Dict[str, Any]] = []
        skipped = 0
        for block in blocks:
            try:
                data = json.loads(block)
            except (TypeError, ValueError):
                skipped += 1
                continue
            nodes.extend(self._flatten(data))

        if skipped:
            self.logger.log_action("jsonld_parse", "skipped_invalid", blocks=skipped)
        return nodes

    def _flatten(self, data: Any) -> List[Dict[str, Any]]:
        """Arrays of objects become individual top-level objects."""
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            nodes = []
            for item in data:
                nodes.extend(self._flatten(item))
            return nodes
        return []

    def collect_reviews(self, nodes: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Collect review objects from top-level nodes and their @graph entries."""
        reviews: List[Dict[str, Any]] = []
        for node in nodes:
            self._collect_from(node, reviews)
            graph = node.get("@graph")
            if isinstance(graph, list):
                for entry in graph:
                    if isinstance(entry, dict):
                        self._collect_from(entry, reviews)
        return reviews

    def _collect_from(self, node: Dict[str, Any], reviews: List[Dict[str, Any]]):
        for key in REVIEW_KEYS:
            value = node.get(key)
            if isinstance(value, dict):
                reviews.append(value)
            elif isinstance(value, list):
                reviews.extend(item for item in value if isinstance(item, dict))

    def map_review(self, raw: Dict[str, Any], target: Target) -> Optional[Review]:
        """Map one schema.org Review node through the reduced field set."""
        if not isinstance(raw, dict):
            return None

        identifier = raw.get("identifier")
        if isinstance(identifier, dict):
            # PropertyValue
            identifier = identifier.get("value")

        rating = raw.get("reviewRating")
        rating_value = None
        if isinstance(rating, dict):
            rating_value = pick_first(rating.get("ratingValue"), rating.get("rating"))

        stats = raw.get("interactionStatistic")
        likes = stats.get("userInteractionCount") if isinstance(stats, dict) else None

        created = parse_date(pick_first(raw.get("datePublished"), raw.get("dateCreated")))
        return Review.from_fields({
            "review_id": as_text(pick_first(identifier, raw.get("id"))),
            "rating": get_number(rating_value),
            "title": as_text(pick_first(raw.get("headline"), raw.get("name"))),
            "comment": as_text(pick_first(raw.get("reviewBody"), raw.get("description"), raw.get("review"))),
            "created_at": created[0] if created else None,
            "created_at_timestamp": created[1] if created else None,
            "like_count": get_int(likes),
            "is_verified_purchase": parse_bool(pick_first(raw.get("isVerified"), raw.get("verified"))),
            "has_image": bool(raw.get("image")),
        }, target)
