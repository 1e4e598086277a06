"""
Target Resolution Layer for the Review Harvester.
Turns raw operator input (product ids and URLs) into canonical targets.
"""
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit

from harvester.errors import NoTargetsError
from harvester.models.review import Target
from harvester.utils.logger import LayerLogger


ID_QUERY_KEYS = ("contentId", "productId", "id")
ID_PATH_PATTERNS = (
    re.compile(r"-p-(\d+)", re.IGNORECASE),
    re.compile(r"p-(\d+)", re.IGNORECASE),
)
REVIEWS_SUFFIX = re.compile(r"/reviews/?$", re.IGNORECASE)
_NUMERIC = re.compile(r"^\d+$")


def _split_url(value: str):
    """Split a URL, or return None when the value is not an absolute URL."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts


def _match_path(text: str) -> Optional[str]:
    for pattern in ID_PATH_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_product_id(value: Any) -> Optional[str]:
    """
    Find the numeric product id in an id or product URL.

    Query parameters win over the ``-p-<digits>`` path pattern. Returns None
    when no id can be found.
    """
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    if _NUMERIC.match(raw):
        return raw

    parts = _split_url(raw)
    if parts is not None:
        query = parse_qs(parts.query)
        for key in ID_QUERY_KEYS:
            candidates = query.get(key) or []
            if candidates and _NUMERIC.match(candidates[0]):
                return candidates[0]
        from_path = _match_path(parts.path)
        if from_path:
            return from_path

    return _match_path(raw)


def build_review_page_url(value: Any) -> Optional[str]:
    """Canonical reviews sub-page: ``.../reviews`` without query or fragment."""
    if not value:
        return None
    parts = _split_url(str(value).strip())
    if parts is None:
        return None
    path = parts.path
    if not REVIEWS_SUFFIX.search(path):
        path = path.rstrip("/") + "/reviews"
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def normalize_product_url(value: Any) -> Optional[str]:
    """Bare product page: reviews suffix, query and fragment stripped."""
    if not value:
        return None
    parts = _split_url(str(value).strip())
    if parts is None:
        return None
    path = REVIEWS_SUFFIX.sub("", parts.path)
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


class TargetResolver:
    """
    Target Resolver - one Target per distinct product id.

    Inputs that cannot be resolved are skipped with a warning; later inputs
    for an already-known product only fill gaps.
    """

    def __init__(self):
        self.logger = LayerLogger("target_resolver")

    def resolve(
        self,
        product_id: Any = None,
        start_urls: Iterable[Any] = (),
    ) -> List[Target]:
        """
        Resolve operator input into targets, in first-seen order.

        Raises:
            NoTargetsError: if nothing could be resolved
        """
        targets: Dict[str, Target] = {}

        if product_id not in (None, ""):
            resolved = extract_product_id(product_id)
            if resolved:
                self._upsert(targets, Target(product_id=resolved))
            else:
                self.logger.log_warning("invalid_product_id", value=str(product_id))

        for entry in start_urls or ():
            url = entry.get("url") if isinstance(entry, dict) else entry
            if not url:
                continue
            resolved = extract_product_id(url)
            if not resolved:
                self.logger.log_warning("unresolvable_start_url", url=str(url))
                continue
            review_page_url = build_review_page_url(url)
            self._upsert(targets, Target(
                product_id=resolved,
                product_url=normalize_product_url(url),
                review_page_url=review_page_url,
                seed_url=review_page_url,
            ))

        if not targets:
            self.logger.log_error(
                "No product id or start URL could be resolved",
                error_type="no_targets",
            )
            raise NoTargetsError("Provide at least one productId or startUrls entry.")

        self.logger.log_action(
            "resolve_targets",
            "completed",
            product_ids=list(targets),
            count=len(targets),
        )
        return list(targets.values())

    def _upsert(self, targets: Dict[str, Target], target: Target):
        existing = targets.get(target.product_id)
        if existing is None:
            targets[target.product_id] = target
        else:
            targets[target.product_id] = existing.merged_with(target)
            self.logger.log_decision(
                decision="merge_target",
                reason="duplicate product id in input",
                product_id=target.product_id,
            )
