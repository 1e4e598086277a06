"""
API Endpoint Discovery Layer for the Review Harvester.
Works out how to reach the review API for one target.

Strategy, in priority order:
1. Rewrite a review API request the page made on its own, keeping that
   API generation's parameter names and any parameter we do not know.
2. Synthesize a request from the configured endpoint and the fixed
   parameter scheme.
"""
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from harvester.adapters.browser import ObservedExchange
from harvester.config import config
from harvester.errors import TemplateDiscoveryError
from harvester.models.review import ApiRequestTemplate, Target, TemplateSource
from harvester.utils.logger import LayerLogger


REVIEW_ENDPOINT_RE = re.compile(
    r"/reviews?/comments|/api/reviews?(?:/|$)|/product-reviews?(?:/|$)",
    re.IGNORECASE,
)

# Historically seen query key names per logical parameter, most common first
PARAMETER_VARIANTS: Dict[str, Tuple[str, ...]] = {
    "content_id": ("contentId", "productId", "productContentId", "id"),
    "page": ("page", "pageIndex", "pageNumber", "p"),
    "size": ("size", "pageSize", "perPage", "limit"),
    "sort": ("orderBy", "sortBy", "sort"),
    "direction": ("orderByDirection", "sortDirection", "direction", "order"),
}

STATIC_PARAMETER_NAMES: Dict[str, str] = {
    "content_id": "contentId",
    "sort": "orderBy",
    "direction": "orderByDirection",
    "page": "page",
    "size": "size",
}

# Transport-level headers never replayed from an observed request
STRIPPED_HEADERS = frozenset({
    "host",
    "cookie",
    "content-length",
    "connection",
    "accept-encoding",
    "transfer-encoding",
    "upgrade",
    "te",
    "keep-alive",
})


def sanitize_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Keep only application-relevant headers, keys lower-cased."""
    clean: Dict[str, str] = {}
    for name, value in (headers or {}).items():
        key = str(name).strip().lower()
        if not key or key.startswith(":") or key.startswith("proxy-"):
            continue
        if key in STRIPPED_HEADERS or value is None:
            continue
        clean[key] = str(value)
    return clean


def is_review_endpoint(url: str) -> bool:
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    return bool(REVIEW_ENDPOINT_RE.search(path))


class EndpointDiscoveryLayer:
    """
    API Endpoint Discovery - builds one ApiRequestTemplate per target.

    A template is built once per target and then drives every page.
    """

    def __init__(self, base_url: Optional[str] = None, origin: Optional[str] = None):
        self.base_url = base_url or config.REVIEWS_API_URL
        self.origin = origin or config.SITE_ORIGIN
        self.logger = LayerLogger("endpoint_discovery")

    def matches(self, exchange: ObservedExchange) -> bool:
        """URL-pattern predicate for the observation feed."""
        return is_review_endpoint(exchange.url)

    def belongs_to(self, exchange: ObservedExchange, product_id: str) -> bool:
        """
        True unless the observed request names a different product.
        Requests without a recognizable content id are assumed to belong.
        """
        try:
            query = parse_qsl(urlsplit(exchange.url).query, keep_blank_values=True)
        except ValueError:
            return False
        key = self._find_key(query, "content_id")
        if key is None:
            return True
        return dict(query).get(key) == str(product_id)

    def discover(
        self,
        target: Target,
        observed: Optional[ObservedExchange] = None,
    ) -> Optional[ApiRequestTemplate]:
        """
        Build the request template for a target.

        Returns None when neither strategy works, which sends the
        controller straight to the structured-data fallback.
        """
        if observed is not None and self.matches(observed):
            try:
                template = self.rewrite_observed(observed)
                self.logger.log_decision(
                    decision="use_observed_template",
                    reason="review API request observed during page load",
                    product_id=target.product_id,
                    url=observed.url,
                    parameter_name_map=template.parameter_name_map,
                )
                return template
            except TemplateDiscoveryError as e:
                self.logger.log_fallback(
                    from_source="observed_template",
                    to_source="static_template",
                    reason=str(e),
                    product_id=target.product_id,
                )

        try:
            template = self.synthesize(target)
        except TemplateDiscoveryError as e:
            self.logger.log_error(
                str(e),
                error_type="template_discovery",
                product_id=target.product_id,
            )
            return None

        self.logger.log_decision(
            decision="use_static_template",
            reason="no usable observed request",
            product_id=target.product_id,
            base_url=template.base_url,
        )
        return template

    def rewrite_observed(self, observed: ObservedExchange) -> ApiRequestTemplate:
        """
        Turn an observed request into a template.

        Recognized parameters are mapped to logical names; every other
        query parameter is kept as-is.

        Raises:
            TemplateDiscoveryError: if the observed URL is malformed
        """
        parts = self._split(observed.url)
        query = parse_qsl(parts.query, keep_blank_values=True)

        name_map: Dict[str, str] = {}
        for logical in PARAMETER_VARIANTS:
            key = self._find_key(query, logical, taken=set(name_map.values()))
            name_map[logical] = key or STATIC_PARAMETER_NAMES[logical]

        return ApiRequestTemplate(
            base_url=urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")),
            parameter_name_map=name_map,
            headers=sanitize_headers(observed.headers),
            query_items=tuple(query),
            source=TemplateSource.OBSERVED,
        )

    def synthesize(self, target: Target) -> ApiRequestTemplate:
        """
        Build a template from the configured endpoint.

        Raises:
            TemplateDiscoveryError: if the configured endpoint is malformed
        """
        parts = self._split(self.base_url)
        return ApiRequestTemplate(
            base_url=urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")),
            parameter_name_map=dict(STATIC_PARAMETER_NAMES),
            headers={
                "accept": "application/json, text/plain, */*",
                "referer": target.referer,
                "origin": self.origin,
            },
            source=TemplateSource.STATIC,
        )

    def _split(self, url: str):
        try:
            parts = urlsplit(url or "")
        except ValueError as e:
            raise TemplateDiscoveryError(f"Malformed review API URL: {url!r}") from e
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise TemplateDiscoveryError(f"Malformed review API URL: {url!r}")
        return parts

    def _find_key(
        self,
        query: List[Tuple[str, str]],
        logical: str,
        taken: Optional[set] = None,
    ) -> Optional[str]:
        present = {key for key, _ in query}
        for variant in PARAMETER_VARIANTS[logical]:
            if variant in present and variant not in (taken or set()):
                return variant
        return None
