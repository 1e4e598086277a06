"""Layers package initialization."""
from harvester.layers.target_resolver import TargetResolver, extract_product_id
from harvester.layers.endpoint_discovery import EndpointDiscoveryLayer
from harvester.layers.payload import PayloadNormalizer
from harvester.layers.dedup import Deduplicator
from harvester.layers.pagination import PaginationController, PageState
from harvester.layers.harvest import HarvestSession

__all__ = [
    "TargetResolver",
    "extract_product_id",
    "EndpointDiscoveryLayer",
    "PayloadNormalizer",
    "Deduplicator",
    "PaginationController",
    "PageState",
    "HarvestSession",
]
