"""
Exception types for the Review Harvester.
"""
from typing import Optional


class HarvesterError(Exception):
    """Base class for all harvester errors."""


class NoTargetsError(HarvesterError):
    """Raised when no input could be resolved to a product target."""


class FetchError(HarvesterError):
    """Raised by a browser session when a request cannot be completed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TemplateDiscoveryError(HarvesterError):
    """Raised when a review API request template cannot be built."""
