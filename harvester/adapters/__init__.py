"""Adapters package initialization."""
from harvester.adapters.browser import BrowserSession, HttpxBrowserSession, ObservationFeed, ObservedExchange
from harvester.adapters.sinks import DiagnosticStore, JsonlSink, MemorySink
from harvester.adapters.structured_data import StructuredDataExtractor

__all__ = [
    "BrowserSession",
    "HttpxBrowserSession",
    "ObservationFeed",
    "ObservedExchange",
    "DiagnosticStore",
    "JsonlSink",
    "MemorySink",
    "StructuredDataExtractor",
]
