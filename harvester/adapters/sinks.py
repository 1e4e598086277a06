"""
Output and diagnostic sinks for the Review Harvester.
"""
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from harvester.config import config
from harvester.utils.logger import LayerLogger


class ReviewSink:
    """Append-only destination for review records."""

    def emit(self, record: Dict[str, Any]) -> None:
        raise NotImplementedError


class MemorySink(ReviewSink):
    """Collects records in memory, e.g. for an HTTP response."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    def emit(self, record: Dict[str, Any]) -> None:
        self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


class JsonlSink(ReviewSink):
    """Appends one JSON object per line to a file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.count = 0

    def emit(self, record: Dict[str, Any]) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
        self.count += 1


_UNSAFE_LABEL = re.compile(r"[^A-Za-z0-9_.-]+")


class DiagnosticStore:
    """
    Labeled HTML/text snapshots, at most one per label per run.

    Snapshots are kept in memory and, when a directory is configured,
    also written to ``<directory>/<label>.html``.
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        if directory is None and config.is_debug_dir_configured():
            directory = config.DEBUG_DIR
        self.directory = Path(directory) if directory else None
        self.snapshots: Dict[str, str] = {}
        self.logger = LayerLogger("diagnostics")

    def has(self, label: str) -> bool:
        return label in self.snapshots

    def save(self, label: str, content: Optional[str]) -> bool:
        """Store a snapshot; returns False if the label was already used."""
        if label in self.snapshots:
            return False
        self.snapshots[label] = content or ""

        path = None
        if self.directory is not None:
            path = self.directory / f"{_UNSAFE_LABEL.sub('_', label)}.html"
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                path.write_text(self.snapshots[label], encoding="utf-8")
            except OSError as e:
                # The in-memory copy is kept
                self.logger.log_error(
                    f"Failed to write snapshot: {str(e)}",
                    error_type="snapshot_write_failed",
                    label=label,
                    path=str(path),
                )
                path = None

        self.logger.log_action(
            "save_snapshot",
            "completed",
            label=label,
            content_length=len(self.snapshots[label]),
            path=str(path) if path else None,
        )
        return True
