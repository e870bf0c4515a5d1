"""
JSON history of past recommendations.
"""

import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from printadvisor.utils import get_logger

logger = get_logger(__name__)

DEFAULT_HISTORY_FILE = Path.home() / ".printadvisor" / "history.json"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: str
    file_name: str
    results: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "fileName": self.file_name,
            "results": dict(self.results),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            timestamp=str(data["timestamp"]),
            file_name=str(data["fileName"]),
            results={str(k): str(v) for k, v in (data.get("results") or {}).items()},
        )


class HistoryStore:
    """Append-only history file.

    History is a convenience for the user: read and write failures are
    logged as warnings and never raised to the caller.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else DEFAULT_HISTORY_FILE
        self._lock = threading.Lock()

    def load(self) -> List[HistoryEntry]:
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Could not read history %s: %s", self.path, exc)
            return []

        if not isinstance(data, list):
            logger.warning("History %s is not a list, ignoring it", self.path)
            return []

        entries = []
        for item in data:
            try:
                entries.append(HistoryEntry.from_dict(item))
            except (KeyError, TypeError, AttributeError):
                logger.warning("Skipping malformed history entry: %r", item)
        return entries

    def append(self, file_name: str, results: Dict[str, str]) -> Optional[HistoryEntry]:
        """Record one recommendation. Returns the entry, or None if it could not be saved."""
        entry = HistoryEntry(
            timestamp=datetime.now().strftime(TIMESTAMP_FORMAT),
            file_name=file_name,
            results=dict(results),
        )
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                entries = self.load() + [entry]
                self._write(entries)
            except OSError as exc:
                logger.warning("Could not write history %s: %s", self.path, exc)
                return None

        logger.debug("Appended history entry for %s", file_name)
        return entry

    def _write(self, entries: List[HistoryEntry]) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=".history-", suffix=".json"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([e.to_dict() for e in entries], f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


def format_history(entries: List[HistoryEntry]) -> str:
    """Render entries as ``timestamp - file`` headers followed by indented results."""
    if not entries:
        return "History is empty."

    lines = []
    for entry in entries:
        lines.append(f"{entry.timestamp} - {entry.file_name}")
        lines.extend(f"  {key}: {value}" for key, value in entry.results.items())
        lines.append("")
    return "\n".join(lines)
