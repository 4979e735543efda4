"""Configuration for the filewatch package."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List


def normalize_extensions(extensions: Iterable[str]) -> List[str]:
    """
    Normalize an extension allow-list.

    Entries are stripped, blanks are discarded, and a leading ``.`` is
    added where missing. Order is kept and duplicates are removed.
    """
    normalized = []
    for ext in extensions or ():
        ext = ext.strip()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        if ext not in normalized:
            normalized.append(ext)
    return normalized


@dataclass
class WatcherConfig:
    """
    Configuration options for the file watcher.

    Attributes:
        db_path: Path to the SQLite database holding recorded events
        extensions: Extensions to record; empty records everything
        sink_queue_size: Capacity of the persistence sink's hand-off queue
        sink_put_timeout_ms: How long accept() waits on a full hand-off queue
        store_retry_attempts: Save attempts per record before giving up
        store_retry_delay_ms: Delay between save attempts
        stop_timeout_ms: Upper bound on joining worker threads at shutdown
        follow_symlinks: Whether the initial walk descends into symlinked dirs
    """
    db_path: Path = field(default_factory=lambda: Path("file_events.db"))
    extensions: List[str] = field(default_factory=list)
    sink_queue_size: int = 1000
    sink_put_timeout_ms: int = 500
    store_retry_attempts: int = 3
    store_retry_delay_ms: int = 100
    stop_timeout_ms: int = 5000
    follow_symlinks: bool = False

    def __post_init__(self):
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        self.extensions = normalize_extensions(self.extensions)
        if self.sink_queue_size < 1:
            raise ValueError("sink_queue_size must be at least 1")
        if self.store_retry_attempts < 1:
            raise ValueError("store_retry_attempts must be at least 1")

    @property
    def stop_timeout(self) -> float:
        return self.stop_timeout_ms / 1000.0

    @property
    def sink_put_timeout(self) -> float:
        return self.sink_put_timeout_ms / 1000.0

    @property
    def store_retry_delay(self) -> float:
        return self.store_retry_delay_ms / 1000.0

    @classmethod
    def from_env(cls, **overrides) -> "WatcherConfig":
        """
        Build a config from ``FILEWATCH_*`` environment variables.

        Keyword overrides win over the environment.
        """
        values = {}
        if os.environ.get("FILEWATCH_DB"):
            values["db_path"] = Path(os.environ["FILEWATCH_DB"])
        if os.environ.get("FILEWATCH_EXTENSIONS"):
            values["extensions"] = os.environ["FILEWATCH_EXTENSIONS"].split(",")
        if os.environ.get("FILEWATCH_QUEUE_SIZE"):
            values["sink_queue_size"] = int(os.environ["FILEWATCH_QUEUE_SIZE"])
        if os.environ.get("FILEWATCH_STOP_TIMEOUT_MS"):
            values["stop_timeout_ms"] = int(os.environ["FILEWATCH_STOP_TIMEOUT_MS"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
