"""Data models for the filewatch package."""

import dataclasses
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Hashable, Optional, Union


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class EventKind(Enum):
    """Kinds of filesystem change, valued by their persisted names."""
    CREATED = "ENTRY_CREATE"
    MODIFIED = "ENTRY_MODIFY"
    DELETED = "ENTRY_DELETE"
    RENAMED = "ENTRY_RENAME"

    @classmethod
    def parse(cls, value: Union["EventKind", str]) -> "EventKind":
        """
        Resolve an EventKind from an enum member, persisted value or member name.

        Args:
            value: ``EventKind.CREATED``, ``"ENTRY_CREATE"`` or ``"created"``

        Returns:
            The matching EventKind

        Raises:
            ValueError: If the value names no kind
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        try:
            return cls(text.upper())
        except ValueError:
            pass
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"Unknown event kind: {value!r}") from None


def extension_of(file_name: str) -> str:
    """
    Derive the extension of a file name.

    The extension runs from the last ``.`` (inclusive) to the end of the
    name, or is empty when the name has no ``.`` at all.

    Args:
        file_name: Base name of the file

    Returns:
        The extension, e.g. ``".txt"``, ``".gz"`` or ``".bashrc"``
    """
    index = file_name.rfind(".")
    if index == -1:
        return ""
    return file_name[index:]


def format_timestamp(value: datetime) -> str:
    """Format a timestamp in the persisted ``YYYY-MM-DD HH:MM:SS`` form."""
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """
    Parse a persisted timestamp.

    Rows written by older versions used ISO-8601 with a ``T`` separator and
    optional seconds; those are accepted too and truncated to whole seconds.

    Raises:
        ValueError: If the string is not a recognizable timestamp
    """
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except (TypeError, ValueError):
        parsed = datetime.fromisoformat(value)
        return parsed.replace(microsecond=0, tzinfo=None)


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


@dataclass(frozen=True)
class EventRecord:
    """
    A single detected filesystem change.

    Attributes:
        file_name: Base name of the affected entry
        extension: Extension derived from file_name
        path: Absolute path of the entry at detection time
        kind: The kind of change
        timestamp: Local wall-clock time, whole seconds
    """
    file_name: str
    extension: str
    path: str
    kind: EventKind
    timestamp: datetime

    def __post_init__(self):
        if not os.path.isabs(self.path):
            raise ValueError(f"path must be absolute: {self.path}")
        if self.extension != extension_of(self.file_name):
            raise ValueError(
                f"extension {self.extension!r} does not match file name {self.file_name!r}"
            )
        if self.timestamp.microsecond:
            object.__setattr__(self, "timestamp", self.timestamp.replace(microsecond=0))

    @classmethod
    def create(
        cls,
        path: Union[str, os.PathLike],
        kind: EventKind,
        timestamp: Optional[datetime] = None,
    ) -> "EventRecord":
        """Build a record for ``path``, deriving name and extension."""
        path = os.fspath(path)
        file_name = os.path.basename(path.rstrip(os.sep)) or path
        return cls(
            file_name=file_name,
            extension=extension_of(file_name),
            path=path,
            kind=kind,
            timestamp=timestamp or _now(),
        )

    @property
    def formatted_timestamp(self) -> str:
        return format_timestamp(self.timestamp)

    def with_file_name(self, file_name: str) -> "EventRecord":
        """Return a copy renamed to ``file_name`` with its extension recomputed."""
        return dataclasses.replace(
            self, file_name=file_name, extension=extension_of(file_name)
        )

    def to_dict(self) -> dict:
        """Convert to the persisted textual row."""
        return {
            "file_name": self.file_name,
            "file_extension": self.extension,
            "path": self.path,
            "event_type": self.kind.value,
            "timestamp": self.formatted_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EventRecord":
        """Create from a persisted row."""
        return cls(
            file_name=data["file_name"],
            extension=data["file_extension"],
            path=data["path"],
            kind=EventKind(data["event_type"]),
            timestamp=parse_timestamp(data["timestamp"]),
        )


@dataclass(frozen=True)
class Notification:
    """
    One entry of a native notification batch.

    Attributes:
        handle: Opaque registration handle the notification arrived on
        kind: Kind of change reported
        name: Entry name relative to the handle's directory
        is_directory: Whether the affected entry is a directory
        old_name: Previous relative name for single-event renames
        invalidated: The handle itself is no longer valid
    """
    handle: Hashable
    kind: Optional[EventKind] = None
    name: str = ""
    is_directory: bool = False
    old_name: Optional[str] = None
    invalidated: bool = False

    @classmethod
    def invalidate(cls, handle: Any) -> "Notification":
        return cls(handle=handle, invalidated=True)
