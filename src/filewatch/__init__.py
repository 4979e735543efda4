"""
filewatch

Monitors a directory subtree for filesystem changes and records them for
live consumption and later historical query.

Features:
- Recursive watching, including directories created after start
- File events: CREATED, MODIFIED, DELETED, RENAMED
- Extension allow-list filtering
- Queue-decoupled persistence to SQLite
- Composable queries by extension, kind, name, directory and time
"""

from .models import (
    EventKind,
    EventRecord,
    Notification,
    extension_of,
    format_timestamp,
    parse_timestamp,
)

from .config import WatcherConfig

from .exceptions import (
    WatcherError,
    InvalidRootError,
    AlreadyWatchingError,
    RegistrationFailedError,
    StoreError,
    StoreUnavailableError,
    QueryFailedError,
    SourceClosedError,
)

from .sources import NotificationSource, WatchdogSource
from .sinks import EventSink, CallbackSink, MemorySink, StoreSink
from .store import EventStore
from .query import QueryFacade
from .engine import WatchEngine, EngineState


__all__ = [
    # Models
    "EventKind",
    "EventRecord",
    "Notification",
    "extension_of",
    "format_timestamp",
    "parse_timestamp",
    # Config
    "WatcherConfig",
    # Exceptions
    "WatcherError",
    "InvalidRootError",
    "AlreadyWatchingError",
    "RegistrationFailedError",
    "StoreError",
    "StoreUnavailableError",
    "QueryFailedError",
    "SourceClosedError",
    # Components
    "NotificationSource",
    "WatchdogSource",
    "EventSink",
    "CallbackSink",
    "MemorySink",
    "StoreSink",
    "EventStore",
    "QueryFacade",
    # Engine
    "WatchEngine",
    "EngineState",
]

__version__ = "0.1.0"
