"""Native notification sources backed by the watchdog library."""

import itertools
import logging
import os
import queue
import threading
from typing import Callable, Dict, Hashable, List, Optional, Protocol, Tuple

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from .exceptions import SourceClosedError
from .models import EventKind, Notification


logger = logging.getLogger(__name__)

_CLOSED = object()


def _is_within(path: str, top: str) -> bool:
    return path == top or path.startswith(top.rstrip(os.sep) + os.sep)


class NotificationSource(Protocol):
    """
    Capability the watch engine drives to receive native notifications.

    ``wait_next_batch`` blocks until at least one notification is available
    and returns an empty list once the source has been closed.
    """

    def register(self, directory: str) -> Hashable: ...

    def unregister(self, handle: Hashable) -> None: ...

    def wait_next_batch(self) -> List[Notification]: ...

    def close(self) -> None: ...


class DirectoryEventHandler(FileSystemEventHandler):
    """
    Handler that routes watchdog events to per-directory Notifications.

    Each event is attributed to the registered directory that directly
    contains the affected entry. Events under directories that have no
    handle are dropped.
    """

    def __init__(
        self,
        lookup: Callable[[str], Optional[int]],
        callback: Callable[[Notification], None],
    ):
        """
        Args:
            lookup: Maps an absolute directory path to its handle, or None
            callback: Receives every Notification produced
        """
        super().__init__()
        self.lookup = lookup
        self.callback = callback

    def dispatch(self, event):
        # Sub-events watchdog derives for moved or created trees
        if event.is_synthetic:
            return
        super().dispatch(event)

    def _locate(self, path) -> Tuple[Optional[int], str]:
        """Return the handle of the containing directory and the entry name."""
        path = os.path.normpath(os.fsdecode(path))
        return self.lookup(os.path.dirname(path)), os.path.basename(path)

    def _handle_of(self, path) -> Optional[int]:
        return self.lookup(os.path.normpath(os.fsdecode(path)))

    def _send(
        self,
        handle: int,
        kind: EventKind,
        name: str,
        is_directory: bool,
        old_name: Optional[str] = None,
    ) -> None:
        self.callback(
            Notification(
                handle=handle,
                kind=kind,
                name=name,
                is_directory=is_directory,
                old_name=old_name,
            )
        )

    def _invalidate(self, path) -> None:
        handle = self._handle_of(path)
        if handle is not None:
            self.callback(Notification.invalidate(handle))

    def on_created(self, event):
        handle, name = self._locate(event.src_path)
        if handle is not None:
            self._send(handle, EventKind.CREATED, name, event.is_directory)

    def on_deleted(self, event):
        handle, name = self._locate(event.src_path)
        if handle is not None:
            self._send(handle, EventKind.DELETED, name, event.is_directory)
        else:
            # Topmost watched directory itself went away
            self._invalidate(event.src_path)

    def on_modified(self, event):
        # A modify on a watched directory only echoes changes to its children
        if event.is_directory and self._handle_of(event.src_path) is not None:
            return
        handle, name = self._locate(event.src_path)
        if handle is not None:
            self._send(handle, EventKind.MODIFIED, name, event.is_directory)

    def on_moved(self, event):
        src_handle, old_name = self._locate(event.src_path)
        dest_handle, new_name = self._locate(event.dest_path)

        if src_handle is not None and src_handle == dest_handle:
            self._send(
                src_handle,
                EventKind.RENAMED,
                new_name,
                event.is_directory,
                old_name=old_name,
            )
            return

        if src_handle is not None:
            self._send(src_handle, EventKind.DELETED, old_name, event.is_directory)
        else:
            self._invalidate(event.src_path)
        if dest_handle is not None:
            self._send(dest_handle, EventKind.CREATED, new_name, event.is_directory)


class WatchdogSource:
    """
    Notification source backed by recursive watchdog watches.

    Registering a directory allocates an integer handle for it. Only the
    topmost registered directory of a tree gets a native watch, scheduled
    recursively, so a whole subtree costs one observer emitter no matter
    how many directories it holds. The handles act as a routing map: an
    event is delivered only if its containing directory is registered.
    Events from all watches are funneled into a single queue that
    ``wait_next_batch`` drains, so the consumer sees them in arrival order.
    """

    def __init__(self, timeout: float = 1.0):
        """
        Initialize the source.

        Args:
            timeout: Observer read timeout in seconds
        """
        self._observer = Observer(timeout=timeout)
        self._queue: "queue.Queue" = queue.Queue()
        self._handler = DirectoryEventHandler(self._lookup, self._queue.put)
        self._watches: Dict[str, ObservedWatch] = {}
        self._directories: Dict[int, str] = {}
        self._handles: Dict[str, int] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    def _lookup(self, directory: str) -> Optional[int]:
        # Runs on the observer thread under the observer's lock; must not take self._lock
        return self._handles.get(directory)

    def _ensure_started(self) -> None:
        if not self._started:
            self._observer.start()
            self._started = True

    def _covering_watch(self, directory: str) -> Optional[str]:
        for watched in self._watches:
            if _is_within(directory, watched):
                return watched
        return None

    def _watch_tree(self, directory: str) -> None:
        """Schedule a recursive watch on ``directory``, absorbing watches below it."""
        self._ensure_started()
        nested = [watched for watched in self._watches if _is_within(watched, directory)]
        self._watches[directory] = self._observer.schedule(
            self._handler, directory, recursive=True
        )
        for watched in nested:
            self._unschedule(self._watches.pop(watched))

    def _unschedule(self, watch: ObservedWatch) -> None:
        try:
            self._observer.unschedule(watch)
        except KeyError:
            pass

    def register(self, directory: str) -> int:
        """
        Start delivering notifications for entries directly in ``directory``.

        Args:
            directory: Absolute path of the directory

        Returns:
            Handle identifying the registration

        Raises:
            SourceClosedError: If the source has been closed
            OSError: If the native layer refuses the directory
        """
        directory = os.path.normpath(os.path.abspath(os.fspath(directory)))

        with self._lock:
            if self._closed:
                raise SourceClosedError("Notification source is closed")
            if not os.path.isdir(directory):
                raise FileNotFoundError(f"Not a directory: {directory}")

            handle = self._handles.get(directory)
            if handle is not None:
                return handle

            if self._covering_watch(directory) is None:
                self._watch_tree(directory)
                logger.debug(f"Scheduled recursive watch on {directory}")

            handle = next(self._counter)
            self._directories[handle] = directory
            self._handles[directory] = handle
            logger.debug(f"Registered {directory} as handle {handle}")
            return handle

    def unregister(self, handle: int) -> None:
        """Stop delivering notifications for ``handle``; unknown handles are ignored."""
        with self._lock:
            directory = self._directories.pop(handle, None)
            if directory is None:
                return
            self._handles.pop(directory, None)

            watch = self._watches.pop(directory, None)
            if watch is not None and not self._closed:
                self._unschedule(watch)
            logger.debug(f"Unregistered handle {handle} ({directory})")

    def wait_next_batch(self) -> List[Notification]:
        """
        Block until notifications are available.

        Returns:
            All queued notifications, or an empty list once closed
        """
        item = self._queue.get()
        if item is _CLOSED:
            self._queue.put(_CLOSED)
            return []

        batch = [item]
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                break
            batch.append(item)
        return batch

    def close(self, timeout: float = 5.0) -> None:
        """Stop the observer and release every watch. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._watches.clear()
            self._directories.clear()
            self._handles.clear()

        if self._started:
            self._observer.stop()
            self._observer.join(timeout=timeout)

        self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def native_watch_count(self) -> int:
        """Number of native (recursive) watches currently scheduled."""
        with self._lock:
            return len(self._watches)

    def __len__(self) -> int:
        """Return the number of live registrations."""
        with self._lock:
            return len(self._directories)
