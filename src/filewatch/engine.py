"""Watch engine: recursive registration, normalization and lifecycle."""

import logging
import os
import threading
from enum import Enum
from typing import Callable, Dict, FrozenSet, Hashable, Iterable, List, Optional

from .config import WatcherConfig, normalize_extensions
from .exceptions import (
    AlreadyWatchingError,
    InvalidRootError,
    RegistrationFailedError,
    SourceClosedError,
)
from .models import EventKind, EventRecord, Notification
from .sinks import EventSink
from .sources import NotificationSource, WatchdogSource


logger = logging.getLogger(__name__)


class EngineState(Enum):
    """Lifecycle states of a WatchEngine."""
    IDLE = "idle"
    WATCHING = "watching"
    STOPPED = "stopped"


class WatchEngine:
    """
    Bridges native filesystem notifications to EventRecords.

    One engine watches one root subtree at a time. ``start`` registers the
    root and every directory below it, then runs a single worker thread
    that waits on the notification source, filters by extension and
    forwards records to the sinks in order. ``stop`` closes the source,
    which is also what unblocks the worker.

    Lifecycle calls are not serialized against each other; callers must
    not run ``start`` and ``stop`` concurrently.
    """

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        sinks: Optional[Iterable[EventSink]] = None,
        source_factory: Optional[Callable[[], NotificationSource]] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Watcher configuration
            sinks: Sinks receiving every accepted record, in order
            source_factory: Builds a fresh notification source per session
        """
        self.config = config or WatcherConfig()
        self._source_factory = source_factory or WatchdogSource
        self._sinks: List[EventSink] = list(sinks or [])

        self._state = EngineState.IDLE
        self._root: Optional[str] = None
        self._extensions: FrozenSet[str] = frozenset()
        self._source: Optional[NotificationSource] = None
        self._worker: Optional[threading.Thread] = None

        # handle -> directory and its inverse; kept a bijection
        self._table: Dict[Hashable, str] = {}
        self._directories: Dict[str, Hashable] = {}
        self._table_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        root,
        extensions: Optional[Iterable[str]] = None,
        sinks: Optional[Iterable[EventSink]] = None,
    ) -> None:
        """
        Start watching ``root`` and everything below it.

        Args:
            root: Directory to watch
            extensions: Allowed extensions; empty accepts all. Defaults to
                ``config.extensions``
            sinks: Replaces the engine's sinks for this session when given

        Raises:
            AlreadyWatchingError: If a session is already active or the
                previous session's worker is still running
            InvalidRootError: If root is not a readable directory
            RegistrationFailedError: If any directory could not be registered
        """
        if self._state is EngineState.WATCHING:
            raise AlreadyWatchingError(f"Already watching {self._root}")

        # The previous loop still reads the shared table and source
        previous = self._worker
        if previous is not None and previous.is_alive():
            if previous is not threading.current_thread():
                previous.join(timeout=self.config.stop_timeout)
            if previous.is_alive():
                raise AlreadyWatchingError(
                    f"Previous watch loop on {self._root} has not exited yet"
                )

        root_path = os.path.realpath(os.fspath(root))
        if not os.path.isdir(root_path):
            raise InvalidRootError(f"Root is not an existing directory: {root_path}")
        if not os.access(root_path, os.R_OK | os.X_OK):
            raise InvalidRootError(f"Root is not readable: {root_path}")

        if extensions is None:
            extensions = self.config.extensions
        allowed = frozenset(normalize_extensions(extensions))

        try:
            source = self._source_factory()
        except Exception as e:
            raise RegistrationFailedError(
                f"Could not open notification source: {e}", root_path
            ) from e

        self._source = source
        try:
            self._register_tree(root_path, strict=True)
        except RegistrationFailedError:
            self._source = None
            source.close()
            self._clear_table()
            raise

        if sinks is not None:
            self._sinks = list(sinks)
        self._root = root_path
        self._extensions = allowed
        self._state = EngineState.WATCHING

        self._worker = threading.Thread(
            target=self._run,
            args=(source,),
            name="filewatch-engine",
            daemon=True,
        )
        self._worker.start()

        logger.info(
            f"Started watching {root_path} ({len(self._table)} directories, "
            f"extensions: {', '.join(sorted(allowed)) or 'all'})"
        )

    def stop(self) -> None:
        """
        Stop the active session. Calling it when not watching does nothing.

        Events already handed to sinks are delivered; nothing is flushed.
        """
        if self._state is not EngineState.WATCHING:
            return

        source, worker = self._source, self._worker
        source.close()

        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=self.config.stop_timeout)
            if worker.is_alive():
                logger.warning("Watch loop did not exit within the stop timeout")

        self._clear_table()
        self._state = EngineState.STOPPED
        logger.info(f"Stopped watching {self._root}")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_watching(self) -> bool:
        return self._state is EngineState.WATCHING

    @property
    def root(self) -> Optional[str]:
        return self._root

    @property
    def extensions(self) -> FrozenSet[str]:
        return self._extensions

    @property
    def sinks(self) -> List[EventSink]:
        return list(self._sinks)

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: EventSink) -> None:
        self._sinks.remove(sink)

    def registered_directories(self) -> Dict[Hashable, str]:
        """Snapshot of the registration table (handle -> directory)."""
        with self._table_lock:
            return dict(self._table)

    # ------------------------------------------------------------------
    # Registration table
    # ------------------------------------------------------------------

    def _register(self, directory: str, strict: bool) -> Optional[Hashable]:
        try:
            handle = self._source.register(directory)
        except Exception as e:
            if strict:
                raise RegistrationFailedError(
                    f"Failed to register {directory}: {e}", directory
                ) from e
            logger.warning(f"Skipping {directory}, registration failed: {e}")
            return None

        with self._table_lock:
            self._table[handle] = directory
            self._directories[directory] = handle
        return handle

    def _register_tree(self, top: str, strict: bool, announce: bool = False) -> int:
        """
        Register ``top`` and every directory below it.

        With ``announce``, entries already present below ``top`` are
        published as CREATED, covering whatever appeared before the new
        watches were in place.

        Returns:
            Number of directories newly registered
        """
        def on_error(error: OSError) -> None:
            if strict:
                raise RegistrationFailedError(
                    f"Cannot read {error.filename}: {error}", error.filename
                ) from error
            logger.warning(f"Skipping {error.filename}: {error}")

        registered = 0
        for dirpath, dirnames, filenames in os.walk(
            top, onerror=on_error, followlinks=self.config.follow_symlinks
        ):
            if dirpath not in self._directories:
                if self._register(dirpath, strict) is not None:
                    registered += 1

            if announce:
                for name in dirnames + filenames:
                    self._publish(os.path.join(dirpath, name), EventKind.CREATED)

        return registered

    def _forget_tree(self, path: str) -> None:
        """Drop registrations for ``path`` and any directory below it."""
        prefix = path + os.sep
        with self._table_lock:
            doomed = [
                (directory, handle)
                for directory, handle in self._directories.items()
                if directory == path or directory.startswith(prefix)
            ]
            for directory, handle in doomed:
                del self._directories[directory]
                del self._table[handle]

        for directory, handle in doomed:
            self._source.unregister(handle)
            logger.debug(f"Dropped registration for {directory}")

    def _forget_handle(self, handle: Hashable) -> Optional[str]:
        with self._table_lock:
            directory = self._table.pop(handle, None)
            if directory is not None:
                self._directories.pop(directory, None)

        self._source.unregister(handle)
        return directory

    def _clear_table(self) -> None:
        with self._table_lock:
            self._table.clear()
            self._directories.clear()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self, source: NotificationSource) -> None:
        """Worker loop: block on the source until it is closed."""
        logger.debug("Watch loop started")

        while True:
            try:
                batch = source.wait_next_batch()
            except SourceClosedError:
                break
            except Exception as e:
                logger.error(f"Notification source failed: {e}")
                break

            if not batch:
                break

            for notification in batch:
                try:
                    self._handle(notification)
                except Exception:
                    logger.exception(f"Failed to handle {notification}")

            with self._table_lock:
                exhausted = not self._table
            if exhausted:
                if self._state is EngineState.WATCHING:
                    logger.warning(f"No watched directories left under {self._root}")
                break

        logger.debug("Watch loop exited")

    def _handle(self, notification: Notification) -> None:
        if notification.invalidated:
            directory = self._forget_handle(notification.handle)
            if directory is not None:
                logger.info(f"Watch on {directory} is no longer valid")
            return

        with self._table_lock:
            directory = self._table.get(notification.handle)
        if directory is None:
            logger.debug(f"Dropping notification for unknown handle {notification.handle}")
            return

        kind = notification.kind
        if kind is None:
            return
        path = os.path.join(directory, notification.name)

        if kind is EventKind.DELETED:
            self._forget_tree(path)
        elif kind is EventKind.RENAMED and notification.old_name:
            self._forget_tree(os.path.join(directory, notification.old_name))

        self._publish(path, kind)

        if kind in (EventKind.CREATED, EventKind.RENAMED) and self._is_watchable_dir(
            path, notification.is_directory
        ):
            added = self._register_tree(
                path, strict=False, announce=kind is EventKind.CREATED
            )
            if added:
                logger.debug(f"Registered {added} new directories under {path}")

    def _is_watchable_dir(self, path: str, is_directory: bool) -> bool:
        if os.path.islink(path) and not self.config.follow_symlinks:
            return False
        return is_directory or os.path.isdir(path)

    def _publish(self, path: str, kind: EventKind) -> None:
        record = EventRecord.create(path, kind)

        if self._extensions and record.extension not in self._extensions:
            logger.debug(f"Filtered {kind.name} {path}")
            return

        for sink in list(self._sinks):
            try:
                sink.accept(record)
            except Exception:
                logger.exception(f"Sink {sink!r} failed on {path}")

    # ------------------------------------------------------------------

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
