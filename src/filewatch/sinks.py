"""Event sinks: consumers of normalized EventRecords."""

import logging
import queue
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol

from .config import WatcherConfig
from .exceptions import StoreUnavailableError
from .models import EventRecord


logger = logging.getLogger(__name__)

_STOP = object()


class EventSink(Protocol):
    """
    Anything that accepts EventRecords from the watch engine.

    ``accept`` runs on the engine's worker thread and must return quickly.
    """

    def accept(self, record: EventRecord) -> None: ...


class CallbackSink:
    """Adapts a plain callable to the sink interface."""

    def __init__(self, callback: Callable[[EventRecord], None]):
        self.callback = callback

    def accept(self, record: EventRecord) -> None:
        self.callback(record)

    def __repr__(self) -> str:
        return f"CallbackSink({self.callback!r})"


class MemorySink:
    """Thread-safe in-memory record list, e.g. backing a live event table."""

    def __init__(self):
        self._records: List[EventRecord] = []
        self._cond = threading.Condition()

    def accept(self, record: EventRecord) -> None:
        with self._cond:
            self._records.append(record)
            self._cond.notify_all()

    def events(self) -> List[EventRecord]:
        """Return a copy of the records received so far, in arrival order."""
        with self._cond:
            return list(self._records)

    def clear(self) -> None:
        with self._cond:
            self._records.clear()

    def wait_for(
        self,
        predicate: Callable[[List[EventRecord]], bool],
        timeout: float = 5.0,
    ) -> bool:
        """
        Block until ``predicate(records)`` holds or the timeout expires.

        Returns:
            Whether the predicate was satisfied
        """
        with self._cond:
            return self._cond.wait_for(lambda: predicate(self._records), timeout=timeout)

    def __len__(self) -> int:
        with self._cond:
            return len(self._records)


class StoreSink:
    """
    Persistence sink that decouples the engine from storage latency.

    ``accept`` only places the record on a bounded queue; a dedicated
    writer thread saves queued records to the store. If the queue stays
    full for ``sink_put_timeout_ms`` the record is dropped and counted.
    """

    def __init__(self, store, config: Optional[WatcherConfig] = None):
        """
        Initialize the sink.

        Args:
            store: EventStore (anything with ``save(record)``)
            config: Watcher configuration (queue size, retry policy)
        """
        self.store = store
        self.config = config or WatcherConfig()
        self._queue: "queue.Queue" = queue.Queue(maxsize=self.config.sink_queue_size)
        self._writer: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        # Held across the closed check and the enqueue; taken before _lock
        self._accept_lock = threading.Lock()
        self._closed = False
        self._saved = 0
        self._dropped = 0
        self._failed = 0

    def start(self) -> None:
        """Start the writer thread. Calling it again is a no-op."""
        with self._lock:
            if self._closed:
                raise RuntimeError("StoreSink is closed")
            if self._writer is not None:
                return
            self._writer = threading.Thread(
                target=self._write_loop,
                name="filewatch-store-writer",
                daemon=True,
            )
            self._writer.start()

    def accept(self, record: EventRecord) -> None:
        with self._accept_lock:
            if self._closed:
                with self._lock:
                    self._dropped += 1
                logger.warning(f"StoreSink closed, dropping {record.path}")
                return
            if self._writer is None:
                self.start()

            try:
                self._queue.put(record, timeout=self.config.sink_put_timeout)
            except queue.Full:
                with self._lock:
                    self._dropped += 1
                logger.warning(f"Store queue full, dropping {record.kind.name} {record.path}")

    def _write_loop(self) -> None:
        logger.debug("Store writer started")
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    break
                self._save(item)
            finally:
                self._queue.task_done()
        logger.debug("Store writer exited")

    def _save(self, record: EventRecord) -> None:
        attempts = self.config.store_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.store.save(record)
            except StoreUnavailableError as e:
                if attempt < attempts:
                    logger.warning(
                        f"Store unavailable (attempt {attempt}/{attempts}): {e}"
                    )
                    time.sleep(self.config.store_retry_delay * attempt)
                    continue
                logger.error(f"Giving up on {record.path} after {attempts} attempts: {e}")
            except Exception:
                logger.exception(f"Failed to save {record.path}")
            else:
                with self._lock:
                    self._saved += 1
                return

            with self._lock:
                self._failed += 1
            return

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued record has been written.

        Returns:
            True if the queue drained before the timeout
        """
        if self._writer is None:
            return self._queue.unfinished_tasks == 0

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: Optional[float] = None) -> None:
        """Write out pending records, then stop the writer. Safe to call twice."""
        # No accept can be mid-enqueue once _closed is set, so _STOP is last
        with self._accept_lock, self._lock:
            if self._closed:
                return
            self._closed = True
            writer = self._writer

        if writer is None:
            return

        self._queue.put(_STOP)
        writer.join(timeout=self.config.stop_timeout if timeout is None else timeout)
        if writer.is_alive():
            logger.warning(f"Store writer still busy, {self._queue.qsize()} records pending")

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "saved": self._saved,
                "dropped": self._dropped,
                "failed": self._failed,
                "pending": self._queue.qsize(),
            }

    @property
    def saved(self) -> int:
        return self.stats()["saved"]

    @property
    def dropped(self) -> int:
        return self.stats()["dropped"]

    @property
    def failed(self) -> int:
        return self.stats()["failed"]

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
