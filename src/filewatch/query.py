"""Query facade composing simple event store filters."""

from typing import List, Optional, Union

from .exceptions import QueryFailedError
from .models import EventKind, EventRecord
from .store import Bound, EventStore, format_bound


class QueryFacade:
    """
    Stateless helper translating filter requests into EventStore calls.

    ``search`` runs one store query and narrows the result in memory, so
    any combination of criteria is a logical AND while the store itself
    only needs single-column lookups.
    """

    def __init__(self, store: EventStore):
        self.store = store

    def search(
        self,
        extension: Optional[str] = None,
        kind: Optional[Union[EventKind, str]] = None,
        name_contains: Optional[str] = None,
        directory: Optional[str] = None,
        since: Optional[Bound] = None,
        until: Optional[Bound] = None,
    ) -> List[EventRecord]:
        """
        Return records matching every given criterion, in store order.

        Args:
            extension: Exact extension; empty or None means any
            kind: Exact event kind
            name_contains: Case-insensitive substring of the file name
            directory: Literal path prefix
            since: Earliest timestamp, inclusive
            until: Latest timestamp, inclusive

        Raises:
            QueryFailedError: If a criterion is malformed
        """
        if kind is not None:
            try:
                kind = EventKind.parse(kind)
            except ValueError as e:
                raise QueryFailedError(str(e)) from e
        since_text = format_bound(since, "since") if since is not None else None
        until_text = format_bound(until, "until") if until is not None else None
        if since_text and until_text and since_text > until_text:
            raise QueryFailedError(f"Empty date range: {since_text} is after {until_text}")
        needle = name_contains.casefold() if name_contains else None

        results = self.store.query_by_extension(extension or "")

        if kind is not None:
            results = [r for r in results if r.kind is kind]
        if needle:
            results = [r for r in results if needle in r.file_name.casefold()]
        if directory:
            results = [r for r in results if r.path.startswith(directory)]
        if since_text:
            results = [r for r in results if r.formatted_timestamp >= since_text]
        if until_text:
            results = [r for r in results if r.formatted_timestamp <= until_text]
        return results

    def all(self) -> List[EventRecord]:
        return self.store.query_all()

    def by_extension(self, extension: Optional[str]) -> List[EventRecord]:
        return self.store.query_by_extension(extension)

    def by_kind(self, kind: Union[EventKind, str]) -> List[EventRecord]:
        return self.store.query_by_kind(kind)

    def by_date_range(self, start: Bound, end: Bound) -> List[EventRecord]:
        return self.store.query_by_date_range(start, end)

    def by_directory(self, prefix: str) -> List[EventRecord]:
        return self.store.query_by_directory(prefix)

    def clear(self) -> int:
        return self.store.clear()
