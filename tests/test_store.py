"""Tests for event store module."""

import pytest
import sqlite3
import threading
from datetime import datetime

from filewatch.exceptions import QueryFailedError, StoreUnavailableError
from filewatch.models import EventKind, EventRecord
from filewatch.query import QueryFacade
from filewatch.store import EventStore


def make_record(path, kind=EventKind.CREATED, ts=datetime(2025, 5, 13, 10, 30)):
    return EventRecord.create(path, kind, ts)


class TestEventStore:
    """Tests for EventStore class."""

    @pytest.fixture
    def store(self, tmp_path):
        store = EventStore(tmp_path / "events.db")
        store.connect()
        yield store
        store.close()

    @pytest.fixture
    def populated(self, store):
        store.save(make_record("/home/user/a.txt", EventKind.CREATED, datetime(2025, 5, 13, 10, 0, 0)))
        store.save(make_record("/home/user/sub/b.java", EventKind.MODIFIED, datetime(2025, 5, 13, 11, 0, 0)))
        store.save(make_record("/home/userx/c.txt", EventKind.DELETED, datetime(2025, 5, 14, 9, 0, 0)))
        store.save(make_record("/home/user/Makefile", EventKind.RENAMED, datetime(2025, 5, 15, 0, 0, 0)))
        return store

    def test_create_store(self, tmp_path):
        db_path = tmp_path / "events.db"
        store = EventStore(db_path)
        store.connect()
        assert db_path.exists()
        assert store.connected
        store.close()
        assert not store.connected

    def test_schema_columns(self, store, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "events.db"))
        columns = [row[1] for row in conn.execute("PRAGMA table_info(file_events)")]
        conn.close()
        assert columns == ["id", "file_name", "file_extension", "path", "event_type", "timestamp"]

    def test_roundtrip(self, store):
        record = make_record("/home/user/documents/document.txt")
        store.save(record)

        results = store.query_all()

        assert results == [record]
        assert results[0].formatted_timestamp == "2025-05-13 10:30:00"

    def test_persisted_textual_format(self, store, tmp_path):
        store.save(make_record("/home/user/x.py", EventKind.MODIFIED, datetime(2025, 1, 2, 3, 4, 5)))

        conn = sqlite3.connect(str(tmp_path / "events.db"))
        row = conn.execute(
            "SELECT file_name, file_extension, path, event_type, timestamp FROM file_events"
        ).fetchone()
        conn.close()

        assert row == ("x.py", ".py", "/home/user/x.py", "ENTRY_MODIFY", "2025-01-02 03:04:05")

    def test_insertion_order(self, store):
        records = [make_record(f"/tmp/f{i}.txt") for i in range(5)]
        for record in records:
            store.save(record)

        assert store.query_all() == records

    def test_duplicates_kept(self, store):
        record = make_record("/tmp/same.txt")
        store.save(record)
        store.save(record)

        assert store.query_all() == [record, record]

    def test_query_all_is_restartable(self, populated):
        assert populated.query_all() == populated.query_all()
        assert len(populated.query_all()) == 4

    def test_save_many(self, store):
        records = [make_record(f"/tmp/f{i}.txt") for i in range(3)]
        assert store.save_many(records) == 3
        assert store.save_many([]) == 0
        assert store.query_all() == records

    def test_count(self, populated):
        assert populated.count() == 4

    def test_query_by_extension(self, populated):
        results = populated.query_by_extension(".txt")
        assert [r.file_name for r in results] == ["a.txt", "c.txt"]
        assert all(r.extension == ".txt" for r in results)

    def test_query_by_extension_empty_returns_all(self, populated):
        assert populated.query_by_extension("") == populated.query_all()
        assert populated.query_by_extension(None) == populated.query_all()

    def test_query_by_extension_no_match(self, populated):
        assert populated.query_by_extension(".rs") == []

    def test_query_by_kind(self, populated):
        results = populated.query_by_kind(EventKind.DELETED)
        assert [r.file_name for r in results] == ["c.txt"]

    def test_query_by_kind_string(self, populated):
        assert populated.query_by_kind("ENTRY_RENAME")[0].file_name == "Makefile"
        assert populated.query_by_kind("modified")[0].file_name == "b.java"

    def test_query_by_kind_invalid(self, populated):
        with pytest.raises(QueryFailedError):
            populated.query_by_kind("ENTRY_EXPLODE")

    def test_query_by_date_range_inclusive(self, populated):
        results = populated.query_by_date_range(
            datetime(2025, 5, 13, 11, 0, 0),
            datetime(2025, 5, 14, 9, 0, 0),
        )
        assert [r.file_name for r in results] == ["b.java", "c.txt"]

    def test_query_by_date_range_strings(self, populated):
        results = populated.query_by_date_range("2025-05-13 00:00:00", "2025-05-13 23:59:59")
        assert [r.file_name for r in results] == ["a.txt", "b.java"]

    def test_query_by_date_range_single_instant(self, populated):
        results = populated.query_by_date_range("2025-05-15 00:00:00", "2025-05-15 00:00:00")
        assert [r.file_name for r in results] == ["Makefile"]

    def test_query_by_date_range_unparseable(self, populated):
        with pytest.raises(QueryFailedError, match="Invalid start"):
            populated.query_by_date_range("last tuesday", "2025-05-15 00:00:00")

    def test_query_by_date_range_reversed(self, populated):
        with pytest.raises(QueryFailedError, match="Empty date range"):
            populated.query_by_date_range(datetime(2025, 6, 1), datetime(2025, 5, 1))

    def test_query_by_directory(self, populated):
        results = populated.query_by_directory("/home/user")
        paths = [r.path for r in results]
        assert "/home/user/a.txt" in paths
        assert "/home/user/sub/b.java" in paths
        assert "/home/userx/c.txt" in paths

    def test_query_by_directory_with_separator(self, populated):
        results = populated.query_by_directory("/home/user/")
        paths = [r.path for r in results]
        assert paths == ["/home/user/a.txt", "/home/user/sub/b.java", "/home/user/Makefile"]

    def test_query_by_directory_excludes_sibling(self, populated):
        results = populated.query_by_directory("/home/userx")
        assert [r.path for r in results] == ["/home/userx/c.txt"]

    def test_query_by_directory_is_literal(self, store):
        store.save(make_record("/data/a_b/x.txt"))
        store.save(make_record("/data/axb/y.txt"))
        store.save(make_record("/data/A_B/z.txt"))

        results = store.query_by_directory("/data/a_b")

        assert [r.path for r in results] == ["/data/a_b/x.txt"]

    def test_query_by_directory_percent(self, store):
        store.save(make_record("/data/100%/x.txt"))
        store.save(make_record("/data/1000/y.txt"))

        assert [r.path for r in store.query_by_directory("/data/100%")] == ["/data/100%/x.txt"]

    def test_clear(self, populated):
        assert populated.clear() == 4
        assert populated.query_all() == []

    def test_clear_idempotent(self, store):
        assert store.clear() == 0
        assert store.clear() == 0
        assert store.query_all() == []

    def test_clear_keeps_schema(self, populated):
        populated.clear()
        populated.save(make_record("/tmp/after.txt"))
        assert len(populated.query_all()) == 1

    def test_persistence_across_reopens(self, tmp_path):
        db_path = tmp_path / "events.db"
        record = make_record("/tmp/persistent.txt")

        with EventStore(db_path) as store:
            store.save(record)

        with EventStore(db_path) as store:
            assert store.query_all() == [record]

    def test_operations_connect_lazily(self, tmp_path):
        store = EventStore(tmp_path / "events.db")
        assert not store.connected

        store.save(make_record("/tmp/lazy.txt"))

        assert store.connected
        assert len(store.query_all()) == 1
        store.close()

    def test_reconnects_after_close(self, store):
        store.save(make_record("/tmp/one.txt"))
        store.close()

        store.save(make_record("/tmp/two.txt"))

        assert [r.file_name for r in store.query_all()] == ["one.txt", "two.txt"]

    def test_reconnects_after_stale_connection(self, store):
        store.save(make_record("/tmp/one.txt"))
        store._conn.close()

        results = store.query_all()

        assert [r.file_name for r in results] == ["one.txt"]

    def test_unavailable_when_directory_missing(self, tmp_path):
        store = EventStore(tmp_path / "missing" / "events.db")

        with pytest.raises(StoreUnavailableError):
            store.connect()
        with pytest.raises(StoreUnavailableError):
            store.save(make_record("/tmp/x.txt"))

    def test_reads_legacy_timestamps(self, store, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "events.db"))
        conn.execute(
            "INSERT INTO file_events (file_name, file_extension, path, event_type, timestamp) "
            "VALUES ('old.txt', '.txt', '/legacy/old.txt', 'ENTRY_CREATE', '2025-05-13T10:30')"
        )
        conn.commit()
        conn.close()

        results = store.query_all()

        assert results[0].timestamp == datetime(2025, 5, 13, 10, 30)

    def test_legacy_timestamps_normalized_on_connect(self, tmp_path):
        db_path = tmp_path / "events.db"
        with EventStore(db_path):
            pass
        conn = sqlite3.connect(str(db_path))
        conn.execute(
            "INSERT INTO file_events (file_name, file_extension, path, event_type, timestamp) "
            "VALUES ('old.txt', '.txt', '/legacy/old.txt', 'ENTRY_CREATE', '2025-05-13T10:30')"
        )
        conn.commit()
        conn.close()

        with EventStore(db_path) as store:
            in_range = store.query_by_date_range("2025-05-13 00:00:00", "2025-05-13 23:59:59")
            facade_range = QueryFacade(store).search(
                since="2025-05-13 00:00:00", until="2025-05-13 23:59:59"
            )

        assert [r.file_name for r in in_range] == ["old.txt"]
        assert in_range == facade_range

        conn = sqlite3.connect(str(db_path))
        stored = conn.execute("SELECT timestamp FROM file_events").fetchone()[0]
        conn.close()
        assert stored == "2025-05-13 10:30:00"

    def test_unparseable_legacy_timestamp_left_alone(self, tmp_path):
        db_path = tmp_path / "events.db"
        with EventStore(db_path):
            pass
        conn = sqlite3.connect(str(db_path))
        conn.execute(
            "INSERT INTO file_events (file_name, file_extension, path, event_type, timestamp) "
            "VALUES ('bad.txt', '.txt', '/bad.txt', 'ENTRY_CREATE', 'Tuesday')"
        )
        conn.commit()
        conn.close()

        with EventStore(db_path) as store:
            with pytest.raises(QueryFailedError, match="Undecodable"):
                store.query_all()

    def test_count_failure_is_store_error(self, store, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "events.db"))
        conn.execute("DROP TABLE file_events")
        conn.commit()
        conn.close()

        with pytest.raises(QueryFailedError):
            store.count()

    def test_undecodable_row_raises(self, store, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "events.db"))
        conn.execute(
            "INSERT INTO file_events (file_name, file_extension, path, event_type, timestamp) "
            "VALUES ('bad.txt', '.txt', '/bad.txt', 'CREATED_ISH', '2025-05-13 10:30:00')"
        )
        conn.commit()
        conn.close()

        with pytest.raises(QueryFailedError, match="Undecodable"):
            store.query_all()

    def test_thread_safety_save(self, store):
        errors = []

        def save_records(start):
            try:
                for i in range(20):
                    store.save(make_record(f"/tmp/t{start + i}.txt"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=save_records, args=(n * 20,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.count() == 100

    def test_context_manager(self, tmp_path):
        with EventStore(tmp_path / "events.db") as store:
            assert store.connected
        assert not store.connected
