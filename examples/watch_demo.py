#!/usr/bin/env python3
"""
File watcher demo.

This example demonstrates:
1. Watching a directory tree and printing events as they arrive
2. Persisting the same events to SQLite through a StoreSink
3. Querying the recorded history once watching has stopped

Usage:
    python examples/watch_demo.py

The demo will:
- Create a temporary directory
- Start watching it (only .txt and .md files)
- Create/modify/rename/delete files, including inside a new subdirectory
- Stop and run a few queries against the recorded events
- Clean up
"""

import shutil
import sys
import tempfile
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from filewatch import (
    CallbackSink,
    EventKind,
    EventStore,
    QueryFacade,
    StoreSink,
    WatchEngine,
    WatcherConfig,
)


EVENT_ICONS = {
    EventKind.CREATED: "➕",
    EventKind.DELETED: "❌",
    EventKind.MODIFIED: "📝",
    EventKind.RENAMED: "📦",
}


def print_record(record):
    icon = EVENT_ICONS.get(record.kind, "❓")
    print(f"[LIVE] {icon} {record.kind.name}: {record.path}")


def make_changes(root: Path):
    """Touch the filesystem in ways that trigger every kind of event."""
    print("\n[DEMO] Creating files...")
    (root / "hello.txt").write_text("Hello, World!")
    (root / "Main.java").write_text("class Main {}")  # filtered out
    time.sleep(0.5)

    print("\n[DEMO] Modifying hello.txt...")
    (root / "hello.txt").write_text("Hello, Updated World!")
    time.sleep(0.5)

    print("\n[DEMO] Creating subdirectory with files...")
    subdir = root / "notes"
    subdir.mkdir()
    (subdir / "todo.md").write_text("- write demo")
    time.sleep(0.5)
    (subdir / "later.md").write_text("- more")
    time.sleep(0.5)

    print("\n[DEMO] Renaming hello.txt...")
    (root / "hello.txt").rename(root / "greeting.txt")
    time.sleep(0.5)

    print("\n[DEMO] Deleting a file...")
    (subdir / "todo.md").unlink()
    time.sleep(1)


def show_history(db_path: Path):
    with EventStore(db_path) as store:
        facade = QueryFacade(store)

        print(f"\n[QUERY] {len(facade.all())} events recorded")

        print("\n[QUERY] Markdown files:")
        for record in facade.by_extension(".md"):
            print(f"        {record.formatted_timestamp} {record.kind.name:<8} {record.path}")

        print("\n[QUERY] Deletions:")
        for record in facade.search(kind=EventKind.DELETED):
            print(f"        {record.formatted_timestamp} {record.path}")

        print("\n[QUERY] Names containing 'GREET':")
        for record in facade.search(name_contains="GREET"):
            print(f"        {record.formatted_timestamp} {record.kind.name:<8} {record.path}")


def main():
    """Run the demo."""
    print("=" * 60)
    print("File Watcher Demo")
    print("=" * 60)

    demo_dir = Path(tempfile.mkdtemp(prefix="filewatch_demo_"))
    root = demo_dir / "watched"
    root.mkdir()
    db_path = demo_dir / "file_events.db"

    print(f"\nWatching: {root}")
    print(f"Database: {db_path}")

    config = WatcherConfig(db_path=db_path, extensions=[".txt", ".md"])
    store = EventStore(db_path)

    try:
        with StoreSink(store, config) as store_sink:
            engine = WatchEngine(config, sinks=[store_sink, CallbackSink(print_record)])
            engine.start(root)
            time.sleep(0.5)

            try:
                make_changes(root)
            except KeyboardInterrupt:
                print("\n\nInterrupted!")
            finally:
                engine.stop()

        print(f"\n[DEMO] Store stats: {store_sink.stats()}")
        store.close()

        show_history(db_path)

        print("\n" + "=" * 60)
        print("Demo completed successfully!")
        print("=" * 60)

    finally:
        print(f"\nCleaning up demo directory: {demo_dir}")
        shutil.rmtree(demo_dir, ignore_errors=True)


if __name__ == "__main__":
    main()
