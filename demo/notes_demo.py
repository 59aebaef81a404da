#!/usr/bin/env python3
"""Notes Demo Driver

Opens a durable store of notes, watches the "notes" kind with an initial
replay, writes a couple of notes and lists them.

Usage:
    python demo/notes_demo.py --dsn "file:notes.db?cache=shared"
    python demo/notes_demo.py --backend memory
"""

from __future__ import annotations

import argparse
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from kindstore import JSONCodec, MemoryStore, SQLiteConfig, SQLiteStore
from kindstore.components.watch import Subscription


@dataclass
class Note:
    title: str
    content: str
    updated: str


def print_events(sub: Subscription[Note]) -> None:
    """Print events until the subscription is cancelled."""
    for ev in sub:
        print(f"[{ev.event_type.value}] {ev.object.title}: {ev.object}")


def run_demo(args: argparse.Namespace) -> None:
    """Run the notes workload."""
    if args.backend == "memory":
        store = MemoryStore()
    else:
        cfg = SQLiteConfig(dsn=args.dsn, busy_timeout_ms=args.busy_timeout_ms)
        store = SQLiteStore(cfg, JSONCodec(Note))

    with store:
        print("- Watching for changes...")
        sub = store.watch("notes", initial_replay=True)
        printer = threading.Thread(target=print_events, args=(sub,), daemon=True)
        printer.start()

        time.sleep(args.pause_seconds)
        print("- Setting notes...")
        now = datetime.now(timezone.utc).isoformat()
        store.set("notes", "note-1", Note("Meeting Notes", "Discussed Q4 planning...", now))
        store.set("notes", "note-2", Note("Ideas", "New feature brainstorm...", now))

        time.sleep(args.pause_seconds)
        notes = store.list("notes")
        print(f"\nTotal notes: {len(notes)}")

        sub.cancel()
        printer.join(timeout=1.0)


def main() -> None:
    """Parse arguments and run demo."""
    p = argparse.ArgumentParser(description="kindstore notes demo")
    p.add_argument(
        "--backend", choices=["sqlite", "memory"], default="sqlite", help="Storage backend"
    )
    p.add_argument("--dsn", default="file:notes.db?cache=shared", help="SQLite DSN")
    p.add_argument(
        "--busy-timeout-ms", type=int, default=5000, help="SQLite busy timeout in milliseconds"
    )
    p.add_argument(
        "--pause-seconds", type=float, default=1.0, help="Pause between demo steps"
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    args = p.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    run_demo(args)


if __name__ == "__main__":
    main()
