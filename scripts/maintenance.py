#!/usr/bin/env python3
"""One-shot operator commands against the journal-backed store.

Usage::

    python scripts/maintenance.py health
    python scripts/maintenance.py health --window-hours 6
    python scripts/maintenance.py sweep
    python scripts/maintenance.py reclaim
    python scripts/maintenance.py resolve-stale
    python scripts/maintenance.py activity --user <owner-id>

The commands own the journal while they run, so the service must be stopped
first; they exit with an error if it still holds the journal lock.
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import json
import sys

from src.core.config import load_settings
from src.core.exceptions import StorageFailureError
from src.core.logging import setup_logging
from src.evaluation.leases import WorkerLeaseManager
from src.monitor.health import HealthMonitor
from src.monitor.retention import RetentionSweeper
from src.registry.activity import ActivityLog
from src.registry.alerts import AlertRegistry
from src.storage.memory import MemoryStore
from src.triggers.ledger import TriggerLedger


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(settings.logging, level=args.log_level, fmt="console")

    if not settings.storage.journal_path:
        print("storage.journal_path is not configured", file=sys.stderr)
        return 1

    try:
        store = MemoryStore.open(
            settings.storage.journal_path, fsync=settings.storage.fsync
        )
    except StorageFailureError as exc:
        print(f"{exc}. Stop the running service first.", file=sys.stderr)
        return 1

    try:
        if args.command == "health":
            window = (
                datetime.timedelta(hours=args.window_hours)
                if args.window_hours
                else None
            )
            snap = HealthMonitor(store, config=settings.health).snapshot(window)
            print(json.dumps(snap.model_dump(mode="json"), indent=2))
        elif args.command == "sweep":
            result = RetentionSweeper(store, config=settings.retention).sweep()
            print(json.dumps(result, indent=2))
        elif args.command == "reclaim":
            reclaimed = WorkerLeaseManager(store, config=settings.queue).reclaim_expired()
            for item in reclaimed:
                print(f"{item.id}  {item.status:<10}  attempts={item.attempts}")
            print(f"Reclaimed {len(reclaimed)} expired lease(s)")
        elif args.command == "resolve-stale":
            ledger = TriggerLedger(store, AlertRegistry(store), config=settings.triggers)
            ledger.on_event(ActivityLog(store).on_trigger_event)
            resolved = await ledger.resolve_stale()
            print(f"Resolved {len(resolved)} stale trigger(s)")
        elif args.command == "activity":
            for entry in ActivityLog(store).entries(caller=args.user):
                print(
                    f"{entry.created_at:%Y-%m-%d %H:%M:%S}  {entry.severity:<7}  "
                    f"{entry.activity_type:<15}  {entry.description}"
                )
    finally:
        store.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Alert evaluation maintenance commands.")
    parser.add_argument(
        "command",
        choices=["health", "sweep", "reclaim", "resolve-stale", "activity"],
    )
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default="WARNING", help="Log level override")
    parser.add_argument(
        "--window-hours",
        type=float,
        default=None,
        help="Health window in hours (default from config)",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="Only list activity for this user id (default: all users)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
