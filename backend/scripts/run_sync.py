#!/usr/bin/env python
"""Run an incremental sync from the command line.

Syncs every active Item (or a single Item) and prints a per-Item summary.
Exits non-zero if any Item failed.

Usage:
    python -m scripts.run_sync
    python -m scripts.run_sync --item <item id>
    python -m scripts.run_sync --streams transactions
"""

import argparse
import sys
import time

from database import init_db
from integrations.exceptions import ItemNotFoundError, SyncInProgressError
from logging_config import setup_logging
from services.sync_service import SyncService
from services.sync_types import ALL_STREAMS, Stream, SyncResult


def parse_streams(values: list[str] | None) -> tuple[Stream, ...]:
    """Map ``--streams`` values to Stream members (all streams if empty)."""
    if not values:
        return ALL_STREAMS
    return tuple(Stream(v.lower()) for v in values)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--item",
        help="Local id or aggregator item_id of a single Item to sync",
    )
    parser.add_argument(
        "--streams",
        nargs="+",
        choices=[s.value for s in Stream],
        help="Streams to sync (default: all)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every page at DEBUG level",
    )


def print_result(result: SyncResult) -> None:
    """Print a per-Item summary of a sync result."""
    print(
        f"Items: {result.items_attempted} attempted, "
        f"{result.items_succeeded} succeeded, {result.items_failed} failed"
    )
    for outcome in result.outcomes:
        status = "ok" if outcome.succeeded else ("REAUTH" if outcome.requires_reauth else "FAILED")
        print(f"\n  {outcome.institution_name} [{status}]")
        for stream_outcome in outcome.streams.values():
            counts = stream_outcome.counts
            line = (
                f"    {stream_outcome.stream.value:<13} {stream_outcome.state.value:<13} "
                f"pages={stream_outcome.pages} +{counts.added} ~{counts.modified} -{counts.removed}"
            )
            if stream_outcome.error:
                line += f"  ({stream_outcome.error})"
            print(line)
        if outcome.holdings is not None:
            h = outcome.holdings
            print(f"    holdings      +{h.added} ~{h.updated} -{h.removed}")

    outcome_ids = {o.item_id for o in result.outcomes}
    for failure in result.failures:
        if failure.item_id not in outcome_ids:
            print(f"\n  {failure.institution_name} [FAILED] {failure.error_kind.value}: {failure.message}")


def run(action, description: str) -> int:
    """Run a sync action, print its result and return the exit code."""
    start = time.time()
    try:
        result = action()
    except SyncInProgressError as e:
        print(f"Error: {e}")
        return 2
    except ItemNotFoundError as e:
        print(f"Error: {e}")
        return 1
    elapsed = time.time() - start
    print(f"{description} finished in {elapsed:.2f}s")
    print("-" * 60)
    print_result(result)
    return 1 if result.items_failed else 0


def main(argv: list[str] | None = None) -> None:
    """Entry point: parse args and run the sync."""
    parser = argparse.ArgumentParser(description="Sync linked Items from the aggregator.")
    add_common_arguments(parser)
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)
    init_db()

    service = SyncService()
    streams = parse_streams(args.streams)
    if args.item:
        code = run(lambda: service.sync_item(args.item, streams), "Sync")
    else:
        code = run(lambda: service.sync_all(streams), "Sync")
    sys.exit(code)


if __name__ == "__main__":
    main()
