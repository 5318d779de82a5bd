#!/usr/bin/env python
"""Re-download full upstream history.

Clears the transaction and investment cursors (of every Item, or of one
Item) and then syncs, so the mirror is rebuilt from the beginning of
history. Existing records are updated in place; nothing is duplicated.

Usage:
    python -m scripts.sync_from_scratch
    python -m scripts.sync_from_scratch --item <item id>
    python -m scripts.sync_from_scratch --streams investments
"""

import argparse
import sys

from database import init_db
from logging_config import setup_logging
from scripts.run_sync import add_common_arguments, parse_streams, run
from services.resync_service import ResyncService


def main(argv: list[str] | None = None) -> None:
    """Entry point: parse args and run the full resync."""
    parser = argparse.ArgumentParser(
        description="Reset sync cursors and re-download full history.",
    )
    add_common_arguments(parser)
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)
    init_db()

    service = ResyncService()
    streams = parse_streams(args.streams)
    if args.item:
        code = run(lambda: service.resync_item(args.item, streams), "Resync")
    else:
        code = run(lambda: service.resync_all(streams), "Resync")
    sys.exit(code)


if __name__ == "__main__":
    main()
