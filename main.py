#!/usr/bin/env python3
"""
Bundle Board - trip pipeline board with CSV reconciliation

CLI Commands:
    serve              - Run the board server (HTTP API + push channel)
    import-csv <file>  - Merge a trip CSV export into the card store
    summary            - Print totals and per-bucket counts for a filter
    clear-completed    - Remove every Bundle Completed card
    export-csv <file>  - Write the board out as CSV
    watch              - Follow a running board server and print each change

Usage:
    python main.py serve --port 3000
    python main.py import-csv trips.csv --dry-run
    python main.py summary --filter this-week
    python main.py clear-completed
    python main.py export-csv board.csv
    python main.py watch
"""

import argparse
import os
import sys
from datetime import date
from pathlib import Path

# Ensure project root is in path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


def _load_config():
    from core.config import ConfigurationError, load_config_from_env
    from core.logging_config import setup_logging

    config = load_config_from_env()
    setup_logging(config.log_level, config.log_format)
    try:
        config.validate()
    except ConfigurationError as e:
        print(f"ERROR: {e}")
        return None
    return config


def _print_bucket_counts(counts):
    from services.bucket_classifier import is_automatic

    width = max(len(bucket.value) for bucket in counts)
    for bucket, count in counts.items():
        # Stages only a person can move a card into
        marker = "" if is_automatic(bucket) else "  (manual)"
        print(f"  {bucket.value:<{width}}  {count}{marker}")


def cmd_serve(args):
    """Run the board server."""
    import uvicorn

    config = _load_config()
    if config is None:
        return 1

    host = args.host or config.server.host
    port = args.port or config.server.port
    print(f"Serving board on http://{host}:{port} (cards: {config.storage.cards_path})")
    uvicorn.run("api.main:app", host=host, port=port, log_level=config.log_level.lower())
    return 0


def cmd_import_csv(args):
    """Merge a CSV export into the card store."""
    from core.errors import PersistenceFailure
    from ingest.trip_csv import read_trip_csv
    from services import board_view
    from services.board_client import BoardReplica
    from services.card_store import CardStore, load_snapshot
    from services.row_projector import parse_rows

    config = _load_config()
    if config is None:
        return 1

    try:
        rows = read_trip_csv(args.file)
    except (OSError, UnicodeDecodeError) as e:
        print(f"ERROR: Cannot read {args.file}: {e}")
        return 1

    print(f"Read {len(rows)} rows from {args.file}")

    if args.dry_run:
        # Preview against an in-memory copy; the store file is not touched
        replica = BoardReplica()
        replica.cards = load_snapshot(Path(config.storage.cards_path))
        result = replica.preview_merge(rows)
        print(f"[DRY RUN] {len(result.updates)} rows would merge, {result.skipped} skipped")
        for warning in result.warnings:
            print(f"  WARN: {warning}")
        print()
        _print_bucket_counts(board_view.bucket_counts(replica.cards.values()))
        return 0

    result = parse_rows(rows)
    try:
        with CardStore.open(config.storage.cards_path) as store:
            report = store.merge_batch(result.updates)
            total = len(store)
    except PersistenceFailure as e:
        print(f"ERROR: {e.message}")
        return 1

    for warning in result.warnings:
        print(f"  WARN: {warning}")
    print("-" * 50)
    print(f"Created: {report.created}")
    print(f"Updated: {report.updated}")
    print(f"Skipped: {result.skipped}")
    print(f"Cards on board: {total}")
    return 0


def cmd_summary(args):
    """Print totals and bucket counts for a board filter."""
    from services import board_view
    from services.card_store import load_snapshot

    config = _load_config()
    if config is None:
        return 1

    try:
        if args.filter == board_view.FILTER_CUSTOM_RANGE:
            start = date.fromisoformat(args.start) if args.start else None
            end = date.fromisoformat(args.end) if args.end else None
            view = board_view.ViewFilter.custom_range(start, end)
        elif args.filter == board_view.FILTER_ASSIGNEE:
            view = board_view.ViewFilter.for_assignee(args.assignee)
        elif args.filter == board_view.FILTER_AMBASSADORS:
            roster = board_view.load_ambassador_roster(config.board.ambassadors_path)
            view = board_view.ViewFilter.ambassadors(roster)
        else:
            view = board_view.ViewFilter(args.filter)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    cards = load_snapshot(Path(config.storage.cards_path))
    visible = board_view.visible_cards(cards.values(), view)

    print(f"Filter: {view.name}")
    print(board_view.summarize(visible).summary_line())
    print()
    _print_bucket_counts(board_view.bucket_counts(visible))

    assignees = board_view.assignee_counts(visible)
    if assignees:
        print()
        for name, count in assignees.items():
            print(f"  {name}: {count}")
    return 0


def cmd_clear_completed(args):
    """Remove every Bundle Completed card."""
    from core.errors import PersistenceFailure
    from services.card_store import CardStore

    config = _load_config()
    if config is None:
        return 1

    try:
        with CardStore.open(config.storage.cards_path) as store:
            removed = store.clear_completed()
    except PersistenceFailure as e:
        print(f"ERROR: {e.message}")
        return 1
    print(f"Removed {removed} completed cards")
    return 0


def cmd_export_csv(args):
    """Write every card to a CSV file."""
    from ingest.trip_csv import write_trip_csv
    from services.board_view import sort_for_display
    from services.card_store import load_snapshot

    config = _load_config()
    if config is None:
        return 1

    cards = sort_for_display(load_snapshot(Path(config.storage.cards_path)).values())

    try:
        written = write_trip_csv(args.file, cards)
    except OSError as e:
        print(f"ERROR: Cannot write {args.file}: {e}")
        return 1
    print(f"CSV saved: {args.file} ({written} cards)")
    return 0


def cmd_watch(args):
    """Follow a running server's push channel and print each change."""
    import time

    from websockets.exceptions import WebSocketException

    from services import board_view
    from services.board_client import BoardApiClient, BoardClientError, BoardReplica

    config = _load_config()
    if config is None:
        return 1
    errors = config.board.validate()
    if errors:
        print(f"ERROR: {'; '.join(errors)}")
        return 1

    client = BoardApiClient(config.board.api_base_url)
    replica = BoardReplica(config.storage.cache_path)

    def on_change(message):
        if message["type"] == "clear-completed":
            print(f"Cleared: {', '.join(message.get('tripIds') or []) or '(none)'}")
        else:
            card = message["card"]
            print(f"{message['type']}: {card.get('tripId')} -> {card.get('currentBucket')}")
        print(f"  {board_view.summarize(replica.cards.values()).summary_line()}")

    print(f"Watching {client.events_url} (Ctrl+C to stop)")
    try:
        while True:
            try:
                client.follow(replica, on_change=on_change)
                print("Server closed the event stream")
            except (OSError, WebSocketException, BoardClientError) as e:
                print(f"Connection lost: {e}")
            if args.once:
                break
            time.sleep(args.retry_delay)
    except KeyboardInterrupt:
        print()

    print(f"Cards on board: {len(replica.cards)}")
    return 0


def main(argv=None):
    from services.board_view import FILTER_ALL, FILTER_NAMES

    parser = argparse.ArgumentParser(
        description="Bundle Board - trip pipeline board with CSV reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py serve --port 3000
    python main.py import-csv trips.csv
    python main.py import-csv trips.csv --dry-run
    python main.py summary --filter next-week
    python main.py summary --filter custom-range --start 2026-03-01 --end 2026-03-31
    python main.py summary --filter assignee --assignee Greg
    python main.py clear-completed
    python main.py export-csv board.csv
    python main.py watch
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the board server")
    serve_parser.add_argument("--host", help="Bind address (default: HOST)")
    serve_parser.add_argument("--port", type=int, help="Port (default: PORT)")

    # import-csv command
    import_parser = subparsers.add_parser("import-csv", help="Merge a trip CSV into the board")
    import_parser.add_argument("file", help="Path to CSV file")
    import_parser.add_argument(
        "--dry-run", action="store_true", help="Show the resulting buckets without saving"
    )

    # summary command
    summary_parser = subparsers.add_parser("summary", help="Print board totals")
    summary_parser.add_argument(
        "--filter", choices=FILTER_NAMES, default=FILTER_ALL, help="Board filter"
    )
    summary_parser.add_argument("--start", help="custom-range start date (YYYY-MM-DD)")
    summary_parser.add_argument("--end", help="custom-range end date (YYYY-MM-DD)")
    summary_parser.add_argument("--assignee", help="Assignee for the assignee filter")

    # clear-completed command
    subparsers.add_parser("clear-completed", help="Remove Bundle Completed cards")

    # export-csv command
    export_parser = subparsers.add_parser("export-csv", help="Write the board to CSV")
    export_parser.add_argument("file", help="Output CSV file path")

    # watch command
    watch_parser = subparsers.add_parser("watch", help="Follow a running board server")
    watch_parser.add_argument(
        "--retry-delay", type=float, default=5.0, help="Seconds to wait before reconnecting"
    )
    watch_parser.add_argument("--once", action="store_true", help="Exit when the connection ends")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "serve": cmd_serve,
        "import-csv": cmd_import_csv,
        "summary": cmd_summary,
        "clear-completed": cmd_clear_completed,
        "export-csv": cmd_export_csv,
        "watch": cmd_watch,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
