from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from docsync.adapters.events import parse_change_event
from docsync.app import (
    build_mapping_engine,
    create_document_store,
    sync_change_event,
    sync_stored_document,
)
from docsync.config import StoreBackend, configure_logging

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from docsync.domain import ChangeEvent

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synchronise document relationships")
    parser.add_argument(
        "--store",
        choices=[backend.value for backend in StoreBackend],
        help="Document store backend (defaults to DOCSYNC_STORE or sqlite)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    event = subparsers.add_parser("sync-event", help="Handle one change-event JSON payload")
    event.add_argument(
        "path",
        type=str,
        help="Path to the event JSON file, or '-' to read from stdin",
    )

    document = subparsers.add_parser(
        "sync-document", help="Re-synchronise a document already in the store"
    )
    document.add_argument("document_id", type=str, help="Id of the stored document")

    return parser.parse_args(list(argv))


def _read_payload(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read event file {path}: {exc}") from exc


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    configure_logging()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args: argparse.Namespace
    event: ChangeEvent | None = None
    try:
        parsed_args = _parse_args(args_list)
        if parsed_args.command == "sync-event":
            event = parse_change_event(_read_payload(parsed_args.path))
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    if parsed_args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        engine = build_mapping_engine(create_document_store(parsed_args.store))
        if parsed_args.command == "sync-event" and event is not None:
            sync_change_event(event, engine=engine)
        elif parsed_args.command == "sync-document":
            sync_stored_document(parsed_args.document_id, engine=engine)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except Exception:
        log.exception("Fatal error during sync")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
