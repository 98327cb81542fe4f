from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from leadsync.adapters.sqlalchemy import shutdown
from leadsync.app import (
    cleanup_ledger,
    drain_backlog,
    reconcile_lead,
    reconcile_linked_leads,
    seed_stage_tags,
    sync_stats,
    verify_stage_tags,
)
from leadsync.config import configure_logging

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep ManyChat tags in sync with CRM stages")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile = subparsers.add_parser("reconcile", help="Sync one lead (or all linked leads)")
    reconcile.add_argument("lead_id", nargs="?", help="Lead to reconcile")
    reconcile.add_argument(
        "--stage",
        type=str,
        help="Stage to sync to (defaults to the lead's stored stage)",
    )
    reconcile.add_argument(
        "--previous-stage",
        type=str,
        help="Stage the lead is leaving, for the ledger payload",
    )
    reconcile.add_argument(
        "--all",
        action="store_true",
        help="Re-sync every lead linked to ManyChat",
    )
    reconcile.add_argument(
        "--limit",
        type=int,
        help="Maximum number of leads to sync with --all",
    )

    drain = subparsers.add_parser("drain-backlog", help="Retry pending and failed syncs")
    drain.add_argument(
        "--max-batches",
        type=int,
        help="Stop after this many batches",
    )

    subparsers.add_parser("stats", help="Show sync ledger counts")

    cleanup = subparsers.add_parser("cleanup", help="Delete old successful sync records")
    cleanup.add_argument(
        "--days",
        type=int,
        help="Keep successful records newer than this many days (defaults to config)",
    )

    subparsers.add_parser("seed-tags", help="Insert the default stage/tag mapping")
    subparsers.add_parser("verify-tags", help="Check configured tags against ManyChat")

    return parser.parse_args(list(argv))


def _validate_args(args: argparse.Namespace) -> None:
    if args.log_level.upper() not in logging.getLevelNamesMapping():
        raise ValueError(f"Unknown log level: {args.log_level}")
    if args.command == "reconcile":
        if args.all and args.lead_id:
            raise ValueError("Pass either a lead id or --all, not both")
        if not args.all and not args.lead_id:
            raise ValueError("Missing lead id (or pass --all)")
        if args.limit is not None and args.limit < 1:
            raise ValueError("--limit must be positive")
    elif args.command == "drain-backlog":
        if args.max_batches is not None and args.max_batches < 1:
            raise ValueError("--max-batches must be positive")
    elif args.command == "cleanup" and args.days is not None and args.days < 0:
        raise ValueError("--days must be non-negative")


async def _run(args: argparse.Namespace) -> None:
    try:
        await _dispatch(args)
    finally:
        await shutdown()


async def _dispatch(args: argparse.Namespace) -> None:
    if args.command == "reconcile":
        if args.all:
            bulk = await reconcile_linked_leads(limit=args.limit)
            log.info("Bulk sync finished: success=%s, failed=%s", bulk.success, bulk.failed)
            for lead_id, error in bulk.errors:
                log.warning("Lead %s: %s", lead_id, error)
        else:
            synced = await reconcile_lead(
                args.lead_id,
                new_stage=args.stage,
                previous_stage=args.previous_stage,
            )
            log.info("Lead %s synced: %s", args.lead_id, synced)
    elif args.command == "drain-backlog":
        result = await drain_backlog(max_batches=args.max_batches)
        log.info(
            "Backlog finished: processed=%s, succeeded=%s, failed=%s",
            result.processed,
            result.succeeded,
            result.failed,
        )
    elif args.command == "stats":
        stats = await sync_stats()
        log.info(
            "Sync ledger: pending=%s, failed=%s, succeeded=%s, total=%s",
            stats.pending,
            stats.failed,
            stats.succeeded,
            stats.total,
        )
    elif args.command == "cleanup":
        deleted = await cleanup_ledger(days_to_keep=args.days)
        log.info("Deleted %s old sync records", deleted)
    elif args.command == "seed-tags":
        seeded = await seed_stage_tags()
        log.info("Stage tags seeded: inserted=%s, updated=%s", seeded.inserted, seeded.updated)
    elif args.command == "verify-tags":
        verification = await verify_stage_tags()
        if verification.ok:
            log.info("All configured tags are registered on ManyChat")
        else:
            log.warning(
                "Tag verification failed: missing=%s, mismatched stages=%s",
                verification.missing_tags,
                verification.mismatched_stages,
            )
    else:
        raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args: argparse.Namespace
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate_args(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=parsed_args.log_level.upper())
    try:
        asyncio.run(_run(parsed_args))
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
