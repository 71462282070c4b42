#!/usr/bin/env python3
"""
Repair misplaced parent references and merge duplicate communities.

Usage:
    casetrack-repair                  # Dry run (preview changes)
    casetrack-repair --apply          # Apply changes
    casetrack-repair --apply --json   # Apply and print the report as JSON
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from casetrack.exceptions import CaseTrackError
from casetrack.main import build_services, configure_logging
from casetrack.schemas.repair import RepairReport
from casetrack.services.db import database_lifespan

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Repair and deduplicate communities in the location hierarchy"
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Apply changes (default is dry run)",
    )
    parser.add_argument(
        "--skip-index",
        action="store_true",
        help="Do not build the unique (name, district, subDistrict) index afterwards",
    )
    parser.add_argument(
        "--no-transactions",
        action="store_true",
        help="Run merges without transactions (standalone servers)",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--mongo-uri", default=None, help="Overrides MONGO_URI")
    parser.add_argument("--db", default=None, help="Overrides MONGO_DB")
    parser.add_argument("--log-level", default=None, help="Logging level")
    return parser


def print_report(report: RepairReport) -> None:
    mode = "DRY RUN" if report.dry_run else "APPLIED"
    print(f"\n{'='*60}")
    print(f"COMMUNITY REPAIR ({mode})")
    print(f"{'='*60}")
    for action in report.actions:
        target = f" -> {action.target_id}" if action.target_id else ""
        print(
            f"  [{action.phase}] {action.action.value:<8} {action.community_id} "
            f"'{action.name}'{target}: {action.detail}"
        )
    print(
        f"\nmigrated={report.migrated} merged={report.merged} "
        f"skipped={report.skipped} failed={report.failed}"
    )
    if report.index_error:
        print(f"WARNING: unique index not built: {report.index_error}")
    if report.dry_run:
        print("\n[DRY RUN] No changes made. Run with --apply to execute.")


async def run_repair(args: argparse.Namespace) -> RepairReport:
    async with database_lifespan(args.mongo_uri, args.db) as (client, db):
        services = build_services(
            db,
            client=client,
            use_transactions=False if args.no_transactions else None,
        )
        return await services.repair.run(
            dry_run=not args.apply,
            ensure_index=False if args.skip_index else None,
        )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        report = asyncio.run(run_repair(args))
    except CaseTrackError as e:
        logger.error(f"Repair aborted: {e}")
        return 1

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print_report(report)
    return 0 if report.failed == 0 and not report.index_error else 2


if __name__ == "__main__":
    sys.exit(main())
