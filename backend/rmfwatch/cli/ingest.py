#!/usr/bin/env python3
"""
RMFWatch Scan Ingest Tool

Imports a STIG checklist or a Nessus report into the configured database and
prints the import result as JSON.

Usage:
    python -m rmfwatch.cli.ingest stig --system-id 3 host01.cklb
    python -m rmfwatch.cli.ingest nessus --package-id 1 quarterly.nessus
    python -m rmfwatch.cli.ingest summary --package-id 1
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from ..config import get_settings
from ..database import create_tables, get_db_session
from ..services.catalog import CciMapper
from ..services.compliance import ComplianceAggregationEngine
from ..services.ingest import ChecklistParser, IngestError, NessusImporter, NessusParser, StigImporter
from ..utils import sanitize_filename_for_log

logger = logging.getLogger(__name__)


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def import_stig(args: argparse.Namespace) -> int:
    """Parse and upsert one checklist."""
    path = Path(args.file)
    parsed = ChecklistParser().parse(path, system_id=args.system_id, filename=path.name)
    logger.info(
        "Parsed %s: %d scans, %d findings, %d rules dropped",
        sanitize_filename_for_log(path.name),
        len(parsed.scans),
        parsed.finding_count,
        parsed.dropped_rules,
    )

    db = get_db_session()
    try:
        result = StigImporter().import_checklist(db, parsed, cci_mapper=CciMapper.from_session(db))
    finally:
        db.close()

    _print_json(result.to_dict())
    return 0 if result.error_count == 0 else 1


def import_nessus(args: argparse.Namespace) -> int:
    """Parse and import one Nessus report in chunks."""
    path = Path(args.file)
    parsed = NessusParser().parse(path, filename=path.name)
    logger.info(
        "Parsed %s: %d hosts, %d vulnerabilities",
        sanitize_filename_for_log(path.name),
        len(parsed.hosts),
        parsed.total_vulnerabilities,
    )

    def report_progress(progress: Dict[str, Any]) -> None:
        logger.info(
            "%s: %d/%d records (%.1f%%)",
            progress["current_stage"],
            progress["imported_records"],
            progress["total_records"],
            progress["progress_percent"],
        )

    importer = NessusImporter(host_batch_size=args.host_batch_size, vulnerability_batch_size=args.batch_size)
    db = get_db_session()
    try:
        result = importer.import_report(
            db,
            parsed,
            package_id=args.package_id,
            system_id=args.system_id,
            progress_callback=report_progress if args.verbose else None,
        )
    finally:
        db.close()

    _print_json(result.to_dict())
    return 0 if result.error_count == 0 else 1


def show_summary(args: argparse.Namespace) -> int:
    """Print the package's compliance summary and family map."""
    engine = ComplianceAggregationEngine()
    db = get_db_session()
    try:
        summary = engine.compliance_summary(db, args.package_id)
        families = engine.control_status_by_family(db, args.package_id)
    finally:
        db.close()

    _print_json(
        {
            "summary": summary.model_dump(mode="json"),
            "families": families.model_dump(mode="json", include={"families", "overall_compliance"}),
        }
    )
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Import STIG checklists and Nessus reports into RMFWatch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import a checklist for system 3
  python -m rmfwatch.cli.ingest stig --system-id 3 host01.cklb

  # Import a Nessus report for package 1 with smaller chunks
  python -m rmfwatch.cli.ingest nessus --package-id 1 --batch-size 200 quarterly.nessus
        """,
    )
    settings = get_settings()
    parser.add_argument("--version", action="version", version=f"{settings.app_name} {settings.app_version}")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging and progress output")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables before running")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    stig_parser = subparsers.add_parser("stig", help="Import a CKLB or CKL checklist")
    stig_parser.add_argument("file", help="Checklist file (.cklb or .ckl)")
    stig_parser.add_argument("--system-id", type=int, required=True, help="System the checklist belongs to")

    nessus_parser = subparsers.add_parser("nessus", help="Import a Nessus v2 report")
    nessus_parser.add_argument("file", help="Nessus report (.nessus)")
    nessus_parser.add_argument("--package-id", type=int, help="Owning package")
    nessus_parser.add_argument("--system-id", type=int, help="Owning system")
    nessus_parser.add_argument("--host-batch-size", type=int, help="Hosts per chunk")
    nessus_parser.add_argument("--batch-size", type=int, help="Vulnerabilities per chunk")

    summary_parser = subparsers.add_parser("summary", help="Show compliance rollups for a package")
    summary_parser.add_argument("--package-id", type=int, required=True, help="Package to summarize")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.create_tables:
        create_tables()

    commands = {"stig": import_stig, "nessus": import_nessus, "summary": show_summary}
    try:
        return commands[args.command](args)
    except IngestError as e:
        _print_json(e.to_dict())
        return 2
    except SQLAlchemyError as e:
        logger.error("Database error: %s", e)
        return 3


if __name__ == "__main__":
    sys.exit(main())
