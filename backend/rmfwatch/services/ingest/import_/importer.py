"""
Scan importers for RMFWatch

Persist parsed drafts:
- StigImporter upserts checklist findings on their natural key
  (system, scan, rule id): new rules are inserted, known rules only get
  their status and last_seen refreshed, so re-importing a file never
  duplicates findings.
- NessusImporter writes hosts and vulnerabilities in fixed-size chunks,
  one transaction per chunk, so a file with tens of thousands of items never
  needs one huge transaction. A failing chunk is retried, then reported with
  its record count while later chunks continue.

Usage:
    from rmfwatch.services.ingest import ChecklistParser, StigImporter

    parsed = ChecklistParser().parse(upload, system_id=3, filename="web01.cklb")
    result = StigImporter().import_checklist(db, parsed)
    print(f"Imported: {result.imported_count}, Updated: {result.updated_count}")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ....config import get_settings
from ....database import NessusHost, NessusReport, NessusVulnerability, StigFinding, StigScan, conflict_insert
from ....utils.logging_security import sanitize_filename_for_log, sanitize_for_log
from ...catalog.cci_mapper import CciMapper
from ..exceptions import ImportPersistenceError
from ..models import (
    FindingDraft,
    ImportProgress,
    ImportStage,
    ParsedChecklist,
    ParsedNessusHost,
    ParsedNessusReport,
    ParsedNessusVulnerability,
    ScanDraft,
    SeverityCounts,
    distinct_scan_drafts,
)

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("rmfwatch.audit")

FINDING_CHUNK_SIZE = 500

T = TypeVar("T")

# Type alias for progress callback
ProgressCallback = Callable[[Dict[str, Any]], None]
CancelCheck = Callable[[], bool]


@dataclass
class ImportResult:
    """
    Result of an import operation.

    Attributes:
        status: completed, partial (some chunks failed), cancelled or failed
        imported_count: Records inserted
        updated_count: Existing findings whose status changed
        skipped_count: Exact duplicates and rules dropped by the parser
        error_count: Records in chunks that failed after retries
        errors: Chunk-level error reports
        warnings: Non-fatal observations
        record_ids: Ids of the scans or report created/reused
    """

    status: str = "pending"
    imported_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    record_ids: List[int] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    source_file: Optional[str] = None

    @property
    def total_processed(self) -> int:
        return self.imported_count + self.updated_count + self.skipped_count + self.error_count

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_processed == 0:
            return 0.0
        return ((self.total_processed - self.error_count) / self.total_processed) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "status": self.status,
            "imported_count": self.imported_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "error_count": self.error_count,
            "total_processed": self.total_processed,
            "success_rate": self.success_rate,
            "errors": self.errors,
            "warnings": self.warnings,
            "record_ids": self.record_ids,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "source_file": self.source_file,
        }


def _plain(value: Any) -> Any:
    """Enum members are stored by value."""
    return value.value if isinstance(value, Enum) else value


def _chunks(items: Sequence[T], size: int) -> List[Tuple[int, Sequence[T]]]:
    """(offset, slice) pairs covering ``items`` in order."""
    return [(i, items[i : i + size]) for i in range(0, len(items), size)]


class StigImporter:
    """Persist parsed checklists as scans and findings."""

    def import_checklist(
        self,
        db: Session,
        parsed: ParsedChecklist,
        cci_mapper: Optional[CciMapper] = None,
    ) -> ImportResult:
        """
        Upsert every finding of a parsed checklist.

        Findings are mapped to a NIST control through the first of their
        CCIs that the mapper knows.

        Args:
            db: Database session
            parsed: Output of ChecklistParser.parse
            cci_mapper: CCI lookup; built from the catalog tables when omitted

        Returns:
            ImportResult; record_ids holds the scan ids

        Raises:
            ImportPersistenceError: If the checklist could not be written
        """
        mapper = cci_mapper if cci_mapper is not None else CciMapper.from_session(db)
        result = ImportResult(source_file=parsed.source_file, skipped_count=parsed.dropped_rules)
        if parsed.dropped_rules:
            result.warnings.append(f"{parsed.dropped_rules} rules without a rule id were dropped")

        seen_at = datetime.utcnow()
        try:
            for draft in distinct_scan_drafts(parsed.scans):
                scan = self._get_or_create_scan(db, parsed.system_id, draft, parsed.source_file)
                result.record_ids.append(scan.id)
                inserted, updated, unchanged = self._upsert_findings(
                    db, parsed.system_id, scan.id, draft.findings, mapper, seen_at
                )
                result.imported_count += inserted
                result.updated_count += updated
                result.skipped_count += unchanged
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                "Checklist import failed for %s: %s", sanitize_filename_for_log(parsed.source_file), str(e)
            )
            result.status = "failed"
            raise ImportPersistenceError(
                message=f"Failed to persist checklist findings: {str(e)}",
                details={"system_id": parsed.system_id, "scans": len(parsed.scans)},
                source_file=parsed.source_file,
            ) from e

        result.status = "completed"
        result.end_time = datetime.utcnow()
        logger.info(
            "Checklist import %s for system %d: %d imported, %d updated, %d skipped",
            sanitize_filename_for_log(parsed.source_file),
            parsed.system_id,
            result.imported_count,
            result.updated_count,
            result.skipped_count,
        )
        audit_logger.info(
            "STIG checklist imported",
            extra={
                "event_type": "STIG_CHECKLIST_IMPORTED",
                "system_id": parsed.system_id,
                "scan_ids": result.record_ids,
                "imported": result.imported_count,
                "updated": result.updated_count,
            },
        )
        return result

    @staticmethod
    def _get_or_create_scan(db: Session, system_id: int, draft: ScanDraft, filename: Optional[str]) -> StigScan:
        """
        Scan row for the draft's (system, title, checklist id) key.

        Insert-or-skip on the key, then select, so concurrent first imports
        of the same checklist end up sharing one scan.
        """
        title, checklist_id = draft.scan_key
        stmt = (
            conflict_insert(db, StigScan)
            .values(system_id=system_id, title=title, checklist_id=checklist_id, filename=filename)
            .on_conflict_do_nothing(index_elements=["system_id", "title", "checklist_id"])
        )
        created = db.execute(stmt).rowcount
        scan = (
            db.query(StigScan)
            .filter(
                StigScan.system_id == system_id,
                StigScan.title == title,
                StigScan.checklist_id == checklist_id,
            )
            .one()
        )
        if not created:
            logger.debug("Reusing scan %d (%s)", scan.id, sanitize_for_log(title))
        return scan

    @staticmethod
    def _upsert_findings(
        db: Session,
        system_id: int,
        scan_id: int,
        findings: Sequence[FindingDraft],
        mapper: CciMapper,
        seen_at: datetime,
    ) -> Tuple[int, int, int]:
        """
        Insert new findings, refresh status and last_seen on existing ones.

        Returns:
            (inserted, updated, unchanged) counts
        """
        # Last occurrence wins when a checklist repeats a rule id
        by_rule: Dict[str, FindingDraft] = {f.rule_id: f for f in findings}
        existing = dict(
            db.query(StigFinding.rule_id, StigFinding.status).filter(
                StigFinding.system_id == system_id, StigFinding.scan_id == scan_id
            )
        )

        inserted = sum(1 for rule_id in by_rule if rule_id not in existing)
        updated = sum(1 for rule_id, f in by_rule.items() if rule_id in existing and existing[rule_id] != f.status)
        unchanged = len(by_rule) - inserted - updated

        rows = [
            {
                "system_id": system_id,
                "scan_id": scan_id,
                "rule_id": f.rule_id,
                "group_id": f.group_id,
                "rule_title": f.rule_title,
                "rule_version": f.rule_version,
                "severity": _plain(f.severity),
                "status": _plain(f.status),
                "cci": f.cci,
                "control_id": mapper.map_first(f.ccis),
                "finding_details": f.finding_details,
                "comments": f.comments,
                "check_content": f.check_content,
                "fix_text": f.fix_text,
                "first_seen": seen_at,
                "last_seen": seen_at,
            }
            for f in by_rule.values()
        ]

        for _, chunk in _chunks(rows, FINDING_CHUNK_SIZE):
            stmt = conflict_insert(db, StigFinding).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["system_id", "scan_id", "rule_id"],
                set_={"status": stmt.excluded.status, "last_seen": stmt.excluded.last_seen},
            )
            db.execute(stmt)

        return inserted, updated, unchanged


class NessusImporter:
    """
    Persist parsed Nessus reports in bounded chunks.

    Each vulnerability is attached to the host whose ReportHost element
    contained it. Vulnerabilities of a host whose chunk could not be
    persisted are reported as failed rather than reassigned.

    Attributes:
        progress: Progress of the current (or last) import
    """

    def __init__(
        self,
        host_batch_size: Optional[int] = None,
        vulnerability_batch_size: Optional[int] = None,
        chunk_retries: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.host_batch_size = host_batch_size or settings.nessus_host_batch_size
        self.vulnerability_batch_size = vulnerability_batch_size or settings.nessus_vulnerability_batch_size
        self.chunk_retries = settings.import_chunk_retries if chunk_retries is None else chunk_retries
        self.progress: Optional[ImportProgress] = None

    def import_report(
        self,
        db: Session,
        parsed: ParsedNessusReport,
        package_id: Optional[int] = None,
        system_id: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> ImportResult:
        """
        Import a parsed report.

        Args:
            db: Database session
            parsed: Output of NessusParser.parse
            package_id: Optional owning package
            system_id: Optional owning system
            progress_callback: Called with progress.to_dict() after every chunk
            should_cancel: Checked before every chunk; chunks already
                committed are kept when it returns True

        Returns:
            ImportResult; record_ids holds the report id

        Raises:
            ImportPersistenceError: If the report row itself cannot be created
        """
        result = ImportResult(source_file=parsed.filename)
        self.progress = ImportProgress(
            total_records=len(parsed.hosts) + parsed.total_vulnerabilities,
            current_stage=ImportStage.INITIALIZING,
        )

        try:
            report = NessusReport(
                package_id=package_id,
                system_id=system_id,
                filename=parsed.filename,
                scan_name=parsed.scan_name,
                scan_date=parsed.scan_date,
            )
            db.add(report)
            db.commit()
            report_id = report.id
        except SQLAlchemyError as e:
            db.rollback()
            self.progress.current_stage = ImportStage.FAILED
            raise ImportPersistenceError(
                message=f"Failed to create Nessus report: {str(e)}",
                source_file=parsed.filename,
            ) from e
        result.record_ids.append(report_id)

        cancelled = False
        host_ids: Dict[int, int] = {}

        # Hosts
        self.progress.current_stage = ImportStage.IMPORTING_HOSTS
        host_chunks = _chunks(parsed.hosts, self.host_batch_size)
        for chunk_num, (offset, chunk) in enumerate(host_chunks):
            if should_cancel is not None and should_cancel():
                cancelled = True
                break
            ids = self._run_chunk(
                db,
                result,
                stage="hosts",
                chunk_label=f"{chunk_num + 1}/{len(host_chunks)}",
                records=len(chunk),
                work=lambda offset=offset, chunk=chunk: self._insert_hosts(db, report_id, offset, chunk),
            )
            if ids is not None:
                host_ids.update(ids)
                result.imported_count += len(chunk)
            self._notify(progress_callback)

        # Vulnerabilities
        rows: List[Dict[str, Any]] = []
        orphaned = 0
        for index, host in enumerate(parsed.hosts):
            if index not in host_ids:
                orphaned += len(host.vulnerabilities)
                continue
            rows.extend(self._vulnerability_row(report_id, host_ids[index], v) for v in host.vulnerabilities)

        if orphaned and not cancelled:
            result.error_count += orphaned
            self.progress.failed_records += orphaned
            result.warnings.append(f"{orphaned} vulnerabilities skipped because their host was not persisted")

        if not cancelled:
            self.progress.current_stage = ImportStage.IMPORTING_VULNERABILITIES
            vuln_chunks = _chunks(rows, self.vulnerability_batch_size)
            for chunk_num, (_, chunk) in enumerate(vuln_chunks):
                if should_cancel is not None and should_cancel():
                    cancelled = True
                    break
                done = self._run_chunk(
                    db,
                    result,
                    stage="vulnerabilities",
                    chunk_label=f"{chunk_num + 1}/{len(vuln_chunks)}",
                    records=len(chunk),
                    work=lambda chunk=chunk: self._insert_vulnerabilities(db, chunk),
                )
                if done is not None:
                    result.imported_count += len(chunk)
                self._notify(progress_callback)

        self._finalize_report(db, report_id, len(host_ids), result)

        if cancelled:
            result.status = "cancelled"
            self.progress.current_stage = ImportStage.CANCELLED
            result.warnings.append("Import cancelled; chunks committed before cancellation were kept")
        elif result.errors:
            result.status = "partial" if result.imported_count else "failed"
            self.progress.current_stage = ImportStage.COMPLETED if result.imported_count else ImportStage.FAILED
        else:
            result.status = "completed"
            self.progress.current_stage = ImportStage.COMPLETED
        self._notify(progress_callback)
        result.end_time = datetime.utcnow()

        logger.info(
            "Nessus import %s (report %d) %s: %d records imported, %d failed",
            sanitize_filename_for_log(parsed.filename),
            report_id,
            result.status,
            result.imported_count,
            result.error_count,
        )
        audit_logger.info(
            "Nessus report imported",
            extra={
                "event_type": "NESSUS_REPORT_IMPORTED",
                "report_id": report_id,
                "package_id": package_id,
                "system_id": system_id,
                "status": result.status,
                "imported": result.imported_count,
                "failed": result.error_count,
            },
        )
        return result

    def _run_chunk(
        self,
        db: Session,
        result: ImportResult,
        stage: str,
        chunk_label: str,
        records: int,
        work: Callable[[], T],
    ) -> Optional[T]:
        """
        Run one chunk in its own transaction, retrying on database errors.

        Returns:
            The work's return value, or None when every attempt failed
        """
        last_error: Optional[SQLAlchemyError] = None
        for attempt in range(1 + self.chunk_retries):
            try:
                value = work()
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                last_error = e
                logger.warning(
                    "Nessus %s chunk %s failed (attempt %d/%d): %s",
                    stage,
                    chunk_label,
                    attempt + 1,
                    1 + self.chunk_retries,
                    str(e),
                )
                continue
            self.progress.imported_records += records
            self.progress.chunks_completed += 1
            logger.debug("Committed Nessus %s chunk %s (%d records)", stage, chunk_label, records)
            return value

        result.error_count += records
        result.errors.append({"stage": stage, "chunk": chunk_label, "records": records, "error": str(last_error)})
        self.progress.failed_records += records
        self.progress.chunks_failed += 1
        logger.error("Nessus %s chunk %s abandoned after retries (%d records)", stage, chunk_label, records)
        return None

    @staticmethod
    def _insert_hosts(db: Session, report_id: int, offset: int, chunk: Sequence[ParsedNessusHost]) -> Dict[int, int]:
        """Insert a chunk of hosts; returns parsed-host index -> row id."""
        hosts = [
            NessusHost(
                report_id=report_id,
                hostname=h.hostname,
                ip_address=h.ip_address,
                mac_address=h.mac_address,
                operating_system=h.operating_system,
                critical_count=h.counts.critical_count,
                high_count=h.counts.high_count,
                medium_count=h.counts.medium_count,
                low_count=h.counts.low_count,
                info_count=h.counts.info_count,
                total_count=h.total_count,
            )
            for h in chunk
        ]
        db.add_all(hosts)
        db.flush()
        return {offset + i: host.id for i, host in enumerate(hosts)}

    @staticmethod
    def _insert_vulnerabilities(db: Session, chunk: Sequence[Dict[str, Any]]) -> int:
        db.execute(insert(NessusVulnerability), list(chunk))
        return len(chunk)

    @staticmethod
    def _vulnerability_row(report_id: int, host_id: int, v: ParsedNessusVulnerability) -> Dict[str, Any]:
        return {
            "report_id": report_id,
            "host_id": host_id,
            "plugin_id": v.plugin_id,
            "plugin_name": v.plugin_name,
            "plugin_family": v.plugin_family,
            "severity": v.severity,
            "port": v.port,
            "protocol": v.protocol,
            "service": v.service,
            "description": v.description,
            "solution": v.solution,
            "synopsis": v.synopsis,
            "plugin_output": v.plugin_output,
            "risk_factor": v.risk_factor,
            "cve": v.cve,
            "cvss_base_score": v.cvss_base_score,
            "cvss3_base_score": v.cvss3_base_score,
            "exploit_available": v.exploit_available,
            "patch_publication_date": v.patch_publication_date,
            "vuln_publication_date": v.vuln_publication_date,
        }

    @classmethod
    def _finalize_report(cls, db: Session, report_id: int, host_count: int, result: ImportResult) -> None:
        """Record the totals that were actually persisted."""
        recount = any(error["stage"] == "vulnerabilities" for error in result.errors)
        try:
            report = db.get(NessusReport, report_id)
            report.total_hosts = host_count
            report.total_vulnerabilities = (
                db.query(NessusVulnerability).filter(NessusVulnerability.report_id == report_id).count()
            )
            if recount:
                cls._recount_hosts(db, report_id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            result.warnings.append(f"Report totals not updated: {str(e)}")
            logger.warning("Failed to update totals for Nessus report %d: %s", report_id, str(e))
            return
        if recount:
            result.warnings.append("Host severity counts recomputed from the vulnerabilities that were persisted")

    @staticmethod
    def _recount_hosts(db: Session, report_id: int) -> None:
        """Reset each host's severity counters to the vulnerability rows it actually has."""
        severities: Dict[int, List[int]] = {}
        for host_id, severity in db.query(NessusVulnerability.host_id, NessusVulnerability.severity).filter(
            NessusVulnerability.report_id == report_id
        ):
            severities.setdefault(host_id, []).append(severity)

        for host in db.query(NessusHost).filter(NessusHost.report_id == report_id):
            counts = SeverityCounts.from_severities(severities.get(host.id, []))
            host.critical_count = counts.critical_count
            host.high_count = counts.high_count
            host.medium_count = counts.medium_count
            host.low_count = counts.low_count
            host.info_count = counts.info_count
            host.total_count = counts.total

    def _notify(self, progress_callback: Optional[ProgressCallback]) -> None:
        if progress_callback is not None and self.progress is not None:
            progress_callback(self.progress.to_dict())
