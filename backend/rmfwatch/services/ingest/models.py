"""
Ingest Module Shared Models and Types

Canonical vocabulary and parsed-record shapes shared by the checklist parser,
the Nessus parser and the importers.

Design Principles:
- Immutable where possible (frozen dataclasses)
- Framework-agnostic (parsers never touch the database)
- Serializable to JSON for API responses
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from functools import reduce
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple


class FindingSeverity(str, Enum):
    """
    STIG severity categories.

    Attributes:
        CAT_I: High severity, exploitation gives immediate loss of confidentiality/integrity/availability
        CAT_II: Medium severity
        CAT_III: Low severity
    """

    CAT_I = "CAT_I"
    CAT_II = "CAT_II"
    CAT_III = "CAT_III"


class FindingStatus(str, Enum):
    """
    Canonical STIG rule result states.

    Attributes:
        OPEN: Rule failed, finding is open
        NOT_A_FINDING: Rule passed
        NOT_APPLICABLE: Rule does not apply to the system
        NOT_REVIEWED: Rule has not been assessed yet
    """

    OPEN = "Open"
    NOT_A_FINDING = "NotAFinding"
    NOT_APPLICABLE = "Not_Applicable"
    NOT_REVIEWED = "Not_Reviewed"


class ChecklistFormat(str, Enum):
    """Recognized STIG checklist upload shapes."""

    CKLB = "cklb"
    CKL = "ckl"


class ImportStage(str, Enum):
    """Stages of an import, reported through ImportProgress."""

    INITIALIZING = "initializing"
    PARSING = "parsing"
    IMPORTING_HOSTS = "importing_hosts"
    IMPORTING_VULNERABILITIES = "importing_vulnerabilities"
    IMPORTING_FINDINGS = "importing_findings"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


# STIG checklist drafts


@dataclass(frozen=True)
class FindingDraft:
    """
    One normalized rule result from a checklist.

    Severity and status hold canonical values when the source spelling is
    recognized, otherwise the source value unchanged.
    """

    rule_id: str
    group_id: str
    status: str
    severity: Optional[str] = None
    rule_title: Optional[str] = None
    rule_version: Optional[str] = None
    ccis: Tuple[str, ...] = ()
    finding_details: Optional[str] = None
    comments: Optional[str] = None
    check_content: Optional[str] = None
    fix_text: Optional[str] = None
    discussion: Optional[str] = None

    @property
    def cci(self) -> Optional[str]:
        """CCI identifiers joined the way they are stored."""
        return ",".join(self.ccis) if self.ccis else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "group_id": self.group_id,
            "status": self.status,
            "severity": self.severity,
            "rule_title": self.rule_title,
            "rule_version": self.rule_version,
            "cci": self.cci,
            "finding_details": self.finding_details,
            "comments": self.comments,
        }


@dataclass(frozen=True)
class ScanDraft:
    """One STIG within an uploaded checklist."""

    title: str
    checklist_id: Optional[str]
    findings: Tuple[FindingDraft, ...] = ()

    @property
    def finding_count(self) -> int:
        return len(self.findings)

    @property
    def scan_key(self) -> Tuple[str, str]:
        """(title, checklist id) as stored on the scan row; a missing id is ''."""
        return self.title, self.checklist_id or ""


def distinct_scan_drafts(scans: Iterable[ScanDraft]) -> Tuple[ScanDraft, ...]:
    """
    Give every STIG of one upload its own scan key.

    A draft repeating an earlier draft's key (STIGs without a name or id of
    their own fall back to the checklist's) gets its 1-based position in the
    upload appended to the checklist id. Positions do not change between
    imports of the same file, so re-imports still reuse the same scans.
    """
    seen: Set[Tuple[str, str]] = set()
    distinct: List[ScanDraft] = []
    for position, scan in enumerate(scans, start=1):
        if scan.scan_key in seen:
            scan = replace(scan, checklist_id=f"{scan.checklist_id or ''}#{position}")
        seen.add(scan.scan_key)
        distinct.append(scan)
    return tuple(distinct)


@dataclass(frozen=True)
class ParsedChecklist:
    """
    Result of parsing one checklist upload.

    Attributes:
        system_id: Target system the findings belong to
        source_format: Shape the upload was recognized as
        scans: One draft per STIG in the upload
        dropped_rules: Rules discarded for lacking a rule identifier
        source_file: Original filename (if known)
    """

    system_id: int
    source_format: ChecklistFormat
    scans: Tuple[ScanDraft, ...]
    dropped_rules: int = 0
    source_file: Optional[str] = None

    @property
    def finding_count(self) -> int:
        return sum(scan.finding_count for scan in self.scans)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system_id": self.system_id,
            "source_format": self.source_format.value,
            "scans": [
                {"title": s.title, "checklist_id": s.checklist_id, "finding_count": s.finding_count}
                for s in self.scans
            ],
            "finding_count": self.finding_count,
            "dropped_rules": self.dropped_rules,
            "source_file": self.source_file,
        }


# Nessus drafts

SEVERITY_COUNTER_FIELDS = ("info_count", "low_count", "medium_count", "high_count", "critical_count")


@dataclass(frozen=True)
class SeverityCounts:
    """
    Per-host vulnerability counters indexed by Nessus severity 0-4.

    Counters only grow through add(), so their sum always equals the
    number of items folded in.
    """

    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    info_count: int = 0

    @property
    def total(self) -> int:
        return self.critical_count + self.high_count + self.medium_count + self.low_count + self.info_count

    def add(self, severity: int) -> "SeverityCounts":
        """Return new counters with one more item of the given severity."""
        name = SEVERITY_COUNTER_FIELDS[severity]
        values = {f: getattr(self, f) for f in SEVERITY_COUNTER_FIELDS}
        values[name] += 1
        return SeverityCounts(**values)

    @classmethod
    def from_severities(cls, severities: List[int]) -> "SeverityCounts":
        return reduce(lambda counts, sev: counts.add(sev), severities, cls())

    def to_dict(self) -> Dict[str, int]:
        return {
            "critical": self.critical_count,
            "high": self.high_count,
            "medium": self.medium_count,
            "low": self.low_count,
            "info": self.info_count,
            "total": self.total,
        }


@dataclass(frozen=True)
class ParsedNessusVulnerability:
    plugin_id: str
    plugin_name: str
    severity: int
    plugin_family: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    service: Optional[str] = None
    description: Optional[str] = None
    solution: Optional[str] = None
    synopsis: Optional[str] = None
    plugin_output: Optional[str] = None
    risk_factor: Optional[str] = None
    cve: Optional[str] = None
    cvss_base_score: Optional[float] = None
    cvss3_base_score: Optional[float] = None
    exploit_available: bool = False
    patch_publication_date: Optional[str] = None
    vuln_publication_date: Optional[str] = None


@dataclass(frozen=True)
class ParsedNessusHost:
    """
    One ReportHost with its items and counters.

    Attributes:
        name: ReportHost name attribute, unique within a report
        ip_address: host-ip property, else the host name
        hostname: host-fqdn or netbios-name property, else the host name
        vulnerabilities: Items reported under this host
        counts: Severity counters folded over the items
    """

    name: str
    ip_address: str
    hostname: str
    mac_address: Optional[str] = None
    operating_system: Optional[str] = None
    vulnerabilities: Tuple[ParsedNessusVulnerability, ...] = ()
    counts: SeverityCounts = field(default_factory=SeverityCounts)

    @property
    def total_count(self) -> int:
        return self.counts.total


@dataclass(frozen=True)
class ParsedNessusReport:
    scan_name: str
    filename: str
    hosts: Tuple[ParsedNessusHost, ...] = ()
    scan_date: Optional[datetime] = None

    @property
    def total_vulnerabilities(self) -> int:
        return sum(host.total_count for host in self.hosts)

    @property
    def counts(self) -> SeverityCounts:
        """Report-wide counters."""
        return SeverityCounts.from_severities([v.severity for h in self.hosts for v in h.vulnerabilities])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_name": self.scan_name,
            "filename": self.filename,
            "scan_date": self.scan_date.isoformat() if self.scan_date else None,
            "total_hosts": len(self.hosts),
            "total_vulnerabilities": self.total_vulnerabilities,
            "severity_counts": self.counts.to_dict(),
        }


@dataclass
class ImportProgress:
    """
    Track bulk import progress.

    Nessus files with tens of thousands of items are persisted chunk by
    chunk; callers poll or subscribe to this object for status updates.

    Attributes:
        total_records: Hosts plus vulnerabilities (or findings) to persist
        imported_records: Records committed so far
        failed_records: Records in chunks that failed after retries
        current_stage: Current import stage
        chunks_completed: Chunks committed so far
        chunks_failed: Chunks abandoned after retries
        start_time: When the import started
    """

    total_records: int = 0
    imported_records: int = 0
    failed_records: int = 0
    current_stage: ImportStage = ImportStage.INITIALIZING
    chunks_completed: int = 0
    chunks_failed: int = 0
    start_time: datetime = field(default_factory=datetime.utcnow)

    @property
    def progress_percent(self) -> float:
        if self.total_records == 0:
            return 0.0
        return ((self.imported_records + self.failed_records) / self.total_records) * 100.0

    @property
    def is_complete(self) -> bool:
        """Check if import has stopped (success, cancellation or failure)."""
        return self.current_stage in (ImportStage.COMPLETED, ImportStage.CANCELLED, ImportStage.FAILED)

    @property
    def elapsed_seconds(self) -> float:
        return (datetime.utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_records": self.total_records,
            "imported_records": self.imported_records,
            "failed_records": self.failed_records,
            "current_stage": self.current_stage.value,
            "chunks_completed": self.chunks_completed,
            "chunks_failed": self.chunks_failed,
            "progress_percent": self.progress_percent,
            "is_complete": self.is_complete,
            "start_time": self.start_time.isoformat(),
            "elapsed_seconds": self.elapsed_seconds,
        }
