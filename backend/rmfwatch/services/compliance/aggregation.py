"""
Compliance Aggregation Engine

Rolls STIG findings, baseline entries and explicit control statuses up into
the views the RMF workflow needs: a family-keyed control map, the list of
STIG-mapped controls, a group/system tree for one control and an enum-keyed
summary of a package's baseline.

All aggregation is done from freshly queried rows on every call. Nothing is
cached between calls, so results always reflect the latest import.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...database import (
    ControlPackageStatus,
    NistControl,
    Package,
    PackageControlBaseline,
    StigFinding,
    StigScan,
    System,
    SystemGroup,
)
from ..catalog.catalog_service import control_family, control_sort_key
from ..catalog.cci_mapper import normalize_control_id
from ..catalog.models import ComplianceStatus, ImplementationStatus
from ..ingest.models import FindingSeverity, FindingStatus
from . import scoring
from .models import (
    ComplianceBreakdown,
    ComplianceSummary,
    ControlComplianceScore,
    ControlFindingStatus,
    ControlPackageFindings,
    FamilyStatus,
    GroupControlCompliance,
    PackageFamilyStatus,
    RollupStatus,
    StigMappedControl,
    StigOnlyControl,
    SystemControlCompliance,
    SystemScore,
)

logger = logging.getLogger(__name__)

# NIST SP 800-53 Rev 5 control families
CONTROL_FAMILIES: Dict[str, str] = {
    "AC": "Access Control",
    "AT": "Awareness and Training",
    "AU": "Audit and Accountability",
    "CA": "Assessment, Authorization, and Monitoring",
    "CM": "Configuration Management",
    "CP": "Contingency Planning",
    "IA": "Identification and Authentication",
    "IR": "Incident Response",
    "MA": "Maintenance",
    "MP": "Media Protection",
    "PE": "Physical and Environmental Protection",
    "PL": "Planning",
    "PM": "Program Management",
    "PS": "Personnel Security",
    "PT": "PII Processing and Transparency",
    "RA": "Risk Assessment",
    "SA": "System and Services Acquisition",
    "SC": "System and Communications Protection",
    "SI": "System and Information Integrity",
    "SR": "Supply Chain Risk Management",
}

IMPLEMENTED_STATUSES = frozenset(
    {ImplementationStatus.IMPLEMENTED.value, ImplementationStatus.PARTIALLY_IMPLEMENTED.value}
)
COMPLIANT_STATUSES = frozenset({ComplianceStatus.CO.value, ComplianceStatus.CU.value})
EXPLICIT_COMPLIANT = RollupStatus.COMPLIANT.value

_OPEN = FindingStatus.OPEN.value
_SEVERITY_FIELDS = {
    FindingSeverity.CAT_I.value: "cat_i_open",
    FindingSeverity.CAT_II.value: "cat_ii_open",
    FindingSeverity.CAT_III.value: "cat_iii_open",
}


@dataclass
class _FindingTally:
    """Per-call accumulator of finding counts for one control or system."""

    total: int = 0
    open: int = 0
    cat_i_open: int = 0
    cat_ii_open: int = 0
    cat_iii_open: int = 0
    systems: Set[int] = field(default_factory=set)
    ccis: Set[str] = field(default_factory=set)

    def add(self, system_id: int, status: str, severity: Optional[str], cci: Optional[str]) -> None:
        self.total += 1
        self.systems.add(system_id)
        if cci:
            self.ccis.update(part.strip() for part in cci.split(",") if part.strip())
        if status == _OPEN:
            self.open += 1
            bucket = _SEVERITY_FIELDS.get(severity or "")
            if bucket:
                setattr(self, bucket, getattr(self, bucket) + 1)

    def open_by_severity(self) -> Dict[str, int]:
        return {
            "cat_i_open": self.cat_i_open,
            "cat_ii_open": self.cat_ii_open,
            "cat_iii_open": self.cat_iii_open,
        }


def _tally_controls(rows: Iterable) -> Dict[str, _FindingTally]:
    tallies: Dict[str, _FindingTally] = {}
    for row in rows:
        tallies.setdefault(row.control_id, _FindingTally()).add(row.system_id, row.status, row.severity, row.cci)
    return tallies


class ComplianceAggregationEngine:
    """
    Package-level compliance rollups.

    Stateless; every method takes the request's session and queries what it
    needs. Missing packages, systems or controls yield zero-filled results
    (or None where documented) rather than exceptions.
    """

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def _package_findings(db: Session, package_id: int, control_id: Optional[str] = None) -> List:
        """Mapped findings of every system in the package."""
        query = (
            db.query(
                StigFinding.system_id,
                StigFinding.control_id,
                StigFinding.status,
                StigFinding.severity,
                StigFinding.cci,
            )
            .join(System, System.id == StigFinding.system_id)
            .filter(System.package_id == package_id, StigFinding.control_id.isnot(None))
        )
        if control_id is not None:
            query = query.filter(StigFinding.control_id == control_id)
        return query.all()

    @staticmethod
    def _is_compliant(
        entry: PackageControlBaseline,
        tallies: Dict[str, _FindingTally],
        explicit: Dict[str, str],
    ) -> bool:
        tally = tallies.get(entry.control_id)
        if tally is not None:
            return tally.open == 0
        if explicit.get(entry.control_id) == EXPLICIT_COMPLIANT:
            return True
        return entry.compliance_status in COMPLIANT_STATUSES

    # -------------------------------------------------------------------------
    # Family map
    # -------------------------------------------------------------------------

    def control_status_by_family(self, db: Session, package_id: int) -> PackageFamilyStatus:
        """
        Family-keyed compliance map of a package's baseline.

        A baseline control counts as compliant at most once. Controls with
        mapped findings are compliant only when none of those findings is
        open on any system of the package. Controls without findings fall back
        to the explicit control status, then to the assessment status (CO/CU).

        Args:
            db: Database session
            package_id: Package to aggregate

        Returns:
            PackageFamilyStatus with all twenty families present
        """
        entries = (
            db.query(PackageControlBaseline)
            .filter(
                PackageControlBaseline.package_id == package_id,
                PackageControlBaseline.include_in_baseline.is_(True),
            )
            .all()
        )
        explicit = {
            row.control_id: row.status
            for row in db.query(ControlPackageStatus.control_id, ControlPackageStatus.status).filter(
                ControlPackageStatus.package_id == package_id
            )
        }
        tallies = _tally_controls(self._package_findings(db, package_id))

        control_status = {
            control_id: ControlFindingStatus(
                total_findings=tally.total,
                open_findings=tally.open,
                systems_affected=len(tally.systems),
                status=scoring.mapping_status(tally.open, tally.total),
                **tally.open_by_severity(),
            )
            for control_id, tally in tallies.items()
        }

        baseline_by_family: Dict[str, List[PackageControlBaseline]] = {}
        for entry in entries:
            baseline_by_family.setdefault(control_family(entry.control_id), []).append(entry)

        baseline_ids = {entry.control_id for entry in entries}
        stig_only_by_family: Dict[str, List[StigOnlyControl]] = {}
        for control_id in sorted(tallies, key=control_sort_key):
            if control_id in baseline_ids:
                continue
            tally = tallies[control_id]
            stig_only_by_family.setdefault(control_family(control_id), []).append(
                StigOnlyControl(
                    control_id=control_id,
                    total_findings=tally.total,
                    open_findings=tally.open,
                    systems_affected=len(tally.systems),
                    compliance=scoring.mapping_status(tally.open, tally.total),
                )
            )

        unknown = (set(baseline_by_family) | set(stig_only_by_family)) - set(CONTROL_FAMILIES)
        if unknown:
            logger.warning(
                "Package %s has controls outside the known families: %s",
                package_id,
                ", ".join(sorted(unknown)),
            )

        families: Dict[str, FamilyStatus] = {}
        total_controls = 0
        total_compliant = 0
        for code, name in CONTROL_FAMILIES.items():
            family_entries = sorted(baseline_by_family.get(code, []), key=lambda e: control_sort_key(e.control_id))
            compliant = sum(1 for entry in family_entries if self._is_compliant(entry, tallies, explicit))
            implemented = sum(1 for entry in family_entries if entry.implementation_status in IMPLEMENTED_STATUSES)
            total_controls += len(family_entries)
            total_compliant += compliant

            families[code] = FamilyStatus(
                family=code,
                family_name=name,
                total_controls=len(family_entries),
                implemented_controls=implemented,
                compliant_controls=compliant,
                compliance_percentage=scoring.round_half_up(
                    scoring.compliance_percentage(compliant, len(family_entries))
                ),
                baseline_controls=[entry.control_id for entry in family_entries],
                stig_mapped_controls=stig_only_by_family.get(code, []),
            )

        overall = scoring.round_half_up(scoring.compliance_percentage(total_compliant, total_controls))
        logger.debug(
            "Family rollup for package %s: %d/%d baseline controls compliant",
            package_id,
            total_compliant,
            total_controls,
        )
        return PackageFamilyStatus(
            package_id=package_id,
            families=families,
            control_status=control_status,
            overall_compliance=overall,
        )

    # -------------------------------------------------------------------------
    # STIG mapping
    # -------------------------------------------------------------------------

    def stig_mapped_controls(self, db: Session, package_id: int) -> List[StigMappedControl]:
        """
        Controls that have at least one mapped finding in the package.

        Sorted by family, then control id.
        """
        tallies = _tally_controls(self._package_findings(db, package_id))
        if not tallies:
            return []

        titles = dict(
            db.query(NistControl.control_id, NistControl.name).filter(NistControl.control_id.in_(list(tallies))).all()
        )

        return [
            StigMappedControl(
                control_id=control_id,
                control_title=titles.get(control_id) or control_id,
                family=control_family(control_id),
                total_findings=tallies[control_id].total,
                open_findings=tallies[control_id].open,
                systems_affected=len(tallies[control_id].systems),
                ccis=sorted(tallies[control_id].ccis),
                status=scoring.mapping_status(tallies[control_id].open, tallies[control_id].total),
                **tallies[control_id].open_by_severity(),
            )
            for control_id in sorted(tallies, key=lambda cid: (control_family(cid), cid))
        ]

    # -------------------------------------------------------------------------
    # Control -> group -> system tree
    # -------------------------------------------------------------------------

    def control_package_findings(
        self, db: Session, control_id: str, package_id: int
    ) -> Optional[ControlPackageFindings]:
        """
        Group and system compliance for one control within one package.

        Every grouped system of the package appears in the tree, not only the
        systems with findings for the control. A system with no findings
        scores 100 and is Compliant, so it raises its group's score and the
        overall score: one system at 0 next to one without findings gives a
        group score of 50, where a findings-only tree would give 0.
        Findings of ungrouped systems count toward the top-level totals only.

        Returns:
            ControlPackageFindings, or None if the control or package does not exist
        """
        control_id = normalize_control_id(control_id)
        control = db.query(NistControl).filter(NistControl.control_id == control_id).first()
        package = db.get(Package, package_id)
        if control is None or package is None:
            logger.debug("No control %s or package %s for findings rollup", control_id, package_id)
            return None

        rows = self._package_findings(db, package_id, control_id)
        per_system: Dict[int, _FindingTally] = {}
        for row in rows:
            per_system.setdefault(row.system_id, _FindingTally()).add(row.system_id, row.status, row.severity, None)

        last_scans = dict(
            db.query(StigScan.system_id, func.max(StigScan.created_at))
            .join(System, System.id == StigScan.system_id)
            .filter(System.package_id == package_id)
            .group_by(StigScan.system_id)
            .all()
        )

        groups = (
            db.query(SystemGroup)
            .filter(SystemGroup.package_id == package_id)
            .order_by(SystemGroup.name, SystemGroup.id)
            .all()
        )
        systems = (
            db.query(System)
            .filter(System.package_id == package_id, System.group_id.isnot(None))
            .order_by(System.name, System.id)
            .all()
        )

        systems_by_group: Dict[int, List[SystemControlCompliance]] = {}
        for system in systems:
            systems_by_group.setdefault(system.group_id, []).append(
                self._system_compliance(system, per_system.get(system.id, _FindingTally()), last_scans.get(system.id))
            )

        group_rollups = [self._group_compliance(group, systems_by_group.get(group.id, [])) for group in groups]
        all_systems = [system for group in group_rollups for system in group.systems]

        return ControlPackageFindings(
            control_id=control_id,
            control_name=control.name,
            package_id=package.id,
            package_name=package.name,
            total_findings=len(rows),
            open_findings=sum(1 for row in rows if row.status == _OPEN),
            total_systems=len(all_systems),
            affected_systems=sum(1 for system in all_systems if system.total_findings > 0),
            groups=group_rollups,
            overall_compliance=scoring.mean_score([system.compliance_score for system in all_systems]),
        )

    @staticmethod
    def _system_compliance(
        system: System, tally: _FindingTally, last_scanned: Optional[datetime]
    ) -> SystemControlCompliance:
        score = scoring.system_compliance_score(tally.total, tally.open)
        return SystemControlCompliance(
            system_id=system.id,
            system_name=system.name,
            total_findings=tally.total,
            open_findings=tally.open,
            compliance_score=score,
            status=scoring.classify_compliance(tally.open, score),
            last_scanned=last_scanned,
            **tally.open_by_severity(),
        )

    @staticmethod
    def _group_compliance(group: SystemGroup, systems: List[SystemControlCompliance]) -> GroupControlCompliance:
        open_findings = sum(system.open_findings for system in systems)
        score = scoring.mean_score([system.compliance_score for system in systems])
        return GroupControlCompliance(
            group_id=group.id,
            group_name=group.name,
            total_findings=sum(system.total_findings for system in systems),
            open_findings=open_findings,
            cat_i_open=sum(system.cat_i_open for system in systems),
            cat_ii_open=sum(system.cat_ii_open for system in systems),
            cat_iii_open=sum(system.cat_iii_open for system in systems),
            system_count=len(systems),
            compliant_systems=sum(1 for system in systems if system.status == RollupStatus.COMPLIANT),
            compliance_score=score,
            status=scoring.classify_compliance(open_findings, score),
            systems=systems,
        )

    # -------------------------------------------------------------------------
    # Summary and scores
    # -------------------------------------------------------------------------

    def compliance_summary(self, db: Session, package_id: int) -> ComplianceSummary:
        """Count included baseline entries per compliance status."""
        rows = (
            db.query(PackageControlBaseline.compliance_status, func.count(PackageControlBaseline.id))
            .filter(
                PackageControlBaseline.package_id == package_id,
                PackageControlBaseline.include_in_baseline.is_(True),
            )
            .group_by(PackageControlBaseline.compliance_status)
            .all()
        )

        details = {status.value: 0 for status in ComplianceStatus}
        for status, count in rows:
            key = status or ComplianceStatus.NOT_ASSESSED.value
            if key not in details:
                logger.warning("Unknown compliance status %r on package %s counted as not assessed", key, package_id)
                key = ComplianceStatus.NOT_ASSESSED.value
            details[key] += count

        total = sum(details.values())
        breakdown = ComplianceBreakdown(
            compliant=details[ComplianceStatus.CO.value] + details[ComplianceStatus.CU.value],
            non_compliant=details[ComplianceStatus.NC_O.value] + details[ComplianceStatus.NC_U.value],
            not_applicable=details[ComplianceStatus.NA_O.value] + details[ComplianceStatus.NA_U.value],
            not_assessed=details[ComplianceStatus.NOT_ASSESSED.value],
        )
        return ComplianceSummary(
            package_id=package_id,
            total_controls=total,
            compliance_percentage=scoring.compliance_percentage(breakdown.compliant, total),
            breakdown=breakdown,
            details=details,
        )

    def system_score(self, db: Session, system_id: int, scan_id: Optional[int] = None) -> SystemScore:
        """
        Assessment progress and compliance of one system's findings.

        Compliance is measured over reviewed findings only, so an unreviewed
        checklist does not read as non-compliant.
        """
        query = db.query(StigFinding.status, StigFinding.severity).filter(StigFinding.system_id == system_id)
        if scan_id is not None:
            query = query.filter(StigFinding.scan_id == scan_id)
        rows = query.all()

        tally = _FindingTally()
        not_reviewed = 0
        resolved = 0
        for row in rows:
            tally.add(system_id, row.status, row.severity, None)
            if row.status == FindingStatus.NOT_REVIEWED.value:
                not_reviewed += 1
            elif row.status in scoring.RESOLVED_STATUSES:
                resolved += 1

        return SystemScore(
            system_id=system_id,
            scan_id=scan_id,
            total_findings=tally.total,
            open_findings=tally.open,
            not_reviewed_findings=not_reviewed,
            assessment_progress=scoring.assessment_progress(tally.total, not_reviewed),
            compliance_score=scoring.reviewed_compliance_score(tally.total - not_reviewed, resolved),
            **tally.open_by_severity(),
        )

    def control_compliance_score(
        self, db: Session, control_id: str, package_id: Optional[int] = None
    ) -> Optional[ControlComplianceScore]:
        """
        Severity-weighted automated assessment of one control.

        Args:
            db: Database session
            control_id: Control to assess
            package_id: Restrict to systems of this package (all systems if None)

        Returns:
            ControlComplianceScore, or None when no findings map to the control
        """
        control_id = normalize_control_id(control_id)
        query = db.query(StigFinding.system_id, StigFinding.status, StigFinding.severity).filter(
            StigFinding.control_id == control_id
        )
        if package_id is not None:
            query = query.join(System, System.id == StigFinding.system_id).filter(System.package_id == package_id)
        rows = query.all()
        if not rows:
            return None

        tally = _FindingTally()
        for row in rows:
            tally.add(row.system_id, row.status, row.severity, None)
        not_reviewed = sum(1 for row in rows if row.status == FindingStatus.NOT_REVIEWED.value)

        score = scoring.weighted_compliance_score((row.severity, row.status) for row in rows)
        progress = scoring.assessment_progress(tally.total, not_reviewed)
        status = scoring.determine_compliance_status(score, progress, tally.cat_i_open)

        logger.info(
            "Control %s assessed: score=%.2f progress=%.2f status=%s",
            control_id,
            score,
            progress,
            status.value,
        )
        return ControlComplianceScore(
            control_id=control_id,
            package_id=package_id,
            compliance_status=status,
            overall_score=score,
            assessment_progress=progress,
            total_findings=tally.total,
            open_findings=tally.open,
            not_reviewed_findings=not_reviewed,
            systems_assessed=len(tally.systems),
            **tally.open_by_severity(),
        )
