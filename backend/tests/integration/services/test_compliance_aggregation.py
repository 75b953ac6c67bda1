"""
Integration tests for the compliance aggregation engine.

Findings are written straight to the tables so each test controls exactly
which controls, systems and statuses are involved.
"""

import json
from typing import Optional

import pytest

from rmfwatch.database import ControlPackageStatus, PackageControlBaseline, StigFinding, StigScan, System
from rmfwatch.services.catalog import ComplianceStatus
from rmfwatch.services.compliance import CONTROL_FAMILIES, ComplianceAggregationEngine, RollupStatus
from rmfwatch.services.ingest import ChecklistParser, StigImporter


@pytest.fixture
def engine() -> ComplianceAggregationEngine:
    return ComplianceAggregationEngine()


def add_findings(db, system: System, *findings: tuple) -> StigScan:
    """Add (rule_id, status, severity, control_id, cci) rows to a new scan of the system."""
    scan = StigScan(
        system_id=system.id,
        title=f"Checklist {system.name}",
        checklist_id=f"chk-{db.query(StigScan).count() + 1}",
    )
    db.add(scan)
    db.flush()
    for rule_id, status, severity, control_id, cci in findings:
        db.add(
            StigFinding(
                system_id=system.id,
                scan_id=scan.id,
                rule_id=rule_id,
                status=status,
                severity=severity,
                control_id=control_id,
                cci=cci,
            )
        )
    db.commit()
    return scan


def add_baseline(
    db, package_id: int, control_id: str, compliance: Optional[str] = None, implementation: Optional[str] = None
) -> None:
    db.add(
        PackageControlBaseline(
            package_id=package_id,
            control_id=control_id,
            compliance_status=compliance,
            implementation_status=implementation,
        )
    )
    db.commit()


# ---------------------------------------------------------------------------
# control_package_findings
# ---------------------------------------------------------------------------
@pytest.mark.integration
class TestControlPackageFindings:
    def test_three_rules_two_open_from_checklist(self, db_session, package, systems, catalog, engine) -> None:
        """A checklist with 2 Open and 1 NotAFinding rule scores 33 and is Non-Compliant."""
        web, db01, kiosk = systems
        checklist = {
            "stigs": [
                {
                    "rules": [
                        {"rule_id": "SV-1r1_rule", "status": "Open", "severity": "high", "ccis": ["CCI-000015"]},
                        {"rule_id": "SV-2r1_rule", "status": "Open", "severity": "medium", "ccis": ["CCI-000016"]},
                        {"rule_id": "SV-3r1_rule", "status": "NotAFinding", "severity": "low", "ccis": ["CCI-000015"]},
                    ]
                }
            ]
        }
        parsed = ChecklistParser().parse(json.dumps(checklist).encode(), system_id=web.id)
        StigImporter().import_checklist(db_session, parsed)

        tree = engine.control_package_findings(db_session, "AC-2", package.id)

        assert tree.control_name == "Account Management"
        assert tree.package_name == "Enclave A"
        assert (tree.total_findings, tree.open_findings) == (3, 2)

        systems_by_name = {s.system_name: s for g in tree.groups for s in g.systems}
        web_status = systems_by_name["web01"]
        assert web_status.compliance_score == 33
        assert web_status.status == RollupStatus.NON_COMPLIANT
        assert (web_status.cat_i_open, web_status.cat_ii_open, web_status.cat_iii_open) == (1, 1, 0)

    def test_system_without_findings_is_compliant(self, db_session, package, systems, catalog, engine) -> None:
        web, db01, kiosk = systems
        add_findings(db_session, web, ("SV-1", "Open", "CAT_I", "AC-2", None))

        tree = engine.control_package_findings(db_session, "AC-2", package.id)

        group = tree.groups[0]
        assert [s.system_name for s in group.systems] == ["db01", "web01"]
        clean = group.systems[0]
        assert clean.total_findings == 0
        assert clean.compliance_score == 100
        assert clean.status == RollupStatus.COMPLIANT

        assert group.compliance_score == 50
        assert group.status == RollupStatus.NON_COMPLIANT
        assert group.compliant_systems == 1
        assert tree.total_systems == 2
        assert tree.affected_systems == 1
        assert tree.overall_compliance == 50

    def test_partially_compliant_threshold(self, db_session, package, systems, catalog, engine) -> None:
        web, db01, kiosk = systems
        rows = [(f"SV-{i}", "NotAFinding", "CAT_II", "AC-3", None) for i in range(7)]
        rows += [("SV-7", "Open", "CAT_II", "AC-3", None), ("SV-8", "Open", "CAT_III", "AC-3", None)]
        add_findings(db_session, web, *rows)

        tree = engine.control_package_findings(db_session, "AC-3", package.id)
        web_status = next(s for s in tree.groups[0].systems if s.system_name == "web01")

        assert web_status.compliance_score == 78
        assert web_status.status == RollupStatus.PARTIALLY_COMPLIANT

    def test_ungrouped_systems_count_in_totals_only(self, db_session, package, systems, catalog, engine) -> None:
        web, db01, kiosk = systems
        add_findings(db_session, kiosk, ("SV-1", "Open", "CAT_I", "AC-2", None))

        tree = engine.control_package_findings(db_session, "AC-2", package.id)

        assert tree.total_findings == 1
        assert tree.affected_systems == 0
        assert "kiosk" not in {s.system_name for g in tree.groups for s in g.systems}

    def test_missing_control_or_package(self, db_session, package, catalog, engine) -> None:
        assert engine.control_package_findings(db_session, "ZZ-1", package.id) is None
        assert engine.control_package_findings(db_session, "AC-2", 999) is None

    def test_serializes(self, db_session, package, systems, catalog, engine) -> None:
        payload = engine.control_package_findings(db_session, "ac-2", package.id).model_dump(mode="json")
        assert payload["control_id"] == "AC-2"
        assert payload["groups"][0]["status"] == "Compliant"


# ---------------------------------------------------------------------------
# control_status_by_family
# ---------------------------------------------------------------------------
@pytest.mark.integration
class TestControlStatusByFamily:
    @pytest.fixture
    def scenario(self, db_session, package, systems, catalog):
        web, db01, kiosk = systems
        # Findings decide AC-2 even though the entry claims CO
        add_baseline(db_session, package.id, "AC-2", compliance="CO", implementation="Implemented")
        add_baseline(db_session, package.id, "AC-3", implementation="Partially_Implemented")
        add_baseline(db_session, package.id, "AU-2", compliance="CU")
        add_baseline(db_session, package.id, "CM-6", compliance="NC_U", implementation="Not_Implemented")
        db_session.add(ControlPackageStatus(package_id=package.id, control_id="AC-3", status="Compliant"))
        db_session.commit()

        add_findings(
            db_session,
            web,
            ("SV-1", "Open", "CAT_I", "AC-2", "CCI-000015"),
            ("SV-2", "NotAFinding", "CAT_II", "SC-7", "CCI-001097"),
        )
        add_findings(db_session, db01, ("SV-3", "NotAFinding", "CAT_II", "AC-2", "CCI-000016"))
        return package

    def test_all_families_present(self, db_session, package, engine) -> None:
        result = engine.control_status_by_family(db_session, package.id)

        assert set(result.families) == set(CONTROL_FAMILIES)
        assert len(result.families) == 20
        assert result.families["PT"].total_controls == 0
        assert result.families["PT"].compliance_percentage == 0
        assert result.overall_compliance == 0

    def test_compliant_counts(self, db_session, scenario, engine) -> None:
        result = engine.control_status_by_family(db_session, scenario.id)

        ac = result.families["AC"]
        assert ac.family_name == "Access Control"
        assert ac.baseline_controls == ["AC-2", "AC-3"]
        assert ac.total_controls == 2
        assert ac.implemented_controls == 2
        assert ac.compliant_controls == 1
        assert ac.compliance_percentage == 50

        assert result.families["AU"].compliant_controls == 1
        assert result.families["CM"].compliant_controls == 0
        assert result.overall_compliance == 50

    def test_findings_recomputed_after_fix(self, db_session, scenario, systems, engine) -> None:
        finding = db_session.query(StigFinding).filter_by(rule_id="SV-1").one()
        finding.status = "NotAFinding"
        db_session.commit()

        result = engine.control_status_by_family(db_session, scenario.id)
        assert result.families["AC"].compliant_controls == 2

    def test_stig_only_controls(self, db_session, scenario, engine) -> None:
        result = engine.control_status_by_family(db_session, scenario.id)

        sc = result.families["SC"]
        assert sc.total_controls == 0
        assert [c.control_id for c in sc.stig_mapped_controls] == ["SC-7"]
        assert sc.stig_mapped_controls[0].in_baseline is False
        assert sc.stig_mapped_controls[0].compliance == RollupStatus.COMPLIANT

    def test_control_status_map(self, db_session, scenario, engine) -> None:
        result = engine.control_status_by_family(db_session, scenario.id)

        ac2 = result.control_status["AC-2"]
        assert (ac2.total_findings, ac2.open_findings, ac2.systems_affected) == (2, 1, 2)
        assert ac2.cat_i_open == 1
        assert ac2.status == RollupStatus.PARTIALLY_COMPLIANT

    def test_excluded_entries_are_ignored(self, db_session, scenario, engine) -> None:
        entry = db_session.query(PackageControlBaseline).filter_by(control_id="CM-6").one()
        entry.include_in_baseline = False
        db_session.commit()

        result = engine.control_status_by_family(db_session, scenario.id)
        assert result.families["CM"].total_controls == 0
        assert result.overall_compliance == 67


# ---------------------------------------------------------------------------
# stig_mapped_controls
# ---------------------------------------------------------------------------
@pytest.mark.integration
class TestStigMappedControls:
    def test_grouped_and_sorted(self, db_session, package, systems, catalog, engine) -> None:
        web, db01, kiosk = systems
        add_findings(
            db_session,
            web,
            ("SV-1", "Open", "CAT_I", "SC-7", "CCI-001097"),
            ("SV-2", "Open", "CAT_II", "AC-3", "CCI-000213"),
            ("SV-3", "NotAFinding", "CAT_II", "AC-3", "CCI-000213,CCI-002165"),
            ("SV-4", "Open", "CAT_III", None, None),
        )
        add_findings(db_session, db01, ("SV-5", "Open", "CAT_III", "AC-3", "CCI-000213"))

        controls = engine.stig_mapped_controls(db_session, package.id)

        assert [c.control_id for c in controls] == ["AC-3", "SC-7"]
        ac3 = controls[0]
        assert ac3.control_title == "Access Enforcement"
        assert ac3.family == "AC"
        assert (ac3.total_findings, ac3.open_findings, ac3.systems_affected) == (3, 2, 2)
        assert (ac3.cat_i_open, ac3.cat_ii_open, ac3.cat_iii_open) == (0, 1, 1)
        assert ac3.ccis == ["CCI-000213", "CCI-002165"]
        assert ac3.status == RollupStatus.PARTIALLY_COMPLIANT
        assert controls[1].status == RollupStatus.NON_COMPLIANT

    def test_uncatalogued_control_uses_id_as_title(self, db_session, package, systems, engine) -> None:
        add_findings(db_session, systems[0], ("SV-1", "NotAFinding", "CAT_II", "PM-5", None))

        controls = engine.stig_mapped_controls(db_session, package.id)
        assert controls[0].control_title == "PM-5"
        assert controls[0].status == RollupStatus.COMPLIANT

    def test_other_packages_are_excluded(self, db_session, package, systems, engine) -> None:
        assert engine.stig_mapped_controls(db_session, package.id + 1) == []


# ---------------------------------------------------------------------------
# compliance_summary
# ---------------------------------------------------------------------------
@pytest.mark.integration
class TestComplianceSummary:
    def test_empty_package(self, db_session, package, engine) -> None:
        summary = engine.compliance_summary(db_session, package.id)

        assert summary.total_controls == 0
        assert summary.compliance_percentage == 0.0
        assert set(summary.details) == {s.value for s in ComplianceStatus}
        assert all(count == 0 for count in summary.details.values())

    def test_counts_by_status(self, db_session, package, engine) -> None:
        for control_id, status in [("AC-2", "CO"), ("AC-3", "CU"), ("AU-2", "NC_O"), ("CM-6", "NA_U"), ("SC-7", None)]:
            add_baseline(db_session, package.id, control_id, compliance=status)

        summary = engine.compliance_summary(db_session, package.id)

        assert summary.total_controls == 5
        assert summary.compliance_percentage == 40.0
        assert summary.details["CO"] == 1
        assert summary.details["NOT_ASSESSED"] == 1
        assert summary.breakdown.compliant == 2
        assert summary.breakdown.non_compliant == 1
        assert summary.breakdown.not_applicable == 1
        assert summary.breakdown.not_assessed == 1


# ---------------------------------------------------------------------------
# system_score / control_compliance_score
# ---------------------------------------------------------------------------
@pytest.mark.integration
class TestScores:
    def test_system_score(self, db_session, systems, engine) -> None:
        web = systems[0]
        scan = add_findings(
            db_session,
            web,
            ("SV-1", "Open", "CAT_I", None, None),
            ("SV-2", "Open", "CAT_II", None, None),
            ("SV-3", "NotAFinding", "CAT_III", None, None),
            ("SV-4", "Not_Reviewed", "CAT_II", None, None),
        )

        score = engine.system_score(db_session, web.id)

        assert score.total_findings == 4
        assert score.open_findings == 2
        assert score.not_reviewed_findings == 1
        assert score.assessment_progress == 75.0
        assert score.compliance_score == 33.33
        assert (score.cat_i_open, score.cat_ii_open) == (1, 1)
        assert engine.system_score(db_session, web.id, scan_id=scan.id + 1).total_findings == 0

    def test_unknown_system_is_zero_filled(self, db_session, engine) -> None:
        score = engine.system_score(db_session, 12345)
        assert score.total_findings == 0
        assert score.assessment_progress == 0.0

    def test_control_compliance_score(self, db_session, package, systems, engine) -> None:
        add_findings(
            db_session,
            systems[0],
            ("SV-1", "Open", "CAT_I", "AC-2", None),
            ("SV-2", "Open", "CAT_II", "AC-2", None),
            ("SV-3", "NotAFinding", "CAT_III", "AC-2", None),
        )

        score = engine.control_compliance_score(db_session, "AC-2", package_id=package.id)

        assert score.overall_score == 6.25
        assert score.assessment_progress == 100.0
        assert score.compliance_status == ComplianceStatus.NC_U
        assert score.systems_assessed == 1

    def test_control_compliance_score_compliant(self, db_session, systems, engine) -> None:
        add_findings(
            db_session,
            systems[0],
            ("SV-1", "NotAFinding", "CAT_II", "AU-2", None),
            ("SV-2", "Not_Applicable", "CAT_III", "AU-2", None),
        )

        score = engine.control_compliance_score(db_session, "AU-2")
        assert score.overall_score == 100.0
        assert score.compliance_status == ComplianceStatus.CU

    def test_control_without_findings(self, db_session, engine) -> None:
        assert engine.control_compliance_score(db_session, "AC-2") is None
