"""
Unit tests for compliance scoring rules.

Pure arithmetic; no database required.
"""

import pytest

from rmfwatch.services.catalog import ComplianceStatus
from rmfwatch.services.compliance import RollupStatus
from rmfwatch.services.compliance.scoring import (
    assessment_progress,
    classify_compliance,
    compliance_percentage,
    determine_compliance_status,
    mapping_status,
    mean_score,
    reviewed_compliance_score,
    round_half_up,
    system_compliance_score,
    weighted_compliance_score,
)


# ---------------------------------------------------------------------------
# Rounding and system scores
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestSystemScore:
    @pytest.mark.parametrize("value,expected", [(12.5, 13), (33.33, 33), (66.67, 67), (0.5, 1), (99.4, 99)])
    def test_round_half_up(self, value: float, expected: int) -> None:
        assert round_half_up(value) == expected

    def test_three_rules_two_open(self) -> None:
        """1 of 3 closed scores 33 and is Non-Compliant."""
        score = system_compliance_score(total=3, open_count=2)
        assert score == 33
        assert classify_compliance(open_count=2, score=score) == RollupStatus.NON_COMPLIANT

    def test_no_findings_is_fully_compliant(self) -> None:
        score = system_compliance_score(total=0, open_count=0)
        assert score == 100
        assert classify_compliance(open_count=0, score=score) == RollupStatus.COMPLIANT

    def test_half_closed_rounds_up(self) -> None:
        assert system_compliance_score(total=8, open_count=7) == 13


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestClassification:
    def test_threshold_boundary(self) -> None:
        assert classify_compliance(open_count=3, score=70) == RollupStatus.PARTIALLY_COMPLIANT
        assert classify_compliance(open_count=3, score=69) == RollupStatus.NON_COMPLIANT

    def test_no_open_findings_wins_over_score(self) -> None:
        assert classify_compliance(open_count=0, score=0) == RollupStatus.COMPLIANT

    def test_threshold_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RMFWATCH_PARTIAL_COMPLIANCE_THRESHOLD", "50")
        assert classify_compliance(open_count=1, score=55) == RollupStatus.PARTIALLY_COMPLIANT

    def test_mapping_status(self) -> None:
        assert mapping_status(open_count=0, total=4) == RollupStatus.COMPLIANT
        assert mapping_status(open_count=4, total=4) == RollupStatus.NON_COMPLIANT
        assert mapping_status(open_count=1, total=4) == RollupStatus.PARTIALLY_COMPLIANT

    def test_mean_score(self) -> None:
        assert mean_score([]) == 100
        assert mean_score([33, 100]) == 67


# ---------------------------------------------------------------------------
# Percentages
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestPercentages:
    def test_compliance_percentage(self) -> None:
        assert compliance_percentage(0, 0) == 0.0
        assert compliance_percentage(3, 4) == 75.0

    def test_assessment_progress(self) -> None:
        assert assessment_progress(total=0, not_reviewed=0) == 0.0
        assert assessment_progress(total=3, not_reviewed=1) == 66.67

    def test_reviewed_compliance_score(self) -> None:
        assert reviewed_compliance_score(reviewed=0, resolved=0) == 0.0
        assert reviewed_compliance_score(reviewed=4, resolved=3) == 75.0


# ---------------------------------------------------------------------------
# Weighted assessment
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestWeightedAssessment:
    def test_empty_is_fully_compliant(self) -> None:
        assert weighted_compliance_score([]) == 100.0

    def test_weights(self) -> None:
        # CAT I open (10) vs CAT III resolved (1): 1/11
        assert weighted_compliance_score([("CAT_I", "Open"), ("CAT_III", "NotAFinding")]) == 9.09

    def test_unknown_severity_uses_default_weight(self) -> None:
        # default 3 resolved, CAT II 5 open: 3/8
        assert weighted_compliance_score([(None, "Not_Applicable"), ("CAT_II", "Open")]) == 37.5

    def test_not_reviewed_is_not_resolved(self) -> None:
        assert weighted_compliance_score([("CAT_II", "Not_Reviewed")]) == 0.0

    def test_under_assessed(self) -> None:
        assert determine_compliance_status(score=100.0, progress=79.9, open_cat_i=0) == ComplianceStatus.NOT_ASSESSED

    def test_open_cat_i_is_non_compliant(self) -> None:
        assert determine_compliance_status(score=95.0, progress=100.0, open_cat_i=1) == ComplianceStatus.NC_U

    def test_score_threshold(self) -> None:
        assert determine_compliance_status(score=70.0, progress=80.0, open_cat_i=0) == ComplianceStatus.CU
        assert determine_compliance_status(score=69.99, progress=80.0, open_cat_i=0) == ComplianceStatus.NC_U
