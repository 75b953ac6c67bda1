"""
Compliance scoring rules.

Single source of truth for the arithmetic behind every rollup. All
functions are pure; the aggregation engine feeds them counts it queried.

Percentages shown to assessors are whole numbers rounded half up, so a
system with 1 of 8 findings closed scores 13, not 12.
"""

import math
from typing import Iterable, Optional, Sequence, Tuple

from ...config import get_settings
from ..catalog.models import ComplianceStatus
from ..ingest.models import FindingSeverity, FindingStatus
from .models import RollupStatus

# Severity weights for the automated control assessment
SEVERITY_WEIGHTS = {
    FindingSeverity.CAT_I.value: 10,
    FindingSeverity.CAT_II.value: 5,
    FindingSeverity.CAT_III.value: 1,
}
DEFAULT_SEVERITY_WEIGHT = 3

RESOLVED_STATUSES = frozenset({FindingStatus.NOT_A_FINDING.value, FindingStatus.NOT_APPLICABLE.value})


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero for non-negative input.

    Example:
        >>> round_half_up(12.5)
        13
        >>> round_half_up(33.33)
        33
    """
    return int(math.floor(value + 0.5))


def system_compliance_score(total: int, open_count: int) -> int:
    """
    Share of a system's findings that are not open, as a whole percentage.

    A system without findings is vacuously fully compliant.

    Example:
        >>> system_compliance_score(total=3, open_count=2)
        33
        >>> system_compliance_score(total=0, open_count=0)
        100
    """
    if total == 0:
        return 100
    return round_half_up(100 * (total - open_count) / total)


def mean_score(scores: Sequence[int]) -> int:
    """Rounded arithmetic mean; 100 when there is nothing to average."""
    if not scores:
        return 100
    return round_half_up(sum(scores) / len(scores))


def classify_compliance(open_count: int, score: float, threshold: Optional[int] = None) -> RollupStatus:
    """
    Status of a system or group.

    No open findings is always Compliant, whatever the score. Otherwise a
    score at or above the threshold (default 70) is Partially Compliant.

    Example:
        >>> classify_compliance(open_count=2, score=33)
        <RollupStatus.NON_COMPLIANT: 'Non-Compliant'>
    """
    if threshold is None:
        threshold = get_settings().partial_compliance_threshold
    if open_count == 0:
        return RollupStatus.COMPLIANT
    if score >= threshold:
        return RollupStatus.PARTIALLY_COMPLIANT
    return RollupStatus.NON_COMPLIANT


def mapping_status(open_count: int, total: int) -> RollupStatus:
    """Three-state status of a STIG-mapped control: none, some or all findings open."""
    if open_count == 0:
        return RollupStatus.COMPLIANT
    if open_count == total:
        return RollupStatus.NON_COMPLIANT
    return RollupStatus.PARTIALLY_COMPLIANT


def compliance_percentage(compliant: int, total: int) -> float:
    """(compliant / total) * 100, or 0.0 when total is 0."""
    if total == 0:
        return 0.0
    return (compliant / total) * 100.0


def assessment_progress(total: int, not_reviewed: int) -> float:
    """Percentage of findings that have been reviewed; 0.0 without findings."""
    if total == 0:
        return 0.0
    return round(((total - not_reviewed) / total) * 100.0, 2)


def reviewed_compliance_score(reviewed: int, resolved: int) -> float:
    """Resolved (NotAFinding or Not_Applicable) share of reviewed findings; 0.0 when none reviewed."""
    if reviewed == 0:
        return 0.0
    return round((resolved / reviewed) * 100.0, 2)


def weighted_compliance_score(findings: Iterable[Tuple[Optional[str], str]]) -> float:
    """
    Severity-weighted share of resolved findings.

    Args:
        findings: (severity, status) pairs

    Returns:
        Score 0-100 rounded to 2 decimals; 100.0 when there are no findings

    Example:
        >>> weighted_compliance_score([("CAT_I", "Open"), ("CAT_III", "NotAFinding")])
        9.09
    """
    total_weight = 0
    resolved_weight = 0
    for severity, status in findings:
        weight = SEVERITY_WEIGHTS.get(severity, DEFAULT_SEVERITY_WEIGHT)
        total_weight += weight
        if status in RESOLVED_STATUSES:
            resolved_weight += weight

    if total_weight == 0:
        return 100.0
    return round((resolved_weight / total_weight) * 100.0, 2)


def determine_compliance_status(
    score: float,
    progress: float,
    open_cat_i: int,
    progress_threshold: Optional[int] = None,
    compliance_threshold: Optional[int] = None,
) -> ComplianceStatus:
    """
    Unofficial compliance status from an automated assessment.

    Under-assessed controls are NOT_ASSESSED; any open CAT I finding makes
    the control non-compliant regardless of score.
    """
    settings = get_settings()
    if progress_threshold is None:
        progress_threshold = settings.assessment_progress_threshold
    if compliance_threshold is None:
        compliance_threshold = settings.partial_compliance_threshold

    if progress < progress_threshold:
        return ComplianceStatus.NOT_ASSESSED
    if open_cat_i > 0:
        return ComplianceStatus.NC_U
    if score >= compliance_threshold:
        return ComplianceStatus.CU
    return ComplianceStatus.NC_U
