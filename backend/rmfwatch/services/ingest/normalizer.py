"""
Severity and status vocabulary normalization.

Checklist producers disagree on spelling: STIG Viewer writes
``not_a_finding``, older CKL exports write ``NotAFinding``, third-party tools
write ``Pass`` or ``N/A``; severities arrive as ``high``, ``CAT I`` or
``cat_ii``. Both functions map every known spelling to the canonical enum and
return anything else unchanged, so they are safe to apply repeatedly.
"""

import re
from typing import Optional, Union

from .models import FindingSeverity, FindingStatus

_CAT_PATTERN = re.compile(r"^cat[\s_\-]*(i{1,3})$")
_SEPARATOR_RUN = re.compile(r"[\s\-]+")

_SEVERITY_WORDS = {
    "high": FindingSeverity.CAT_I,
    "medium": FindingSeverity.CAT_II,
    "low": FindingSeverity.CAT_III,
    "1": FindingSeverity.CAT_I,
    "2": FindingSeverity.CAT_II,
    "3": FindingSeverity.CAT_III,
}

_CAT_NUMERALS = {
    "i": FindingSeverity.CAT_I,
    "ii": FindingSeverity.CAT_II,
    "iii": FindingSeverity.CAT_III,
}

_STATUS_MAP = {
    # Rule failed
    "open": FindingStatus.OPEN,
    "o": FindingStatus.OPEN,
    "fail": FindingStatus.OPEN,
    "failed": FindingStatus.OPEN,
    # Rule passed
    "notafinding": FindingStatus.NOT_A_FINDING,
    "not_a_finding": FindingStatus.NOT_A_FINDING,
    "nf": FindingStatus.NOT_A_FINDING,
    "pass": FindingStatus.NOT_A_FINDING,
    "passed": FindingStatus.NOT_A_FINDING,
    # Not applicable
    "not_applicable": FindingStatus.NOT_APPLICABLE,
    "notapplicable": FindingStatus.NOT_APPLICABLE,
    "na": FindingStatus.NOT_APPLICABLE,
    "n/a": FindingStatus.NOT_APPLICABLE,
    # Not reviewed
    "not_reviewed": FindingStatus.NOT_REVIEWED,
    "notreviewed": FindingStatus.NOT_REVIEWED,
    "nr": FindingStatus.NOT_REVIEWED,
    "not_checked": FindingStatus.NOT_REVIEWED,
    "notchecked": FindingStatus.NOT_REVIEWED,
}


def normalize_severity(value: Optional[str]) -> Optional[Union[FindingSeverity, str]]:
    """
    Map a vendor severity spelling to a STIG category.

    Args:
        value: Raw severity from the checklist (e.g. "high", "CAT II", "cat_iii").

    Returns:
        FindingSeverity for recognized spellings, otherwise ``value`` unchanged.

    Example:
        >>> normalize_severity("Cat I")
        <FindingSeverity.CAT_I: 'CAT_I'>
        >>> normalize_severity("catastrophic")
        'catastrophic'
    """
    if value is None or isinstance(value, FindingSeverity):
        return value

    key = value.strip().lower()
    if key in _SEVERITY_WORDS:
        return _SEVERITY_WORDS[key]

    match = _CAT_PATTERN.match(key)
    if match:
        return _CAT_NUMERALS[match.group(1)]

    return value


def normalize_status(value: Optional[str]) -> Optional[Union[FindingStatus, str]]:
    """
    Map a vendor status spelling to one of the four canonical rule states.

    The value is lower-cased and runs of spaces/hyphens collapse to a single
    underscore before lookup, so "Not A Finding", "not-a-finding" and
    "NOT_A_FINDING" all match.

    Args:
        value: Raw status from the checklist.

    Returns:
        FindingStatus for recognized spellings, otherwise ``value`` unchanged.
    """
    if value is None or isinstance(value, FindingStatus):
        return value

    key = _SEPARATOR_RUN.sub("_", value.strip().lower())
    return _STATUS_MAP.get(key, value)
