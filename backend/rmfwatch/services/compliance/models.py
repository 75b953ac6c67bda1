"""
Compliance Rollup Models

Type-safe Pydantic models returned by the aggregation engine to the
presentation layer. Every model serializes with ``model_dump()``.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..catalog.models import ComplianceStatus


class RollupStatus(str, Enum):
    """Three-state status of a control, system or group."""

    COMPLIANT = "Compliant"
    PARTIALLY_COMPLIANT = "Partially Compliant"
    NON_COMPLIANT = "Non-Compliant"


class OpenBySeverity(BaseModel):
    """Open findings bucketed by STIG category."""

    cat_i_open: int = Field(0, ge=0)
    cat_ii_open: int = Field(0, ge=0)
    cat_iii_open: int = Field(0, ge=0)


class ControlFindingStatus(OpenBySeverity):
    """Findings-derived state of one control across a package's systems."""

    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    systems_affected: int = Field(0, ge=0)
    status: RollupStatus


class StigOnlyControl(BaseModel):
    """A control with mapped findings that is not part of the package baseline."""

    control_id: str
    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    systems_affected: int = Field(0, ge=0)
    compliance: RollupStatus
    in_baseline: bool = False


class FamilyStatus(BaseModel):
    family: str = Field(..., description="Two-letter family prefix, e.g. AC")
    family_name: str
    total_controls: int = Field(0, ge=0, description="Baseline controls in the family")
    implemented_controls: int = Field(0, ge=0)
    compliant_controls: int = Field(0, ge=0)
    compliance_percentage: int = Field(0, ge=0, le=100)
    baseline_controls: List[str] = Field(default_factory=list)
    stig_mapped_controls: List[StigOnlyControl] = Field(default_factory=list)


class PackageFamilyStatus(BaseModel):
    """
    Family-keyed compliance map for a package.

    All twenty families are always present, zero-filled when the package has
    no baseline entries in them.
    """

    package_id: int
    families: Dict[str, FamilyStatus]
    control_status: Dict[str, ControlFindingStatus] = Field(default_factory=dict)
    overall_compliance: int = Field(0, ge=0, le=100)
    calculated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_encoders = {datetime: lambda v: v.isoformat()}


class StigMappedControl(OpenBySeverity):
    control_id: str
    control_title: str
    family: str
    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    systems_affected: int = Field(0, ge=0)
    ccis: List[str] = Field(default_factory=list)
    status: RollupStatus


class SystemControlCompliance(OpenBySeverity):
    system_id: int
    system_name: str
    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    compliance_score: int = Field(..., ge=0, le=100)
    status: RollupStatus
    last_scanned: Optional[datetime] = None


class GroupControlCompliance(OpenBySeverity):
    group_id: int
    group_name: str
    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    system_count: int = Field(0, ge=0)
    compliant_systems: int = Field(0, ge=0)
    compliance_score: int = Field(..., ge=0, le=100)
    status: RollupStatus
    systems: List[SystemControlCompliance] = Field(default_factory=list)


class ControlPackageFindings(BaseModel):
    """Group -> system compliance tree for one control within one package."""

    control_id: str
    control_name: str
    package_id: int
    package_name: str
    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    total_systems: int = Field(0, ge=0)
    affected_systems: int = Field(0, ge=0)
    groups: List[GroupControlCompliance] = Field(default_factory=list)
    overall_compliance: int = Field(..., ge=0, le=100)
    calculated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_encoders = {datetime: lambda v: v.isoformat()}


class ComplianceBreakdown(BaseModel):
    compliant: int = Field(0, ge=0)
    non_compliant: int = Field(0, ge=0)
    not_applicable: int = Field(0, ge=0)
    not_assessed: int = Field(0, ge=0)


class ComplianceSummary(BaseModel):
    """Enum-keyed count of included baseline entries for a package."""

    package_id: int
    total_controls: int = Field(0, ge=0)
    compliance_percentage: float = Field(0.0, ge=0, le=100)
    breakdown: ComplianceBreakdown = Field(default_factory=ComplianceBreakdown)
    details: Dict[str, int]


class SystemScore(OpenBySeverity):
    """Assessment progress and compliance of one system's findings."""

    system_id: int
    scan_id: Optional[int] = None
    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    not_reviewed_findings: int = Field(0, ge=0)
    assessment_progress: float = Field(0.0, ge=0, le=100)
    compliance_score: float = Field(0.0, ge=0, le=100)


class ControlComplianceScore(OpenBySeverity):
    """Severity-weighted automated assessment of one control."""

    control_id: str
    package_id: Optional[int] = None
    compliance_status: ComplianceStatus
    overall_score: float = Field(..., ge=0, le=100)
    assessment_progress: float = Field(0.0, ge=0, le=100)
    total_findings: int = Field(0, ge=0)
    open_findings: int = Field(0, ge=0)
    not_reviewed_findings: int = Field(0, ge=0)
    systems_assessed: int = Field(0, ge=0)
    calculated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_encoders = {datetime: lambda v: v.isoformat()}
