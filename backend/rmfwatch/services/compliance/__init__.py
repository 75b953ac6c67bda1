"""
Compliance Module - package compliance rollups and scoring

Architecture:
    compliance/
    ├── __init__.py      # Public API
    ├── models.py        # Pydantic rollup results
    ├── scoring.py       # Pure scoring and classification rules
    └── aggregation.py   # ComplianceAggregationEngine (database rollups)

Usage:
    from rmfwatch.services.compliance import ComplianceAggregationEngine

    engine = ComplianceAggregationEngine()
    families = engine.control_status_by_family(db, package_id=1)
    tree = engine.control_package_findings(db, "AC-2", package_id=1)
    print(tree.model_dump() if tree else "unknown control or package")
"""

from .aggregation import CONTROL_FAMILIES, ComplianceAggregationEngine
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

__all__ = [
    "ComplianceAggregationEngine",
    "CONTROL_FAMILIES",
    # Models
    "ComplianceBreakdown",
    "ComplianceSummary",
    "ControlComplianceScore",
    "ControlFindingStatus",
    "ControlPackageFindings",
    "FamilyStatus",
    "GroupControlCompliance",
    "PackageFamilyStatus",
    "RollupStatus",
    "StigMappedControl",
    "StigOnlyControl",
    "SystemControlCompliance",
    "SystemScore",
]
