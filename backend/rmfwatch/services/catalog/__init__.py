"""
Catalog Module - NIST 800-53 catalog, CCI mapping and package baselines

Architecture:
    catalog/
    ├── __init__.py          # Public API
    ├── models.py            # Baseline/compliance enums, tailoring request models
    ├── exceptions.py        # CatalogError hierarchy
    ├── baselines.py         # Static Low/Moderate/High control sets
    ├── cci_mapper.py        # CCI -> control lookup, control id normalization
    ├── catalog_service.py   # Catalog loader and lookups
    └── baseline_service.py  # Package baseline initialization and tailoring

Usage:
    from rmfwatch.services.catalog import PackageBaselineService, BaselineLevel

    service = PackageBaselineService()
    service.initialize_baseline(db, package_id=1, level=BaselineLevel.MODERATE, user_id=7)
    service.remove_from_baseline(db, 1, "AC-22", rationale="No public content", user_id=7)
"""

from .baseline_service import BulkUpdateResult, PackageBaselineService, baseline_entry_to_dict
from .baselines import HIGH_CONTROLS, LOW_CONTROLS, MODERATE_CONTROLS, get_baseline_controls
from .catalog_service import CatalogService, control_family, control_sort_key
from .cci_mapper import CciMapper, base_control_id, normalize_control_id, parse_cci_list
from .exceptions import CatalogError, TailoringValidationError, UnknownControlError
from .models import (
    BaselineControlUpdate,
    BaselineLevel,
    BulkBaselineUpdate,
    ComplianceStatus,
    ImplementationStatus,
    TailoringAction,
)

__all__ = [
    # Services
    "CatalogService",
    "PackageBaselineService",
    "BulkUpdateResult",
    "CciMapper",
    # Baselines
    "LOW_CONTROLS",
    "MODERATE_CONTROLS",
    "HIGH_CONTROLS",
    "get_baseline_controls",
    # Helpers
    "baseline_entry_to_dict",
    "base_control_id",
    "control_family",
    "control_sort_key",
    "normalize_control_id",
    "parse_cci_list",
    # Models
    "BaselineControlUpdate",
    "BaselineLevel",
    "BulkBaselineUpdate",
    "ComplianceStatus",
    "ImplementationStatus",
    "TailoringAction",
    # Exceptions
    "CatalogError",
    "TailoringValidationError",
    "UnknownControlError",
]
