"""
Baseline tailoring vocabulary and request models.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class BaselineLevel(str, Enum):
    """NIST 800-53 impact baselines, each a superset of the one below."""

    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


class ComplianceStatus(str, Enum):
    """
    Assessment compliance status of a baseline control.

    Attributes:
        CO: Compliant, official
        CU: Compliant, unofficial
        NC_O: Non-compliant, official
        NC_U: Non-compliant, unofficial
        NA_O: Not applicable, official
        NA_U: Not applicable, unofficial
        NOT_ASSESSED: No assessment recorded
    """

    CO = "CO"
    CU = "CU"
    NC_O = "NC_O"
    NC_U = "NC_U"
    NA_O = "NA_O"
    NA_U = "NA_U"
    NOT_ASSESSED = "NOT_ASSESSED"


class ImplementationStatus(str, Enum):
    IMPLEMENTED = "Implemented"
    PARTIALLY_IMPLEMENTED = "Partially_Implemented"
    NOT_IMPLEMENTED = "Not_Implemented"


class TailoringAction(str, Enum):
    ADDED = "Added"
    REMOVED = "Removed"
    MODIFIED = "Modified"


class BaselineControlUpdate(BaseModel):
    """
    Partial update for one baseline entry.

    Only fields that are explicitly set are merged into an existing entry.
    """

    include_in_baseline: Optional[bool] = None
    baseline_source: Optional[BaselineLevel] = None
    tailoring_action: Optional[TailoringAction] = None
    tailoring_rationale: Optional[str] = Field(None, max_length=10000)
    implementation_status: Optional[ImplementationStatus] = None
    implementation_notes: Optional[str] = Field(None, max_length=10000)
    compliance_status: Optional[ComplianceStatus] = None
    compliance_notes: Optional[str] = Field(None, max_length=10000)

    class Config:
        use_enum_values = True
        extra = "forbid"


class BulkBaselineUpdate(BaseModel):
    """One element of a bulk tailoring request."""

    control_id: str = Field(..., min_length=1, max_length=50)
    updates: BaselineControlUpdate = Field(default_factory=BaselineControlUpdate)
