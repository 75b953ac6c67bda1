"""
Catalog Module Exceptions

Exception Hierarchy:
- CatalogError (base)
  - UnknownControlError (control id absent from the NIST catalog)
  - TailoringValidationError (tailoring request rejected)
"""

from typing import Any, Dict, Optional


class CatalogError(Exception):
    """
    Base exception for catalog and baseline errors.

    Attributes:
        message: Human-readable error description
        details: Additional context information
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class UnknownControlError(CatalogError):
    """
    Raised when a tailoring operation references a control missing from the catalog.

    Rejects only the single update; bulk operations report it per control.
    """

    def __init__(self, control_id: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.control_id = control_id
        super().__init__(
            f"Control {control_id} not found in NIST catalog. Import the NIST catalog first.",
            {**(details or {}), "control_id": control_id},
        )


class TailoringValidationError(CatalogError):
    """Raised when a tailoring request is incomplete, e.g. a removal without rationale."""
