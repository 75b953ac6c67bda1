"""
Ingest Module Exceptions

Exception Hierarchy:
- IngestError (base)
  - InvalidFormatError (upload matches no recognized shape)
  - ImportPersistenceError (records could not be written)

All exceptions are serializable to JSON for API error responses and never
carry file contents, only the parser diagnostics.
"""

from typing import Any, Dict, List, Optional


class IngestError(Exception):
    """
    Base exception for all ingest module errors.

    Attributes:
        message: Human-readable error description
        details: Additional context information
        source_file: Name of the uploaded file that caused the error (if applicable)
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        source_file: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.source_file = source_file
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary representation of the exception.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "source_file": self.source_file,
        }


class InvalidFormatError(IngestError):
    """
    Raised when an upload matches none of the recognized shapes.

    The underlying parser messages are kept so the caller can tell a
    truncated JSON checklist from a malformed XML one.

    Attributes:
        parser_errors: Mapping of attempted format to its parser message
    """

    def __init__(
        self,
        message: str,
        parser_errors: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
        source_file: Optional[str] = None,
    ) -> None:
        self.parser_errors = parser_errors or {}

        enhanced_details = details or {}
        if self.parser_errors:
            enhanced_details["parser_errors"] = self.parser_errors

        super().__init__(message, enhanced_details, source_file)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["parser_errors"] = self.parser_errors
        return result


class ImportPersistenceError(IngestError):
    """
    Raised when parsed records cannot be persisted.

    Attributes:
        failed_chunks: Chunk-level failure reports (chunk number, record count, error)
    """

    def __init__(
        self,
        message: str,
        failed_chunks: Optional[List[Dict[str, Any]]] = None,
        details: Optional[Dict[str, Any]] = None,
        source_file: Optional[str] = None,
    ) -> None:
        self.failed_chunks = failed_chunks or []
        super().__init__(message, details, source_file)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["failed_chunks"] = self.failed_chunks
        return result
