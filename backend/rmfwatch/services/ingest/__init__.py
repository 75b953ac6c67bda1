"""
Ingest Module - STIG checklist and Nessus scan ingestion

Turns uploaded scan artifacts into normalized, persisted records.

Architecture:
    ingest/
    ├── __init__.py          # Public API
    ├── models.py            # Canonical enums, frozen drafts, ImportProgress
    ├── exceptions.py        # IngestError hierarchy
    ├── normalizer.py        # Severity/status vocabulary normalization
    ├── parsers/
    │   ├── base.py          # Upload reading, size limit, hardened XML parsing
    │   ├── checklist.py     # CKLB (JSON) and CKL (XML) checklists
    │   └── nessus.py        # Nessus v2 XML
    └── import_/
        └── importer.py      # StigImporter (upsert), NessusImporter (chunked)

Data flow:
    upload bytes -> parser (pure) -> drafts -> importer -> database

Usage:
    from rmfwatch.services.ingest import NessusParser, NessusImporter

    parsed = NessusParser().parse(upload, filename="q3.nessus")
    result = NessusImporter().import_report(db, parsed, package_id=1)
"""

from .exceptions import ImportPersistenceError, IngestError, InvalidFormatError
from .import_ import ImportResult, NessusImporter, StigImporter
from .models import (
    ChecklistFormat,
    FindingDraft,
    FindingSeverity,
    FindingStatus,
    ImportProgress,
    ImportStage,
    ParsedChecklist,
    ParsedNessusHost,
    ParsedNessusReport,
    ParsedNessusVulnerability,
    ScanDraft,
    SeverityCounts,
)
from .normalizer import normalize_severity, normalize_status
from .parsers import BaseScanParser, ChecklistParser, NessusParser, parser_for_format

__all__ = [
    # Parsers
    "BaseScanParser",
    "ChecklistParser",
    "NessusParser",
    "parser_for_format",
    # Importers
    "ImportResult",
    "NessusImporter",
    "StigImporter",
    # Normalization
    "normalize_severity",
    "normalize_status",
    # Models
    "ChecklistFormat",
    "FindingDraft",
    "FindingSeverity",
    "FindingStatus",
    "ImportProgress",
    "ImportStage",
    "ParsedChecklist",
    "ParsedNessusHost",
    "ParsedNessusReport",
    "ParsedNessusVulnerability",
    "ScanDraft",
    "SeverityCounts",
    # Exceptions
    "ImportPersistenceError",
    "IngestError",
    "InvalidFormatError",
]
