"""
Upload parsers.

Parsers are pure: bytes in, frozen drafts out. ``parser_for_format`` picks
the parser for an upload kind so callers need not know the classes.
"""

from typing import Dict, Type

from .base import BaseScanParser
from .checklist import ChecklistParser
from .nessus import NessusParser

_PARSERS: Dict[str, Type[BaseScanParser]] = {
    "stig": ChecklistParser,
    "nessus": NessusParser,
}


def parser_for_format(upload_kind: str) -> BaseScanParser:
    """
    Get a parser instance for an upload kind ("stig" or "nessus").

    Raises:
        ValueError: If the upload kind is unknown.
    """
    try:
        return _PARSERS[upload_kind.lower()]()
    except KeyError:
        raise ValueError(f"Unknown upload kind: {upload_kind}. Expected one of {sorted(_PARSERS)}") from None


__all__ = [
    "BaseScanParser",
    "ChecklistParser",
    "NessusParser",
    "parser_for_format",
]
