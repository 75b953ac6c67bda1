"""
Security Logging Utilities for RMFWatch
Prevents log injection (CWE-117) from values taken out of uploaded files.

Checklist titles, rule ids and filenames are attacker-controlled text. Every
such value passes through these helpers before it reaches a log record.
"""

import re
from pathlib import PurePath
from typing import Any, Optional

# Escaped and URL-encoded line breaks; raw ones fall under the control ranges
_LINE_BREAKS = re.compile(r"%0[ad]|\\[rn]", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f\u2028\u2029]")

# Punctuation that occurs in STIG titles, rule ids and upload names
_DISALLOWED = re.compile(r"[^\w .,:;/()+#&@'\[\]-]")


def sanitize_for_log(value: Optional[Any], max_length: int = 100) -> str:
    """
    Reduce an upload-derived value to a single safe log line.

    Control characters and encoded line breaks are removed before the value
    is truncated, so they never count against ``max_length``.

    Returns:
        The cleaned value, "null" for None, "[sanitized]" when nothing is left
    """
    if value is None:
        return "null"

    cleaned = _DISALLOWED.sub("", _CONTROL_CHARS.sub("", _LINE_BREAKS.sub("", str(value)))).strip()
    if not cleaned:
        return "[sanitized]"
    if len(cleaned) > max_length:
        return cleaned[:max_length] + "..."
    return cleaned


def sanitize_filename_for_log(filename: Optional[str]) -> str:
    """Log only the base name of an uploaded file, never a client path."""
    if not filename:
        return "null"
    return sanitize_for_log(PurePath(filename.replace("\\", "/")).name, max_length=120)
