"""
RMFWatch Utility Functions
Shared utilities across services
"""

from rmfwatch.utils.logging_security import sanitize_filename_for_log, sanitize_for_log  # noqa: F401
