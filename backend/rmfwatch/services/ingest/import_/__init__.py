"""
Import layer: persists parsed drafts (``import`` is a keyword, hence the underscore).
"""

from .importer import ImportResult, NessusImporter, StigImporter

__all__ = ["ImportResult", "NessusImporter", "StigImporter"]
