"""
NIST 800-53 control catalog loader and lookups.

The catalog is maintained outside the core; this service loads it from the
JSON document published with the application and answers lookups for the
baseline and aggregation services.

Catalog document shape::

    {"AC-2": {"name": "...", "controlText": "...", "discussion": "...",
              "ccis": [{"cci": "CCI-000015", "definition": "..."}]}}
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...database import NistControl, NistControlCci, conflict_insert
from .cci_mapper import normalize_control_id, parse_cci_list
from .exceptions import CatalogError

logger = logging.getLogger(__name__)

_SORT_PATTERN = re.compile(r"^([A-Z]+)-(\d+)(?:\((\d+)\))?$")
INSERT_CHUNK_SIZE = 500


def control_family(control_id: str) -> str:
    """Two-letter family prefix, e.g. "AC" for "AC-2(1)"."""
    return control_id.split("-")[0].upper()


def control_sort_key(control_id: str) -> Tuple[str, int, int]:
    """Numeric-aware ordering: AC-2 < AC-2(1) < AC-10."""
    match = _SORT_PATTERN.match(control_id)
    if not match:
        return (control_id, 0, 0)
    family, number, enhancement = match.groups()
    return (family, int(number), int(enhancement or 0))


class CatalogService:
    """Load and query the control catalog."""

    def import_catalog(self, db: Session, catalog: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Load controls and their CCIs, skipping entries that already exist.

        Args:
            db: Database session
            catalog: Catalog document keyed by control id

        Returns:
            Counts of controls and CCIs inserted, plus per-control errors

        Raises:
            CatalogError: If the document is not a mapping of controls
        """
        if not isinstance(catalog, Mapping):
            raise CatalogError("Catalog document must be an object keyed by control id")

        controls: List[Dict[str, Any]] = []
        ccis: List[Dict[str, Any]] = []
        errors: List[str] = []

        for raw_id, entry in catalog.items():
            control_id = normalize_control_id(raw_id)
            if not isinstance(entry, Mapping) or not entry.get("name"):
                errors.append(f"Control {control_id}: missing name")
                continue
            controls.append(
                {
                    "control_id": control_id,
                    "name": entry["name"],
                    "control_text": entry.get("controlText"),
                    "discussion": entry.get("discussion"),
                }
            )
            for cci in entry.get("ccis") or []:
                if cci.get("cci"):
                    ccis.append(
                        {
                            "control_id": control_id,
                            "cci": cci["cci"].strip().upper(),
                            "definition": cci.get("definition"),
                        }
                    )

        controls_before = db.query(func.count(NistControl.id)).scalar()
        ccis_before = db.query(func.count(NistControlCci.id)).scalar()

        self._insert_skip_existing(db, NistControl, controls)
        self._insert_skip_existing(db, NistControlCci, ccis)
        db.commit()

        result = {
            "controls_imported": db.query(func.count(NistControl.id)).scalar() - controls_before,
            "ccis_imported": db.query(func.count(NistControlCci.id)).scalar() - ccis_before,
            "errors": errors,
        }
        logger.info(
            "Catalog import completed: %d controls, %d CCIs, %d errors",
            result["controls_imported"],
            result["ccis_imported"],
            len(errors),
        )
        return result

    def import_cci_list(self, db: Session, content: bytes) -> int:
        """
        Attach CCIs from a DISA CCI list to controls already in the catalog.

        Returns:
            Number of CCI mappings inserted
        """
        known = {row.control_id for row in db.query(NistControl.control_id)}
        rows = [
            {"control_id": control, "cci": cci, "definition": definition}
            for cci, definition, control in parse_cci_list(content)
            if control in known
        ]
        if not rows:
            return 0

        before = db.query(func.count(NistControlCci.id)).scalar()
        self._insert_skip_existing(db, NistControlCci, rows)
        db.commit()
        inserted = db.query(func.count(NistControlCci.id)).scalar() - before
        logger.info("Attached %d CCI mappings from CCI list", inserted)
        return inserted

    @staticmethod
    def _insert_skip_existing(db: Session, model: Any, rows: List[Dict[str, Any]]) -> None:
        for i in range(0, len(rows), INSERT_CHUNK_SIZE):
            db.execute(conflict_insert(db, model).values(rows[i : i + INSERT_CHUNK_SIZE]).on_conflict_do_nothing())

    def get_control(self, db: Session, control_id: str) -> Optional[NistControl]:
        return db.query(NistControl).filter(NistControl.control_id == normalize_control_id(control_id)).first()

    def control_exists(self, db: Session, control_id: str) -> bool:
        return self.get_control(db, control_id) is not None

    def get_control_ccis(self, db: Session, control_id: str) -> List[NistControlCci]:
        return (
            db.query(NistControlCci)
            .filter(NistControlCci.control_id == normalize_control_id(control_id))
            .order_by(NistControlCci.cci)
            .all()
        )

    def list_controls(self, db: Session, family: Optional[str] = None) -> List[NistControl]:
        """Controls in numeric-aware order, optionally restricted to one family."""
        query = db.query(NistControl)
        if family:
            query = query.filter(NistControl.control_id.like(f"{family.upper()}-%"))
        return sorted(query.all(), key=lambda c: control_sort_key(c.control_id))
