"""
Package Baseline Service

Owns per-package NIST baseline state: initializing a package from one of the
static impact baselines and tailoring individual controls afterwards.
Entries are soft-stated through ``include_in_baseline`` and
``tailoring_action`` and are never deleted.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...database import NistControl, PackageControlBaseline, conflict_insert
from .baselines import get_baseline_controls
from .cci_mapper import normalize_control_id
from .exceptions import CatalogError, TailoringValidationError, UnknownControlError
from .models import BaselineControlUpdate, BaselineLevel, BulkBaselineUpdate, ImplementationStatus, TailoringAction

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("rmfwatch.audit")

INSERT_CHUNK_SIZE = 500

UpdateInput = Union[BaselineControlUpdate, Mapping[str, Any]]


@dataclass
class BulkUpdateResult:
    """
    Outcome of a bulk tailoring request.

    Attributes:
        updated: Control ids whose update was applied
        failed: One entry per rejected update (control_id, error_type, message)
    """

    updated: List[str] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated": self.updated,
            "failed": self.failed,
            "updated_count": len(self.updated),
            "failed_count": len(self.failed),
        }


def baseline_entry_to_dict(entry: PackageControlBaseline) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "package_id": entry.package_id,
        "control_id": entry.control_id,
        "include_in_baseline": entry.include_in_baseline,
        "baseline_source": entry.baseline_source,
        "tailoring_action": entry.tailoring_action,
        "tailoring_rationale": entry.tailoring_rationale,
        "implementation_status": entry.implementation_status,
        "implementation_notes": entry.implementation_notes,
        "compliance_status": entry.compliance_status,
        "compliance_notes": entry.compliance_notes,
        "added_by": entry.added_by,
        "updated_by": entry.updated_by,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
    }


class PackageBaselineService:
    """
    Manages package baselines and control tailoring.

    The user id passed to each operation is recorded on the entry; it is
    supplied by the caller and never derived here.
    """

    def initialize_baseline(
        self,
        db: Session,
        package_id: int,
        level: Union[BaselineLevel, str],
        user_id: Optional[int] = None,
    ) -> int:
        """
        Create one entry per control of the cumulative baseline.

        Existing (package, control) entries are left untouched, so running
        this twice, or after tailoring, never duplicates or resets entries.

        Args:
            db: Database session
            package_id: Target package
            level: Low, Moderate or High
            user_id: Caller identity recorded as added_by

        Returns:
            Number of entries created

        Raises:
            ValueError: If the level is not a known baseline
        """
        level = BaselineLevel(level)
        controls = get_baseline_controls(level)
        rows = [
            {
                "package_id": package_id,
                "control_id": control_id,
                "include_in_baseline": True,
                "baseline_source": level.value,
                "added_by": user_id,
                "updated_by": user_id,
            }
            for control_id in controls
        ]

        before = self._count_entries(db, package_id)
        for i in range(0, len(rows), INSERT_CHUNK_SIZE):
            stmt = conflict_insert(db, PackageControlBaseline).values(rows[i : i + INSERT_CHUNK_SIZE])
            db.execute(stmt.on_conflict_do_nothing(index_elements=["package_id", "control_id"]))
        db.commit()
        created = self._count_entries(db, package_id) - before

        logger.info(f"Initialized {level.value} baseline for package {package_id}: {created} of {len(controls)} created")
        audit_logger.info(
            "Package baseline initialized",
            extra={
                "event_type": "BASELINE_INITIALIZED",
                "user_id": user_id,
                "package_id": package_id,
                "baseline_level": level.value,
                "entries_created": created,
            },
        )
        return created

    def get_entry(self, db: Session, package_id: int, control_id: str) -> Optional[PackageControlBaseline]:
        return (
            db.query(PackageControlBaseline)
            .filter(
                PackageControlBaseline.package_id == package_id,
                PackageControlBaseline.control_id == normalize_control_id(control_id),
            )
            .first()
        )

    def get_package_baseline(self, db: Session, package_id: int) -> Dict[str, Any]:
        """
        Baseline entries merged with catalog details, plus a summary.

        Unknown packages yield an empty list and a zero summary.
        """
        entries = (
            db.query(PackageControlBaseline)
            .filter(PackageControlBaseline.package_id == package_id)
            .order_by(PackageControlBaseline.control_id)
            .all()
        )
        details: Dict[str, Dict[str, Any]] = {}
        if entries:
            controls = db.query(NistControl).filter(NistControl.control_id.in_([e.control_id for e in entries]))
            details = {c.control_id: {"name": c.name, "control_text": c.control_text} for c in controls}

        def count_impl(status: ImplementationStatus) -> int:
            return sum(1 for e in entries if e.implementation_status == status.value)

        return {
            "package_id": package_id,
            "controls": [
                {**baseline_entry_to_dict(e), "control_details": details.get(e.control_id)} for e in entries
            ],
            "summary": {
                "total": len(entries),
                "included": sum(1 for e in entries if e.include_in_baseline),
                "tailored": sum(1 for e in entries if e.tailoring_action),
                "implemented": count_impl(ImplementationStatus.IMPLEMENTED),
                "partially_implemented": count_impl(ImplementationStatus.PARTIALLY_IMPLEMENTED),
                "not_implemented": count_impl(ImplementationStatus.NOT_IMPLEMENTED),
            },
        }

    def update_control(
        self,
        db: Session,
        package_id: int,
        control_id: str,
        updates: UpdateInput,
        user_id: Optional[int] = None,
        commit: bool = True,
    ) -> PackageControlBaseline:
        """
        Tailor one control: create its entry if missing, else merge the updates.

        New entries default to tailoring action "Added" and are included in
        the baseline unless the update says otherwise.

        Args:
            db: Database session
            package_id: Target package
            control_id: NIST control id (spacing around enhancements is tolerated)
            updates: Fields to set; unset fields are left as they are
            user_id: Caller identity recorded as updated_by
            commit: Commit the transaction (bulk updates manage their own)

        Returns:
            The created or updated entry

        Raises:
            UnknownControlError: If the control is not in the catalog
            pydantic.ValidationError: If the updates contain unknown fields or values
        """
        control_id = normalize_control_id(control_id)
        if not isinstance(updates, BaselineControlUpdate):
            updates = BaselineControlUpdate.model_validate(dict(updates))
        values = updates.model_dump(exclude_unset=True)

        if not db.query(NistControl.id).filter(NistControl.control_id == control_id).first():
            logger.warning(f"Control {control_id} not found in NIST catalog")
            raise UnknownControlError(control_id, {"package_id": package_id})

        entry = self.get_entry(db, package_id, control_id)
        if entry is None:
            entry = PackageControlBaseline(
                package_id=package_id,
                control_id=control_id,
                include_in_baseline=values.pop("include_in_baseline", True),
                tailoring_action=values.pop("tailoring_action", None) or TailoringAction.ADDED.value,
                added_by=user_id,
                updated_by=user_id,
                **values,
            )
            db.add(entry)
            action = "created"
        else:
            for name, value in values.items():
                setattr(entry, name, value)
            entry.updated_by = user_id
            action = "updated"

        db.flush()
        if commit:
            db.commit()
            db.refresh(entry)

        logger.info(f"Baseline control {control_id} {action} for package {package_id}")
        audit_logger.info(
            "Baseline control tailored",
            extra={
                "event_type": "BASELINE_CONTROL_TAILORED",
                "user_id": user_id,
                "package_id": package_id,
                "control_id": control_id,
                "action": action,
                "fields": sorted(updates.model_dump(exclude_unset=True)),
            },
        )
        return entry

    def remove_from_baseline(
        self,
        db: Session,
        package_id: int,
        control_id: str,
        rationale: str,
        user_id: Optional[int] = None,
    ) -> PackageControlBaseline:
        """
        Tailor a control out of the baseline. The entry is kept, flagged as removed.

        Raises:
            TailoringValidationError: If the rationale is blank
            UnknownControlError: If the control is not in the catalog
        """
        if not rationale or not rationale.strip():
            raise TailoringValidationError(
                "A rationale is required to remove a control from the baseline",
                {"package_id": package_id, "control_id": control_id},
            )

        return self.update_control(
            db,
            package_id,
            control_id,
            BaselineControlUpdate(
                include_in_baseline=False,
                tailoring_action=TailoringAction.REMOVED,
                tailoring_rationale=rationale.strip(),
            ),
            user_id=user_id,
        )

    def bulk_update(
        self,
        db: Session,
        package_id: int,
        updates: Iterable[Union[BulkBaselineUpdate, Mapping[str, Any]]],
        user_id: Optional[int] = None,
        atomic: bool = False,
    ) -> BulkUpdateResult:
        """
        Apply a sequence of independent control updates.

        Best-effort by default: each update runs in its own savepoint, a
        rejected update is reported and the rest still apply. With
        ``atomic=True`` the first rejection rolls back the whole batch and
        is re-raised.

        Args:
            db: Database session
            package_id: Target package
            updates: Items of ``{"control_id": ..., "updates": {...}}``
            user_id: Caller identity
            atomic: All-or-nothing instead of best-effort

        Returns:
            BulkUpdateResult listing applied and rejected controls

        Raises:
            CatalogError, pydantic.ValidationError: Only when ``atomic`` is set
        """
        result = BulkUpdateResult()

        if atomic:
            try:
                for item in updates:
                    item = self._bulk_item(item)
                    self.update_control(db, package_id, item.control_id, item.updates, user_id, commit=False)
                    result.updated.append(normalize_control_id(item.control_id))
                db.commit()
            except (CatalogError, ValidationError, SQLAlchemyError):
                db.rollback()
                logger.warning(f"Atomic bulk update for package {package_id} rolled back")
                raise
            return result

        for raw in updates:
            control_id = str(raw.get("control_id", "")) if isinstance(raw, Mapping) else raw.control_id
            try:
                item = self._bulk_item(raw)
                with db.begin_nested():
                    self.update_control(db, package_id, item.control_id, item.updates, user_id, commit=False)
                result.updated.append(normalize_control_id(item.control_id))
            except (CatalogError, ValidationError, SQLAlchemyError) as e:
                message = e.message if isinstance(e, CatalogError) else str(e)
                result.failed.append({"control_id": control_id, "error_type": type(e).__name__, "message": message})
        db.commit()

        logger.info(
            f"Bulk baseline update for package {package_id}: "
            f"{len(result.updated)} applied, {len(result.failed)} rejected"
        )
        return result

    @staticmethod
    def _bulk_item(item: Union[BulkBaselineUpdate, Mapping[str, Any]]) -> BulkBaselineUpdate:
        if isinstance(item, BulkBaselineUpdate):
            return item
        return BulkBaselineUpdate.model_validate(dict(item))

    @staticmethod
    def _count_entries(db: Session, package_id: int) -> int:
        return (
            db.query(func.count(PackageControlBaseline.id))
            .filter(PackageControlBaseline.package_id == package_id)
            .scalar()
        )
