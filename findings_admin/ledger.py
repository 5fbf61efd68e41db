"""
Override Ledger
===============

Append-only, versioned override rows for two families:
- dimensions (per finding)
- messages (per finding and language)

Each row has a status (draft/published) and an active flag. At most one row
per (finding_id[, lang], status) is active; the database enforces this with a
partial unique index. Writes never edit values in place: a new version row is
inserted and the previous active row of the same status is deactivated.

Version allocation reads max(version) + 1 and inserts inside one SAVEPOINT.
A concurrent writer that wins the race trips the unique constraint, and the
allocation is retried against the new maximum.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .cache import invalidate_effective_cache
from .db.models import (
    FindingDimensionOverride,
    FindingMessageOverride,
    LedgerRevision,
    OverrideStatus,
    generate_uuid,
    EntityType,
    DIMENSION_FIELDS,
    MESSAGE_FIELDS,
)
from .errors import OverrideValidationError, VersionConflictError
from .schemas import DimensionSet, MessageSet

logger = logging.getLogger(__name__)

VERSION_RETRY_LIMIT = 3


# =============================================================================
# REVISION COUNTER
# =============================================================================

def current_revision(db: Session) -> Tuple[int, str]:
    """
    Store-side watermark of the ledger: (revision, token).

    The token is regenerated on every bump, so a revision number reused after
    a rolled-back transaction never matches a cached entry.
    """
    row = db.query(LedgerRevision.revision, LedgerRevision.token).filter(LedgerRevision.id == 1).first()
    if row is None:
        return (0, "")
    return (int(row[0] or 0), row[1] or "")


def bump_revision(db: Session) -> Tuple[int, str]:
    """Increment the ledger revision inside the caller's transaction."""
    updated = (
        db.query(LedgerRevision)
        .filter(LedgerRevision.id == 1)
        .update(
            {LedgerRevision.revision: LedgerRevision.revision + 1, LedgerRevision.token: generate_uuid()},
            synchronize_session=False,
        )
    )
    if not updated:
        db.add(LedgerRevision(id=1, revision=1, token=generate_uuid()))
        db.flush()
    return current_revision(db)


def mark_ledger_changed(db: Session) -> None:
    """Bump the revision and drop cached effective indexes."""
    bump_revision(db)
    invalidate_effective_cache()


# =============================================================================
# LEDGER
# =============================================================================

class OverrideLedger:
    """Shared draft/published row handling for one override family"""

    entity_type: EntityType
    model: Type[Any]
    value_model: Type[BaseModel]
    value_fields: Sequence[str]
    active_attr: str = "active"
    scoped_by_lang: bool = False

    # -------------------------------------------------------------------------
    # Validation / conversion
    # -------------------------------------------------------------------------

    def validate(self, attrs: Optional[Dict[str, Any]]) -> BaseModel:
        if attrs is not None and not isinstance(attrs, dict):
            raise OverrideValidationError(f"{self.entity_type.value} payload must be an object")
        try:
            return self.value_model.model_validate(attrs or {})
        except ValidationError as e:
            raise OverrideValidationError(f"Invalid {self.entity_type.value} payload: {e}") from e

    def values_of(self, row) -> BaseModel:
        """Whole-record values of a ledger row (unset fields stay None)."""
        return self.value_model.model_validate({f: getattr(row, f) for f in self.value_fields})

    def values_from_snapshot(self, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        return {f: snapshot.get(f) for f in self.value_fields}

    def snapshot(self, row) -> Dict[str, Any]:
        """Full-row snapshot stored in change log diffs"""
        data = {"version": row.version}
        for f in self.value_fields:
            data[f] = getattr(row, f)
        data["version_text"] = row.version_text
        data["updated_by"] = row.updated_by
        return data

    def row_meta(self, actor: Optional[str], note: Optional[str], source: Optional[str]) -> Dict[str, Any]:
        return {"updated_by": actor or "admin"}

    def scope_lang(self, lang: Optional[str]) -> Optional[str]:
        return lang if self.scoped_by_lang else None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _is_active(self):
        return getattr(self.model, self.active_attr)

    def _scoped(self, db: Session, finding_id: str, lang: Optional[str] = None):
        query = db.query(self.model).filter(self.model.finding_id == finding_id)
        if self.scoped_by_lang:
            query = query.filter(self.model.lang == lang)
        return query

    def next_version(self, db: Session, finding_id: str, lang: Optional[str] = None) -> int:
        query = db.query(func.coalesce(func.max(self.model.version), 0)).filter(
            self.model.finding_id == finding_id
        )
        if self.scoped_by_lang:
            query = query.filter(self.model.lang == lang)
        return int(query.scalar() or 0) + 1

    def active_row(self, db: Session, finding_id: str, status: OverrideStatus, lang: Optional[str] = None):
        return (
            self._scoped(db, finding_id, self.scope_lang(lang))
            .filter(self.model.status == status.value, self._is_active().is_(True))
            .order_by(self.model.version.desc(), self.model.id.desc())
            .first()
        )

    def active_rows(self, db: Session, status: OverrideStatus, lang: Optional[str] = None) -> Dict[str, Any]:
        """finding_id -> active row of the given status"""
        query = db.query(self.model).filter(
            self.model.status == status.value, self._is_active().is_(True)
        )
        if self.scoped_by_lang:
            query = query.filter(self.model.lang == lang)
        return {row.finding_id: row for row in query.all()}

    def active_drafts(
        self, db: Session, finding_ids: Optional[List[str]] = None, lang: Optional[str] = None
    ) -> List[Any]:
        query = db.query(self.model).filter(
            self.model.status == OverrideStatus.DRAFT.value, self._is_active().is_(True)
        )
        if self.scoped_by_lang:
            query = query.filter(self.model.lang == lang)
        if finding_ids:
            query = query.filter(self.model.finding_id.in_(finding_ids))
        return query.order_by(self.model.finding_id.asc()).all()

    def history(self, db: Session, finding_id: str, lang: Optional[str] = None) -> List[Any]:
        """All versions for a finding, newest first"""
        return (
            self._scoped(db, finding_id, self.scope_lang(lang))
            .order_by(self.model.version.desc(), self.model.id.desc())
            .all()
        )

    def finding_ids(self, db: Session) -> List[str]:
        return [r[0] for r in db.query(self.model.finding_id).distinct().all()]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def deactivate(self, db: Session, finding_id: str, status: OverrideStatus, lang: Optional[str] = None) -> int:
        return (
            self._scoped(db, finding_id, self.scope_lang(lang))
            .filter(self.model.status == status.value, self._is_active().is_(True))
            .update({self.active_attr: False}, synchronize_session="fetch")
        )

    def _insert_active(
        self,
        db: Session,
        finding_id: str,
        status: OverrideStatus,
        version: int,
        values: Dict[str, Any],
        meta: Dict[str, Any],
        lang: Optional[str] = None,
    ):
        with db.begin_nested():
            self.deactivate(db, finding_id, status, lang)
            row = self.model(
                finding_id=finding_id,
                version=version,
                status=status.value,
                **{self.active_attr: True},
                **values,
                **meta,
            )
            if self.scoped_by_lang:
                row.lang = lang
            db.add(row)
            db.flush()
        return row

    def insert_version(
        self,
        db: Session,
        finding_id: str,
        status: OverrideStatus,
        values: Dict[str, Any],
        meta: Dict[str, Any],
        lang: Optional[str] = None,
    ):
        """
        Insert a new active row under a fresh version, deactivating the previous
        active row of the same status.

        Versions are shared by drafts and published rows of a finding. A
        unique-constraint conflict (concurrent writer) is retried up to
        VERSION_RETRY_LIMIT times.
        """
        lang = self.scope_lang(lang)

        for attempt in range(1, VERSION_RETRY_LIMIT + 1):
            candidate = self.next_version(db, finding_id, lang)
            try:
                return self._insert_active(db, finding_id, status, candidate, values, meta, lang)
            except IntegrityError as e:
                logger.warning(
                    f"Version {candidate} for {self.entity_type.value}/{finding_id} was taken "
                    f"(attempt {attempt}/{VERSION_RETRY_LIMIT}): {e.orig}"
                )

        raise VersionConflictError(
            f"Could not allocate a {self.entity_type.value} version for {finding_id} "
            f"after {VERSION_RETRY_LIMIT} attempts"
        )

    def create_draft(
        self,
        db: Session,
        finding_id: str,
        attrs: Optional[Dict[str, Any]],
        actor: Optional[str] = None,
        note: Optional[str] = None,
        lang: Optional[str] = None,
        source: Optional[str] = None,
    ) -> int:
        """
        Stage a new draft version for a finding.

        Deactivates the current draft (published rows are untouched) and returns
        the new version number.
        """
        finding_id = (finding_id or "").strip()
        if not finding_id:
            raise OverrideValidationError("finding_id is required")
        if self.scoped_by_lang and not (lang or "").strip():
            raise OverrideValidationError("lang is required")
        values = self.validate(attrs).model_dump()

        row = self.insert_version(
            db,
            finding_id,
            OverrideStatus.DRAFT,
            values,
            self.row_meta(actor, note, source),
            lang=lang,
        )
        mark_ledger_changed(db)
        logger.info(f"Draft {self.entity_type.value} v{row.version} staged for {finding_id}")
        return row.version

    def reset_active(self, db: Session, finding_id: str, lang: Optional[str] = None) -> bool:
        """
        Deactivate the active published override so resolution falls back to seed.

        Returns True when a row was deactivated.
        """
        finding_id = (finding_id or "").strip()
        if not finding_id:
            raise OverrideValidationError("finding_id is required")

        count = self.deactivate(db, finding_id, OverrideStatus.PUBLISHED, lang)
        mark_ledger_changed(db)
        if count:
            logger.info(f"Published {self.entity_type.value} override reset for {finding_id}")
        return bool(count)


class DimensionLedger(OverrideLedger):
    entity_type = EntityType.DIMENSIONS
    model = FindingDimensionOverride
    value_model = DimensionSet
    value_fields = DIMENSION_FIELDS
    active_attr = "active"
    scoped_by_lang = False

    def snapshot(self, row) -> Dict[str, Any]:
        data = super().snapshot(row)
        data["note"] = row.note
        return data

    def row_meta(self, actor, note, source) -> Dict[str, Any]:
        return {"updated_by": actor or "admin", "note": note or ""}

    def create_drafts_bulk(
        self,
        db: Session,
        finding_ids: List[str],
        attrs: Optional[Dict[str, Any]],
        actor: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Dict[str, int]:
        """Stage the same dimension draft for every finding; returns finding_id -> version."""
        values = self.validate(attrs).model_dump()
        meta = self.row_meta(actor, note, None)
        versions: Dict[str, int] = {}
        for finding_id in finding_ids:
            if not finding_id or finding_id in versions:
                continue
            row = self.insert_version(db, finding_id, OverrideStatus.DRAFT, values, meta)
            versions[finding_id] = row.version
        mark_ledger_changed(db)
        logger.info(f"Bulk draft staged for {len(versions)} findings")
        return versions


class MessageLedger(OverrideLedger):
    entity_type = EntityType.MESSAGES
    model = FindingMessageOverride
    value_model = MessageSet
    value_fields = MESSAGE_FIELDS
    active_attr = "is_active"
    scoped_by_lang = True

    def snapshot(self, row) -> Dict[str, Any]:
        data = super().snapshot(row)
        data["lang"] = row.lang
        data["source"] = row.source
        return data

    def row_meta(self, actor, note, source) -> Dict[str, Any]:
        return {"updated_by": actor or "admin", "source": source or "manual"}


dimension_ledger = DimensionLedger()
message_ledger = MessageLedger()

