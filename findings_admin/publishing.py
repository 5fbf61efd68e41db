"""
Publish / Rollback
==================

Moves override drafts to published state and restores earlier published
snapshots from the change log.

Per (finding_id, family[, lang]) the ledger is in one of four states:
no-override, draft-only, published-only, draft+published. Publishing turns
draft-only or draft+published into published-only. Rolling back replaces the
active published row with the snapshot that preceded a publish label.

Batches are processed one finding at a time, each inside its own SAVEPOINT.
A failure rolls back only that finding and is reported as
"<finding_id>: <message>" in the result; the rest of the batch carries on.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import audit
from .config import get_default_lang
from .db.models import AuditAction, OverrideStatus
from .errors import MissingAuditTrailError, OverrideValidationError
from .ledger import OverrideLedger, dimension_ledger, mark_ledger_changed, message_ledger
from .schemas import PublishResult, RollbackResult

logger = logging.getLogger(__name__)


def default_version_label() -> str:
    """Today's ISO date, used when a publish has no explicit label"""
    return date.today().isoformat()


def _published_meta(ledger: OverrideLedger, row, actor: Optional[str]) -> Dict[str, Any]:
    return ledger.row_meta(row.updated_by or actor, getattr(row, "note", None), getattr(row, "source", None))


def _snapshot_meta(ledger: OverrideLedger, snapshot: Dict[str, Any], actor: Optional[str]) -> Dict[str, Any]:
    return ledger.row_meta(snapshot.get("updated_by") or actor, snapshot.get("note"), snapshot.get("source"))


def _insert_published(
    ledger: OverrideLedger,
    db: Session,
    finding_id: str,
    values: Dict[str, Any],
    meta: Dict[str, Any],
    lang: Optional[str] = None,
):
    """Insert an active published row under a fresh version (deactivating the previous one)."""
    return ledger.insert_version(db, finding_id, OverrideStatus.PUBLISHED, values, meta, lang=lang)


# =============================================================================
# PUBLISH
# =============================================================================

def _publish_one(
    db: Session,
    ledger: OverrideLedger,
    draft,
    label: str,
    actor: Optional[str],
    lang: Optional[str],
) -> None:
    finding_id = draft.finding_id
    current = ledger.active_row(db, finding_id, OverrideStatus.PUBLISHED, lang)
    before = ledger.snapshot(current) if current is not None else None

    values = {f: getattr(draft, f) for f in ledger.value_fields}
    meta = dict(_published_meta(ledger, draft, actor), version_text=label)
    row = _insert_published(ledger, db, finding_id, values, meta, lang=lang)
    after = dict(ledger.snapshot(row), draft_version=draft.version)

    audit.log_change(
        db,
        ledger.entity_type,
        AuditAction.PUBLISH,
        before=before,
        after=after,
        finding_id=finding_id,
        lang=ledger.scope_lang(lang),
        from_version=before.get("version_text") if before else None,
        to_version=label,
        actor=actor or draft.updated_by or "admin",
    )
    ledger.deactivate(db, finding_id, OverrideStatus.DRAFT, lang)


def _publish(
    db: Session,
    ledger: OverrideLedger,
    finding_ids: Optional[List[str]],
    version_label: Optional[str],
    actor: Optional[str],
    lang: Optional[str] = None,
) -> PublishResult:
    label = (version_label or "").strip() or default_version_label()
    drafts = ledger.active_drafts(db, finding_ids or None, lang)
    result = PublishResult(version=label, lang=lang, total_drafts=len(drafts))

    for draft in drafts:
        finding_id = draft.finding_id
        try:
            with db.begin_nested():
                _publish_one(db, ledger, draft, label, actor, lang)
            result.published += 1
        except Exception as e:
            result.skipped += 1
            result.errors.append(f"{finding_id}: {e}")
            logger.warning(f"Publish of {ledger.entity_type.value} for {finding_id} failed: {e}")

    mark_ledger_changed(db)
    logger.info(
        f"Published {ledger.entity_type.value} {label}"
        f"{' [' + lang + ']' if lang else ''}: "
        f"{result.published} published, {result.skipped} skipped of {result.total_drafts} drafts"
    )
    return result


def publish_dimensions(
    db: Session,
    finding_ids: Optional[List[str]] = None,
    version_label: Optional[str] = None,
    actor: Optional[str] = None,
) -> PublishResult:
    """
    Publish active dimension drafts.

    Args:
        finding_ids: restrict to these findings (empty/None = all active drafts)
        version_label: human label for this publish (default: today's date)
        actor: recorded in the change log

    Returns:
        PublishResult with per-batch counts and per-finding errors
    """
    return _publish(db, dimension_ledger, finding_ids, version_label, actor)


def publish_messages(
    db: Session,
    finding_ids: Optional[List[str]] = None,
    lang: Optional[str] = None,
    version_label: Optional[str] = None,
    actor: Optional[str] = None,
) -> PublishResult:
    """Publish active message drafts for one language."""
    lang = (lang or "").strip() or get_default_lang()
    return _publish(db, message_ledger, finding_ids, version_label, actor, lang)


# =============================================================================
# ROLLBACK
# =============================================================================

def _rollback_one(
    db: Session,
    ledger: OverrideLedger,
    finding_id: str,
    label: str,
    actor: Optional[str],
    lang: Optional[str],
) -> None:
    entry, restored = audit.get_restorable_snapshot(db, ledger.entity_type, label, finding_id, lang)

    current = ledger.active_row(db, finding_id, OverrideStatus.PUBLISHED, lang)
    if current is not None:
        before = ledger.snapshot(current)
    else:
        before = (entry.diff_json or {}).get("after")

    values = ledger.validate(ledger.values_from_snapshot(restored)).model_dump()
    meta = dict(_snapshot_meta(ledger, restored, actor), version_text=restored.get("version_text"))
    row = _insert_published(ledger, db, finding_id, values, meta, lang=lang)

    audit.log_change(
        db,
        ledger.entity_type,
        AuditAction.ROLLBACK,
        before=before,
        after=ledger.snapshot(row),
        finding_id=finding_id,
        lang=ledger.scope_lang(lang),
        from_version=label,
        to_version=restored.get("version_text"),
        actor=actor or "admin",
    )


def _rollback(
    db: Session,
    ledger: OverrideLedger,
    to_version: Optional[str],
    finding_ids: Optional[List[str]],
    actor: Optional[str],
    lang: Optional[str] = None,
) -> RollbackResult:
    label = (to_version or "").strip()
    if not label:
        raise OverrideValidationError("version is required")

    if finding_ids:
        targets = list(dict.fromkeys(fid for fid in finding_ids if fid))
    else:
        targets = [fid for fid, _ in audit.published_targets(db, ledger.entity_type, label, ledger.scope_lang(lang))]

    result = RollbackResult(version=label, lang=lang)
    for finding_id in targets:
        try:
            with db.begin_nested():
                _rollback_one(db, ledger, finding_id, label, actor, lang)
            result.rolled_back += 1
        except MissingAuditTrailError as e:
            result.skipped += 1
            logger.info(f"Rollback of {ledger.entity_type.value} for {finding_id} skipped: {e}")
        except Exception as e:
            result.skipped += 1
            result.errors.append(f"{finding_id}: {e}")
            logger.warning(f"Rollback of {ledger.entity_type.value} for {finding_id} failed: {e}")

    mark_ledger_changed(db)
    logger.info(
        f"Rolled back {ledger.entity_type.value} from {label}"
        f"{' [' + lang + ']' if lang else ''}: "
        f"{result.rolled_back} restored, {result.skipped} skipped"
    )
    return result


def rollback_dimensions(
    db: Session,
    to_version: Optional[str],
    finding_ids: Optional[List[str]] = None,
    actor: Optional[str] = None,
) -> RollbackResult:
    """
    Restore the published dimensions that preceded publish label `to_version`.

    Findings with no matching publish entry, or whose publish had nothing
    before it, are counted as skipped.
    """
    return _rollback(db, dimension_ledger, to_version, finding_ids, actor)


def rollback_messages(
    db: Session,
    to_version: Optional[str],
    finding_ids: Optional[List[str]] = None,
    lang: Optional[str] = None,
    actor: Optional[str] = None,
) -> RollbackResult:
    """Restore the published messages that preceded publish label `to_version`."""
    lang = (lang or "").strip() or get_default_lang()
    return _rollback(db, message_ledger, to_version, finding_ids, actor, lang)
