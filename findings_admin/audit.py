"""
Audit logging for finding dimensions and messages publish/rollback actions.

Every publish or rollback of one finding appends exactly one change log row
with before/after snapshots. Rollback reads these snapshots back, so the log
is written in the same transaction as the ledger change: if the audit insert
fails, the ledger change for that finding is rolled back with it.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from .db.models import FindingChangeLog, EntityType, AuditAction
from .errors import MissingAuditTrailError

logger = logging.getLogger(__name__)


def log_change(
    db: Session,
    entity_type: EntityType,
    action: AuditAction,
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
    finding_id: Optional[str] = None,
    lang: Optional[str] = None,
    from_version: Optional[str] = None,
    to_version: Optional[str] = None,
    actor: Optional[str] = None,
) -> FindingChangeLog:
    """Append a change (publish or rollback) to the audit log."""
    entry = FindingChangeLog(
        entity_type=entity_type.value,
        finding_id=finding_id,
        lang=lang,
        action=action.value,
        from_version=from_version,
        to_version=to_version,
        actor=actor,
        diff_json={"before": before, "after": after},
    )
    db.add(entry)
    db.flush()
    return entry


def get_last_publish_log(
    db: Session,
    entity_type: EntityType,
    to_version: str,
    finding_id: Optional[str] = None,
    lang: Optional[str] = None,
) -> Optional[FindingChangeLog]:
    """Most recent publish entry for a version label (optionally per finding/lang)."""
    query = db.query(FindingChangeLog).filter(
        FindingChangeLog.entity_type == entity_type.value,
        FindingChangeLog.to_version == to_version,
        FindingChangeLog.action == AuditAction.PUBLISH.value,
    )
    if finding_id:
        query = query.filter(FindingChangeLog.finding_id == finding_id)
    if lang:
        query = query.filter(FindingChangeLog.lang == lang)
    return query.order_by(FindingChangeLog.created_at.desc(), FindingChangeLog.id.desc()).first()


def get_restorable_snapshot(
    db: Session,
    entity_type: EntityType,
    to_version: str,
    finding_id: str,
    lang: Optional[str] = None,
) -> Tuple[FindingChangeLog, Dict[str, Any]]:
    """
    Publish entry and its `before` snapshot for a rollback.

    Raises MissingAuditTrailError when there is no matching publish, or when
    that publish had nothing published before it.
    """
    entry = get_last_publish_log(db, entity_type, to_version, finding_id, lang)
    if entry is None:
        raise MissingAuditTrailError(f"no publish of {to_version} recorded")
    before = (entry.diff_json or {}).get("before")
    if not before:
        raise MissingAuditTrailError(f"nothing was published before {to_version}")
    return entry, before


def get_publish_history(
    db: Session,
    entity_type: EntityType,
    finding_id: str,
    lang: Optional[str] = None,
) -> List[FindingChangeLog]:
    """All change log entries for a finding (for history), newest first."""
    query = db.query(FindingChangeLog).filter(
        FindingChangeLog.entity_type == entity_type.value,
        FindingChangeLog.finding_id == finding_id,
    )
    if lang:
        query = query.filter(FindingChangeLog.lang == lang)
    return query.order_by(FindingChangeLog.created_at.desc(), FindingChangeLog.id.desc()).all()


def published_targets(
    db: Session,
    entity_type: EntityType,
    to_version: str,
    lang: Optional[str] = None,
) -> List[Tuple[str, Optional[str]]]:
    """Distinct (finding_id, lang) pairs that were published under a version label."""
    query = db.query(FindingChangeLog.finding_id, FindingChangeLog.lang).filter(
        FindingChangeLog.entity_type == entity_type.value,
        FindingChangeLog.to_version == to_version,
        FindingChangeLog.action == AuditAction.PUBLISH.value,
        FindingChangeLog.finding_id.isnot(None),
    )
    if lang:
        query = query.filter(FindingChangeLog.lang == lang)
    rows = query.distinct().all()
    return sorted(((r[0], r[1]) for r in rows), key=lambda pair: (pair[0], pair[1] or ""))


def entry_to_dict(entry: FindingChangeLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "entity_type": entry.entity_type,
        "finding_id": entry.finding_id,
        "lang": entry.lang,
        "action": entry.action,
        "from_version": entry.from_version,
        "to_version": entry.to_version,
        "actor": entry.actor,
        "diff_json": entry.diff_json or {"before": None, "after": None},
        "created_at": entry.created_at,
    }
