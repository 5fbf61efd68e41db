"""
Publish / Rollback Tests
========================

State transitions, change log snapshots, partial batch failure and the
publish-then-rollback round trip.
"""

import os
from pathlib import Path

import pytest

# Add parent to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))


@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    from findings_admin.db.session import reset_engine, init_db
    from findings_admin.cache import invalidate_effective_cache

    old_db_url = os.environ.get("DATABASE_URL")
    db_path = tmp_path / "publishing.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    reset_engine()
    init_db()
    invalidate_effective_cache()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()
    invalidate_effective_cache()


@pytest.fixture
def db(sqlalchemy_db):
    from findings_admin.db.session import SessionLocal

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def catalog():
    from findings_admin.catalog import catalog_from_dict
    return catalog_from_dict({
        "findings": {
            "F1": {"title": "Finding one", "dimensions": {"safety": "LOW", "priority": "PLAN_MONITOR"}},
            "F2": {"title": "Finding two", "dimensions": {"safety": "LOW"}},
        }
    })


A = {"safety": "MODERATE", "priority": "URGENT", "severity": 3}
B = {"safety": "HIGH", "priority": "IMMEDIATE", "severity": 5}
ROW_FIELDS = ("safety", "urgency", "liability", "budget_low", "budget_high",
              "priority", "severity", "likelihood", "escalation")


def _fields(snapshot):
    return {f: snapshot.get(f) for f in ROW_FIELDS}


def _entries(db, action=None):
    from findings_admin.db.models import FindingChangeLog

    query = db.query(FindingChangeLog)
    if action:
        query = query.filter(FindingChangeLog.action == action)
    return query.order_by(FindingChangeLog.id.asc()).all()


# =============================================================================
# Publish
# =============================================================================

class TestPublish:

    def test_publish_moves_draft_to_published(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", A, actor="alice", note="first pass")
        result = publish_dimensions(db, version_label="2026-Q4", actor="bob")
        db.commit()

        assert result.version == "2026-Q4"
        assert (result.published, result.skipped, result.total_drafts) == (1, 0, 1)
        assert result.errors == []

        published = dimension_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED)
        assert published.version == 2
        assert published.version_text == "2026-Q4"
        assert _entries(db)[0].diff_json["after"]["draft_version"] == 1
        assert published.note == "first pass"
        assert published.priority == "URGENT"
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.DRAFT) is None

    def test_default_label_is_today(self, db):
        from datetime import date
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        result = publish_dimensions(db, version_label="   ")

        assert result.version == date.today().isoformat()

    def test_publish_restricted_to_finding_ids(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        dimension_ledger.create_draft(db, "F2", B)
        result = publish_dimensions(db, ["F2"], "v1")
        db.commit()

        assert (result.published, result.total_drafts) == (1, 1)
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.DRAFT) is not None
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED) is None

    def test_publish_with_no_drafts(self, db):
        from findings_admin.publishing import publish_dimensions

        result = publish_dimensions(db, version_label="v1")
        assert (result.published, result.skipped, result.total_drafts) == (0, 0, 0)
        assert _entries(db) == []

    def test_partial_failure_keeps_other_findings(self, db, monkeypatch, catalog):
        from findings_admin import publishing
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import dimension_ledger
        from findings_admin.resolution import resolve_effective

        dimension_ledger.create_draft(db, "F1", A)
        dimension_ledger.create_draft(db, "F2", B)
        db.commit()

        real_insert = publishing._insert_published

        def failing_insert(ledger, db_, finding_id, *args, **kwargs):
            if finding_id == "F2":
                raise RuntimeError("disk full")
            return real_insert(ledger, db_, finding_id, *args, **kwargs)

        monkeypatch.setattr(publishing, "_insert_published", failing_insert)
        result = publishing.publish_dimensions(db, version_label="v1")
        db.commit()

        assert (result.published, result.skipped, result.total_drafts) == (1, 1, 2)
        assert result.errors == ["F2: disk full"]

        assert resolve_effective(db, "F1", catalog=catalog).dimensions.priority == "URGENT"
        assert resolve_effective(db, "F2", catalog=catalog).dimensions_source == "seed"
        assert dimension_ledger.active_row(db, "F2", OverrideStatus.DRAFT) is not None
        assert [e.finding_id for e in _entries(db)] == ["F1"]

    def test_audit_failure_rolls_back_that_finding(self, db, monkeypatch):
        from findings_admin import audit
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        db.commit()

        def broken_log(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(audit, "log_change", broken_log)
        result = publish_dimensions(db, version_label="v1")
        db.commit()

        assert (result.published, result.skipped) == (0, 1)
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED) is None
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.DRAFT) is not None

    def test_messages_publish_per_lang(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import message_ledger
        from findings_admin.publishing import publish_messages

        message_ledger.create_draft(db, "F1", {"title": "Hello"}, lang="en-AU")
        message_ledger.create_draft(db, "F1", {"title": "你好"}, lang="zh-CN")
        result = publish_messages(db, lang="zh-CN", version_label="v1")
        db.commit()

        assert (result.published, result.lang) == (1, "zh-CN")
        assert message_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED, "zh-CN").title == "你好"
        assert message_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED, "en-AU") is None
        assert message_ledger.active_row(db, "F1", OverrideStatus.DRAFT, "en-AU") is not None

        entry = _entries(db)[0]
        assert (entry.entity_type, entry.lang, entry.to_version) == ("messages", "zh-CN", "v1")


# =============================================================================
# Audit
# =============================================================================

class TestPublishAudit:

    def test_two_publishes_chain_snapshots(self, db):
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1", actor="alice")
        dimension_ledger.create_draft(db, "F1", B)
        publish_dimensions(db, version_label="v2", actor="alice")
        db.commit()

        first, second = _entries(db, "publish")
        assert first.diff_json["before"] is None
        assert first.from_version is None
        assert second.from_version == "v1"
        assert second.to_version == "v2"
        chained = dict(first.diff_json["after"])
        assert chained.pop("draft_version") == 1
        assert second.diff_json["before"] == chained
        assert _fields(second.diff_json["after"])["priority"] == "IMMEDIATE"
        assert second.actor == "alice"

    def test_change_history_newest_first(self, db):
        from findings_admin import audit
        from findings_admin.db.models import EntityType
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1")
        dimension_ledger.create_draft(db, "F1", B)
        publish_dimensions(db, version_label="v2")
        rollback_dimensions(db, "v2")
        db.commit()

        history = audit.get_publish_history(db, EntityType.DIMENSIONS, "F1")
        assert [e.action for e in history] == ["rollback", "publish", "publish"]
        assert audit.entry_to_dict(history[0])["to_version"] == "v1"

    def test_restorable_snapshot_requires_before(self, db):
        from findings_admin import audit
        from findings_admin.db.models import EntityType
        from findings_admin.errors import MissingAuditTrailError
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1")

        with pytest.raises(MissingAuditTrailError):
            audit.get_restorable_snapshot(db, EntityType.DIMENSIONS, "v1", "F1")
        with pytest.raises(MissingAuditTrailError):
            audit.get_restorable_snapshot(db, EntityType.DIMENSIONS, "v9", "F1")


# =============================================================================
# Rollback
# =============================================================================

class TestRollback:

    def test_version_is_required(self, db):
        from findings_admin.errors import OverrideValidationError
        from findings_admin.publishing import rollback_dimensions

        with pytest.raises(OverrideValidationError):
            rollback_dimensions(db, "  ")

    def test_round_trip_same_label_restores_previous(self, db, catalog):
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions
        from findings_admin.resolution import resolve_effective

        dimension_ledger.create_draft(db, "F1", A)
        first = publish_dimensions(db)
        dimension_ledger.create_draft(db, "F1", B)
        second = publish_dimensions(db)
        db.commit()
        assert first.version == second.version

        assert resolve_effective(db, "F1", catalog=catalog).dimensions.priority == "IMMEDIATE"

        result = rollback_dimensions(db, second.version, actor="carol")
        db.commit()

        assert (result.rolled_back, result.skipped) == (1, 0)
        effective = resolve_effective(db, "F1", catalog=catalog)
        assert effective.dimensions.priority == "URGENT"
        assert effective.dimensions.safety == "MODERATE"

        entry = _entries(db, "rollback")[0]
        assert _fields(entry.diff_json["after"]) == _fields(dict.fromkeys(ROW_FIELDS) | A)
        assert _fields(entry.diff_json["before"])["priority"] == "IMMEDIATE"
        assert entry.from_version == second.version
        assert entry.to_version == first.version
        assert entry.actor == "carol"

    def test_rollback_allocates_fresh_version(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1")
        dimension_ledger.create_draft(db, "F1", B)
        publish_dimensions(db, version_label="v2")
        rollback_dimensions(db, "v2")
        next_draft = dimension_ledger.create_draft(db, "F1", A)
        db.commit()

        restored = dimension_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED)
        assert restored.version == 5
        assert restored.version_text == "v1"
        assert next_draft == 6

    def test_publish_after_rollback_with_pending_draft(self, db, catalog):
        """A draft staged before a rollback still publishes above the restored row"""
        from findings_admin.db.models import FindingDimensionOverride
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions
        from findings_admin.resolution import resolve_effective

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1")
        dimension_ledger.create_draft(db, "F1", B)
        publish_dimensions(db, version_label="v2")
        pending = dimension_ledger.create_draft(db, "F1", B)
        rollback_dimensions(db, "v2")
        result = publish_dimensions(db, version_label="v3")
        db.commit()

        assert (pending, result.published) == (5, 1)
        versions = [r.version for r in db.query(FindingDimensionOverride).order_by(FindingDimensionOverride.id).all()]
        assert versions == sorted(set(versions))
        assert versions == [1, 2, 3, 4, 5, 6, 7]

        effective = resolve_effective(db, "F1", catalog=catalog)
        assert (effective.override_version, effective.dimensions.priority) == (7, "IMMEDIATE")
        assert _entries(db, "publish")[-1].diff_json["after"]["draft_version"] == 5

    def test_first_publish_rollback_is_skipped(self, db, catalog):
        """seed -> draft v1 -> publish (nothing before) -> rollback has nothing to restore"""
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions
        from findings_admin.resolution import resolve_effective

        assert resolve_effective(db, "F1", catalog=catalog).dimensions_source == "seed"
        assert dimension_ledger.create_draft(db, "F1", A) == 1
        published = publish_dimensions(db, version_label="v1")
        db.commit()

        assert published.published == 1
        assert _entries(db, "publish")[0].diff_json["before"] is None

        result = rollback_dimensions(db, "v1")
        db.commit()

        assert (result.rolled_back, result.skipped) == (0, 1)
        assert result.errors == []
        assert _entries(db, "rollback") == []
        effective = resolve_effective(db, "F1", catalog=catalog)
        assert effective.dimensions_source == "override"
        assert effective.override_version == 2

    def test_explicit_ids_without_publish_are_skipped(self, db):
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1")
        dimension_ledger.create_draft(db, "F1", B)
        publish_dimensions(db, version_label="v2")

        result = rollback_dimensions(db, "v2", finding_ids=["F1", "F2"])

        assert (result.rolled_back, result.skipped) == (1, 1)

    def test_rollback_after_reset_uses_publish_after_as_before(self, db):
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1")
        dimension_ledger.create_draft(db, "F1", B)
        publish_dimensions(db, version_label="v2")
        dimension_ledger.reset_active(db, "F1")

        result = rollback_dimensions(db, "v2")
        db.commit()

        assert result.rolled_back == 1
        publish_v2 = _entries(db, "publish")[-1]
        entry = _entries(db, "rollback")[0]
        assert entry.diff_json["before"] == publish_v2.diff_json["after"]

    def test_messages_rollback_scoped_by_lang(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import message_ledger
        from findings_admin.publishing import publish_messages, rollback_messages

        for title in ("One", "Two"):
            message_ledger.create_draft(db, "F1", {"title": title}, lang="en-AU")
            message_ledger.create_draft(db, "F1", {"title": title + " (zh)"}, lang="zh-CN")
            publish_messages(db, lang="en-AU", version_label=title)
            publish_messages(db, lang="zh-CN", version_label=title)

        result = rollback_messages(db, "Two", lang="zh-CN")
        db.commit()

        assert result.rolled_back == 1
        assert message_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED, "zh-CN").title == "One (zh)"
        assert message_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED, "en-AU").title == "Two"

    def test_single_active_row_after_mixed_sequence(self, db):
        from sqlalchemy import func
        from findings_admin.db.models import FindingDimensionOverride
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions, rollback_dimensions

        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v1")
        dimension_ledger.create_draft(db, "F1", B)
        dimension_ledger.create_draft(db, "F1", A)
        publish_dimensions(db, version_label="v2")
        rollback_dimensions(db, "v2")
        dimension_ledger.create_draft(db, "F1", B)
        dimension_ledger.reset_active(db, "F1")
        rollback_dimensions(db, "v2")
        db.commit()

        counts = (
            db.query(FindingDimensionOverride.status, func.count(FindingDimensionOverride.id))
            .filter(FindingDimensionOverride.active.is_(True))
            .group_by(FindingDimensionOverride.status)
            .all()
        )
        assert dict(counts) == {"draft": 1, "published": 1}

        # Every inserted row takes the next version, whatever its status
        versions = [r.version for r in db.query(FindingDimensionOverride).order_by(FindingDimensionOverride.id).all()]
        assert versions == [1, 2, 3, 4, 5, 6, 7, 8]
