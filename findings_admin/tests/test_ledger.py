"""
Override Ledger Tests
=====================

Draft creation, version allocation, single-active rows and reset.
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
    db_path = tmp_path / "ledger.db"
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


def _active_counts(db, model, active_attr):
    from sqlalchemy import func

    rows = (
        db.query(model.finding_id, model.status, func.count(model.id))
        .filter(getattr(model, active_attr).is_(True))
        .group_by(model.finding_id, model.status)
        .all()
    )
    return {(fid, status): count for fid, status, count in rows}


# =============================================================================
# Drafts
# =============================================================================

class TestCreateDraft:

    def test_first_draft_is_version_one(self, db):
        from findings_admin.ledger import dimension_ledger

        version = dimension_ledger.create_draft(db, "GPO_NO_RCD_PROTECTION", {"safety": "moderate"}, actor="alice")
        db.commit()

        assert version == 1
        from findings_admin.db.models import OverrideStatus
        row = dimension_ledger.active_row(db, "GPO_NO_RCD_PROTECTION", OverrideStatus.DRAFT)
        assert row.version == 1
        assert row.safety == "MODERATE"
        assert row.updated_by == "alice"
        assert row.status == "draft"

    def test_versions_strictly_increase(self, db):
        from findings_admin.ledger import dimension_ledger

        versions = [
            dimension_ledger.create_draft(db, "F1", {"severity": s}) for s in (1, 2, 3)
        ]
        db.commit()

        assert versions == [1, 2, 3]

    def test_new_draft_deactivates_previous_draft_only(self, db):
        from findings_admin.db.models import FindingDimensionOverride, OverrideStatus
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", {"priority": "URGENT"})
        publish_dimensions(db, ["F1"], "v1")
        dimension_ledger.create_draft(db, "F1", {"priority": "IMMEDIATE"})
        dimension_ledger.create_draft(db, "F1", {"priority": "PLAN_MONITOR"})
        db.commit()

        counts = _active_counts(db, FindingDimensionOverride, "active")
        assert counts == {("F1", "draft"): 1, ("F1", "published"): 1}
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.DRAFT).priority == "PLAN_MONITOR"
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED).priority == "URGENT"

    def test_invalid_payload_writes_nothing(self, db):
        from findings_admin.db.models import FindingDimensionOverride
        from findings_admin.errors import OverrideValidationError
        from findings_admin.ledger import dimension_ledger

        with pytest.raises(OverrideValidationError):
            dimension_ledger.create_draft(db, "F1", {"severity": 9})
        with pytest.raises(OverrideValidationError):
            dimension_ledger.create_draft(db, "F1", {"colour": "red"})
        with pytest.raises(OverrideValidationError):
            dimension_ledger.create_draft(db, "F1", {"budget_low": 500, "budget_high": 100})

        assert db.query(FindingDimensionOverride).count() == 0

    def test_missing_finding_id_rejected(self, db):
        from findings_admin.errors import OverrideValidationError
        from findings_admin.ledger import dimension_ledger

        with pytest.raises(OverrideValidationError):
            dimension_ledger.create_draft(db, "  ", {"safety": "LOW"})

    def test_message_drafts_are_scoped_by_lang(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import message_ledger

        assert message_ledger.create_draft(db, "F1", {"title": "Hello"}, lang="en-AU") == 1
        assert message_ledger.create_draft(db, "F1", {"title": "你好"}, lang="zh-CN") == 1
        assert message_ledger.create_draft(db, "F1", {"title": "Hello again"}, lang="en-AU") == 2
        db.commit()

        assert message_ledger.active_row(db, "F1", OverrideStatus.DRAFT, "zh-CN").title == "你好"
        assert message_ledger.active_row(db, "F1", OverrideStatus.DRAFT, "en-AU").version == 2

    def test_message_draft_requires_lang(self, db):
        from findings_admin.errors import OverrideValidationError
        from findings_admin.ledger import message_ledger

        with pytest.raises(OverrideValidationError):
            message_ledger.create_draft(db, "F1", {"title": "x"}, lang="")

    def test_observed_condition_string_becomes_list(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import message_ledger

        message_ledger.create_draft(db, "F1", {"observed_condition": "Cracked tile"}, lang="en-AU")
        db.commit()

        row = message_ledger.active_row(db, "F1", OverrideStatus.DRAFT, "en-AU")
        assert row.observed_condition == ["Cracked tile"]

    def test_bulk_drafts_one_per_finding(self, db):
        from findings_admin.ledger import dimension_ledger

        dimension_ledger.create_draft(db, "F2", {"safety": "LOW"})
        versions = dimension_ledger.create_drafts_bulk(
            db, ["F1", "F2", "F1", ""], {"liability": "medium"}, actor="ops", note="Bulk update"
        )
        db.commit()

        assert versions == {"F1": 1, "F2": 2}


# =============================================================================
# Version allocation
# =============================================================================

class TestVersionAllocation:

    def test_stale_version_is_retried(self, db, monkeypatch):
        from findings_admin.ledger import dimension_ledger, DimensionLedger

        dimension_ledger.create_draft(db, "F1", {"severity": 1})
        db.commit()

        calls = []
        real_next_version = DimensionLedger.next_version

        def racing_next_version(db_, finding_id, lang=None):
            calls.append(finding_id)
            if len(calls) == 1:
                return 1  # another writer already took version 1
            return real_next_version(dimension_ledger, db_, finding_id, lang)

        monkeypatch.setattr(dimension_ledger, "next_version", racing_next_version)
        version = dimension_ledger.create_draft(db, "F1", {"severity": 2})
        db.commit()

        assert version == 2
        assert len(calls) == 2

    def test_exhausted_retries_raise_conflict(self, db, monkeypatch):
        from findings_admin.db.models import FindingDimensionOverride
        from findings_admin.errors import VersionConflictError
        from findings_admin.ledger import VERSION_RETRY_LIMIT, dimension_ledger

        dimension_ledger.create_draft(db, "F1", {"severity": 1})
        db.commit()

        calls = []

        def always_stale(db_, finding_id, lang=None):
            calls.append(finding_id)
            return 1

        monkeypatch.setattr(dimension_ledger, "next_version", always_stale)
        with pytest.raises(VersionConflictError):
            dimension_ledger.create_draft(db, "F1", {"severity": 2})

        assert len(calls) == VERSION_RETRY_LIMIT
        # The failed attempts left the existing draft untouched
        db.rollback()
        rows = db.query(FindingDimensionOverride).all()
        assert [(r.version, r.active) for r in rows] == [(1, True)]


# =============================================================================
# Reset / revision
# =============================================================================

class TestResetAndRevision:

    def test_reset_deactivates_published_only(self, db):
        from findings_admin.db.models import OverrideStatus
        from findings_admin.ledger import dimension_ledger
        from findings_admin.publishing import publish_dimensions

        dimension_ledger.create_draft(db, "F1", {"safety": "LOW"})
        publish_dimensions(db, ["F1"], "v1")
        dimension_ledger.create_draft(db, "F1", {"safety": "HIGH"})
        db.commit()

        assert dimension_ledger.reset_active(db, "F1") is True
        db.commit()

        assert dimension_ledger.active_row(db, "F1", OverrideStatus.PUBLISHED) is None
        assert dimension_ledger.active_row(db, "F1", OverrideStatus.DRAFT).safety == "HIGH"
        # Nothing inserted by reset
        assert [r.version for r in dimension_ledger.history(db, "F1")] == [3, 2, 1]

    def test_reset_without_override_is_noop(self, db):
        from findings_admin.ledger import dimension_ledger

        assert dimension_ledger.reset_active(db, "F1") is False

    def test_every_mutation_bumps_revision(self, db):
        from findings_admin.ledger import current_revision, dimension_ledger

        start = current_revision(db)
        dimension_ledger.create_draft(db, "F1", {"safety": "LOW"})
        after_draft = current_revision(db)
        dimension_ledger.reset_active(db, "F1")
        after_reset = current_revision(db)

        assert after_draft[0] == start[0] + 1
        assert after_reset[0] == start[0] + 2
        assert len({start[1], after_draft[1], after_reset[1]}) == 3

    def test_history_newest_first(self, db):
        from findings_admin.ledger import dimension_ledger

        for severity in (1, 2, 3):
            dimension_ledger.create_draft(db, "F1", {"severity": severity})
        db.commit()

        history = dimension_ledger.history(db, "F1")
        assert [r.version for r in history] == [3, 2, 1]
        assert [r.active for r in history] == [True, False, False]
