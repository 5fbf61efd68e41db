"""
SQLAlchemy Models for Database
==============================

Override ledger schema:
- Dimension overrides (versioned, draft/published, one active row per status)
- Message overrides (same lifecycle, scoped per language)
- Dimension presets (named value sets for bulk drafts)
- Change log (append-only publish/rollback audit with before/after snapshots)
- Ledger revision counter (store-side watermark for the resolution cache)

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, UniqueConstraint, Index, JSON,
    CheckConstraint, text
)
from sqlalchemy.orm import declarative_base

# Use JSON for cross-database compatibility (works with both PostgreSQL and SQLite)
JSONB = JSON

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class OverrideStatus(str, enum.Enum):
    """Override lifecycle status"""
    DRAFT = "draft"
    PUBLISHED = "published"


class EntityType(str, enum.Enum):
    """Override family recorded in the change log"""
    DIMENSIONS = "dimensions"
    MESSAGES = "messages"


class AuditAction(str, enum.Enum):
    """Change log action"""
    PUBLISH = "publish"
    ROLLBACK = "rollback"


DIMENSION_FIELDS = (
    "safety",
    "urgency",
    "liability",
    "budget_low",
    "budget_high",
    "priority",
    "severity",
    "likelihood",
    "escalation",
)

MESSAGE_FIELDS = (
    "title",
    "observed_condition",
    "why_it_matters",
    "recommended_action",
    "planning_guidance",
    "priority_rationale",
    "risk_interpretation",
    "disclaimer_line",
)


# =============================================================================
# OVERRIDE LEDGER
# =============================================================================

class FindingDimensionOverride(Base):
    """Versioned override of a finding's nine dimensions"""
    __tablename__ = "finding_custom_dimensions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    finding_id = Column(String(255), nullable=False)
    version = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=OverrideStatus.DRAFT.value)
    active = Column(Boolean, nullable=False, default=False)
    version_text = Column(String(100), nullable=True)  # publish label, e.g. "2026-10-18"

    safety = Column(String(20), nullable=True)
    urgency = Column(String(20), nullable=True)
    liability = Column(String(20), nullable=True)
    budget_low = Column(Integer, nullable=True)
    budget_high = Column(Integer, nullable=True)
    priority = Column(String(50), nullable=True)
    severity = Column(Integer, nullable=True)
    likelihood = Column(Integer, nullable=True)
    escalation = Column(String(20), nullable=True)

    note = Column(Text, nullable=True)
    updated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("finding_id", "version", name="uq_fcd_finding_version"),
        CheckConstraint("status in ('draft', 'published')", name="ck_fcd_status"),
        Index("ix_fcd_finding_status", "finding_id", "status"),
        Index(
            "uq_fcd_active_per_status",
            "finding_id",
            "status",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active = true"),
        ),
    )


class FindingMessageOverride(Base):
    """Versioned override of a finding's narrative text for one language"""
    __tablename__ = "finding_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    finding_id = Column(String(255), nullable=False)
    lang = Column(String(20), nullable=False, default="en-AU")
    version = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=OverrideStatus.DRAFT.value)
    is_active = Column(Boolean, nullable=False, default=False)
    version_text = Column(String(100), nullable=True)

    title = Column(Text, nullable=True)
    observed_condition = Column(JSONB, nullable=True)  # ordered list of statements
    why_it_matters = Column(Text, nullable=True)
    recommended_action = Column(Text, nullable=True)
    planning_guidance = Column(Text, nullable=True)
    priority_rationale = Column(Text, nullable=True)
    risk_interpretation = Column(Text, nullable=True)
    disclaimer_line = Column(Text, nullable=True)

    source = Column(String(100), nullable=False, default="manual")
    updated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("finding_id", "lang", "version", name="uq_fm_finding_lang_version"),
        CheckConstraint("status in ('draft', 'published')", name="ck_fm_status"),
        Index("ix_fm_finding_lang_status", "finding_id", "lang", "status"),
        Index(
            "uq_fm_active_per_status",
            "finding_id",
            "lang",
            "status",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active = true"),
        ),
    )


# =============================================================================
# PRESETS
# =============================================================================

class DimensionPreset(Base):
    """Named set of dimension values applied by bulk drafts"""
    __tablename__ = "dimension_presets"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)

    safety = Column(String(20), nullable=True)
    urgency = Column(String(20), nullable=True)
    liability = Column(String(20), nullable=True)
    budget_low = Column(Integer, nullable=True)
    budget_high = Column(Integer, nullable=True)
    priority = Column(String(50), nullable=True)
    severity = Column(Integer, nullable=True)
    likelihood = Column(Integer, nullable=True)
    escalation = Column(String(20), nullable=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_dp_name", "name"),
    )


# =============================================================================
# AUDIT
# =============================================================================

class FindingChangeLog(Base):
    """Publish/rollback audit entry. Never updated or deleted."""
    __tablename__ = "finding_change_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(20), nullable=False)
    finding_id = Column(String(255), nullable=True)  # null = batch-level entry
    lang = Column(String(20), nullable=True)  # null for dimensions
    action = Column(String(20), nullable=False)
    from_version = Column(String(100), nullable=True)
    to_version = Column(String(100), nullable=True)
    actor = Column(String(255), nullable=True)
    diff_json = Column(JSONB, nullable=False)  # {"before": {...} | null, "after": {...} | null}
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("entity_type in ('messages', 'dimensions')", name="ck_fcl_entity_type"),
        CheckConstraint("action in ('publish', 'rollback')", name="ck_fcl_action"),
        Index("ix_fcl_entity_finding", "entity_type", "finding_id"),
        Index("ix_fcl_entity_lang", "entity_type", "finding_id", "lang"),
        Index("ix_fcl_version", "to_version", "action"),
        Index("ix_fcl_created", "created_at"),
    )


class LedgerRevision(Base):
    """Single-row change counter, bumped by every ledger mutation"""
    __tablename__ = "ledger_revisions"

    id = Column(Integer, primary_key=True)
    revision = Column(Integer, nullable=False, default=0)
    token = Column(String(36), nullable=False, default=generate_uuid)  # changes on every bump
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
