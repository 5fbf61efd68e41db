"""
Database Package - PostgreSQL with SQLAlchemy
==============================================

Override ledger, dimension presets, change log and revision counter.
"""

from .models import (
    Base,
    FindingDimensionOverride, FindingMessageOverride,
    FindingChangeLog, LedgerRevision,
    DimensionPreset,
    OverrideStatus, EntityType, AuditAction,
    DIMENSION_FIELDS, MESSAGE_FIELDS,
)
from .session import get_db, get_db_session, init_db, get_engine, reset_engine, is_db_configured

__all__ = [
    # Base
    "Base",
    # Ledger
    "FindingDimensionOverride", "FindingMessageOverride",
    # Audit
    "FindingChangeLog", "LedgerRevision",
    # Presets
    "DimensionPreset",
    # Enums
    "OverrideStatus", "EntityType", "AuditAction",
    "DIMENSION_FIELDS", "MESSAGE_FIELDS",
    # Session
    "get_db", "get_db_session", "init_db", "get_engine", "reset_engine", "is_db_configured",
]
