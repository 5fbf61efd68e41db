"""
Effective Resolution
====================

Computes the effective dimensions and messages of each finding from the seed
catalog and the override ledger.

Precedence by mode:
- PRODUCTION:    active published override, else seed
- PREVIEW_DRAFT: active draft, else active published, else seed

Overrides are whole records. A winning override supplies every field, and
fields it leaves unset resolve to None rather than to the seed value.
The two outcomes are kept apart as `SeedValue` and `OverrideValue`.

Batch indexes are cached process-wide, keyed by the ledger revision.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy.orm import Session

from .cache import get_effective_cache
from .catalog import SeedCatalog, get_catalog
from .db.models import OverrideStatus
from .errors import FindingNotFoundError
from .ledger import OverrideLedger, current_revision, dimension_ledger, message_ledger
from .schemas import (
    DimensionSet,
    EffectiveDimensions,
    EffectiveMessages,
    MessageSet,
    ResolutionMode,
    ValueSource,
)

logger = logging.getLogger(__name__)


# =============================================================================
# RESOLVED VALUE (tagged union)
# =============================================================================

@dataclass(frozen=True)
class SeedValue:
    """No override applies; the seed baseline is used as-is."""
    values: BaseModel

    source = ValueSource.SEED


@dataclass(frozen=True)
class OverrideValue:
    """An override row won; its full record replaces the seed."""
    values: BaseModel
    version: int
    status: OverrideStatus

    source = ValueSource.OVERRIDE


Resolved = Union[SeedValue, OverrideValue]


def select_override_row(draft_row, published_row, mode: ResolutionMode):
    """Pick the winning ledger row for a mode (None = use seed)."""
    if mode == ResolutionMode.PREVIEW_DRAFT and draft_row is not None:
        return draft_row
    return published_row


def resolve_value(
    ledger: OverrideLedger,
    seed: BaseModel,
    draft_row,
    published_row,
    mode: ResolutionMode,
) -> Resolved:
    row = select_override_row(draft_row, published_row, mode)
    if row is None:
        return SeedValue(values=seed)
    return OverrideValue(
        values=ledger.values_of(row),
        version=row.version,
        status=OverrideStatus(row.status),
    )


def _dimension_record(finding_id: str, resolved: Resolved) -> EffectiveDimensions:
    if isinstance(resolved, OverrideValue):
        return EffectiveDimensions(
            finding_id=finding_id,
            dimensions=resolved.values,
            dimensions_source=ValueSource.OVERRIDE,
            override_version=resolved.version,
            override_status=resolved.status.value,
        )
    return EffectiveDimensions(
        finding_id=finding_id,
        dimensions=resolved.values,
        dimensions_source=ValueSource.SEED,
    )


def _message_record(finding_id: str, lang: str, resolved: Resolved) -> EffectiveMessages:
    if isinstance(resolved, OverrideValue):
        return EffectiveMessages(
            finding_id=finding_id,
            lang=lang,
            messages=resolved.values,
            messages_source=ValueSource.OVERRIDE,
            override_version=resolved.version,
            override_status=resolved.status.value,
        )
    return EffectiveMessages(
        finding_id=finding_id,
        lang=lang,
        messages=resolved.values,
        messages_source=ValueSource.SEED,
    )


# =============================================================================
# INDEXES
# =============================================================================

def _cache_key(db: Session, family: str, catalog: SeedCatalog, mode: ResolutionMode, lang: Optional[str] = None):
    return (family, str(db.get_bind().url), id(catalog), mode.value, lang)


def known_finding_ids(db: Session, catalog: Optional[SeedCatalog] = None) -> List[str]:
    """Union of catalog ids and ids that appear in either ledger family."""
    catalog = catalog or get_catalog()
    ids = set(catalog.ids())
    ids.update(dimension_ledger.finding_ids(db))
    ids.update(message_ledger.finding_ids(db))
    return sorted(ids)


def resolve_effective_index(
    db: Session,
    mode: ResolutionMode = ResolutionMode.PRODUCTION,
    catalog: Optional[SeedCatalog] = None,
) -> Dict[str, EffectiveDimensions]:
    """Effective dimensions for every known finding (cached)."""
    catalog = catalog or get_catalog()
    cache = get_effective_cache()
    key = _cache_key(db, "dimensions", catalog, mode)
    revision = current_revision(db)

    cached = cache.get(key, revision)
    if cached is not None:
        return dict(cached)

    drafts = dimension_ledger.active_rows(db, OverrideStatus.DRAFT) if mode == ResolutionMode.PREVIEW_DRAFT else {}
    published = dimension_ledger.active_rows(db, OverrideStatus.PUBLISHED)

    ids = known_finding_ids(db, catalog)
    index: Dict[str, EffectiveDimensions] = {}
    for finding_id in ids:
        resolved = resolve_value(
            dimension_ledger,
            catalog.seed_dimensions(finding_id),
            drafts.get(finding_id),
            published.get(finding_id),
            mode,
        )
        index[finding_id] = _dimension_record(finding_id, resolved)

    cache.set(key, revision, index)
    logger.debug(f"Effective dimensions index rebuilt: {len(index)} findings, mode={mode.value}, rev={revision}")
    return dict(index)


def resolve_effective(
    db: Session,
    finding_id: str,
    mode: ResolutionMode = ResolutionMode.PRODUCTION,
    catalog: Optional[SeedCatalog] = None,
) -> EffectiveDimensions:
    """Effective dimensions for one finding."""
    record = resolve_effective_index(db, mode=mode, catalog=catalog).get(finding_id)
    if record is None:
        raise FindingNotFoundError(f"Unknown finding: {finding_id}")
    return record


def resolve_effective_messages_index(
    db: Session,
    lang: Optional[str] = None,
    mode: ResolutionMode = ResolutionMode.PRODUCTION,
    catalog: Optional[SeedCatalog] = None,
) -> Dict[str, EffectiveMessages]:
    """Effective messages in one language for every known finding (cached)."""
    catalog = catalog or get_catalog()
    lang = lang or catalog.default_lang
    cache = get_effective_cache()
    key = _cache_key(db, "messages", catalog, mode, lang)
    revision = current_revision(db)

    cached = cache.get(key, revision)
    if cached is not None:
        return dict(cached)

    drafts = (
        message_ledger.active_rows(db, OverrideStatus.DRAFT, lang)
        if mode == ResolutionMode.PREVIEW_DRAFT
        else {}
    )
    published = message_ledger.active_rows(db, OverrideStatus.PUBLISHED, lang)

    ids = known_finding_ids(db, catalog)
    index: Dict[str, EffectiveMessages] = {}
    for finding_id in ids:
        resolved = resolve_value(
            message_ledger,
            catalog.seed_messages(finding_id, lang),
            drafts.get(finding_id),
            published.get(finding_id),
            mode,
        )
        index[finding_id] = _message_record(finding_id, lang, resolved)

    cache.set(key, revision, index)
    return dict(index)


def resolve_effective_messages(
    db: Session,
    finding_id: str,
    lang: Optional[str] = None,
    mode: ResolutionMode = ResolutionMode.PRODUCTION,
    catalog: Optional[SeedCatalog] = None,
) -> EffectiveMessages:
    """Effective messages for one finding and language."""
    record = resolve_effective_messages_index(db, lang=lang, mode=mode, catalog=catalog).get(finding_id)
    if record is None:
        raise FindingNotFoundError(f"Unknown finding: {finding_id}")
    return record


def resolve_effective_messages_batch(
    db: Session,
    finding_ids: List[str],
    lang: Optional[str] = None,
    mode: ResolutionMode = ResolutionMode.PRODUCTION,
    catalog: Optional[SeedCatalog] = None,
) -> Dict[str, MessageSet]:
    """
    Messages for the findings a report needs, keyed by finding_id.

    Unknown ids are left out rather than raising.
    """
    index = resolve_effective_messages_index(db, lang=lang, mode=mode, catalog=catalog)
    return {fid: index[fid].messages for fid in finding_ids if fid in index}


def seed_dimensions(finding_id: str, catalog: Optional[SeedCatalog] = None) -> DimensionSet:
    return (catalog or get_catalog()).seed_dimensions(finding_id)
