"""
Dimension presets: named value sets an operator applies to many findings at
once through a bulk draft. Presets are plain reference data and are not
versioned; a preset applied to a finding becomes an ordinary draft.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .db.models import DIMENSION_FIELDS, DimensionPreset
from .errors import OverrideValidationError, PresetNotFoundError
from .ledger import dimension_ledger

logger = logging.getLogger(__name__)


def list_presets(db: Session) -> List[DimensionPreset]:
    return db.query(DimensionPreset).order_by(DimensionPreset.name.asc(), DimensionPreset.id.asc()).all()


def get_preset(db: Session, preset_id: str) -> DimensionPreset:
    preset = db.query(DimensionPreset).filter(DimensionPreset.id == preset_id).first()
    if preset is None:
        raise PresetNotFoundError(f"Unknown dimension preset: {preset_id}")
    return preset


def preset_values(preset: DimensionPreset) -> Dict[str, Any]:
    return {f: getattr(preset, f) for f in DIMENSION_FIELDS}


def create_preset(
    db: Session,
    name: str,
    attrs: Optional[Dict[str, Any]],
    actor: Optional[str] = None,
) -> DimensionPreset:
    """Validate and store a new preset."""
    name = (name or "").strip()
    if not name:
        raise OverrideValidationError("name is required")
    values = dimension_ledger.validate(attrs).model_dump()

    preset = DimensionPreset(name=name, created_by=actor or "admin", **values)
    db.add(preset)
    db.flush()
    logger.info(f"Dimension preset '{name}' created ({preset.id})")
    return preset


def bulk_values(db: Session, preset_id: Optional[str], dimensions: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Dimension values for a bulk draft.

    A preset, when named, supplies the whole record and the inline dimensions
    are ignored.
    """
    if preset_id:
        return preset_values(get_preset(db, preset_id))
    return dict(dimensions or {})
