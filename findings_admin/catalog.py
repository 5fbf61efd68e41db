"""
Seed Catalog
============

Read-only baseline of finding definitions, seed dimensions and seed messages,
loaded from a YAML file:

    findings:
      GPO_NO_RCD_PROTECTION:
        title: Power outlets without RCD protection
        system_group: electrical
        space_group: whole_house
        tags: [safety, electrical]
        why_it_matters: ...
        dimensions:
          safety: HIGH
          severity: 4
          ...
        messages:
          en-AU:
            title: ...
            observed_condition: [...]

The catalog never changes at runtime; overrides live in the ledger.
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml
from pydantic import ValidationError

from .config import get_settings
from .errors import OverrideValidationError
from .schemas import DimensionSet, MessageSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FindingDefinition:
    """One catalog entry"""
    finding_id: str
    title: str
    system_group: Optional[str] = None
    space_group: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    why_it_matters: Optional[str] = None
    recommended_action: Optional[str] = None
    planning_guidance: Optional[str] = None
    dimensions: DimensionSet = field(default_factory=DimensionSet)
    messages: Dict[str, MessageSet] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finding_id": self.finding_id,
            "title": self.title,
            "system_group": self.system_group,
            "space_group": self.space_group,
            "tags": list(self.tags),
            "why_it_matters": self.why_it_matters,
            "recommended_action": self.recommended_action,
            "planning_guidance": self.planning_guidance,
        }


def _non_empty(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class SeedCatalog:
    """In-memory, read-only view over the seed catalog"""

    def __init__(self, definitions: Dict[str, FindingDefinition], default_lang: str = "en-AU"):
        self._definitions = dict(definitions)
        self.default_lang = default_lang

    def __contains__(self, finding_id: str) -> bool:
        return finding_id in self._definitions

    def __iter__(self) -> Iterator[FindingDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def ids(self) -> List[str]:
        return list(self._definitions.keys())

    def get(self, finding_id: str) -> Optional[FindingDefinition]:
        return self._definitions.get(finding_id)

    def seed_dimensions(self, finding_id: str) -> DimensionSet:
        definition = self._definitions.get(finding_id)
        if definition is None:
            return DimensionSet()
        return definition.dimensions

    def seed_messages(self, finding_id: str, lang: Optional[str] = None) -> MessageSet:
        """
        Seed copy for a finding.

        Uses the catalog's per-language messages; for the default language the
        definition's own narrative fields fill in when no messages block exists.
        """
        lang = lang or self.default_lang
        definition = self._definitions.get(finding_id)
        if definition is None:
            return MessageSet()
        if lang in definition.messages:
            return definition.messages[lang]
        if lang == self.default_lang:
            return MessageSet(
                title=definition.title,
                why_it_matters=definition.why_it_matters,
                recommended_action=definition.recommended_action,
                planning_guidance=definition.planning_guidance,
            )
        return MessageSet()


def _parse_definition(finding_id: str, raw: Dict[str, Any]) -> FindingDefinition:
    try:
        dimensions = DimensionSet.model_validate(raw.get("dimensions") or {})
        messages = {
            str(lang): MessageSet.model_validate(body or {})
            for lang, body in (raw.get("messages") or {}).items()
        }
    except ValidationError as e:
        raise OverrideValidationError(f"Invalid seed data for {finding_id}: {e}") from e

    tags = raw.get("tags") or []
    if isinstance(tags, str):
        tags = [t for t in tags.replace(",", " ").split() if t]

    return FindingDefinition(
        finding_id=finding_id,
        title=_non_empty(raw.get("title")) or finding_id.replace("_", " "),
        system_group=_non_empty(raw.get("system_group")),
        space_group=_non_empty(raw.get("space_group")),
        tags=[str(t) for t in tags],
        why_it_matters=_non_empty(raw.get("why_it_matters")),
        recommended_action=_non_empty(raw.get("recommended_action")),
        planning_guidance=_non_empty(raw.get("planning_guidance")),
        dimensions=dimensions,
        messages=messages,
    )


def catalog_from_dict(data: Dict[str, Any], default_lang: str = "en-AU") -> SeedCatalog:
    """Build a catalog from an already-parsed YAML document"""
    findings = (data or {}).get("findings") or {}
    definitions = {
        str(finding_id): _parse_definition(str(finding_id), raw or {})
        for finding_id, raw in findings.items()
    }
    return SeedCatalog(definitions, default_lang=default_lang)


def load_catalog(path: str, default_lang: str = "en-AU") -> SeedCatalog:
    """Load the seed catalog from a YAML file"""
    catalog_path = Path(path)
    if not catalog_path.exists():
        logger.warning(f"Seed catalog not found at {catalog_path}; using an empty catalog")
        return SeedCatalog({}, default_lang=default_lang)

    with open(catalog_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    catalog = catalog_from_dict(data, default_lang=default_lang)
    logger.info(f"Loaded seed catalog: {len(catalog)} findings from {catalog_path}")
    return catalog


@lru_cache()
def get_catalog() -> SeedCatalog:
    """Get cached catalog instance"""
    settings = get_settings()
    return load_catalog(settings.finding_catalog_path, default_lang=settings.default_lang)
