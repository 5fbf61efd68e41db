"""
Seed Catalog Tests
"""

from pathlib import Path

import pytest

# Add parent to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from findings_admin.catalog import catalog_from_dict, load_catalog
from findings_admin.config import DEFAULT_CATALOG_PATH
from findings_admin.errors import OverrideValidationError


@pytest.fixture
def bundled():
    return load_catalog(str(DEFAULT_CATALOG_PATH), default_lang="en-AU")


class TestBundledCatalog:

    def test_loads_all_findings(self, bundled):
        assert len(bundled) == 4
        assert "GPO_NO_RCD_PROTECTION" in bundled
        assert sorted(bundled.ids()) == [
            "GPO_NO_RCD_PROTECTION",
            "GUTTER_MINOR_RUST",
            "HOT_WATER_TPR_DISCHARGE",
            "SMOKE_ALARM_EXPIRED",
        ]

    def test_seed_dimensions(self, bundled):
        dims = bundled.seed_dimensions("SMOKE_ALARM_EXPIRED")
        assert dims.priority == "URGENT"
        assert dims.budget_low == 150

    def test_seed_messages_block(self, bundled):
        messages = bundled.seed_messages("GPO_NO_RCD_PROTECTION", "en-AU")
        assert messages.observed_condition == [
            "One or more power circuits are not protected by a residual current device."
        ]

    def test_definition_fields_fill_default_lang(self, bundled):
        messages = bundled.seed_messages("GUTTER_MINOR_RUST")
        assert messages.title == "Minor rust on gutters"
        assert messages.planning_guidance == "Include in the next scheduled maintenance cycle."

    def test_other_lang_without_seed_is_empty(self, bundled):
        assert bundled.seed_messages("GUTTER_MINOR_RUST", "zh-CN").title is None
        assert bundled.seed_messages("HOT_WATER_TPR_DISCHARGE", "zh-CN").title == "热水器泄压阀排水"

    def test_to_dict(self, bundled):
        data = bundled.get("GPO_NO_RCD_PROTECTION").to_dict()
        assert data["system_group"] == "electrical"
        assert data["tags"] == ["safety", "electrical", "compliance"]


class TestCatalogParsing:

    def test_missing_file_gives_empty_catalog(self, tmp_path):
        catalog = load_catalog(str(tmp_path / "missing.yml"))
        assert len(catalog) == 0

    def test_invalid_seed_dimensions_rejected(self):
        with pytest.raises(OverrideValidationError):
            catalog_from_dict({"findings": {"BAD": {"dimensions": {"severity": 12}}}})

    def test_title_defaults_from_id_and_tags_from_string(self):
        catalog = catalog_from_dict({"findings": {"ROOF_LEAK": {"tags": "roof, water"}}})
        definition = catalog.get("ROOF_LEAK")
        assert definition.title == "ROOF LEAK"
        assert definition.tags == ["roof", "water"]

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "catalog.yml"
        path.write_text(
            "findings:\n"
            "  F1:\n"
            "    title: Test finding\n"
            "    dimensions:\n"
            "      safety: low\n",
            encoding="utf-8",
        )
        catalog = load_catalog(str(path))
        assert catalog.seed_dimensions("F1").safety == "LOW"
