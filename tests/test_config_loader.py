"""Settings, plant configuration loading and log formatting."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

from config import settings as settings_module
from config.kpi_targets.loader import (
    DEFAULT_CONFIG_PATH,
    default_engine_config,
    get_engine_config,
    load_engine_config,
)
from config.log_setup import JsonLineFormatter, configure_logging
from qms.engine.errors import ConfigurationError
from qms.schemas.kpi import DefectSeverity, KpiUnit


def _reset_settings() -> None:
    settings_module._settings = None


class ConfigLoaderTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_dir = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()
        _reset_settings()

    def _write(self, name: str, content) -> Path:
        path = self.tmp_dir / name
        text = content if isinstance(content, str) else yaml.safe_dump(content)
        path.write_text(text, encoding="utf-8")
        return path

    def _default_data(self) -> dict:
        return yaml.safe_load(DEFAULT_CONFIG_PATH.read_text(encoding="utf-8"))

    def test_bundled_configuration(self):
        config = default_engine_config()

        self.assertEqual([t.id for t in config.claim_targets], ["automotive", "industrial", "machining"])
        self.assertEqual(config.claim_target("automotive").target, 50)
        self.assertEqual(config.claim_target("automotive").unit, KpiUnit.PPM)
        self.assertEqual(config.internal_target("productionScrap").target, 0.30)
        self.assertEqual({t.level for t in config.escalation_tiers}, {1, 2, 3})
        self.assertEqual(config.defect_code("DIM-001").category, "dimensional")
        self.assertEqual(config.defect_code("MAT-002").severity, DefectSeverity.CRITICAL)
        self.assertEqual(config.machining_line_markers, ("MC", "CNC"))

    def test_settings_select_configuration_file(self):
        data = self._default_data()
        data["plant_name"] = "Plant Two"
        path = self._write("plant_two.yaml", data)

        with patch.dict(os.environ, {"KPI_TARGETS_FILE": str(path)}, clear=False):
            _reset_settings()
            config = get_engine_config()

        self.assertEqual(config.plant_name, "Plant Two")

    def test_settings_defaults_and_env_override(self):
        with patch.dict(os.environ, {"REWORK_RATE_WINDOW_MINUTES": "30"}, clear=False):
            _reset_settings()
            settings = settings_module.get_settings()
        self.assertEqual(settings.rework_rate_window_minutes, 30)
        self.assertEqual(settings.default_date_range, "mtd")

    def test_invalid_yaml(self):
        path = self._write("broken.yaml", "claim_targets: [unclosed\n")
        with self.assertRaises(ConfigurationError):
            load_engine_config(path)

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError):
            load_engine_config(self.tmp_dir / "absent.yaml")

    def test_document_must_be_mapping(self):
        with self.assertRaises(ConfigurationError):
            load_engine_config(self._write("list.yaml", "- 1\n- 2\n"))

    def test_missing_sections(self):
        data = self._default_data()
        del data["escalation_tiers"]
        with self.assertRaises(ConfigurationError) as ctx:
            load_engine_config(self._write("partial.yaml", data))
        self.assertIn("escalation_tiers", ctx.exception.message)

    def test_invalid_values(self):
        data = self._default_data()
        data["claim_targets"][0]["target"] = 0
        with self.assertRaises(ConfigurationError):
            load_engine_config(self._write("zero_target.yaml", data))

    def test_duplicate_tier_levels(self):
        data = self._default_data()
        data["escalation_tiers"][1]["level"] = 1
        with self.assertRaises(ConfigurationError):
            load_engine_config(self._write("dup_tiers.yaml", data))


class LogSetupTests(unittest.TestCase):
    def test_json_line_formatter(self):
        record = logging.LogRecord("qms.test", logging.WARNING, __file__, 1, "Line %s stopped", ("FG-02",), None)
        entry = json.loads(JsonLineFormatter().format(record))

        self.assertEqual(entry["level"], "warning")
        self.assertEqual(entry["logger"], "qms.test")
        self.assertEqual(entry["message"], "Line FG-02 stopped")

    def test_configure_logging_replaces_root_handlers(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            settings = settings_module.Settings(log_level="DEBUG", log_format="text")
            configure_logging(settings)
            self.assertEqual(len(root.handlers), 1)
            self.assertEqual(root.level, logging.DEBUG)
            self.assertNotIsInstance(root.handlers[0].formatter, JsonLineFormatter)
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)


if __name__ == "__main__":
    unittest.main()
