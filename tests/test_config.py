"""Tests for config load / save / merge-patch."""

import json

import pytest
from pydantic import ValidationError

from config import (
    DEFAULT_CLASSIFIER_PROMPT,
    HindsightConfig,
    config_path,
)


class TestLoad:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = HindsightConfig.load(tmp_path / "absent.json")
        assert cfg == HindsightConfig()
        assert cfg.server.port == 3001
        assert cfg.classifier.prompt == DEFAULT_CLASSIFIER_PROMPT

    def test_invalid_file_gives_defaults(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{ this is not json", encoding="utf-8")
        assert HindsightConfig.load(path) == HindsightConfig()

    def test_out_of_range_value_gives_defaults(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"server": {"port": 70000}}), encoding="utf-8")
        assert HindsightConfig.load(path).server.port == 3001

    def test_partial_file_fills_defaults(self, tmp_path):
        path = tmp_path / "partial.json"
        path.write_text(json.dumps({"persistence": {"directory": "/data/out"}}), encoding="utf-8")
        cfg = HindsightConfig.load(path)
        assert cfg.persistence.directory == "/data/out"
        assert cfg.persistence.filename_prefix == "hindsight"

    def test_config_path_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HINDSIGHT_CONFIG", str(tmp_path / "custom.json"))
        assert config_path() == tmp_path / "custom.json"


class TestSave:
    def test_round_trip_keeps_null_fields(self, tmp_path):
        """The ready pulse has no off time or repeat count; that must survive a save."""
        path = tmp_path / "cfg.json"
        HindsightConfig().save(path)

        cfg = HindsightConfig.load(path)
        assert cfg.indicator.ready.off_ms is None
        assert cfg.indicator.ready.count is None
        assert cfg == HindsightConfig()


class TestMergePatch:
    def test_nested_patch_touches_only_named_keys(self):
        cfg = HindsightConfig().merge_patch({"classifier": {"timeout_sec": 5}})
        assert cfg.classifier.timeout_sec == 5
        assert cfg.classifier.model == "llama-3.3-70b-versatile"
        assert cfg.indicator == HindsightConfig().indicator

    def test_patch_does_not_mutate_original(self):
        original = HindsightConfig()
        original.merge_patch({"speech": {"ready_phrase": None}})
        assert original.speech.ready_phrase == "HindSight ready."

    def test_invalid_patch_raises(self):
        with pytest.raises(ValidationError):
            HindsightConfig().merge_patch({"classifier": {"timeout_sec": 0}})
