"""
Tests for profile loading in settings.py.
"""

from pathlib import Path

import pytest

from invocation.parser import DEFAULT_SENTINEL
from settings import (
    EnginesConfig,
    Profile,
    load_profile,
    parse_target_version,
)

EXAMPLE_PROFILE = Path(__file__).parent.parent.parent / "profile.yaml.example"


class TestLoadProfile:
    """Test YAML parsing and fallbacks."""

    def test_example_profile(self):
        profile = load_profile(EXAMPLE_PROFILE)
        assert profile.system.name == "doloop"
        assert profile.inference.type == "openai"
        assert profile.orchestrator.max_iterations == 3
        assert profile.orchestrator.sentinel == "🪬"
        assert profile.engines.typed_code.target_version == "3.10"

    def test_default_sentinel_matches_parser(self):
        assert Profile().orchestrator.sentinel == DEFAULT_SENTINEL

    def test_missing_file_uses_defaults(self, tmp_path):
        profile = load_profile(tmp_path / "nope.yaml")
        assert profile.orchestrator == Profile().orchestrator

    def test_invalid_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "profile.yaml"
        path.write_text("inference: [unclosed\n")
        profile = load_profile(path)
        assert profile.inference.model == Profile().inference.model

    def test_non_mapping_uses_defaults(self, tmp_path):
        path = tmp_path / "profile.yaml"
        path.write_text("- just\n- a list\n")
        assert load_profile(path).engines.sandbox is True

    def test_partial_profile(self, tmp_path):
        path = tmp_path / "profile.yaml"
        path.write_text(
            "orchestrator:\n"
            "  max_iterations: 7\n"
            "  unknown_key: ignored\n"
            "engines:\n"
            "  sandbox: false\n"
            "  terminal:\n"
            "    enabled: false\n"
        )
        profile = load_profile(path)
        assert profile.orchestrator.max_iterations == 7
        assert profile.orchestrator.memory_window == 10
        assert profile.engines.sandbox is False
        assert profile.engines.terminal.enabled is False
        assert profile.engines.code.enabled is True

    def test_api_key_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOLOOP_API_KEY", "sk-env")
        profile = load_profile(tmp_path / "missing.yaml")
        assert profile.inference.api_key == "sk-env"

    def test_profile_path_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("system:\n  name: custom\n")
        monkeypatch.setenv("PROFILE_PATH", str(path))
        assert load_profile().system.name == "custom"


class TestHelpers:
    """Test small configuration helpers."""

    @pytest.mark.parametrize("value,expected", [
        ("3.10", (3, 10)),
        ("3.9", (3, 9)),
        (3.8, (3, 8)),
        ([3, 11], (3, 11)),
        ("3", (3, 0)),
    ])
    def test_parse_target_version(self, value, expected):
        assert parse_target_version(value) == expected

    def test_enabled_formats(self):
        config = EnginesConfig()
        assert config.enabled_formats() == ["code", "typed-code", "terminal"]
        config.typed_code.enabled = False
        assert config.enabled_formats() == ["code", "terminal"]
