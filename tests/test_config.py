"""Tests for bpanalyzer.config: analyzer settings from config.yml and the environment."""

from __future__ import annotations

import logging
import os
import unittest.mock
from pathlib import Path

import pytest

from bpanalyzer.config import (
    DEFAULT_MACHINE_RULES,
    ENV_MACHINE_RULES,
    ENV_USER_RULES,
    AnalyzerConfig,
    AnalyzerConfigError,
    load_config,
)


def _write_config(tmp_path: Path, text: str) -> None:
    (tmp_path / "config.yml").write_text(text, encoding="utf-8")


class TestDefaults:
    def test_no_config_file(self, tmp_path: Path) -> None:
        with unittest.mock.patch.dict(os.environ, clear=False) as env:
            env.pop(ENV_MACHINE_RULES, None)
            env.pop(ENV_USER_RULES, None)
            config = load_config(tmp_path)
        assert config.machine_rules == DEFAULT_MACHINE_RULES
        assert config.user_rules == Path("~/.config/bpanalyzer/BPARules.json").expanduser()
        assert config.http_timeout == 10.0
        assert config.show_ignored is False

    def test_environment_overrides_locations(self, tmp_path: Path) -> None:
        env = {
            ENV_MACHINE_RULES: str(tmp_path / "machine.json"),
            ENV_USER_RULES: str(tmp_path / "user.json"),
        }
        with unittest.mock.patch.dict(os.environ, env):
            config = load_config(tmp_path)
        assert config.machine_rules == tmp_path / "machine.json"
        assert config.user_rules == tmp_path / "user.json"

    def test_dataclass_defaults(self) -> None:
        config = AnalyzerConfig()
        assert config.machine_rules == DEFAULT_MACHINE_RULES
        assert not config.show_ignored


class TestConfigFile:
    def test_section_values(self, tmp_path: Path) -> None:
        _write_config(
            tmp_path,
            "analyzer:\n"
            f"  machine_rules: {tmp_path / 'm.json'}\n"
            f"  user_rules: {tmp_path / 'u.json'}\n"
            "  http_timeout: 2.5\n"
            "  show_ignored: true\n",
        )
        config = load_config(tmp_path)
        assert config.machine_rules == tmp_path / "m.json"
        assert config.user_rules == tmp_path / "u.json"
        assert config.http_timeout == 2.5
        assert config.show_ignored is True

    def test_file_overrides_environment(self, tmp_path: Path) -> None:
        _write_config(tmp_path, f"analyzer:\n  machine_rules: {tmp_path / 'file.json'}\n")
        with unittest.mock.patch.dict(os.environ, {ENV_MACHINE_RULES: "/from/env.json"}):
            config = load_config(tmp_path)
        assert config.machine_rules == tmp_path / "file.json"

    def test_integer_timeout(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "analyzer:\n  http_timeout: 30\n")
        assert load_config(tmp_path).http_timeout == 30.0

    def test_other_sections_ignored(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "languages: [python]\n")
        assert load_config(tmp_path).http_timeout == 10.0

    def test_non_mapping_document(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "- a\n- b\n")
        assert load_config(tmp_path).show_ignored is False

    def test_unreadable_yaml_warns(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        _write_config(tmp_path, "analyzer: [unclosed\n")
        with caplog.at_level(logging.WARNING, logger="bpanalyzer.config"):
            config = load_config(tmp_path)
        assert config.http_timeout == 10.0
        assert "using default analyzer settings" in caplog.text

    @pytest.mark.parametrize("value", ["0", "-1", "fast", "true", "[1]"])
    def test_invalid_timeout(self, tmp_path: Path, value: str) -> None:
        _write_config(tmp_path, f"analyzer:\n  http_timeout: {value}\n")
        with pytest.raises(AnalyzerConfigError, match="http_timeout"):
            load_config(tmp_path)

    @pytest.mark.parametrize("value", ["yes please", "1", "'true'"])
    def test_invalid_show_ignored(self, tmp_path: Path, value: str) -> None:
        _write_config(tmp_path, f"analyzer:\n  show_ignored: {value}\n")
        with pytest.raises(AnalyzerConfigError, match="show_ignored"):
            load_config(tmp_path)
