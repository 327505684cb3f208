"""Analyzer configuration from ``config.yml`` and the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from bpanalyzer.rules.sources import DEFAULT_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONFIG_FILE = "config.yml"
CONFIG_SECTION = "analyzer"

DEFAULT_MACHINE_RULES = Path("/etc/bpanalyzer/BPARules.json")
DEFAULT_USER_RULES = Path("~/.config/bpanalyzer/BPARules.json")

ENV_MACHINE_RULES = "BPANALYZER_MACHINE_RULES"
ENV_USER_RULES = "BPANALYZER_USER_RULES"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class AnalyzerConfigError(Exception):
    """Raised when ``config.yml`` holds an invalid analyzer setting."""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnalyzerConfig:
    """Settings for one analyzer instance."""

    machine_rules: Path = DEFAULT_MACHINE_RULES
    user_rules: Path = DEFAULT_USER_RULES
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    show_ignored: bool = False


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------


def _defaults() -> AnalyzerConfig:
    return AnalyzerConfig(
        machine_rules=Path(os.environ.get(ENV_MACHINE_RULES, str(DEFAULT_MACHINE_RULES))),
        user_rules=Path(os.environ.get(ENV_USER_RULES, str(DEFAULT_USER_RULES))).expanduser(),
    )


def load_config(base_path: Path) -> AnalyzerConfig:
    """Load analyzer settings from the ``analyzer`` section of ``config.yml``.

    Environment variables override the built-in rule file locations; the
    config file overrides both.  A missing or unreadable file gives the
    defaults.

    Raises
    ------
    AnalyzerConfigError
        If a setting is present but has the wrong type.
    """
    defaults = _defaults()
    config_path = base_path / CONFIG_FILE
    if not config_path.is_file():
        return defaults

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read %s, using default analyzer settings", config_path)
        return defaults

    if not isinstance(data, dict):
        return defaults
    section = data.get(CONFIG_SECTION)
    if not isinstance(section, dict):
        return defaults

    machine_rules = defaults.machine_rules
    user_rules = defaults.user_rules
    http_timeout = defaults.http_timeout
    show_ignored = defaults.show_ignored

    if section.get("machine_rules") is not None:
        machine_rules = Path(str(section["machine_rules"])).expanduser()
    if section.get("user_rules") is not None:
        user_rules = Path(str(section["user_rules"])).expanduser()

    if "http_timeout" in section:
        raw = section["http_timeout"]
        if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
            msg = f"{config_path}: 'http_timeout' must be a positive number, got {raw!r}"
            raise AnalyzerConfigError(msg)
        http_timeout = float(raw)

    if "show_ignored" in section:
        raw = section["show_ignored"]
        if not isinstance(raw, bool):
            msg = f"{config_path}: 'show_ignored' must be true or false, got {raw!r}"
            raise AnalyzerConfigError(msg)
        show_ignored = raw

    return AnalyzerConfig(
        machine_rules=machine_rules,
        user_rules=user_rules,
        http_timeout=http_timeout,
        show_ignored=show_ignored,
    )
