"""Rule sources: decode rule documents from files, URLs, and model annotations.

Rule documents are lists of rule mappings (or a mapping with a ``rules``
list).  Both JSON and YAML documents are decoded with ``yaml.safe_load``.
Keys are matched case-insensitively with underscores ignored, so
``FixExpression``, ``fixExpression`` and ``fix_expression`` are equivalent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import yaml

from bpanalyzer.model.protocols import governance_suspended
from bpanalyzer.rules.definition import (
    MODEL_SOURCE,
    CompatibilityRange,
    RuleCollection,
    RuleDefinition,
    Severity,
    parse_scope,
)

if TYPE_CHECKING:
    from bpanalyzer.model.protocols import AnnotationObject, ModelAccessor

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ANNOTATION_MODEL_RULES = "BestPracticeAnalyzer"
ANNOTATION_EXTERNAL_RULES = "BestPracticeAnalyzer_ExternalRuleFiles"

DEFAULT_HTTP_TIMEOUT = 10.0

_SEVERITY_NAMES: dict[str, Severity] = {
    "info": Severity.INFO,
    "low": Severity.INFO,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "medium": Severity.WARNING,
    "error": Severity.ERROR,
    "high": Severity.ERROR,
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class RuleSourceError(Exception):
    """Raised when a rule source cannot be read or decoded."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _normalize_keys(data: dict[Any, Any]) -> dict[str, Any]:
    return {str(k).lower().replace("_", ""): v for k, v in data.items()}


def _parse_severity(raw: object, context: str) -> Severity:
    if raw is None:
        return Severity.WARNING
    if isinstance(raw, bool):
        msg = f"{context}: invalid severity {raw!r}"
        raise ValueError(msg)
    if isinstance(raw, int):
        try:
            return Severity(raw)
        except ValueError:
            msg = f"{context}: invalid severity {raw}, must be one of {[int(s) for s in Severity]}"
            raise ValueError(msg) from None
    name = str(raw).strip().lower()
    if name.isdigit():
        return _parse_severity(int(name), context)
    if name not in _SEVERITY_NAMES:
        msg = f"{context}: invalid severity '{raw}', must be one of {sorted(_SEVERITY_NAMES)}"
        raise ValueError(msg)
    return _SEVERITY_NAMES[name]


def _parse_compatibility(raw: object, context: str) -> CompatibilityRange | None:
    if raw is None:
        return None
    if isinstance(raw, dict):
        bounds = _normalize_keys(raw)
        min_raw = bounds.get("min")
        max_raw = bounds.get("max")
        try:
            return CompatibilityRange(
                min_level=int(min_raw) if min_raw is not None else None,
                max_level=int(max_raw) if max_raw is not None else None,
            )
        except (TypeError, ValueError):
            msg = f"{context}: compatibility level bounds must be integers"
            raise ValueError(msg) from None
    try:
        return CompatibilityRange(min_level=int(raw))  # type: ignore[call-overload]
    except (TypeError, ValueError):
        msg = f"{context}: invalid compatibility level {raw!r}"
        raise ValueError(msg) from None


def parse_rule(data: dict[Any, Any], context: str) -> RuleDefinition:
    """Parse one rule mapping.  Raises ``ValueError`` on schema errors."""
    fields = _normalize_keys(data)

    rule_id = fields.get("id")
    if rule_id is None or not str(rule_id).strip():
        msg = f"{context}: missing required 'ID' field"
        raise ValueError(msg)
    rule_id = str(rule_id).strip()
    context = f"{context} ('{rule_id}')"

    scope_raw = fields.get("scope", "")
    if isinstance(scope_raw, list):
        scope = tuple(str(s).strip() for s in scope_raw if str(s).strip())
    else:
        scope = parse_scope(str(scope_raw))

    expression = fields.get("expression")
    if expression is None or not str(expression).strip():
        msg = f"{context}: missing required 'Expression' field"
        raise ValueError(msg)

    fix_raw = fields.get("fixexpression")
    fix_expression = str(fix_raw) if fix_raw is not None and str(fix_raw).strip() else None

    compat_raw = fields.get("compatibilitylevel", fields.get("compatibility"))

    return RuleDefinition(
        id=rule_id,
        name=str(fields.get("name") or rule_id),
        expression=str(expression),
        scope=scope,
        description=str(fields.get("description") or ""),
        severity=_parse_severity(fields.get("severity"), context),
        category=str(fields.get("category") or ""),
        fix_expression=fix_expression,
        compatibility=_parse_compatibility(compat_raw, context),
    )


def parse_rules(data: object, source: str) -> RuleCollection:
    """Build a :class:`RuleCollection` from a decoded rule document.

    Raises ``ValueError`` when the document or any rule is malformed.
    """
    if data is None:
        return RuleCollection(source=source)
    if isinstance(data, dict):
        data = data.get("rules", [])
    if not isinstance(data, list):
        msg = f"{source}: rule document must be a list of rules"
        raise ValueError(msg)

    rules: list[RuleDefinition] = []
    seen: set[str] = set()
    for idx, rule_data in enumerate(data):
        if not isinstance(rule_data, dict):
            msg = f"{source}: rule at index {idx} must be a mapping"
            raise ValueError(msg)
        rule = parse_rule(rule_data, f"{source}: rule at index {idx}")
        if rule.key in seen:
            logger.warning("%s: duplicate rule ID '%s', last definition wins", source, rule.id)
        seen.add(rule.key)
        rules.append(rule)
    return RuleCollection(source=source, rules=rules)


def rule_to_dict(rule: RuleDefinition) -> dict[str, Any]:
    """Serialize a rule to the key layout used by rule files."""
    out: dict[str, Any] = {
        "ID": rule.id,
        "Name": rule.name,
        "Category": rule.category,
        "Description": rule.description,
        "Severity": int(rule.severity),
        "Scope": ",".join(rule.scope),
        "Expression": rule.expression,
    }
    if rule.fix_expression:
        out["FixExpression"] = rule.fix_expression
    if rule.compatibility is not None:
        compat = rule.compatibility
        if compat.max_level is None and compat.min_level is not None:
            out["CompatibilityLevel"] = compat.min_level
        else:
            out["CompatibilityLevel"] = {"min": compat.min_level, "max": compat.max_level}
    return out


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class RuleSource(Protocol):
    """Anything that can produce a rule collection."""

    @property
    def identity(self) -> str: ...

    def load(self) -> RuleCollection: ...


@dataclass(frozen=True)
class FileRuleSource:
    """Rules from a local JSON or YAML file; relative paths resolve against *base_path*."""

    path: Path
    base_path: Path | None = None

    @property
    def identity(self) -> str:
        return str(self.path)

    @property
    def resolved_path(self) -> Path:
        if self.path.is_absolute() or self.base_path is None:
            return self.path
        return self.base_path / self.path

    def load(self) -> RuleCollection:
        path = self.resolved_path
        try:
            with path.open("r", encoding="utf-8-sig") as fh:
                data = yaml.safe_load(fh)
            return parse_rules(data, self.identity)
        except (OSError, yaml.YAMLError, ValueError) as exc:
            msg = f"Cannot load rules from {path}: {exc}"
            raise RuleSourceError(msg) from exc


@dataclass(frozen=True)
class UrlRuleSource:
    """Rules from an HTTP(S) document."""

    url: str
    timeout: float = DEFAULT_HTTP_TIMEOUT

    @property
    def identity(self) -> str:
        return self.url

    def load(self) -> RuleCollection:
        try:
            response = httpx.get(self.url, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
            return parse_rules(yaml.safe_load(response.text), self.identity)
        except (httpx.HTTPError, yaml.YAMLError, ValueError) as exc:
            msg = f"Cannot load rules from {self.url}: {exc}"
            raise RuleSourceError(msg) from exc


@dataclass(frozen=True)
class ModelRuleSource:
    """Rules embedded in the model's ``BestPracticeAnalyzer`` annotation."""

    model: AnnotationObject

    @property
    def identity(self) -> str:
        return MODEL_SOURCE

    def load(self) -> RuleCollection:
        payload = self.model.get_annotation(ANNOTATION_MODEL_RULES)
        if not payload:
            return RuleCollection(source=MODEL_SOURCE)
        try:
            return parse_rules(json.loads(payload), MODEL_SOURCE)
        except ValueError as exc:
            msg = f"Cannot load rules embedded in model: {exc}"
            raise RuleSourceError(msg) from exc


def is_url(identity: str) -> bool:
    return identity.lower().startswith("http")


def source_for(
    identity: str, base_path: Path | None = None, *, timeout: float = DEFAULT_HTTP_TIMEOUT
) -> FileRuleSource | UrlRuleSource:
    """Pick the source type for an external identity (URL or file path)."""
    if is_url(identity):
        return UrlRuleSource(identity, timeout=timeout)
    return FileRuleSource(Path(identity), base_path)


# ---------------------------------------------------------------------------
# Persisted external-source list
# ---------------------------------------------------------------------------


def read_external_source_ids(model: AnnotationObject) -> list[str]:
    """Return the external rule sources attached to *model*.

    A malformed annotation is logged and treated as an empty list.
    """
    payload = model.get_annotation(ANNOTATION_EXTERNAL_RULES)
    if payload is None:
        return []
    try:
        data = json.loads(payload)
    except ValueError:
        logger.warning("Ignoring malformed %s annotation", ANNOTATION_EXTERNAL_RULES)
        return []
    if not isinstance(data, list):
        logger.warning("Ignoring %s annotation: expected a JSON array", ANNOTATION_EXTERNAL_RULES)
        return []
    return [str(item) for item in data if item]


def save_external_sources(model: ModelAccessor, identities: list[str]) -> None:
    """Persist the external rule source list; an empty list removes the annotation."""
    with governance_suspended(model):
        if identities:
            model.set_annotation(ANNOTATION_EXTERNAL_RULES, json.dumps(identities))
        else:
            model.remove_annotation(ANNOTATION_EXTERNAL_RULES)


def load_external_sources(
    model: AnnotationObject,
    base_path: Path | None = None,
    *,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> list[RuleCollection]:
    """Load every external rule source attached to *model*, in attachment order.

    Sources that fail to load are skipped with a warning.
    """
    collections: list[RuleCollection] = []
    for identity in read_external_source_ids(model):
        try:
            collections.append(source_for(identity, base_path, timeout=timeout).load())
        except RuleSourceError as exc:
            logger.warning("Skipping external rule source %s: %s", identity, exc)
    return collections
