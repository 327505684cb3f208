"""Analysis results and the grouped, counted view over them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bpanalyzer.analysis.suppression import load_suppressions
from bpanalyzer.model.protocols import AnnotationObject

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from bpanalyzer.rules.definition import RuleDefinition

logger = logging.getLogger(__name__)

ERROR_OBJECT_TYPE = "Error"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnalyzerResult:
    """Outcome of evaluating one rule against one candidate object.

    ``obj`` is ``None`` for rule-level records: evaluation errors (with
    ``rule_error`` set) and compatibility-level skips.  ``ignored`` is not
    stored; it is read from the object's suppression annotation each time.
    """

    rule: RuleDefinition
    obj: object | None = None
    rule_enabled: bool = True
    invalid_compatibility_level: bool = False
    rule_error: str | None = None
    rule_error_scope: tuple[str, ...] = ()

    @property
    def rule_has_error(self) -> bool:
        return bool(self.rule_error)

    @property
    def rule_name(self) -> str:
        return self.rule.name

    @property
    def can_fix(self) -> bool:
        return self.rule.can_fix

    @property
    def ignored(self) -> bool:
        """True if the object's own suppression set contains this rule."""
        if isinstance(self.obj, AnnotationObject):
            return self.rule.id in load_suppressions(self.obj)
        return False

    @property
    def object_type(self) -> str:
        if self.rule_has_error:
            return ERROR_OBJECT_TYPE
        if self.obj is None:
            return ""
        return str(getattr(self.obj, "object_type", type(self.obj).__name__))

    @property
    def object_name(self) -> str:
        if self.rule_has_error:
            return self.rule_error or ""
        if self.obj is None:
            return ""
        if getattr(self.obj, "object_type", None) == "KPI":
            measure = getattr(self.obj, "measure", None)
            if measure is not None:
                return f"{measure.dax_object_full_name}.KPI"
        full_name = getattr(self.obj, "dax_object_full_name", None)
        if full_name:
            return str(full_name)
        return str(getattr(self.obj, "name", ""))


def describe(result: AnalyzerResult) -> str:
    """Render the rule description for *result*, substituting object placeholders.

    Supported placeholders: ``%object%``, ``%objectname%``, ``%objecttype%``.
    Falls back to the rule name when the description is blank.
    """
    description = result.rule.description
    if not description.strip():
        return result.rule.name
    object_short_name = str(getattr(result.obj, "name", "")) if result.obj is not None else ""
    return (
        description.replace("%objectname%", object_short_name)
        .replace("%objecttype%", result.object_type)
        .replace("%object%", result.object_name)
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class ResultAggregator:
    """Groups raw results by rule and keeps summary counters.

    Two groupings are kept: every result with a valid compatibility level,
    and the effective subset that also excludes ignored results and results
    of disabled rules.  ``show_ignored`` selects which grouping
    :meth:`rules` and :meth:`results_for` read from.

    Observers registered with :meth:`on_structure_changed` run only when an
    update brings a raw result list that differs from the previous one, or
    when ``show_ignored`` flips.  Observers registered with
    :meth:`on_update_complete` run after every update.
    """

    def __init__(self) -> None:
        self._raw: list[AnalyzerResult] = []
        self._all: dict[RuleDefinition, list[AnalyzerResult]] = {}
        self._effective: dict[RuleDefinition, list[AnalyzerResult]] = {}
        self._show_ignored = False
        self._structure_listeners: list[Callable[[ResultAggregator], None]] = []
        self._complete_listeners: list[Callable[[ResultAggregator], None]] = []

        self.rule_count = 0
        self.object_count = 0
        self.ignored_count = 0
        self.disabled_rules_count = 0

    # -- observers ------------------------------------------------------------

    def on_structure_changed(self, callback: Callable[[ResultAggregator], None]) -> None:
        self._structure_listeners.append(callback)

    def on_update_complete(self, callback: Callable[[ResultAggregator], None]) -> None:
        self._complete_listeners.append(callback)

    def _notify(self, listeners: list[Callable[[ResultAggregator], None]]) -> None:
        for callback in listeners:
            callback(self)

    # -- updates --------------------------------------------------------------

    def update(self, results: Iterable[AnalyzerResult]) -> bool:
        """Rebuild groupings and counters from *results*.

        Returns True if the raw result list changed (and structure observers ran).
        """
        raw = list(results)
        all_groups: dict[RuleDefinition, list[AnalyzerResult]] = {}
        effective_groups: dict[RuleDefinition, list[AnalyzerResult]] = {}
        ignored_count = 0
        disabled_count = 0

        for result in raw:
            if result.invalid_compatibility_level:
                continue
            all_groups.setdefault(result.rule, []).append(result)
            ignored = result.ignored
            if ignored:
                ignored_count += 1
            if not result.rule_enabled:
                disabled_count += 1
            if not ignored and result.rule_enabled:
                effective_groups.setdefault(result.rule, []).append(result)

        self._all = all_groups
        self._effective = effective_groups
        self.rule_count = len(effective_groups)
        self.object_count = sum(len(group) for group in effective_groups.values())
        self.ignored_count = ignored_count
        self.disabled_rules_count = disabled_count

        changed = raw != self._raw
        if changed:
            self._raw = raw
            logger.debug(
                "Results changed: %d rules, %d objects, %d ignored, %d disabled",
                self.rule_count,
                self.object_count,
                self.ignored_count,
                self.disabled_rules_count,
            )
            self._notify(self._structure_listeners)
        self._notify(self._complete_listeners)
        return changed

    def clear(self) -> None:
        """Drop all results and reset counters."""
        self._raw = []
        self._all = {}
        self._effective = {}
        self.rule_count = 0
        self.object_count = 0
        self.ignored_count = 0
        self.disabled_rules_count = 0
        self._notify(self._structure_listeners)

    # -- reads ------------------------------------------------------------------

    @property
    def show_ignored(self) -> bool:
        return self._show_ignored

    @show_ignored.setter
    def show_ignored(self, value: bool) -> None:
        if self._show_ignored == value:
            return
        self._show_ignored = value
        self._notify(self._structure_listeners)

    @property
    def raw_results(self) -> list[AnalyzerResult]:
        return list(self._raw)

    def _groups(self) -> dict[RuleDefinition, list[AnalyzerResult]]:
        return self._all if self._show_ignored else self._effective

    def rules(self) -> list[RuleDefinition]:
        """Rules with at least one result in the active grouping."""
        return list(self._groups())

    def results_for(self, rule: RuleDefinition) -> list[AnalyzerResult]:
        """Results of *rule* in the active grouping (empty if none)."""
        return list(self._groups().get(rule, []))

    def object_count_by_rule(self, rule: RuleDefinition) -> int:
        return sum(1 for result in self._effective.get(rule, []) if not result.ignored)
