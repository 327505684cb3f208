"""Rule precedence: merge ranked rule collections into one effective rule set."""

from __future__ import annotations

from typing import TYPE_CHECKING

from bpanalyzer.rules.definition import RuleCollection, RuleDefinition, rule_key

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

DEFAULT_RULE_PREFIX = "NEW_RULE"


def resolve_effective_rules(
    sources: Sequence[RuleCollection | None],
    additional_rules: Iterable[RuleDefinition] | None = None,
) -> dict[str, RuleDefinition]:
    """Merge rule collections into a case-insensitive ID -> rule mapping.

    *sources* are ordered from lowest to highest override priority and
    *additional_rules* rank below all of them. Each source overwrites entries
    with the same (case-folded) ID, so the surviving value for an ID is the
    definition from the highest-priority source that defines it. ``None``
    entries are skipped.

    Keys of the returned mapping are case-folded IDs (see :func:`rule_key`).
    """
    effective: dict[str, RuleDefinition] = {}

    if additional_rules is not None:
        for rule in additional_rules:
            effective[rule.key] = rule

    for collection in sources:
        if collection is None:
            continue
        for rule in collection:
            effective[rule.key] = rule

    return effective


def owning_collection(
    rule_id: str, collections_by_priority: Sequence[RuleCollection | None]
) -> RuleCollection | None:
    """Return the first collection defining *rule_id*, walking highest priority first."""
    for collection in collections_by_priority:
        if collection is not None and collection.contains(rule_id):
            return collection
    return None


def unique_rule_id(prefix: str | None, existing_ids: Iterable[str]) -> str:
    """Generate a rule ID not present in *existing_ids*.

    Appends ``_1``, ``_2``, ... until there is no case-insensitive collision.
    """
    # Non-blank prefixes collapse to DEFAULT_RULE_PREFIX; blank ones are kept.
    base = DEFAULT_RULE_PREFIX if prefix is not None and prefix.strip() else (prefix or "")
    taken = {rule_key(rule_id) for rule_id in existing_ids}

    candidate = base
    suffix = 0
    while rule_key(candidate) in taken:
        suffix += 1
        candidate = f"{base}_{suffix}"
    return candidate
