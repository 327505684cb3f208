"""Scope resolution: map a rule's scope tags to candidate model objects.

One table, keyed by scope tag, holds a pure accessor per object category.
Subtype filters use the ``object_type`` tag so the table works for any
``ModelAccessor`` implementation, not only :mod:`bpanalyzer.model.objects`.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING

from bpanalyzer.rules.definition import RuleScope

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from bpanalyzer.model.protocols import ModelAccessor

logger = logging.getLogger(__name__)


def _of_type(items: Iterable[object], *object_types: str) -> Iterator[object]:
    return (item for item in items if getattr(item, "object_type", None) in object_types)


def _flatten(items: Iterable[object], member: str) -> Iterator[object]:
    return itertools.chain.from_iterable(getattr(item, member, ()) for item in items)


def _kpis(model: ModelAccessor) -> Iterator[object]:
    return (m.kpi for m in model.all_measures if getattr(m, "kpi", None) is not None)  # type: ignore[attr-defined]


def _regular_tables(model: ModelAccessor) -> Iterator[object]:
    return _of_type(model.tables, "Table")


def _calculated_table_columns(model: ModelAccessor) -> Iterator[object]:
    calculated = _of_type(model.tables, "CalculatedTable")
    return _of_type(_flatten(calculated, "columns"), "CalculatedTableColumn")


SCOPE_TABLE: dict[str, Callable[[ModelAccessor], Iterable[object]]] = {
    RuleScope.MODEL.value: lambda model: (model,),
    RuleScope.TABLE.value: _regular_tables,
    RuleScope.MEASURE.value: lambda model: model.all_measures,
    RuleScope.HIERARCHY.value: lambda model: model.all_hierarchies,
    RuleScope.LEVEL.value: lambda model: model.all_levels,
    RuleScope.RELATIONSHIP.value: lambda model: _of_type(
        model.relationships, "SingleColumnRelationship"
    ),
    RuleScope.PERSPECTIVE.value: lambda model: model.perspectives,
    RuleScope.CULTURE.value: lambda model: model.cultures,
    RuleScope.PARTITION.value: lambda model: model.all_partitions,
    RuleScope.PROVIDER_DATA_SOURCE.value: lambda model: _of_type(
        model.data_sources, "ProviderDataSource"
    ),
    RuleScope.STRUCTURED_DATA_SOURCE.value: lambda model: _of_type(
        model.data_sources, "StructuredDataSource"
    ),
    RuleScope.DATA_COLUMN.value: lambda model: _of_type(model.all_columns, "DataColumn"),
    RuleScope.CALCULATED_COLUMN.value: lambda model: _of_type(
        model.all_columns, "CalculatedColumn"
    ),
    RuleScope.CALCULATED_TABLE.value: lambda model: _of_type(model.tables, "CalculatedTable"),
    RuleScope.CALCULATED_TABLE_COLUMN.value: _calculated_table_columns,
    RuleScope.KPI.value: _kpis,
    RuleScope.VARIATION.value: lambda model: _flatten(model.all_columns, "variations"),
    RuleScope.NAMED_EXPRESSION.value: lambda model: model.expressions,
    RuleScope.MODEL_ROLE.value: lambda model: model.roles,
    RuleScope.MODEL_ROLE_MEMBER.value: lambda model: _flatten(model.roles, "members"),
    RuleScope.TABLE_PERMISSION.value: lambda model: _flatten(model.roles, "table_permissions"),
    RuleScope.CALCULATION_GROUP.value: lambda model: model.calculation_groups,
    RuleScope.CALCULATION_ITEM.value: lambda model: _flatten(
        model.calculation_groups, "calculation_items"
    ),
}

_SCOPE_LOOKUP: dict[str, str] = {tag.casefold(): tag for tag in SCOPE_TABLE}


def candidates(model: ModelAccessor, scope: str | RuleScope) -> Iterator[object]:
    """Return a lazy sequence of objects in *model* that fall under *scope*.

    Unknown scope tags yield nothing.
    """
    tag = scope.value if isinstance(scope, RuleScope) else scope
    canonical = _SCOPE_LOOKUP.get(tag.strip().casefold())
    if canonical is None:
        logger.debug("Unknown rule scope %r, no candidates", tag)
        return iter(())
    return iter(SCOPE_TABLE[canonical](model))


def candidates_for_scopes(model: ModelAccessor, scopes: Iterable[str]) -> Iterator[object]:
    """Chain the candidates of several scope tags, in tag order."""
    return itertools.chain.from_iterable(candidates(model, scope) for scope in scopes)


def find_object(model: ModelAccessor, ref: str) -> object | None:
    """Find the object whose DAX full name, or failing that name, equals *ref*.

    Every scope is searched, so any object a rule can target can be found.
    """
    seen: set[int] = set()
    by_name: object | None = None
    for accessor in SCOPE_TABLE.values():
        for obj in accessor(model):
            if id(obj) in seen:
                continue
            seen.add(id(obj))
            if getattr(obj, "dax_object_full_name", None) == ref:
                return obj
            if by_name is None and getattr(obj, "name", None) == ref:
                by_name = obj
    return by_name
