"""Load and save in-memory models from YAML or JSON documents.

Document layout (YAML shown; JSON uses the same keys)::

    name: Sales
    compatibility_level: 1500
    annotations: {}
    tables:
      - name: Orders
        type: table            # table | calculated | calculation_group
        columns:
          - { name: Amount, type: data, data_type: Decimal }
          - { name: Margin, type: calculated, expression: "[Amount] * 0.2" }
        measures:
          - name: Total
            expression: SUM(Orders[Amount])
            kpi: { target_expression: "100" }
    relationships:
      - { from_table: Orders, from_column: CustomerKey, to_table: Customer, to_column: Key }
    roles:
      - name: Reader
        members: [{ name: alice }]
        table_permissions: [{ table: Orders, filter_expression: "TRUE()" }]
"""

from __future__ import annotations

import json
from dataclasses import MISSING, Field, fields
from typing import TYPE_CHECKING, Any

import yaml

from bpanalyzer.model.objects import (
    KPI,
    CalculatedColumn,
    CalculatedTable,
    CalculatedTableColumn,
    CalculationGroup,
    CalculationGroupTable,
    CalculationItem,
    Column,
    Culture,
    DataColumn,
    DataSource,
    Hierarchy,
    Level,
    Measure,
    Model,
    ModelObject,
    ModelRole,
    ModelRoleMember,
    NamedExpression,
    Partition,
    Perspective,
    ProviderDataSource,
    Relationship,
    StructuredDataSource,
    Table,
    TablePermission,
    Variation,
)

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ModelLoadError(Exception):
    """Raised when a model document cannot be read or is malformed."""


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TABLE_TYPES: dict[str, type[Table]] = {
    "table": Table,
    "calculated": CalculatedTable,
    "calculation_group": CalculationGroupTable,
}
_COLUMN_TYPES: dict[str, type[Column]] = {
    "data": DataColumn,
    "calculated": CalculatedColumn,
    "calculated_table": CalculatedTableColumn,
}
_DATA_SOURCE_TYPES: dict[str, type[DataSource]] = {
    "provider": ProviderDataSource,
    "structured": StructuredDataSource,
}

# Fields handled explicitly (children and back-references).
_STRUCTURAL_FIELDS: frozenset[str] = frozenset(
    {
        "table",
        "measure",
        "columns",
        "measures",
        "hierarchies",
        "partitions",
        "levels",
        "variations",
        "kpi",
        "calculation_group",
        "calculation_items",
        "members",
        "table_permissions",
        "tables",
        "relationships",
        "perspectives",
        "cultures",
        "roles",
        "data_sources",
        "expressions",
    }
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _list(data: dict[str, Any], key: str, context: str) -> list[dict[str, Any]]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        msg = f"{context}: '{key}' must be a list"
        raise ValueError(msg)
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            msg = f"{context}: {key} entry at index {idx} must be a mapping"
            raise ValueError(msg)
    return raw


def _scalars(cls: type[ModelObject], data: dict[str, Any], context: str) -> dict[str, Any]:
    """Collect the non-structural constructor arguments for *cls* from *data*."""
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if not f.init or f.name in _STRUCTURAL_FIELDS or f.name not in data:
            continue
        kwargs[f.name] = data[f.name]

    name = kwargs.get("name")
    if name is None or not str(name).strip():
        if cls is not Relationship:
            msg = f"{context}: missing required 'name' field"
            raise ValueError(msg)
        name = ""
    kwargs["name"] = str(name)

    annotations = kwargs.get("annotations", {})
    if not isinstance(annotations, dict):
        msg = f"{context}: 'annotations' must be a mapping"
        raise ValueError(msg)
    kwargs["annotations"] = {str(k): str(v) for k, v in annotations.items()}
    return kwargs


def _typed(mapping: dict[str, type[Any]], data: dict[str, Any], default: str, context: str) -> Any:
    kind = str(data.get("type", default))
    if kind not in mapping:
        msg = f"{context}: invalid type '{kind}', must be one of {sorted(mapping)}"
        raise ValueError(msg)
    return mapping[kind]


def _parse_column(data: dict[str, Any], context: str) -> Column:
    cls = _typed(_COLUMN_TYPES, data, "data", context)
    variations = [
        Variation(**_scalars(Variation, v, f"{context} variation"))
        for v in _list(data, "variations", context)
    ]
    return cls(variations=variations, **_scalars(cls, data, context))  # type: ignore[no-any-return]


def _parse_measure(data: dict[str, Any], context: str) -> Measure:
    kwargs = _scalars(Measure, data, context)
    kpi_data = data.get("kpi")
    kpi: KPI | None = None
    if kpi_data is not None:
        if not isinstance(kpi_data, dict):
            msg = f"{context}: 'kpi' must be a mapping"
            raise ValueError(msg)
        kpi = KPI(**_scalars(KPI, {"name": kwargs["name"], **kpi_data}, f"{context} kpi"))
    return Measure(kpi=kpi, **kwargs)


def _parse_hierarchy(data: dict[str, Any], context: str) -> Hierarchy:
    levels = [
        Level(**_scalars(Level, lvl, f"{context} level"))
        for lvl in _list(data, "levels", context)
    ]
    return Hierarchy(levels=levels, **_scalars(Hierarchy, data, context))


def _parse_table(data: dict[str, Any], idx: int) -> Table:
    context = f"table '{data.get('name', idx)}'"
    cls = _typed(_TABLE_TYPES, data, "table", context)
    extra: dict[str, Any] = {}
    if cls is CalculationGroupTable:
        group_data = data.get("calculation_group") or {}
        if not isinstance(group_data, dict):
            msg = f"{context}: 'calculation_group' must be a mapping"
            raise ValueError(msg)
        items = [
            CalculationItem(**_scalars(CalculationItem, item, f"{context} calculation item"))
            for item in _list(group_data, "calculation_items", context)
        ]
        group_kwargs = _scalars(CalculationGroup, {"name": data.get("name"), **group_data}, context)
        extra["calculation_group"] = CalculationGroup(calculation_items=items, **group_kwargs)

    return cls(  # type: ignore[no-any-return]
        columns=[_parse_column(c, f"{context} column") for c in _list(data, "columns", context)],
        measures=[
            _parse_measure(m, f"{context} measure") for m in _list(data, "measures", context)
        ],
        hierarchies=[
            _parse_hierarchy(h, f"{context} hierarchy")
            for h in _list(data, "hierarchies", context)
        ],
        partitions=[
            Partition(**_scalars(Partition, p, f"{context} partition"))
            for p in _list(data, "partitions", context)
        ],
        **extra,
        **_scalars(cls, data, context),
    )


def _parse_role(data: dict[str, Any]) -> ModelRole:
    context = f"role '{data.get('name', '')}'"
    members = [
        ModelRoleMember(**_scalars(ModelRoleMember, m, f"{context} member"))
        for m in _list(data, "members", context)
    ]
    permissions = [
        TablePermission(
            **_scalars(TablePermission, {"name": p.get("table", p.get("name")), **p}, context)
        )
        for p in _list(data, "table_permissions", context)
    ]
    return ModelRole(members=members, table_permissions=permissions, **_scalars(ModelRole, data, context))


def _parse_data_source(data: dict[str, Any]) -> DataSource:
    context = f"data source '{data.get('name', '')}'"
    cls = _typed(_DATA_SOURCE_TYPES, data, "provider", context)
    return cls(**_scalars(cls, data, context))  # type: ignore[no-any-return]


def model_from_dict(data: dict[str, Any]) -> Model:
    """Build a :class:`Model` from a decoded document.

    Raises ``ValueError`` on structural problems.
    """
    if not isinstance(data, dict):
        msg = "model document must be a mapping"
        raise ValueError(msg)

    model_kwargs = _scalars(Model, {"name": data.get("name", "Model"), **data}, "model")
    model_kwargs["compatibility_level"] = int(model_kwargs.get("compatibility_level", 1200))

    return Model(
        tables=[_parse_table(t, idx) for idx, t in enumerate(_list(data, "tables", "model"))],
        relationships=[
            Relationship(**_scalars(Relationship, r, "relationship"))
            for r in _list(data, "relationships", "model")
        ],
        perspectives=[
            Perspective(**_scalars(Perspective, p, "perspective"))
            for p in _list(data, "perspectives", "model")
        ],
        cultures=[Culture(**_scalars(Culture, c, "culture")) for c in _list(data, "cultures", "model")],
        roles=[_parse_role(r) for r in _list(data, "roles", "model")],
        data_sources=[_parse_data_source(ds) for ds in _list(data, "data_sources", "model")],
        expressions=[
            NamedExpression(**_scalars(NamedExpression, e, "expression"))
            for e in _list(data, "expressions", "model")
        ],
        **model_kwargs,
    )


def load_model(path: Path) -> Model:
    """Read a model document (YAML or JSON) from *path*.

    Raises
    ------
    ModelLoadError
        When the file cannot be read or does not describe a valid model.
    """
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot read model file {path}: {exc}"
        raise ModelLoadError(msg) from exc

    try:
        return model_from_dict(data)
    except (ValueError, TypeError) as exc:
        msg = f"Invalid model file {path}: {exc}"
        raise ModelLoadError(msg) from exc


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _default(f: Field[Any]) -> Any:
    if f.default is not MISSING:
        return f.default
    if f.default_factory is not MISSING:
        return f.default_factory()
    return MISSING


def _dump(obj: ModelObject, type_key: str | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if type_key is not None:
        out["type"] = type_key
    for f in fields(obj):
        if not f.init or f.name in _STRUCTURAL_FIELDS:
            continue
        value = getattr(obj, f.name)
        if f.name == "name" or value != _default(f):
            out[f.name] = dict(value) if isinstance(value, dict) else value
    return out


def _type_key(mapping: dict[str, type[Any]], obj: object) -> str:
    for key, cls in mapping.items():
        if type(obj) is cls:
            return key
    msg = f"unsupported object type {type(obj).__name__}"
    raise ValueError(msg)


def _dump_table(table: Table) -> dict[str, Any]:
    out = _dump(table, _type_key(_TABLE_TYPES, table))
    if table.columns:
        out["columns"] = [
            {
                **_dump(c, _type_key(_COLUMN_TYPES, c)),
                **({"variations": [_dump(v) for v in c.variations]} if c.variations else {}),
            }
            for c in table.columns
        ]
    if table.measures:
        out["measures"] = [
            {**_dump(m), **({"kpi": _dump(m.kpi)} if m.kpi is not None else {})}
            for m in table.measures
        ]
    if table.hierarchies:
        out["hierarchies"] = [
            {**_dump(h), "levels": [_dump(lvl) for lvl in h.levels]} for h in table.hierarchies
        ]
    if table.partitions:
        out["partitions"] = [_dump(p) for p in table.partitions]
    if isinstance(table, CalculationGroupTable) and table.calculation_group is not None:
        group = table.calculation_group
        group_out = _dump(group)
        group_out.pop("name", None)
        group_out["calculation_items"] = [_dump(i) for i in group.calculation_items]
        out["calculation_group"] = group_out
    return out


def model_to_dict(model: Model) -> dict[str, Any]:
    """Serialize *model* back into the document layout read by :func:`model_from_dict`."""
    out = _dump(model)
    out["tables"] = [_dump_table(t) for t in model.tables]
    out["relationships"] = [_dump(r) for r in model.relationships]
    out["perspectives"] = [_dump(p) for p in model.perspectives]
    out["cultures"] = [_dump(c) for c in model.cultures]
    out["roles"] = [
        {
            **_dump(role),
            "members": [_dump(m) for m in role.members],
            "table_permissions": [
                {"table": p.name, **{k: v for k, v in _dump(p).items() if k != "name"}}
                for p in role.table_permissions
            ],
        }
        for role in model.roles
    ]
    out["data_sources"] = [_dump(ds, _type_key(_DATA_SOURCE_TYPES, ds)) for ds in model.data_sources]
    out["expressions"] = [_dump(e) for e in model.expressions]
    return out


def save_model(model: Model, path: Path) -> None:
    """Write *model* to *path*; ``.json`` and ``.bim`` files are written as JSON."""
    data = model_to_dict(model)
    if path.suffix.lower() in (".json", ".bim"):
        text = json.dumps(data, indent=2)
    else:
        text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    path.write_text(text, encoding="utf-8")
