"""In-memory tabular model: the reference implementation of ModelAccessor.

Objects compare by identity, so the same measure loaded twice is two
different candidates.  Child objects keep a back-reference to their table
for DAX naming; the references are assigned when a table is constructed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class ModelObject:
    """A named model object carrying string annotations."""

    object_type: ClassVar[str] = "Object"

    name: str
    description: str = ""
    annotations: dict[str, str] = field(default_factory=dict, repr=False)

    def get_annotation(self, name: str) -> str | None:
        return self.annotations.get(name)

    def set_annotation(self, name: str, value: str) -> None:
        self.annotations[name] = value

    def remove_annotation(self, name: str) -> None:
        self.annotations.pop(name, None)

    def has_annotation(self, name: str) -> bool:
        return name in self.annotations


def _quote_table(name: str) -> str:
    return "'" + name.replace("'", "''") + "'"


# ---------------------------------------------------------------------------
# Table children
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Variation(ModelObject):
    object_type: ClassVar[str] = "Variation"

    relationship: str = ""
    default_hierarchy: str = ""
    is_default: bool = False


@dataclass(eq=False)
class Column(ModelObject):
    object_type: ClassVar[str] = "Column"

    data_type: str = "String"
    is_hidden: bool = False
    format_string: str = ""
    display_folder: str = ""
    summarize_by: str = "Default"
    variations: list[Variation] = field(default_factory=list)
    table: Table | None = field(default=None, repr=False)

    @property
    def dax_object_name(self) -> str:
        return f"[{self.name}]"

    @property
    def dax_object_full_name(self) -> str:
        table_name = self.table.name if self.table is not None else ""
        return f"{_quote_table(table_name)}[{self.name}]"


@dataclass(eq=False)
class DataColumn(Column):
    object_type: ClassVar[str] = "DataColumn"

    source_column: str = ""


@dataclass(eq=False)
class CalculatedColumn(Column):
    object_type: ClassVar[str] = "CalculatedColumn"

    expression: str = ""


@dataclass(eq=False)
class CalculatedTableColumn(Column):
    object_type: ClassVar[str] = "CalculatedTableColumn"

    source_column: str = ""


@dataclass(eq=False)
class KPI(ModelObject):
    object_type: ClassVar[str] = "KPI"

    target_expression: str = ""
    status_expression: str = ""
    trend_expression: str = ""
    measure: Measure | None = field(default=None, repr=False)


@dataclass(eq=False)
class Measure(ModelObject):
    object_type: ClassVar[str] = "Measure"

    expression: str = ""
    is_hidden: bool = False
    format_string: str = ""
    display_folder: str = ""
    kpi: KPI | None = None
    table: Table | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.kpi is not None:
            self.kpi.measure = self

    @property
    def dax_object_name(self) -> str:
        return f"[{self.name}]"

    @property
    def dax_object_full_name(self) -> str:
        table_name = self.table.name if self.table is not None else ""
        return f"{_quote_table(table_name)}[{self.name}]"


@dataclass(eq=False)
class Level(ModelObject):
    object_type: ClassVar[str] = "Level"

    column: str = ""
    ordinal: int = 0


@dataclass(eq=False)
class Hierarchy(ModelObject):
    object_type: ClassVar[str] = "Hierarchy"

    is_hidden: bool = False
    display_folder: str = ""
    levels: list[Level] = field(default_factory=list)
    table: Table | None = field(default=None, repr=False)


@dataclass(eq=False)
class Partition(ModelObject):
    object_type: ClassVar[str] = "Partition"

    source_type: str = "Query"
    query: str = ""
    mode: str = "Import"
    data_source: str = ""
    table: Table | None = field(default=None, repr=False)


# ---------------------------------------------------------------------------
# Tables and calculation groups
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Table(ModelObject):
    object_type: ClassVar[str] = "Table"

    is_hidden: bool = False
    data_category: str = ""
    columns: list[Column] = field(default_factory=list)
    measures: list[Measure] = field(default_factory=list)
    hierarchies: list[Hierarchy] = field(default_factory=list)
    partitions: list[Partition] = field(default_factory=list)

    def __post_init__(self) -> None:
        for child in (*self.columns, *self.measures, *self.hierarchies, *self.partitions):
            child.table = self

    @property
    def dax_object_name(self) -> str:
        return _quote_table(self.name)

    @property
    def dax_object_full_name(self) -> str:
        return _quote_table(self.name)


@dataclass(eq=False)
class CalculatedTable(Table):
    object_type: ClassVar[str] = "CalculatedTable"

    expression: str = ""


@dataclass(eq=False)
class CalculationItem(ModelObject):
    object_type: ClassVar[str] = "CalculationItem"

    expression: str = ""
    ordinal: int = 0
    format_string_expression: str = ""


@dataclass(eq=False)
class CalculationGroup(ModelObject):
    object_type: ClassVar[str] = "CalculationGroup"

    precedence: int = 0
    calculation_items: list[CalculationItem] = field(default_factory=list)


@dataclass(eq=False)
class CalculationGroupTable(Table):
    object_type: ClassVar[str] = "CalculationGroupTable"

    calculation_group: CalculationGroup | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.calculation_group is None:
            self.calculation_group = CalculationGroup(name=self.name)


# ---------------------------------------------------------------------------
# Model-level objects
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Relationship(ModelObject):
    object_type: ClassVar[str] = "SingleColumnRelationship"

    from_table: str = ""
    from_column: str = ""
    to_table: str = ""
    to_column: str = ""
    is_active: bool = True
    cross_filtering_behavior: str = "OneDirection"
    from_cardinality: str = "Many"
    to_cardinality: str = "One"

    def __post_init__(self) -> None:
        if not self.name:
            self.name = (
                f"{_quote_table(self.from_table)}[{self.from_column}] -> "
                f"{_quote_table(self.to_table)}[{self.to_column}]"
            )


@dataclass(eq=False)
class Perspective(ModelObject):
    object_type: ClassVar[str] = "Perspective"


@dataclass(eq=False)
class Culture(ModelObject):
    object_type: ClassVar[str] = "Culture"


@dataclass(eq=False)
class ModelRoleMember(ModelObject):
    object_type: ClassVar[str] = "ModelRoleMember"

    member_id: str = ""


@dataclass(eq=False)
class TablePermission(ModelObject):
    object_type: ClassVar[str] = "TablePermission"

    filter_expression: str = ""


@dataclass(eq=False)
class ModelRole(ModelObject):
    object_type: ClassVar[str] = "ModelRole"

    model_permission: str = "Read"
    members: list[ModelRoleMember] = field(default_factory=list)
    table_permissions: list[TablePermission] = field(default_factory=list)


@dataclass(eq=False)
class DataSource(ModelObject):
    object_type: ClassVar[str] = "DataSource"


@dataclass(eq=False)
class ProviderDataSource(DataSource):
    object_type: ClassVar[str] = "ProviderDataSource"

    connection_string: str = ""
    provider: str = ""


@dataclass(eq=False)
class StructuredDataSource(DataSource):
    object_type: ClassVar[str] = "StructuredDataSource"

    protocol: str = ""
    address: dict[str, str] = field(default_factory=dict)


@dataclass(eq=False)
class NamedExpression(ModelObject):
    object_type: ClassVar[str] = "NamedExpression"

    expression: str = ""
    kind: str = "M"


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Model(ModelObject):
    """Root of the object graph.

    Governance suspension nests; ``flag_change`` records one logical edit
    and notifies subscribers registered with :meth:`on_change`.
    """

    object_type: ClassVar[str] = "Model"

    compatibility_level: int = 1200
    culture: str = "en-US"
    tables: list[Table] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    perspectives: list[Perspective] = field(default_factory=list)
    cultures: list[Culture] = field(default_factory=list)
    roles: list[ModelRole] = field(default_factory=list)
    data_sources: list[DataSource] = field(default_factory=list)
    expressions: list[NamedExpression] = field(default_factory=list)

    change_count: int = field(default=0, init=False)
    _governance_depth: int = field(default=0, init=False, repr=False)
    _listeners: list[Callable[[Model], None]] = field(
        default_factory=list, init=False, repr=False
    )

    # -- flattened collections ------------------------------------------------

    @property
    def all_columns(self) -> list[Column]:
        return [c for t in self.tables for c in t.columns]

    @property
    def all_measures(self) -> list[Measure]:
        return [m for t in self.tables for m in t.measures]

    @property
    def all_hierarchies(self) -> list[Hierarchy]:
        return [h for t in self.tables for h in t.hierarchies]

    @property
    def all_levels(self) -> list[Level]:
        return [lvl for h in self.all_hierarchies for lvl in h.levels]

    @property
    def all_partitions(self) -> list[Partition]:
        return [p for t in self.tables for p in t.partitions]

    @property
    def calculation_groups(self) -> list[CalculationGroup]:
        return [
            t.calculation_group
            for t in self.tables
            if isinstance(t, CalculationGroupTable) and t.calculation_group is not None
        ]

    def find_table(self, name: str) -> Table | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    # -- governance -------------------------------------------------------------

    @property
    def governance_suspended(self) -> bool:
        return self._governance_depth > 0

    def suspend_governance(self) -> None:
        self._governance_depth += 1

    def resume_governance(self) -> None:
        if self._governance_depth == 0:
            msg = "resume_governance() called without a matching suspend_governance()"
            raise RuntimeError(msg)
        self._governance_depth -= 1

    def on_change(self, callback: Callable[[Model], None]) -> None:
        """Register *callback* to run after every flagged change."""
        self._listeners.append(callback)

    def flag_change(self) -> None:
        self.change_count += 1
        logger.debug("Model %s flagged change #%d", self.name, self.change_count)
        for callback in self._listeners:
            callback(self)
