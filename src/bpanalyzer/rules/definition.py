"""Rule definitions, scope tags, and named rule collections."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MODEL_SOURCE = "model-embedded"


class RuleScope(enum.Enum):
    """Category of model object a rule targets."""

    MODEL = "Model"
    TABLE = "Table"
    MEASURE = "Measure"
    HIERARCHY = "Hierarchy"
    LEVEL = "Level"
    RELATIONSHIP = "Relationship"
    PERSPECTIVE = "Perspective"
    CULTURE = "Culture"
    PARTITION = "Partition"
    PROVIDER_DATA_SOURCE = "ProviderDataSource"
    DATA_COLUMN = "DataColumn"
    CALCULATED_COLUMN = "CalculatedColumn"
    CALCULATED_TABLE = "CalculatedTable"
    CALCULATED_TABLE_COLUMN = "CalculatedTableColumn"
    KPI = "KPI"
    STRUCTURED_DATA_SOURCE = "StructuredDataSource"
    VARIATION = "Variation"
    NAMED_EXPRESSION = "NamedExpression"
    MODEL_ROLE = "ModelRole"
    CALCULATION_GROUP = "CalculationGroup"
    CALCULATION_ITEM = "CalculationItem"
    MODEL_ROLE_MEMBER = "ModelRoleMember"
    TABLE_PERMISSION = "TablePermission"


class Severity(enum.IntEnum):
    """Rule severity, numbered the way rule files store it."""

    INFO = 1
    WARNING = 2
    ERROR = 3


def rule_key(rule_id: str) -> str:
    """Normalize a rule ID for case-insensitive comparison."""
    return rule_id.casefold()


def parse_scope(raw: str) -> tuple[str, ...]:
    """Split a comma-separated scope string into individual scope tags.

    Tags are kept as written (stripped) so that tags unknown to this version
    survive parsing and degrade to empty candidate sets at analysis time.
    """
    return tuple(part.strip() for part in raw.split(",") if part.strip())


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompatibilityRange:
    """Inclusive compatibility-level bounds; ``None`` means unbounded."""

    min_level: int | None = None
    max_level: int | None = None

    def contains(self, level: int) -> bool:
        if self.min_level is not None and level < self.min_level:
            return False
        return not (self.max_level is not None and level > self.max_level)


@dataclass(eq=False)
class RuleDefinition:
    """Description of one best-practice rule.

    Definition fields are read-only after parsing. ``enabled`` is runtime
    state driven by the model-level suppression set and is never written
    back to the rule source. Rules compare and hash by identity so they can
    key result groupings.
    """

    id: str
    name: str
    expression: str
    scope: tuple[str, ...] = ()
    description: str = ""
    severity: Severity = Severity.WARNING
    category: str = ""
    fix_expression: str | None = None
    compatibility: CompatibilityRange | None = None
    enabled: bool = field(default=True, compare=False)

    @property
    def key(self) -> str:
        return rule_key(self.id)

    @property
    def can_fix(self) -> bool:
        return bool(self.fix_expression)

    @property
    def scope_label(self) -> str:
        return ", ".join(self.scope)

    def is_compatible(self, level: int) -> bool:
        """Return True if the rule applies at the given compatibility level."""
        return self.compatibility is None or self.compatibility.contains(level)


@dataclass
class RuleCollection:
    """Ordered rules loaded from one source (file path, URL, or the model)."""

    source: str
    rules: list[RuleDefinition] = field(default_factory=list)

    def __iter__(self) -> Iterator[RuleDefinition]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, rule_id: str) -> RuleDefinition | None:
        """Return the last rule in this collection with the given ID, or None."""
        wanted = rule_key(rule_id)
        found: RuleDefinition | None = None
        for rule in self.rules:
            if rule.key == wanted:
                found = rule
        return found

    def contains(self, rule_id: str) -> bool:
        return self.get(rule_id) is not None
