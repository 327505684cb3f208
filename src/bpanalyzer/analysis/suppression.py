"""Suppression state: rule IDs ignored per object or for the whole model.

Each annotation-bearing object stores its ignored rule IDs as JSON in the
``BestPracticeAnalyzer_IgnoreRules`` annotation::

    {"RuleIDs": ["META_AVOID_FLOAT", "DAX_DIVISION_COLUMNS"]}

The model object itself holds the global set.  An earlier, misspelled key
is still read when the canonical one is absent and is removed on save.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from bpanalyzer.model.protocols import governance_suspended
from bpanalyzer.rules.definition import rule_key

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from bpanalyzer.model.protocols import AnnotationObject, ModelAccessor
    from bpanalyzer.rules.definition import RuleDefinition

logger = logging.getLogger(__name__)

ANNOTATION_IGNORE = "BestPracticeAnalyzer_IgnoreRules"
LEGACY_ANNOTATION_IGNORE = "BestPractizeAnalyzer_IgnoreRules"
PAYLOAD_FIELD = "RuleIDs"


class SuppressionSet:
    """A case-insensitive set of rule IDs that keeps the IDs as first written."""

    def __init__(self, rule_ids: Iterable[str] = ()) -> None:
        self._ids: dict[str, str] = {}
        for rule_id in rule_ids:
            self.add(rule_id)

    def __contains__(self, rule_id: object) -> bool:
        return isinstance(rule_id, str) and rule_key(rule_id) in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids.values())

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"SuppressionSet({list(self._ids.values())!r})"

    def add(self, rule_id: str) -> bool:
        """Add *rule_id*; return False if it was already present."""
        key = rule_key(rule_id)
        if key in self._ids:
            return False
        self._ids[key] = rule_id
        return True

    def discard(self, rule_id: str) -> bool:
        """Remove *rule_id*; return False if it was not present."""
        return self._ids.pop(rule_key(rule_id), None) is not None

    def to_payload(self) -> str:
        return json.dumps({PAYLOAD_FIELD: list(self._ids.values())})

    @classmethod
    def from_payload(cls, payload: str) -> SuppressionSet:
        """Decode an annotation payload.

        Unknown fields are ignored; the field name matches case-insensitively.
        Raises ``ValueError`` when the payload is not JSON or has the wrong shape.
        """
        data = json.loads(payload)
        if not isinstance(data, dict):
            msg = "suppression payload must be a JSON object"
            raise ValueError(msg)

        raw_ids: object = None
        for key, value in data.items():
            if str(key).lower() == PAYLOAD_FIELD.lower():
                raw_ids = value
        if raw_ids is None:
            return cls()
        if not isinstance(raw_ids, list) or not all(isinstance(i, str) for i in raw_ids):
            msg = f"suppression payload field '{PAYLOAD_FIELD}' must be an array of strings"
            raise ValueError(msg)
        return cls(raw_ids)


def load_suppressions(obj: AnnotationObject | None) -> SuppressionSet:
    """Read the suppression set stored on *obj*.

    Missing annotations, and payloads that fail to decode, give an empty set.
    """
    if obj is None:
        return SuppressionSet()
    payload = obj.get_annotation(ANNOTATION_IGNORE)
    if payload is None:
        payload = obj.get_annotation(LEGACY_ANNOTATION_IGNORE)
    if not payload:
        return SuppressionSet()
    try:
        return SuppressionSet.from_payload(payload)
    except ValueError as exc:
        logger.warning(
            "Ignoring unreadable suppression annotation on %s: %s",
            getattr(obj, "name", obj),
            exc,
        )
        return SuppressionSet()


class SuppressionStore:
    """Reads and writes suppression sets for objects of one model."""

    def __init__(self, model: ModelAccessor) -> None:
        self.model = model

    def load(self, obj: AnnotationObject | None = None) -> SuppressionSet:
        """Return the suppression set of *obj*, or the model-level set when omitted."""
        return load_suppressions(self.model if obj is None else obj)

    def save(self, obj: AnnotationObject, suppressions: SuppressionSet) -> None:
        """Write *suppressions* to *obj* as one change.

        The annotation edit runs with governance suspended and is followed by
        exactly one ``flag_change`` on the model.
        """
        with governance_suspended(self.model):
            obj.remove_annotation(LEGACY_ANNOTATION_IGNORE)
            obj.set_annotation(ANNOTATION_IGNORE, suppressions.to_payload())
        self.model.flag_change()

    def is_ignored(self, rule: RuleDefinition, obj: AnnotationObject) -> bool:
        return rule.id in self.load(obj)

    def ignore_rule(
        self,
        rule: RuleDefinition,
        ignore: bool = True,
        obj: AnnotationObject | None = None,
    ) -> bool:
        """Ignore (or stop ignoring) *rule* on *obj*, or model-wide when *obj* is None.

        Model-wide changes also toggle ``rule.enabled``.  Returns True when the
        stored set changed; repeating a call is a no-op.
        """
        if obj is None:
            rule.enabled = not ignore
            obj = self.model

        suppressions = self.load(obj)
        changed = suppressions.add(rule.id) if ignore else suppressions.discard(rule.id)
        if changed:
            self.save(obj, suppressions)
            logger.info(
                "%s rule %s on %s",
                "Ignored" if ignore else "Restored",
                rule.id,
                getattr(obj, "name", obj),
            )
        return changed
