"""Capabilities the analyzer needs from a model, independent of concrete types."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


@runtime_checkable
class AnnotationObject(Protocol):
    """Any model object that carries named string annotations."""

    def get_annotation(self, name: str) -> str | None: ...

    def set_annotation(self, name: str, value: str) -> None: ...

    def remove_annotation(self, name: str) -> None: ...


@runtime_checkable
class ModelAccessor(AnnotationObject, Protocol):
    """The model as seen by scope resolution, suppression, and analysis.

    Collections are read-only views; the ``all_*`` members flatten the
    per-table collections across every table.
    """

    name: str
    compatibility_level: int

    @property
    def tables(self) -> Sequence[object]: ...

    @property
    def all_columns(self) -> Sequence[object]: ...

    @property
    def all_measures(self) -> Sequence[object]: ...

    @property
    def all_hierarchies(self) -> Sequence[object]: ...

    @property
    def all_levels(self) -> Sequence[object]: ...

    @property
    def all_partitions(self) -> Sequence[object]: ...

    @property
    def relationships(self) -> Sequence[object]: ...

    @property
    def perspectives(self) -> Sequence[object]: ...

    @property
    def cultures(self) -> Sequence[object]: ...

    @property
    def roles(self) -> Sequence[object]: ...

    @property
    def data_sources(self) -> Sequence[object]: ...

    @property
    def expressions(self) -> Sequence[object]: ...

    @property
    def calculation_groups(self) -> Sequence[object]: ...

    def suspend_governance(self) -> None: ...

    def resume_governance(self) -> None: ...

    def flag_change(self) -> None: ...


@contextmanager
def governance_suspended(model: ModelAccessor) -> Iterator[ModelAccessor]:
    """Suspend change governance on *model* for the duration of the block."""
    model.suspend_governance()
    try:
        yield model
    finally:
        model.resume_governance()
