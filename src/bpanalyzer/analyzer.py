"""Analyzer: ranked rule collections bound to one model, plus analysis entry points."""

from __future__ import annotations

import logging
from itertools import chain
from pathlib import Path
from typing import TYPE_CHECKING

from bpanalyzer.analysis.runner import AnalysisRunner
from bpanalyzer.analysis.suppression import SuppressionStore, load_suppressions
from bpanalyzer.config import AnalyzerConfig
from bpanalyzer.rules.definition import rule_key
from bpanalyzer.rules.precedence import owning_collection, resolve_effective_rules, unique_rule_id
from bpanalyzer.rules.sources import (
    FileRuleSource,
    ModelRuleSource,
    RuleSourceError,
    load_external_sources,
    read_external_source_ids,
    save_external_sources,
    source_for,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from bpanalyzer.analysis.reporting import TestReportSink
    from bpanalyzer.analysis.results import AnalyzerResult
    from bpanalyzer.analysis.runner import CancellationToken
    from bpanalyzer.model.protocols import AnnotationObject, ModelAccessor
    from bpanalyzer.rules.definition import RuleCollection, RuleDefinition

logger = logging.getLogger(__name__)


class Analyzer:
    """Holds the rule collections for one model and runs analyses over it.

    Collections, lowest override priority first: local machine, local user,
    external (the first attached wins among them), model-embedded.
    """

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        *,
        load_local_rules: bool = True,
        runner: AnalysisRunner | None = None,
    ) -> None:
        self.config = config if config is not None else AnalyzerConfig()
        self.runner = runner if runner is not None else AnalysisRunner()
        self.model: ModelAccessor | None = None
        self.base_path = Path.cwd()

        self.local_machine_rules: RuleCollection | None = None
        self.local_user_rules: RuleCollection | None = None
        self.model_rules: RuleCollection | None = None
        self.external_rule_collections: list[RuleCollection] = []
        # Attached identities, including ones that failed to load.
        self.external_source_ids: list[str] = []

        self._listeners: list[Callable[[Analyzer], None]] = []

        if load_local_rules:
            self.load_local_rules()

    # -- observers ------------------------------------------------------------

    def on_collections_changed(self, callback: Callable[[Analyzer], None]) -> None:
        self._listeners.append(callback)

    def _collections_changed(self) -> None:
        for callback in self._listeners:
            callback(self)

    # -- loading --------------------------------------------------------------

    @staticmethod
    def _load_local(path: Path) -> RuleCollection | None:
        source = FileRuleSource(path)
        if not source.resolved_path.is_file():
            logger.debug("No local rules at %s", path)
            return None
        try:
            return source.load()
        except RuleSourceError as exc:
            logger.warning("Skipping local rule file: %s", exc)
            return None

    def load_local_rules(self) -> None:
        """(Re)load the local-machine and local-user rule files."""
        self.local_machine_rules = self._load_local(self.config.machine_rules)
        self.local_user_rules = self._load_local(self.config.user_rules)

    def load_model_rules(self) -> None:
        self.model_rules = None
        if self.model is None:
            return
        try:
            self.model_rules = ModelRuleSource(self.model).load()
        except RuleSourceError as exc:
            logger.warning("Skipping model-embedded rules: %s", exc)

    def load_external_rule_collections(self) -> None:
        self.external_rule_collections = []
        self.external_source_ids = []
        if self.model is None:
            return
        for identity in read_external_source_ids(self.model):
            normalized = self._source_identity(identity)
            if normalized not in self.external_source_ids:
                self.external_source_ids.append(normalized)
        self.external_rule_collections = load_external_sources(
            self.model, self.base_path, timeout=self.config.http_timeout
        )

    def set_model(self, model: ModelAccessor | None, base_path: Path | None = None) -> None:
        """Bind *model*; reload its embedded and external rules and sync rule flags.

        *base_path* is where relative external rule files resolve (normally the
        directory holding the model file); it defaults to the working directory.
        """
        self.base_path = base_path if base_path is not None else Path.cwd()
        self.model = model
        self.load_model_rules()
        self.load_external_rule_collections()
        self.update_enabled()
        self._collections_changed()

    def update_enabled(self, additional_rules: Iterable[RuleDefinition] = ()) -> None:
        """Set each rule's ``enabled`` flag from the model-level suppression set."""
        ignored = load_suppressions(self.model)
        for rule in chain(self.all_rules, additional_rules):
            rule.enabled = rule.id not in ignored

    # -- rule sets ------------------------------------------------------------

    def get_effective_rules(
        self,
        include_local_machine: bool = True,
        include_local_user: bool = True,
        include_model: bool = True,
        include_external: bool = True,
        additional_rules: Iterable[RuleDefinition] | None = None,
    ) -> list[RuleDefinition]:
        """Merge the selected collections; *additional_rules* rank lowest."""
        sources: list[RuleCollection | None] = []
        if include_local_machine:
            sources.append(self.local_machine_rules)
        if include_local_user:
            sources.append(self.local_user_rules)
        if include_external:
            sources.extend(reversed(self.external_rule_collections))
        if include_model:
            sources.append(self.model_rules)
        return list(resolve_effective_rules(sources, additional_rules).values())

    @property
    def effective_rules(self) -> list[RuleDefinition]:
        return self.get_effective_rules()

    @property
    def collections(self) -> list[RuleCollection]:
        """Loaded collections: external ones, then model, user and machine."""
        found = list(self.external_rule_collections)
        for collection in (self.model_rules, self.local_user_rules, self.local_machine_rules):
            if collection is not None:
                found.append(collection)
        return found

    @property
    def all_rules(self) -> Iterator[RuleDefinition]:
        """Every loaded rule, including ones overridden by higher-priority sources."""
        for collection in self.external_rule_collections:
            yield from collection
        for collection in (self.local_machine_rules, self.local_user_rules, self.model_rules):
            if collection is not None:
                yield from collection

    def effective_collection_for_rule(self, rule_id: str) -> RuleCollection | None:
        """Return the collection whose definition of *rule_id* is in effect."""
        return owning_collection(
            rule_id,
            [
                self.model_rules,
                *self.external_rule_collections,
                self.local_user_rules,
                self.local_machine_rules,
            ],
        )

    def find_rule(self, rule_id: str) -> RuleDefinition | None:
        key = rule_key(rule_id)
        for rule in self.effective_rules:
            if rule.key == key:
                return rule
        return None

    def get_unique_id(self, prefix: str | None) -> str:
        return unique_rule_id(prefix, (rule.id for rule in self.effective_rules))

    # -- suppression ------------------------------------------------------------

    def ignore_rule(
        self,
        rule: RuleDefinition,
        ignore: bool = True,
        obj: AnnotationObject | None = None,
    ) -> bool:
        """Ignore *rule* on *obj*, or for the whole model when *obj* is omitted."""
        if self.model is None:
            msg = "No model is loaded"
            raise RuntimeError(msg)
        return SuppressionStore(self.model).ignore_rule(rule, ignore, obj)

    # -- analysis ---------------------------------------------------------------

    def analyze_all(self, cancellation: CancellationToken | None = None) -> list[AnalyzerResult]:
        return self.analyze(self.effective_rules, cancellation)

    def analyze(
        self,
        rules: Iterable[RuleDefinition],
        cancellation: CancellationToken | None = None,
    ) -> list[AnalyzerResult]:
        if self.model is None:
            return []
        return self.runner.run(self.model, rules, cancellation)

    def analyze_with_report(
        self, rules: Iterable[RuleDefinition], sink: TestReportSink
    ) -> list[AnalyzerResult]:
        if self.model is None:
            return []
        return self.runner.run_with_report(self.model, rules, sink)

    def fix(self, result: AnalyzerResult) -> None:
        """Apply the fix expression of *result*'s rule to its object."""
        if self.model is None:
            msg = "No model is loaded"
            raise RuntimeError(msg)
        self.runner.evaluator.apply_fix(result, self.model)

    # -- external sources -------------------------------------------------------

    def _source_identity(self, identity: str) -> str:
        return source_for(identity, self.base_path, timeout=self.config.http_timeout).identity

    def attach_source(self, identity: str) -> RuleCollection:
        """Load an external rule file or URL and attach it with the lowest external priority.

        A source that is attached but failed to load earlier keeps its place.

        Raises ``RuleSourceError`` if the source cannot be loaded.
        """
        source = source_for(identity, self.base_path, timeout=self.config.http_timeout)
        for collection in self.external_rule_collections:
            if collection.source == source.identity:
                return collection
        collection = source.load()
        if source.identity not in self.external_source_ids:
            self.external_source_ids.append(source.identity)
        self.external_rule_collections.append(collection)
        self.external_rule_collections.sort(
            key=lambda c: self.external_source_ids.index(c.source)
        )
        self.update_enabled()
        logger.info("Attached rule source %s (%d rules)", source.identity, len(collection))
        self._collections_changed()
        return collection

    def detach_source(self, identity: str) -> bool:
        """Detach an external source; return False if it was not attached."""
        identity = self._source_identity(identity)
        if identity not in self.external_source_ids:
            return False
        self.external_source_ids.remove(identity)
        self.external_rule_collections = [
            c for c in self.external_rule_collections if c.source != identity
        ]
        logger.info("Detached rule source %s", identity)
        self._collections_changed()
        return True

    def save_external_rule_collections(self) -> None:
        """Persist the attached external sources on the model, loaded or not."""
        if self.model is None:
            return
        save_external_sources(self.model, list(self.external_source_ids))
