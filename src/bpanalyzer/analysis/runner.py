"""Analysis runner: evaluate rules sequentially with cooperative cancellation."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from bpanalyzer.analysis.evaluator import RuleEvaluator
from bpanalyzer.analysis.reporting import TestRunReporter

if TYPE_CHECKING:
    from collections.abc import Iterable

    from bpanalyzer.analysis.reporting import TestReportSink
    from bpanalyzer.analysis.results import AnalyzerResult
    from bpanalyzer.model.protocols import ModelAccessor
    from bpanalyzer.rules.definition import RuleDefinition

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and a running analysis."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class AnalysisRunner:
    """Runs rules against a model one at a time.

    Cancellation is observed between rules only; a rule that has started
    runs over all of its candidates.  The runner does no locking of its own.
    """

    def __init__(self, evaluator: RuleEvaluator | None = None) -> None:
        self.evaluator = evaluator if evaluator is not None else RuleEvaluator()

    def run(
        self,
        model: ModelAccessor,
        rules: Iterable[RuleDefinition],
        cancellation: CancellationToken | None = None,
    ) -> list[AnalyzerResult]:
        """Evaluate *rules* and return every result.

        Returns an empty list if *cancellation* is triggered at any point
        before the run completes.
        """
        results: list[AnalyzerResult] = []
        count = 0
        for rule in rules:
            if cancellation is not None and cancellation.is_cancelled:
                logger.info("Analysis cancelled after %d rules", count)
                return []
            results.extend(self.evaluator.analyze(rule, model))
            count += 1
        if cancellation is not None and cancellation.is_cancelled:
            logger.info("Analysis cancelled after %d rules", count)
            return []

        logger.info("Analyzed %d rules: %d results", count, len(results))
        return results

    def run_with_report(
        self,
        model: ModelAccessor,
        rules: Iterable[RuleDefinition],
        sink: TestReportSink,
    ) -> list[AnalyzerResult]:
        """Evaluate *rules*, emitting one test record per rule to *sink*.

        Ignored results are dropped before classification; the remaining
        results are returned.
        """
        reporter = TestRunReporter(sink)
        reporter.start()

        results: list[AnalyzerResult] = []
        for rule in rules:
            rule_results = [r for r in self.evaluator.analyze(rule, model) if not r.ignored]
            outcome = reporter.report(rule, rule_results)
            logger.debug("Rule %s: %s", rule.id, outcome.value)
            results.extend(rule_results)
        return results
