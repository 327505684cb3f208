"""Test-run reporting and output formatters for analysis results."""

from __future__ import annotations

import enum
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from bpanalyzer.analysis.results import describe

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bpanalyzer.analysis.results import AnalyzerResult
    from bpanalyzer.rules.definition import RuleDefinition

SUITE_NAME = "Best Practice Analysis"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


class TestOutcome(enum.Enum):
    """Classification of one rule in a test run."""

    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"
    INCONCLUSIVE = "inconclusive"


@dataclass(frozen=True)
class TestRecord:
    """One per-rule record emitted to a test-report sink."""

    __test__ = False

    suite: str
    name: str
    outcome: TestOutcome
    properties: dict[str, str] = field(default_factory=dict)
    message: str = ""
    details: str = ""


@dataclass
class AnalysisReport:
    """Results of one analysis run, as consumed by the formatters."""

    results: list[AnalyzerResult] = field(default_factory=list)
    rules_evaluated: int = 0
    elapsed_ms: float = 0.0
    show_ignored: bool = False

    @property
    def violations(self) -> list[AnalyzerResult]:
        """Results worth showing: valid compatibility, enabled rules, not ignored.

        Ignored results are kept when ``show_ignored`` is set.
        """
        return [
            r
            for r in self.results
            if not r.invalid_compatibility_level
            and r.rule_enabled
            and (self.show_ignored or not r.ignored)
        ]


# ---------------------------------------------------------------------------
# Test-report sink
# ---------------------------------------------------------------------------


class TestReportSink(Protocol):
    """Receives one record per rule."""

    __test__ = False

    def start_suite(self, name: str) -> None: ...

    def record(self, record: TestRecord) -> None: ...


class CollectingSink:
    """In-memory sink that keeps every record it receives."""

    def __init__(self) -> None:
        self.suites: list[str] = []
        self.records: list[TestRecord] = []

    def start_suite(self, name: str) -> None:
        self.suites.append(name)

    def record(self, record: TestRecord) -> None:
        self.records.append(record)

    def by_outcome(self, outcome: TestOutcome) -> list[TestRecord]:
        return [r for r in self.records if r.outcome is outcome]


def rule_properties(rule: RuleDefinition, rule_error: str | None = None) -> dict[str, str]:
    props = {
        "Description": rule.description,
        "Severity": str(int(rule.severity)),
        "Category": rule.category,
        "RuleID": rule.id,
    }
    if rule_error is not None:
        props["RuleError"] = rule_error
    return props


def classify(results: Sequence[AnalyzerResult]) -> TestOutcome:
    """Classify the (already suppression-filtered) results of one rule."""
    if not results:
        return TestOutcome.PASS
    if len(results) == 1:
        only = results[0]
        if not only.rule_enabled or only.invalid_compatibility_level:
            return TestOutcome.SKIP
        if only.rule_has_error:
            return TestOutcome.INCONCLUSIVE
    return TestOutcome.FAIL


class TestRunReporter:
    """Maps per-rule result sets to pass/fail/skip/inconclusive records."""

    __test__ = False

    def __init__(self, sink: TestReportSink, suite: str = SUITE_NAME) -> None:
        self.sink = sink
        self.suite = suite

    def start(self) -> None:
        self.sink.start_suite(self.suite)

    def report(self, rule: RuleDefinition, results: Sequence[AnalyzerResult]) -> TestOutcome:
        outcome = classify(results)
        if outcome is TestOutcome.INCONCLUSIVE:
            record = TestRecord(
                self.suite, rule.name, outcome, rule_properties(rule, results[0].rule_error)
            )
        elif outcome is TestOutcome.FAIL:
            listing = "\n  ".join(f"{r.object_name} ({r.object_type})" for r in results)
            record = TestRecord(
                self.suite,
                rule.name,
                outcome,
                rule_properties(rule),
                message=f"{len(results)} object(s) in violation of rule",
                details=f"Objects in violation:\n  {listing}",
            )
        else:
            record = TestRecord(self.suite, rule.name, outcome, rule_properties(rule))
        self.sink.record(record)
        return outcome


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_SEVERITY_STYLES = {1: "blue", 2: "yellow", 3: "red"}


def format_rich(report: AnalysisReport) -> str:
    """Format an AnalysisReport as a Rich-rendered table for terminal display."""
    from io import StringIO

    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    buf = StringIO()
    console = Console(file=buf, force_terminal=True, width=120, highlight=False)

    violations = report.violations
    elapsed_str = f"{report.elapsed_ms / 1000:.1f}s"

    if not violations:
        console.print(
            f"[green]✓[/green] No violations found "
            f"({report.rules_evaluated} rules evaluated, {elapsed_str})"
        )
        return buf.getvalue()

    table = Table(box=None, padding=(0, 1))
    table.add_column("Sev", justify="right")
    table.add_column("Rule", style="bold")
    table.add_column("Object", style="cyan")
    table.add_column("Type", style="dim")
    table.add_column("Description")

    for r in violations:
        severity = int(r.rule.severity)
        style = "magenta" if r.rule_has_error else _SEVERITY_STYLES.get(severity, "white")
        name = escape(r.object_name)
        if r.ignored:
            name += " [dim](ignored)[/dim]"
        table.add_row(
            f"[{style}]{severity}[/{style}]",
            escape(r.rule_name),
            name,
            r.object_type,
            escape(describe(r)),
        )

    console.print(table)
    console.print()
    rule_count = len({r.rule.key for r in violations})
    console.print(
        f"{len(violations)} violations of {rule_count} rules "
        f"({report.rules_evaluated} rules evaluated, {elapsed_str})"
    )
    return buf.getvalue()


def format_json(report: AnalysisReport) -> str:
    """Format an AnalysisReport as JSON with ``violations`` and ``summary``."""
    violations = report.violations
    violations_list: list[dict[str, object]] = [
        {
            "rule_id": r.rule.id,
            "rule_name": r.rule_name,
            "category": r.rule.category,
            "severity": int(r.rule.severity),
            "object_name": r.object_name,
            "object_type": r.object_type,
            "description": describe(r),
            "ignored": r.ignored,
            "can_fix": r.can_fix,
            "rule_error": r.rule_error,
        }
        for r in violations
    ]
    output: dict[str, object] = {
        "violations": violations_list,
        "summary": {
            "rules_evaluated": report.rules_evaluated,
            "violations_count": len(violations),
            "rules_violated": len({r.rule.key for r in violations}),
            "elapsed_ms": report.elapsed_ms,
        },
    }
    return json.dumps(output, indent=2)


def format_porcelain(report: AnalysisReport) -> str:
    """One line per violation: ``rule_id:severity:object_type:object_name``.

    Returns an empty string when there are no violations.
    """
    return "\n".join(
        f"{r.rule.id}:{int(r.rule.severity)}:{r.object_type}:{r.object_name}"
        for r in report.violations
    )


def format_junit(records: Sequence[TestRecord]) -> str:
    """Render test-report records as a JUnit XML document."""
    suites: dict[str, list[TestRecord]] = {}
    for rec in records:
        suites.setdefault(rec.suite, []).append(rec)

    root = ET.Element("testsuites")
    for suite_name, suite_records in suites.items():
        suite = ET.SubElement(
            root,
            "testsuite",
            name=suite_name,
            tests=str(len(suite_records)),
            failures=str(sum(1 for r in suite_records if r.outcome is TestOutcome.FAIL)),
            skipped=str(
                sum(
                    1
                    for r in suite_records
                    if r.outcome in (TestOutcome.SKIP, TestOutcome.INCONCLUSIVE)
                )
            ),
        )
        for rec in suite_records:
            case = ET.SubElement(suite, "testcase", classname=suite_name, name=rec.name)
            props = ET.SubElement(case, "properties")
            for key, value in rec.properties.items():
                ET.SubElement(props, "property", name=key, value=value)
            if rec.outcome is TestOutcome.FAIL:
                failure = ET.SubElement(case, "failure", message=rec.message)
                failure.text = rec.details
            elif rec.outcome is TestOutcome.SKIP:
                ET.SubElement(case, "skipped")
            elif rec.outcome is TestOutcome.INCONCLUSIVE:
                ET.SubElement(
                    case, "skipped", message=f"Inconclusive: {rec.properties.get('RuleError', '')}"
                )

    return ET.tostring(root, encoding="unicode")
