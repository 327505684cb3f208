"""Analysis domain: evaluation, runs, suppression, results, and reporting."""

from bpanalyzer.analysis.evaluator import RuleEvaluator
from bpanalyzer.analysis.reporting import (
    AnalysisReport,
    CollectingSink,
    TestOutcome,
    TestRecord,
    TestReportSink,
    TestRunReporter,
    format_json,
    format_junit,
    format_porcelain,
    format_rich,
)
from bpanalyzer.analysis.results import AnalyzerResult, ResultAggregator, describe
from bpanalyzer.analysis.runner import AnalysisRunner, CancellationToken
from bpanalyzer.analysis.suppression import SuppressionSet, SuppressionStore, load_suppressions

__all__ = [
    "AnalysisReport",
    "AnalysisRunner",
    "AnalyzerResult",
    "CancellationToken",
    "CollectingSink",
    "ResultAggregator",
    "RuleEvaluator",
    "SuppressionSet",
    "SuppressionStore",
    "TestOutcome",
    "TestRecord",
    "TestReportSink",
    "TestRunReporter",
    "describe",
    "format_json",
    "format_junit",
    "format_porcelain",
    "format_rich",
    "load_suppressions",
]
