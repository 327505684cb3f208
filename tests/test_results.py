"""Tests for bpanalyzer.analysis.results: result records and the aggregator."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from bpanalyzer.analysis.results import AnalyzerResult, ResultAggregator, describe
from bpanalyzer.analysis.suppression import SuppressionStore
from bpanalyzer.rules.definition import RuleDefinition

if TYPE_CHECKING:
    from bpanalyzer.model.objects import Model


@pytest.fixture()
def rule() -> RuleDefinition:
    return RuleDefinition(
        id="R1",
        name="Hide foreign keys",
        expression="IsHidden",
        scope=("DataColumn",),
        description="%objecttype% %object% (%objectname%) should be hidden",
        fix_expression="IsHidden = true",
    )


class _Recorder:
    def __init__(self) -> None:
        self.structure = 0
        self.complete = 0

    def attach(self, aggregator: ResultAggregator) -> None:
        aggregator.on_structure_changed(lambda _a: self._bump("structure"))
        aggregator.on_update_complete(lambda _a: self._bump("complete"))

    def _bump(self, name: str) -> None:
        setattr(self, name, getattr(self, name) + 1)


# ---------------------------------------------------------------------------
# AnalyzerResult
# ---------------------------------------------------------------------------


class TestAnalyzerResult:
    def test_object_names(self, sales_model: Model, rule: RuleDefinition) -> None:
        column = AnalyzerResult(rule, sales_model.all_columns[0])
        assert column.object_name == "'Sales'[Amount]"
        assert column.object_type == "DataColumn"
        kpi = AnalyzerResult(rule, sales_model.all_measures[1].kpi)
        assert kpi.object_name == "'Sales'[Order Count].KPI"
        role = AnalyzerResult(rule, sales_model.roles[0])
        assert role.object_name == "Reader"

    def test_error_result(self, rule: RuleDefinition) -> None:
        result = AnalyzerResult(rule, rule_error="boom", rule_error_scope=rule.scope)
        assert result.rule_has_error
        assert result.object_type == "Error"
        assert result.object_name == "boom"
        assert not result.ignored

    def test_can_fix_mirrors_rule(self, rule: RuleDefinition) -> None:
        assert AnalyzerResult(rule).can_fix
        assert AnalyzerResult(rule).rule_name == "Hide foreign keys"

    def test_ignored_is_live(self, sales_model: Model, rule: RuleDefinition) -> None:
        column = sales_model.all_columns[0]
        result = AnalyzerResult(rule, column)
        assert not result.ignored
        SuppressionStore(sales_model).ignore_rule(rule, obj=column)
        assert result.ignored

    def test_describe(self, sales_model: Model, rule: RuleDefinition) -> None:
        result = AnalyzerResult(rule, sales_model.all_columns[0])
        assert describe(result) == "DataColumn 'Sales'[Amount] (Amount) should be hidden"

    def test_describe_blank_falls_back_to_name(self, sales_model: Model) -> None:
        bare = RuleDefinition(id="X", name="Plain name", expression="true", description="  ")
        assert describe(AnalyzerResult(bare, sales_model)) == "Plain name"


# ---------------------------------------------------------------------------
# ResultAggregator
# ---------------------------------------------------------------------------


class TestResultAggregator:
    def test_counters(self, sales_model: Model, rule: RuleDefinition) -> None:
        other = RuleDefinition(id="R2", name="Other", expression="false")
        columns = sales_model.all_columns
        SuppressionStore(sales_model).ignore_rule(rule, obj=columns[1])
        results = [
            AnalyzerResult(rule, columns[0]),
            AnalyzerResult(rule, columns[1]),
            AnalyzerResult(other, columns[2], rule_enabled=False),
            AnalyzerResult(other, invalid_compatibility_level=True),
        ]
        aggregator = ResultAggregator()
        aggregator.update(results)
        assert aggregator.rule_count == 1
        assert aggregator.object_count == 1
        assert aggregator.ignored_count == 1
        assert aggregator.disabled_rules_count == 1
        assert aggregator.rules() == [rule]
        assert aggregator.results_for(rule) == [results[0]]
        assert aggregator.results_for(other) == []
        assert aggregator.object_count_by_rule(rule) == 1

    def test_show_ignored_switches_grouping(self, sales_model: Model, rule: RuleDefinition) -> None:
        column = sales_model.all_columns[0]
        SuppressionStore(sales_model).ignore_rule(rule, obj=column)
        aggregator = ResultAggregator()
        recorder = _Recorder()
        recorder.attach(aggregator)
        aggregator.update([AnalyzerResult(rule, column)])
        assert aggregator.rules() == []

        aggregator.show_ignored = True
        assert aggregator.rules() == [rule]
        assert len(aggregator.results_for(rule)) == 1
        assert recorder.structure == 2

        aggregator.show_ignored = True
        assert recorder.structure == 2

    def test_identical_update_fires_no_structure_change(
        self, sales_model: Model, rule: RuleDefinition
    ) -> None:
        aggregator = ResultAggregator()
        recorder = _Recorder()
        recorder.attach(aggregator)
        column = sales_model.all_columns[0]

        assert aggregator.update([AnalyzerResult(rule, column)]) is True
        assert aggregator.update([AnalyzerResult(rule, column)]) is False
        assert recorder.structure == 1
        assert recorder.complete == 2

    def test_different_update_fires(self, sales_model: Model, rule: RuleDefinition) -> None:
        aggregator = ResultAggregator()
        recorder = _Recorder()
        recorder.attach(aggregator)
        columns = sales_model.all_columns

        aggregator.update([AnalyzerResult(rule, columns[0])])
        aggregator.update([AnalyzerResult(rule, columns[1])])
        aggregator.update([])
        assert recorder.structure == 3
        assert aggregator.raw_results == []

    def test_counters_follow_suppression_without_structure_change(
        self, sales_model: Model, rule: RuleDefinition
    ) -> None:
        column = sales_model.all_columns[0]
        results = [AnalyzerResult(rule, column)]
        aggregator = ResultAggregator()
        aggregator.update(results)
        assert aggregator.object_count == 1

        SuppressionStore(sales_model).ignore_rule(rule, obj=column)
        assert aggregator.update(results) is False
        assert aggregator.object_count == 0
        assert aggregator.ignored_count == 1

    def test_clear(self, sales_model: Model, rule: RuleDefinition) -> None:
        aggregator = ResultAggregator()
        recorder = _Recorder()
        recorder.attach(aggregator)
        aggregator.update([AnalyzerResult(rule, sales_model.all_columns[0])])
        aggregator.clear()
        assert aggregator.rule_count == 0
        assert aggregator.rules() == []
        assert aggregator.raw_results == []
        assert recorder.structure == 2
