"""Rule evaluation: compile each rule expression once, test every candidate.

A candidate violates a rule when the rule expression evaluates to false for
it.  Any compile or evaluation failure turns the whole rule into a single
error result; the caller continues with the next rule.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bpanalyzer.analysis.results import AnalyzerResult
from bpanalyzer.model.protocols import governance_suspended
from bpanalyzer.model.scope import candidates_for_scopes
from bpanalyzer.rules.expression import (
    CompiledExpression,
    CompiledFix,
    ExpressionError,
    compile_expression,
    compile_fix,
)

if TYPE_CHECKING:
    from bpanalyzer.model.protocols import ModelAccessor
    from bpanalyzer.rules.definition import RuleDefinition

logger = logging.getLogger(__name__)


class RuleEvaluator:
    """Evaluates rules against model objects with a per-expression compile cache.

    Failed compilations are cached too, so a malformed expression is parsed
    only once per evaluator.
    """

    def __init__(self) -> None:
        self._compiled: dict[str, CompiledExpression] = {}
        self._fixes: dict[str, CompiledFix] = {}
        self._failures: dict[str, str] = {}

    def compile(self, rule: RuleDefinition) -> CompiledExpression:
        """Return the compiled expression of *rule*.

        Raises
        ------
        ExpressionError
            If the expression does not compile.
        """
        text = rule.expression
        compiled = self._compiled.get(text)
        if compiled is not None:
            return compiled
        if text in self._failures:
            raise ExpressionError(self._failures[text])
        try:
            compiled = compile_expression(text)
        except ExpressionError as exc:
            self._failures[text] = str(exc)
            raise
        self._compiled[text] = compiled
        return compiled

    def evaluate(self, rule: RuleDefinition, candidate: object) -> bool:
        """Return the truth value of *rule*'s expression for *candidate*.

        Raises ``ExpressionError`` on compile or evaluation failure.
        """
        return self.compile(rule).test(candidate)

    def analyze(self, rule: RuleDefinition, model: ModelAccessor) -> list[AnalyzerResult]:
        """Evaluate *rule* over every candidate in its scope.

        Returns one result per violating object, a single error result if
        the expression fails, or a single compatibility-level result if the
        rule does not apply to this model.
        """
        if not rule.is_compatible(model.compatibility_level):
            return [
                AnalyzerResult(
                    rule=rule,
                    rule_enabled=rule.enabled,
                    invalid_compatibility_level=True,
                )
            ]

        try:
            predicate = self.compile(rule)
            violations = [
                obj for obj in candidates_for_scopes(model, rule.scope) if not predicate.test(obj)
            ]
        except ExpressionError as exc:
            logger.debug("Rule %s failed: %s", rule.id, exc)
            return [
                AnalyzerResult(
                    rule=rule,
                    rule_enabled=rule.enabled,
                    rule_error=str(exc),
                    rule_error_scope=rule.scope,
                )
            ]

        return [AnalyzerResult(rule=rule, obj=obj, rule_enabled=rule.enabled) for obj in violations]

    # -- fixes ------------------------------------------------------------------

    def compile_fix(self, rule: RuleDefinition) -> CompiledFix:
        if not rule.fix_expression:
            msg = f"Rule {rule.id} has no fix expression"
            raise ExpressionError(msg)
        fix = self._fixes.get(rule.fix_expression)
        if fix is None:
            fix = compile_fix(rule.fix_expression)
            self._fixes[rule.fix_expression] = fix
        return fix

    def apply_fix(self, result: AnalyzerResult, model: ModelAccessor) -> None:
        """Apply the rule's fix expression to the violating object of *result*.

        The edit runs with governance suspended and is flagged as one change.
        Raises ``ExpressionError`` if the result is not fixable or the fix fails.
        """
        if result.obj is None:
            msg = f"Result of rule {result.rule.id} has no object to fix"
            raise ExpressionError(msg)
        fix = self.compile_fix(result.rule)
        with governance_suspended(model):
            fix.apply(result.obj)
        model.flag_change()
