"""Rules domain: definitions, expression language, sources, and precedence."""

from bpanalyzer.rules.definition import (
    MODEL_SOURCE,
    CompatibilityRange,
    RuleCollection,
    RuleDefinition,
    RuleScope,
    Severity,
    parse_scope,
    rule_key,
)
from bpanalyzer.rules.expression import (
    CompiledExpression,
    CompiledFix,
    ExpressionError,
    compile_expression,
    compile_fix,
)
from bpanalyzer.rules.precedence import (
    owning_collection,
    resolve_effective_rules,
    unique_rule_id,
)
from bpanalyzer.rules.sources import (
    FileRuleSource,
    ModelRuleSource,
    RuleSource,
    RuleSourceError,
    UrlRuleSource,
    load_external_sources,
    parse_rules,
    read_external_source_ids,
    save_external_sources,
    source_for,
)

__all__ = [
    "MODEL_SOURCE",
    "CompatibilityRange",
    "CompiledExpression",
    "CompiledFix",
    "ExpressionError",
    "FileRuleSource",
    "ModelRuleSource",
    "RuleCollection",
    "RuleDefinition",
    "RuleScope",
    "RuleSource",
    "RuleSourceError",
    "Severity",
    "UrlRuleSource",
    "compile_expression",
    "compile_fix",
    "load_external_sources",
    "owning_collection",
    "parse_rules",
    "parse_scope",
    "read_external_source_ids",
    "resolve_effective_rules",
    "rule_key",
    "save_external_sources",
    "source_for",
    "unique_rule_id",
]
