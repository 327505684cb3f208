"""bpanalyzer CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

import click

from bpanalyzer import __version__

if TYPE_CHECKING:
    from bpanalyzer.analyzer import Analyzer
    from bpanalyzer.model.objects import Model
    from bpanalyzer.rules.definition import RuleDefinition


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    level = logging.WARNING
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@click.group()
@click.version_option(version=__version__, prog_name="bpanalyzer")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """bpanalyzer - Best Practice Analyzer for tabular models."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


_MODEL_ARG = click.argument(
    "model_path",
    metavar="MODEL",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)


def _open(model_path: Path, *, local_rules: bool = True) -> tuple[Analyzer, Model]:
    """Load config, model and analyzer; exit 2 on configuration errors."""
    from bpanalyzer.analyzer import Analyzer
    from bpanalyzer.config import AnalyzerConfigError, load_config
    from bpanalyzer.model.loader import ModelLoadError, load_model

    base_path = model_path.resolve().parent
    try:
        config = load_config(base_path)
        model = load_model(model_path)
    except (AnalyzerConfigError, ModelLoadError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    analyzer = Analyzer(config, load_local_rules=local_rules)
    analyzer.set_model(model, base_path)
    return analyzer, model


@main.command()
@_MODEL_ARG
@click.option(
    "--rules",
    "rule_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Additional rule file (repeatable); ranks below all other sources.",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["rich", "json", "porcelain", "junit"]),
    default=None,
    help="Output format (default: rich if TTY, porcelain if piped).",
)
@click.option("--strict", is_flag=True, default=False, help="Exit 1 if violations found.")
@click.option(
    "--show-ignored/--hide-ignored",
    default=None,
    help="Include ignored objects (default: from config.yml).",
)
@click.option(
    "--no-local-rules",
    is_flag=True,
    default=False,
    help="Skip the local-machine and local-user rule files.",
)
@click.option("--fix", is_flag=True, default=False, help="Apply fix expressions and save.")
def analyze(
    *,
    model_path: Path,
    rule_files: tuple[Path, ...],
    fmt: str | None,
    strict: bool,
    show_ignored: bool | None,
    no_local_rules: bool,
    fix: bool,
) -> None:
    """Analyze MODEL against the effective best-practice rules.

    Exit codes: 0 = clean or violations without --strict,
    1 = violations with --strict, 2 = configuration error.
    """
    from bpanalyzer.analysis.reporting import (
        AnalysisReport,
        CollectingSink,
        format_json,
        format_junit,
        format_porcelain,
        format_rich,
    )
    from bpanalyzer.model.loader import save_model
    from bpanalyzer.rules.expression import ExpressionError
    from bpanalyzer.rules.sources import FileRuleSource, RuleSourceError

    if fmt is None:
        fmt = "rich" if sys.stdout.isatty() else "porcelain"

    analyzer, model = _open(model_path, local_rules=not no_local_rules)

    additional: list[RuleDefinition] = []
    for path in rule_files:
        try:
            additional.extend(FileRuleSource(path).load())
        except RuleSourceError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(2)
    analyzer.update_enabled(additional)
    rules = analyzer.get_effective_rules(additional_rules=additional)

    start = time.monotonic()
    sink = CollectingSink()
    if fmt == "junit":
        results = analyzer.analyze_with_report(rules, sink)
    else:
        results = analyzer.analyze(rules)
    report = AnalysisReport(
        results=results,
        rules_evaluated=len(rules),
        elapsed_ms=(time.monotonic() - start) * 1000,
        show_ignored=analyzer.config.show_ignored if show_ignored is None else show_ignored,
    )

    if fix:
        fixed = 0
        for result in report.violations:
            if result.obj is None or not result.can_fix or result.ignored:
                continue
            try:
                analyzer.fix(result)
            except ExpressionError as exc:
                click.echo(f"Warning: cannot fix {result.object_name}: {exc}", err=True)
                continue
            fixed += 1
        if fixed:
            save_model(model, model_path)
        click.echo(f"Fixed {fixed} object(s)", err=True)

    if fmt == "junit":
        output = format_junit(sink.records)
    else:
        formatters = {
            "rich": format_rich,
            "json": format_json,
            "porcelain": format_porcelain,
        }
        output = formatters[fmt](report)
    if output:
        click.echo(output)

    if strict and any(not r.ignored for r in report.violations):
        sys.exit(1)


@main.command()
@_MODEL_ARG
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output as JSON.",
)
@click.option(
    "--no-local-rules",
    is_flag=True,
    default=False,
    help="Skip the local-machine and local-user rule files.",
)
def rules(*, model_path: Path, as_json: bool, no_local_rules: bool) -> None:
    """List the effective rules for MODEL and the source each comes from."""
    from bpanalyzer.rules.sources import rule_to_dict

    analyzer, _model = _open(model_path, local_rules=not no_local_rules)
    effective = sorted(analyzer.effective_rules, key=lambda r: (r.category, r.id))

    if as_json:
        payload = []
        for rule in effective:
            owner = analyzer.effective_collection_for_rule(rule.id)
            entry = rule_to_dict(rule)
            entry["Enabled"] = rule.enabled
            entry["Source"] = owner.source if owner is not None else None
            payload.append(entry)
        click.echo(json.dumps(payload, indent=2))
        return

    if not effective:
        click.echo("No rules.")
        return
    for rule in effective:
        owner = analyzer.effective_collection_for_rule(rule.id)
        source = owner.source if owner is not None else "?"
        state = "" if rule.enabled else " (ignored)"
        click.echo(f"[{rule.category or '-'}] {rule.id}: {rule.name}{state}")
        click.echo(f"  severity={int(rule.severity)} scope={rule.scope_label} source={source}")


@main.command()
@_MODEL_ARG
@click.argument("rule_id")
@click.option(
    "--object",
    "object_ref",
    default=None,
    help="Object to ignore the rule on (DAX full name or name); default: whole model.",
)
@click.option("--unignore", is_flag=True, default=False, help="Stop ignoring the rule.")
def ignore(*, model_path: Path, rule_id: str, object_ref: str | None, unignore: bool) -> None:
    """Ignore RULE_ID on MODEL (or one of its objects) and save the model."""
    from bpanalyzer.model.loader import save_model
    from bpanalyzer.model.scope import find_object

    analyzer, model = _open(model_path)
    rule = analyzer.find_rule(rule_id)
    if rule is None:
        click.echo(f"Error: unknown rule '{rule_id}'", err=True)
        sys.exit(1)

    obj = None
    if object_ref is not None:
        obj = find_object(model, object_ref)
        if obj is None:
            click.echo(f"Error: object '{object_ref}' not found", err=True)
            sys.exit(1)

    changed = analyzer.ignore_rule(rule, ignore=not unignore, obj=obj)  # type: ignore[arg-type]
    target = object_ref or "model"
    if not changed:
        click.echo(f"No change: {rule.id} on {target}")
        return
    save_model(model, model_path)
    click.echo(f"{'Restored' if unignore else 'Ignored'} {rule.id} on {target}")


@main.command()
@_MODEL_ARG
@click.argument("source")
def attach(*, model_path: Path, source: str) -> None:
    """Attach an external rule file or URL to MODEL."""
    from bpanalyzer.model.loader import save_model
    from bpanalyzer.rules.sources import RuleSourceError

    analyzer, model = _open(model_path)
    try:
        collection = analyzer.attach_source(source)
    except RuleSourceError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    analyzer.save_external_rule_collections()
    save_model(model, model_path)
    click.echo(f"Attached {source} ({len(collection)} rules)")


@main.command()
@_MODEL_ARG
@click.argument("source")
def detach(*, model_path: Path, source: str) -> None:
    """Detach an external rule file or URL from MODEL."""
    from bpanalyzer.model.loader import save_model

    analyzer, model = _open(model_path)
    if not analyzer.detach_source(source):
        click.echo(f"Error: '{source}' is not attached", err=True)
        sys.exit(1)
    analyzer.save_external_rule_collections()
    save_model(model, model_path)
    click.echo(f"Detached {source}")
