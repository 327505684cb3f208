"""Tests for the bpanalyzer CLI commands."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any

import pytest
from click.testing import CliRunner

from bpanalyzer import __version__
from bpanalyzer.analysis.suppression import ANNOTATION_IGNORE
from bpanalyzer.cli import main
from bpanalyzer.model.loader import load_model, save_model
from bpanalyzer.rules.sources import ANNOTATION_EXTERNAL_RULES, ANNOTATION_MODEL_RULES

if TYPE_CHECKING:
    from pathlib import Path

    from bpanalyzer.model.objects import Model


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_FORMAT_RULE: dict[str, Any] = {
    "ID": "FMT",
    "Name": "Measures need a format string",
    "Category": "Formatting",
    "Severity": 2,
    "Scope": "Measure",
    "Expression": 'FormatString <> ""',
    "FixExpression": 'FormatString = "#,0"',
}

_NAME_RULE: dict[str, Any] = {
    "ID": "NAMES",
    "Name": "Objects are named",
    "Category": "Naming",
    "Severity": 1,
    "Scope": "Table, Measure",
    "Expression": "Name.Length > 0",
}


def _project(tmp_path: Path, model: Model, *embedded: dict[str, Any]) -> Path:
    """Write a model file plus a config.yml that points local rules into *tmp_path*."""
    project = tmp_path / "proj"
    project.mkdir()
    (project / "config.yml").write_text(
        "analyzer:\n"
        f"  machine_rules: {tmp_path / 'machine.json'}\n"
        f"  user_rules: {tmp_path / 'user.json'}\n",
        encoding="utf-8",
    )
    if embedded:
        model.set_annotation(ANNOTATION_MODEL_RULES, json.dumps(list(embedded)))
    model_path = project / "model.yml"
    save_model(model, model_path)
    return model_path


def _rule_file(path: Path, *rules: dict[str, Any]) -> Path:
    path.write_text(json.dumps(list(rules)), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


class TestMain:
    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("analyze", "rules", "ignore", "attach", "detach"):
            assert command in result.output


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------


class TestAnalyze:
    def test_porcelain_default_when_piped(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path)])
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == [
            "FMT:2:Measure:'Sales'[Order Count]",
            "FMT:2:Measure:'Sales'[Avg Sale]",
        ]

    def test_json(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE, _NAME_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--format", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["summary"]["rules_evaluated"] == 2
        assert data["summary"]["violations_count"] == 2
        assert {v["rule_id"] for v in data["violations"]} == {"FMT"}
        assert all(v["can_fix"] for v in data["violations"])

    def test_rich(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _NAME_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--format", "rich"])
        assert result.exit_code == 0, result.output
        assert "No violations found" in result.output

    def test_junit(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE, _NAME_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--format", "junit"])
        assert result.exit_code == 0, result.output
        root = ET.fromstring(result.output)
        suite = root.find("testsuite")
        assert suite is not None
        assert suite.get("name") == "Best Practice Analysis"
        assert suite.get("tests") == "2"
        assert suite.get("failures") == "1"
        failure = root.find(".//testcase[@name='Measures need a format string']/failure")
        assert failure is not None
        assert failure.get("message") == "2 object(s) in violation of rule"

    def test_strict_exits_1(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--strict"])
        assert result.exit_code == 1

    def test_strict_clean_exits_0(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _NAME_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--strict"])
        assert result.exit_code == 0
        assert result.output == ""

    def test_strict_ignores_suppressed(self, tmp_path: Path, sales_model: Model) -> None:
        for measure in sales_model.all_measures:
            measure.set_annotation(ANNOTATION_IGNORE, json.dumps({"RuleIDs": ["FMT"]}))
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE)
        runner = CliRunner()
        assert runner.invoke(main, ["analyze", str(model_path), "--strict"]).exit_code == 0

        result = runner.invoke(main, ["analyze", str(model_path), "--show-ignored"])
        assert len(result.output.splitlines()) == 2

    def test_additional_rule_files(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        extra = _rule_file(tmp_path / "extra.json", _FORMAT_RULE)
        result = CliRunner().invoke(
            main, ["analyze", str(model_path), "--rules", str(extra), "--format", "json"]
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["summary"]["violations_count"] == 2

    def test_embedded_rule_overrides_additional(
        self, tmp_path: Path, sales_model: Model
    ) -> None:
        model_path = _project(tmp_path, sales_model, {**_FORMAT_RULE, "Severity": 3})
        extra = _rule_file(tmp_path / "extra.json", _FORMAT_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--rules", str(extra)])
        assert result.output.splitlines()[0].startswith("FMT:3:")

    def test_local_user_rules_used(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        _rule_file(tmp_path / "user.json", _FORMAT_RULE)
        runner = CliRunner()
        assert len(runner.invoke(main, ["analyze", str(model_path)]).output.splitlines()) == 2

        result = runner.invoke(main, ["analyze", str(model_path), "--no-local-rules"])
        assert result.output == ""

    def test_bad_rule_file_exits_2(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        bad = tmp_path / "bad.json"
        bad.write_text('[{"ID": "X"}]', encoding="utf-8")
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--rules", str(bad)])
        assert result.exit_code == 2
        assert "Expression" in result.output

    def test_bad_model_exits_2(self, tmp_path: Path) -> None:
        model_path = tmp_path / "model.yml"
        model_path.write_text("tables: 42\n", encoding="utf-8")
        result = CliRunner().invoke(main, ["analyze", str(model_path)])
        assert result.exit_code == 2
        assert "Error:" in result.output

    def test_bad_config_exits_2(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        (model_path.parent / "config.yml").write_text(
            "analyzer:\n  http_timeout: -5\n", encoding="utf-8"
        )
        result = CliRunner().invoke(main, ["analyze", str(model_path)])
        assert result.exit_code == 2
        assert "http_timeout" in result.output

    def test_rule_error_reported(self, tmp_path: Path, sales_model: Model) -> None:
        broken = {**_NAME_RULE, "ID": "BROKEN", "Expression": "Bogus = 1"}
        model_path = _project(tmp_path, sales_model, broken)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--format", "json"])
        (violation,) = json.loads(result.output)["violations"]
        assert violation["object_type"] == "Error"
        assert "Bogus" in violation["rule_error"]

    def test_fix_saves_model(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE)
        result = CliRunner().invoke(main, ["analyze", str(model_path), "--fix"])
        assert result.exit_code == 0, result.output
        assert "Fixed 2 object(s)" in result.output

        reloaded = load_model(model_path)
        assert [m.format_string for m in reloaded.all_measures] == ["0.00", "#,0", "#,0"]
        again = CliRunner().invoke(main, ["analyze", str(model_path), "--strict"])
        assert again.exit_code == 0


# ---------------------------------------------------------------------------
# rules
# ---------------------------------------------------------------------------


class TestRules:
    def test_lists_rules_with_source(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE, _NAME_RULE)
        result = CliRunner().invoke(main, ["rules", str(model_path)])
        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0] == "[Formatting] FMT: Measures need a format string"
        assert "source=model-embedded" in lines[1]
        assert lines[2] == "[Naming] NAMES: Objects are named"

    def test_no_rules(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        result = CliRunner().invoke(main, ["rules", str(model_path)])
        assert result.output.strip() == "No rules."

    def test_json(self, tmp_path: Path, sales_model: Model) -> None:
        sales_model.set_annotation(ANNOTATION_IGNORE, json.dumps({"RuleIDs": ["NAMES"]}))
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE, _NAME_RULE)
        result = CliRunner().invoke(main, ["rules", str(model_path), "--json"])
        data = {entry["ID"]: entry for entry in json.loads(result.output)}
        assert data["FMT"]["Enabled"] is True
        assert data["NAMES"]["Enabled"] is False
        assert data["FMT"]["Source"] == "model-embedded"


# ---------------------------------------------------------------------------
# ignore
# ---------------------------------------------------------------------------


class TestIgnore:
    def test_ignore_object(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE)
        runner = CliRunner()
        args = ["ignore", str(model_path), "fmt", "--object", "'Sales'[Order Count]"]
        result = runner.invoke(main, args)
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "Ignored FMT on 'Sales'[Order Count]"

        payload = load_model(model_path).all_measures[1].get_annotation(ANNOTATION_IGNORE)
        assert json.loads(payload or "") == {"RuleIDs": ["FMT"]}
        assert runner.invoke(main, args).output.startswith("No change")

        analyzed = runner.invoke(main, ["analyze", str(model_path)])
        assert analyzed.output.splitlines() == ["FMT:2:Measure:'Sales'[Avg Sale]"]

    def test_ignore_model_wide_and_restore(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE)
        runner = CliRunner()
        result = runner.invoke(main, ["ignore", str(model_path), "FMT"])
        assert result.output.strip() == "Ignored FMT on model"
        assert "(ignored)" in runner.invoke(main, ["rules", str(model_path)]).output
        assert runner.invoke(main, ["analyze", str(model_path), "--strict"]).exit_code == 0

        result = runner.invoke(main, ["ignore", str(model_path), "FMT", "--unignore"])
        assert result.output.strip() == "Restored FMT on model"
        assert runner.invoke(main, ["analyze", str(model_path), "--strict"]).exit_code == 1

    @pytest.mark.parametrize(
        ("args", "message"),
        [
            (["NOPE"], "unknown rule 'NOPE'"),
            (["FMT", "--object", "Nowhere"], "object 'Nowhere' not found"),
        ],
    )
    def test_lookup_errors(
        self, tmp_path: Path, sales_model: Model, args: list[str], message: str
    ) -> None:
        model_path = _project(tmp_path, sales_model, _FORMAT_RULE)
        result = CliRunner().invoke(main, ["ignore", str(model_path), *args])
        assert result.exit_code == 1
        assert message in result.output


# ---------------------------------------------------------------------------
# attach / detach
# ---------------------------------------------------------------------------


class TestAttachDetach:
    def test_attach_and_detach(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        _rule_file(model_path.parent / "team.json", _FORMAT_RULE)
        runner = CliRunner()

        result = runner.invoke(main, ["attach", str(model_path), "team.json"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "Attached team.json (1 rules)"
        stored = load_model(model_path).get_annotation(ANNOTATION_EXTERNAL_RULES)
        assert json.loads(stored or "") == ["team.json"]
        assert "source=team.json" in runner.invoke(main, ["rules", str(model_path)]).output

        result = runner.invoke(main, ["detach", str(model_path), "team.json"])
        assert result.output.strip() == "Detached team.json"
        assert load_model(model_path).get_annotation(ANNOTATION_EXTERNAL_RULES) is None

    def test_attach_missing_file_exits_2(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        result = CliRunner().invoke(main, ["attach", str(model_path), "absent.json"])
        assert result.exit_code == 2
        assert "Cannot load rules" in result.output

    def test_detach_unknown_exits_1(self, tmp_path: Path, sales_model: Model) -> None:
        model_path = _project(tmp_path, sales_model)
        result = CliRunner().invoke(main, ["detach", str(model_path), "team.json"])
        assert result.exit_code == 1
        assert "'team.json' is not attached" in result.output
