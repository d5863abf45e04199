"""Tests for the CLI interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import CHECKOUT_DIFF, FakeEmbedder
from specgraph.cli import main

REPORT = """# Impact report

## 🔴 Broken tests
- **checkout button submits payment** `e2e/checkout.spec.ts:4` — pay-btn was renamed

## 🟢 Not affected
- **login with valid credentials**
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project(tmp_path: Path, runner: CliRunner) -> Path:
    result = runner.invoke(main, ["init", "--path", str(tmp_path)])
    assert result.exit_code == 0, result.output
    return tmp_path


@pytest.fixture
def diff_file(tmp_path: Path) -> Path:
    path = tmp_path / "pr.diff"
    path.write_text(CHECKOUT_DIFF)
    return path


@pytest.fixture
def fake_provider(monkeypatch):
    monkeypatch.setattr("specgraph.embeddings.create_embedder", lambda config: FakeEmbedder())


def _json_output(output: str):
    return json.loads(output[output.index("["):])


class TestCLIInit:
    def test_init_creates_config(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, [
            "init", "--path", str(tmp_path), "--uri", "bolt://graph:7687", "--provider", "openai",
        ])
        assert result.exit_code == 0
        data = json.loads((tmp_path / ".specgraph" / "config.json").read_text())
        assert data["neo4j"]["uri"] == "bolt://graph:7687"
        assert data["embedding"]["provider"] == "openai"
        assert data["name"] == tmp_path.name

    def test_init_nonexistent_path(self, runner: CliRunner):
        result = runner.invoke(main, ["init", "--path", "/nonexistent/path"])
        assert result.exit_code != 0

    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "specgraph" in result.output


class TestCLIConfig:
    def test_set_and_get(self, runner: CliRunner, project: Path):
        result = runner.invoke(main, ["config", "set", "retrieval.top_k", "5", "--path", str(project)])
        assert result.exit_code == 0

        result = runner.invoke(main, ["config", "get", "retrieval.top_k", "--path", str(project)])
        assert result.exit_code == 0
        assert "retrieval.top_k = 5" in result.output

    def test_show(self, runner: CliRunner, project: Path):
        result = runner.invoke(main, ["config", "show", "--path", str(project)])
        assert result.exit_code == 0
        assert "retrieval" in result.output

    def test_unknown_key(self, runner: CliRunner, project: Path):
        result = runner.invoke(main, ["config", "set", "nope.key", "1", "--path", str(project)])
        assert result.exit_code == 1
        result = runner.invoke(main, ["config", "get", "nope", "--path", str(project)])
        assert result.exit_code == 1


class TestCLIParseVerdicts:
    def test_json(self, runner: CliRunner, tmp_path: Path):
        report = tmp_path / "report.md"
        report.write_text(REPORT)
        result = runner.invoke(main, ["parse-verdicts", str(report), "--json"])
        assert result.exit_code == 0
        verdicts = _json_output(result.output)
        assert [(v["test"], v["status"]) for v in verdicts] == [
            ("checkout button submits payment", "broken"),
            ("login with valid credentials", "ok"),
        ]
        assert verdicts[0]["file"] == "e2e/checkout.spec.ts"
        assert verdicts[0]["line"] == 4

    def test_tree(self, runner: CliRunner, tmp_path: Path):
        report = tmp_path / "report.md"
        report.write_text(REPORT)
        result = runner.invoke(main, ["parse-verdicts", str(report)])
        assert result.exit_code == 0
        assert "checkout button submits payment" in result.output

    def test_invalid_json(self, runner: CliRunner, tmp_path: Path):
        report = tmp_path / "verdicts.json"
        report.write_text('[{"test": "x", "status": "exploded"}]')
        result = runner.invoke(main, ["parse-verdicts", str(report)])
        assert result.exit_code == 1


class TestCLIMatch:
    def test_match_json(self, runner, project, diff_file, spec_dir, fake_provider):
        result = runner.invoke(main, [
            "match", "--diff", str(diff_file), "--specs", str(spec_dir),
            "--top-k", "2", "--json", "--path", str(project),
        ])
        assert result.exit_code == 0, result.output
        matches = _json_output(result.output)
        assert [m["chunk"]["filename"] for m in matches] == [
            "src/components/Checkout.tsx",
            "src/components/Login.tsx",
        ]
        for m in matches:
            assert len(m["relevant_specs"]) == 2
            assert [s["rank"] for s in m["relevant_specs"]] == [1, 2]

    def test_match_missing_specs(self, runner, project, diff_file, fake_provider):
        result = runner.invoke(main, [
            "match", "--diff", str(diff_file), "--specs", str(project / "missing"),
            "--path", str(project),
        ])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestCLIPersist:
    def test_dry_run(self, runner, project, diff_file, spec_dir, fake_provider, tmp_path):
        report = tmp_path / "report.md"
        report.write_text(REPORT)
        result = runner.invoke(main, [
            "persist", "--diff", str(diff_file), "--specs", str(spec_dir), "--pr", "42",
            "--org", "acme", "--repo", "acme/web-shop", "--verdicts", str(report),
            "--dry-run", "--path", str(project),
        ])
        assert result.exit_code == 0, result.output
        assert "Run persisted" in result.output
        assert "Analysis Graph" in result.output

    def test_missing_org(self, runner, project, diff_file, spec_dir, fake_provider):
        result = runner.invoke(main, [
            "persist", "--diff", str(diff_file), "--specs", str(spec_dir), "--pr", "42",
            "--dry-run", "--path", str(project),
        ])
        assert result.exit_code == 1
        assert "org_name" in result.output

    def test_requires_graph_settings(self, runner, project, diff_file, spec_dir, fake_provider, monkeypatch):
        monkeypatch.delenv("NEO4J_URI", raising=False)
        monkeypatch.delenv("NEO4J_PASSWORD", raising=False)
        result = runner.invoke(main, [
            "persist", "--diff", str(diff_file), "--specs", str(spec_dir), "--pr", "42",
            "--org", "acme", "--repo", "acme/web-shop", "--path", str(project),
        ])
        assert result.exit_code == 1
        assert "NEO4J_PASSWORD" in result.output
