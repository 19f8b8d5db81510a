"""Tests for the top-level quarry app: version and setup errors."""

from __future__ import annotations

from typer.testing import CliRunner

from quarry.cli.main import app

runner = CliRunner()


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("quarry ")


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("quarry ")


def test_help_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    commands = ("ingest", "docs", "index", "search", "jobs", "stop", "reconcile", "compact", "recall", "capture")
    for command in commands:
        assert command in result.output


def test_missing_api_key_exits_with_hint(cli_env, monkeypatch):
    monkeypatch.setenv("QUARRY_EMBEDDING_PROVIDER", "litellm")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    result = runner.invoke(app, ["docs", "anything", "--db", str(cli_env / "q.db")])

    assert result.exit_code == 1
    assert "No API key" in result.output
    assert "OPENAI_API_KEY" in result.output


def test_invalid_project_config_exits(cli_env):
    (cli_env / "quarry.yaml").write_text("vector_store:\n  backend: nope\n", encoding="utf-8")

    result = runner.invoke(app, ["jobs", "--db", str(cli_env / "q.db")])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
