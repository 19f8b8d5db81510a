"""Fixtures for CLI tests: isolated cwd, no global config, offline embeddings."""

from __future__ import annotations

import pytest

from quarry.cli.runtime import console


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("quarry.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.setenv("QUARRY_EMBEDDING_PROVIDER", "hashing")
    monkeypatch.delenv("QUARRY_EMBEDDING_MODEL", raising=False)
    monkeypatch.delenv("QUARRY_LOG_LEVEL", raising=False)
    # wide enough that tmp paths never wrap
    monkeypatch.setattr(console, "width", 300)
    return tmp_path
