"""Unit tests for the typer CLI."""

import pytest
from typer.testing import CliRunner

from toolbridge import __version__
from toolbridge.adapters.config.settings import reload_settings
from toolbridge.entrypoints import cli

pytestmark = pytest.mark.unit

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(cli.app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_config_masks_api_key(monkeypatch) -> None:
    monkeypatch.setenv("TOOLBRIDGE_UPSTREAM_API_KEY", "sk-secret")
    monkeypatch.setenv("TOOLBRIDGE_BRIDGE_EXCLUDED_FILE_PATTERNS", "secrets,.env")
    reload_settings()

    result = runner.invoke(cli.app, ["config"])

    assert result.exit_code == 0
    assert "sk-secret" not in result.output
    assert "API key: set" in result.output
    assert "Excluded file patterns: secrets, .env" in result.output

    monkeypatch.delenv("TOOLBRIDGE_UPSTREAM_API_KEY")
    monkeypatch.delenv("TOOLBRIDGE_BRIDGE_EXCLUDED_FILE_PATTERNS")
    reload_settings()


def test_serve_passes_overrides_to_uvicorn(monkeypatch) -> None:
    captured: dict = {}
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: captured.update(kwargs))
    reload_settings()

    result = runner.invoke(
        cli.app, ["serve", "--port", "9123", "--upstream", "http://localhost:1234/v1/"]
    )

    assert result.exit_code == 0, result.output
    assert captured["port"] == 9123
    assert captured["host"] == "127.0.0.1"
    reload_settings()
