"""Tests for the admin CLI."""

import json
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from passback.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PASSBACK_ENV", raising=False)
    monkeypatch.delenv("PASSBACK_REDIS_URL", raising=False)


def test_check_config_ok():
    result = runner.invoke(app, ["check-config"])
    assert result.exit_code == 0
    assert "Score mode:      cumulative" in result.output
    assert "Configuration OK" in result.output


def test_check_config_reports_errors(monkeypatch):
    monkeypatch.setenv("PASSBACK_ENV", "prod")
    monkeypatch.setenv("PASSBACK_DEBUG", "true")

    result = runner.invoke(app, ["check-config"])

    assert result.exit_code == 1
    assert "PASSBACK_DEBUG" in result.output


def test_jwks_prints_key_set():
    tool_config = MagicMock()
    tool_config.get_jwks.return_value = {"keys": [{"kty": "RSA", "e": "AQAB"}]}

    with patch("passback.lti.config.get_tool_config", return_value=tool_config):
        result = runner.invoke(app, ["jwks"])

    assert result.exit_code == 0
    assert json.loads(result.output)["keys"][0]["kty"] == "RSA"


def test_jwks_missing_keys_fails():
    # Default key paths do not exist in the temporary working directory.
    result = runner.invoke(app, ["jwks"])
    assert result.exit_code == 1
    assert "Cannot load LTI tool config" in result.output
