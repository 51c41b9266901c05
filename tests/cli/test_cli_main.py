# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Tests for the rtcstats command line.
"""

import json
from unittest.mock import Mock, patch

import requests
from click.testing import CliRunner

from rtcstats import __version__
from rtcstats.cli.main import cli

LOG = (
    '{"path":"/r","origin":"https://meet.example.com","url":"https://meet.example.com/r",'
    '"userAgent":"UA","time":1000,"fileFormat":2}\n'
    '["create","PC_0",{},1001]\n'
    '["oniceconnectionstatechange","PC_0","connected",1002]\n'
    '["close",null,null,1500]\n'
)


class TestCli:
    """Test the command group."""

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_without_command(self):
        result = CliRunner().invoke(cli, [])
        assert result.exit_code == 0
        assert "serve" in result.output
        assert "extract" in result.output


class TestExtractCommand:
    """Test offline extraction."""

    def test_json_output(self, tmp_path):
        (tmp_path / "s1").write_text(LOG)
        result = CliRunner().invoke(cli, ["extract", "s1", "--work-dir", str(tmp_path), "-f", "json"])

        assert result.exit_code == 0
        results = json.loads(result.output)
        assert results[0]["connection_id"] == "PC_0"
        assert results[0]["connection_features"]["connected"] is True

    def test_table_output(self, tmp_path):
        (tmp_path / "s1").write_text(LOG)
        result = CliRunner().invoke(cli, ["extract", "s1", "--work-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "PC_0" in result.output
        assert "Client:" in result.output

    def test_missing_session(self, tmp_path):
        result = CliRunner().invoke(cli, ["extract", "nope", "--work-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "cannot extract nope" in result.output


class TestHealthCommand:
    """Test the liveness check."""

    def test_healthy(self):
        with patch("rtcstats.cli.main.requests.get", return_value=Mock(status_code=200)) as get:
            result = CliRunner().invoke(cli, ["health", "--server", "http://example.test:3000/"])

        assert result.exit_code == 0
        assert "healthy" in result.output
        get.assert_called_once_with("http://example.test:3000/healthcheck", timeout=5.0)

    def test_unhealthy_status(self):
        with patch("rtcstats.cli.main.requests.get", return_value=Mock(status_code=503)):
            result = CliRunner().invoke(cli, ["health"])
        assert result.exit_code == 1

    def test_unreachable(self):
        error = requests.ConnectionError("refused")
        with patch("rtcstats.cli.main.requests.get", side_effect=error):
            result = CliRunner().invoke(cli, ["health"])
        assert result.exit_code == 1
        assert "Cannot reach server" in result.output
