"""Unit tests for argotunnel.cli.main."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import click
from click.testing import CliRunner

from argotunnel import __version__
from argotunnel.cli.main import cli

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _routes_response() -> dict[str, object]:
    return {
        "routes": [
            {
                "namespace": "unit",
                "name": "unit",
                "options": {"retries": 5},
                "rules": [
                    {
                        "host": "a.unit.com",
                        "origin_url": "svc-a.unit:8080",
                        "service": "unit/svc-a",
                        "secret": "unit/sec-a",
                        "port": 8080,
                        "running": True,
                    },
                    {
                        "host": "b.unit.com",
                        "origin_url": "svc-a.unit:8080",
                        "service": "unit/svc-a",
                        "secret": "unit/sec-a",
                        "port": 8080,
                        "running": False,
                    },
                ],
            },
            {"namespace": "unit", "name": "idle", "options": {}, "rules": []},
        ],
        "total_links": 2,
    }


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


class TestVersionCommand:
    def test_prints_version(self) -> None:
        result = CliRunner().invoke(cli, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output
        assert "argotunnel" in result.output


# ---------------------------------------------------------------------------
# routes
# ---------------------------------------------------------------------------


class TestRoutesCommand:
    def test_pretty_output(self) -> None:
        with patch("argotunnel.cli.main._get", return_value=_routes_response()) as mock_get:
            result = CliRunner().invoke(cli, ["routes"])

        assert result.exit_code == 0
        mock_get.assert_called_once_with("http://localhost:8080", "/api/v1/routes")
        assert "Routes (2), links: 2" in result.output
        assert "unit/unit" in result.output
        assert "a.unit.com -> svc-a.unit:8080" in result.output
        assert "up" in result.output
        assert "down" in result.output
        assert "no eligible rules" in result.output

    def test_json_output(self) -> None:
        with patch("argotunnel.cli.main._get", return_value=_routes_response()):
            result = CliRunner().invoke(cli, ["routes", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == _routes_response()

    def test_empty(self) -> None:
        with patch("argotunnel.cli.main._get", return_value={"routes": [], "total_links": 0}):
            result = CliRunner().invoke(cli, ["routes"])

        assert result.exit_code == 0
        assert "No tunnel routes." in result.output

    def test_api_url_option(self) -> None:
        with patch("argotunnel.cli.main._get", return_value={"routes": []}) as mock_get:
            CliRunner().invoke(cli, ["--api-url", "http://ctl:9000", "routes"])
        mock_get.assert_called_once_with("http://ctl:9000", "/api/v1/routes")

    def test_api_url_env(self) -> None:
        with patch("argotunnel.cli.main._get", return_value={"routes": []}) as mock_get:
            CliRunner().invoke(cli, ["routes"], env={"ARGOTUNNEL_API_URL": "http://env:9000"})
        mock_get.assert_called_once_with("http://env:9000", "/api/v1/routes")

    def test_connection_error(self) -> None:
        with patch(
            "argotunnel.cli.main._get",
            side_effect=click.ClickException("Cannot connect to argotunnel API at http://localhost:8080."),
        ):
            result = CliRunner().invoke(cli, ["routes"])

        assert result.exit_code == 1
        assert "Cannot connect" in result.output

    def test_real_get_reports_unreachable_api(self) -> None:
        result = CliRunner().invoke(cli, ["--api-url", "http://127.0.0.1:1", "routes"])
        assert result.exit_code == 1
        assert "Cannot connect to argotunnel API" in result.output


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRunCommand:
    def test_runs_app_main(self) -> None:
        with (
            patch("argotunnel.cli.main.asyncio.run") as mock_run,
            patch("argotunnel.app.main", new_callable=MagicMock) as mock_main,
        ):
            result = CliRunner().invoke(cli, ["run"])

        assert result.exit_code == 0
        mock_main.assert_called_once_with()
        mock_run.assert_called_once_with(mock_main.return_value)
