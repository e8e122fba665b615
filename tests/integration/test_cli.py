"""Tests for the audit command line."""

import json

import pytest
from click.testing import CliRunner

from marty_audit.cli import EXIT_INVALID_QUERY, EXIT_NOT_FOUND, cli


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.setenv("AUDIT_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("AUDIT_BROKER_TYPE", "memory")
    monkeypatch.setenv("AUDIT_METRICS_ENABLED", "false")
    monkeypatch.setattr("marty_audit.cli.configure_logging", lambda *args: None)
    cli_runner = CliRunner()
    result = cli_runner.invoke(cli, ["init-db"], obj={})
    assert result.exit_code == 0, result.output
    return cli_runner


@pytest.mark.integration
class TestAuditCli:
    """Test suite for the audit CLI commands."""

    def test_search_json_on_empty_store(self, runner):
        result = runner.invoke(cli, ["search", "--json", "--limit", "10"], obj={})

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["data"] == []
        assert payload["pagination"] == {
            "total": 0,
            "limit": 10,
            "offset": 0,
            "page": 1,
            "totalPages": 0,
            "hasMore": False,
        }

    def test_show_missing_entry(self, runner):
        result = runner.invoke(cli, ["show", "does-not-exist"], obj={})

        assert result.exit_code == EXIT_NOT_FOUND

    def test_invalid_window(self, runner):
        result = runner.invoke(cli, ["stats", "--days", "0"], obj={})

        assert result.exit_code == EXIT_INVALID_QUERY

    def test_export_csv_header_only(self, runner):
        result = runner.invoke(cli, ["export", "--format", "csv"], obj={})

        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == [
            "ID,Timestamp,Action,Resource Type,Resource ID,User ID,Service,Success,Severity"
        ]

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"], obj={})

        assert result.exit_code == 0
        assert "version" in result.output
