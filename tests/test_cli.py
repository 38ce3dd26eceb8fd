"""Tests for CLI commands"""

import json

import pytest
from typer.testing import CliRunner

from switchyard.cli.main import app

EMAIL = json.dumps({"to": "noc@example.com", "subject": "Route down", "template": "alert"})


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    """Point every command at a throwaway SQLite database"""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("DB_CREATE_SCHEMA", "true")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("DEBUG", "false")


def enqueue(runner, *args):
    result = runner.invoke(app, ["jobs", "enqueue", "email_send", "-p", EMAIL, *args])
    assert result.exit_code == 0, result.stdout
    return result


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        """Test version command"""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Switchyard" in result.stdout
        assert "1.0.0" in result.stdout

    def test_config(self, runner):
        """Test config command shows the selected backends"""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Configuration" in result.stdout
        assert "Job store: sql" in result.stdout
        assert "Lock backend: memory" in result.stdout

    def test_memory_store_warning(self, runner, monkeypatch):
        monkeypatch.delenv("DATABASE_URL")

        result = runner.invoke(app, ["jobs", "stats"])
        assert result.exit_code == 0
        assert "DATABASE_URL is not set" in result.stdout


class TestEnqueueCommand:
    """Test jobs enqueue"""

    def test_enqueue_success(self, runner):
        result = enqueue(runner, "--priority", "5", "--tag", "alerts")
        assert "Enqueued email_send job 1" in result.stdout

        show = runner.invoke(app, ["jobs", "show", "1"])
        assert show.exit_code == 0
        assert "Job 1" in show.stdout
        assert "Priority: 5" in show.stdout
        assert "alerts" in show.stdout

    def test_enqueue_invalid_json(self, runner):
        result = runner.invoke(app, ["jobs", "enqueue", "email_send", "-p", "{not json"])
        assert result.exit_code == 1
        assert "Payload is not valid JSON" in result.stdout

    def test_enqueue_non_object_payload(self, runner):
        result = runner.invoke(app, ["jobs", "enqueue", "email_send", "-p", "[1, 2]"])
        assert result.exit_code == 1
        assert "Payload must be a JSON object" in result.stdout

    def test_enqueue_unknown_type(self, runner):
        result = runner.invoke(app, ["jobs", "enqueue", "nightly_magic"])
        assert result.exit_code == 1
        assert "Unknown job type: nightly_magic" in result.stdout

    def test_enqueue_invalid_payload(self, runner):
        result = runner.invoke(app, ["jobs", "enqueue", "email_send", "-p", "{}"])
        assert result.exit_code == 1
        assert "Invalid payload for job type: email_send" in result.stdout


class TestListCommands:
    """Test jobs list, show and stats"""

    def test_list_empty(self, runner):
        result = runner.invoke(app, ["jobs", "list"])
        assert result.exit_code == 0
        assert "No jobs found!" in result.stdout

    def test_list_jobs(self, runner):
        enqueue(runner)
        enqueue(runner)

        result = runner.invoke(app, ["jobs", "list"])
        assert result.exit_code == 0
        assert "Jobs" in result.stdout
        assert "Showing 2 jobs from offset 0" in result.stdout

    def test_list_filters(self, runner):
        enqueue(runner, "--tag", "alerts")
        enqueue(runner, "--tag", "billing")

        by_status = runner.invoke(app, ["jobs", "list", "--status", "failed"])
        assert "No jobs found!" in by_status.stdout

        by_tag = runner.invoke(app, ["jobs", "list", "--tag", "alerts"])
        assert "Showing 1 jobs" in by_tag.stdout

        all_tags = runner.invoke(
            app, ["jobs", "list", "--tag", "alerts", "--tag", "billing", "--all-tags"]
        )
        assert "No jobs found!" in all_tags.stdout

    def test_list_invalid_status(self, runner):
        result = runner.invoke(app, ["jobs", "list", "--status", "stuck"])
        assert result.exit_code != 0

    def test_show_missing_job(self, runner):
        result = runner.invoke(app, ["jobs", "show", "999"])
        assert result.exit_code == 1
        assert "Failed to show job: Job not found" in result.stdout

    def test_stats(self, runner):
        enqueue(runner)

        result = runner.invoke(app, ["jobs", "stats"])
        assert result.exit_code == 0
        assert "Queue Stats" in result.stdout
        assert "Pending: 1" in result.stdout
        assert "Success Rate: 100.00%" in result.stdout
        assert "email_send: 1" in result.stdout

    def test_types(self, runner):
        result = runner.invoke(app, ["jobs", "types"])
        assert result.exit_code == 0
        assert "Job Types" in result.stdout


class TestManagementCommands:
    """Test retry, cancel, cleanup and reclaim"""

    def test_cancel_then_retry(self, runner):
        enqueue(runner)

        retry_pending = runner.invoke(app, ["jobs", "retry", "1"])
        assert retry_pending.exit_code == 1
        assert "Can only retry failed or cancelled jobs" in retry_pending.stdout

        cancel = runner.invoke(app, ["jobs", "cancel", "1"])
        assert cancel.exit_code == 0
        assert "Job 1 cancelled" in cancel.stdout

        retry = runner.invoke(app, ["jobs", "retry", "1"])
        assert retry.exit_code == 0
        assert "Job 1 is pending again" in retry.stdout

    def test_cancel_missing_job(self, runner):
        result = runner.invoke(app, ["jobs", "cancel", "42"])
        assert result.exit_code == 1
        assert "Failed to cancel job: Job not found" in result.stdout

    def test_retry_failed_none(self, runner):
        result = runner.invoke(app, ["jobs", "retry-failed"])
        assert result.exit_code == 0
        assert "No failed jobs to retry" in result.stdout

    def test_cleanup(self, runner):
        result = runner.invoke(app, ["jobs", "cleanup", "--older-than-days", "7"])
        assert result.exit_code == 0
        assert "Deleted 0 old jobs" in result.stdout

    def test_reclaim(self, runner):
        result = runner.invoke(app, ["jobs", "reclaim", "-m", "5"])
        assert result.exit_code == 0
        assert "Reclaimed 0 stuck jobs" in result.stdout


def test_worker_rejects_zero_concurrency(runner):
    result = runner.invoke(app, ["worker", "--concurrency", "0"])
    assert result.exit_code != 0
