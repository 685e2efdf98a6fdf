"""Tests for CLI commands"""

import json
from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from tutor_jobs_cli.client.base import APIClient, TutorJobsError
from tutor_jobs_cli.client.endpoints import TutorJobsClient
from tutor_jobs_cli.main import app
from tutor_jobs_cli.utils.config_manager import ConfigManager
from tutor_jobs_cli.utils.config_manager import config as cli_config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the shared CLI config at an empty directory"""
    monkeypatch.setattr(cli_config, "config_dir", tmp_path / "cli")
    monkeypatch.setattr(cli_config, "config_file", tmp_path / "cli" / "config.yaml")
    monkeypatch.delenv("TUTOR_JOBS_CRON_SECRET", raising=False)


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Mock API client usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    return client


JOB = {
    "id": "5f0c8f0e-9a51-4c1e-8d0f-3f1f1f9e2a10",
    "type": "GENERATE_PDF",
    "status": "failed",
    "priority": 2,
    "attempts": 3,
    "max_attempts": 3,
    "run_after": "2026-01-01T00:00:00+00:00",
    "error": "Renderer crashed",
    "result": None,
}


class TestMainCommands:
    """Test main CLI commands"""

    def test_version_flag(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Tutor Jobs CLI v1.0.0" in result.stdout

    def test_version_command(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Tutor Jobs CLI" in result.stdout

    @patch("tutor_jobs_cli.main.TutorJobsClient")
    def test_status_success(self, mock_client_class, mock_client, runner):
        mock_client.health_check.return_value = {
            "ok": True,
            "version": "1.0.0",
            "environment": "development",
            "database": {"connected": True},
            "queue": {"queue_depth": 4, "stale_leases": 0, "batch_pending": 1},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Healthy" in result.stdout
        assert "Queue depth" in result.stdout

    @patch("tutor_jobs_cli.main.TutorJobsClient")
    def test_status_failure(self, mock_client_class, mock_client, runner):
        mock_client.health_check.side_effect = TutorJobsError("Connection failed")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    """Test job commands"""

    @patch("tutor_jobs_cli.commands.jobs.TutorJobsClient")
    def test_process(self, mock_client_class, mock_client, runner):
        mock_client.process_jobs.return_value = {"processed": 3, "worker_id": "host-1-ab"}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["process", "--limit", "5"])

        assert result.exit_code == 0
        assert "Processed 3 job(s)" in result.stdout
        mock_client.process_jobs.assert_called_once_with(5)

    @patch("tutor_jobs_cli.commands.jobs.TutorJobsClient")
    def test_process_failure_exits_nonzero(self, mock_client_class, mock_client, runner):
        mock_client.process_jobs.side_effect = TutorJobsError("API Error 401", 401)
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["process"])

        assert result.exit_code == 1
        assert "Dispatch failed" in result.stdout

    def test_process_rejects_limit_out_of_range(self, runner):
        result = runner.invoke(app, ["process", "--limit", "0"])
        assert result.exit_code != 0

    @patch("tutor_jobs_cli.commands.jobs.TutorJobsClient")
    def test_job_shows_details(self, mock_client_class, mock_client, runner):
        mock_client.get_job.return_value = JOB
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["job", JOB["id"]])

        assert result.exit_code == 0
        assert "GENERATE_PDF" in result.stdout
        assert "Renderer crashed" in result.stdout
        assert "3/3" in result.stdout

    @patch("tutor_jobs_cli.commands.jobs.TutorJobsClient")
    def test_enqueue_with_payload(self, mock_client_class, mock_client, runner):
        mock_client.enqueue_job.return_value = {"job_id": "abc", "status": "pending"}
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            app,
            [
                "enqueue",
                "GENERATE_QUESTIONS",
                "--payload",
                json.dumps({"topic_id": "t", "topic_name": "Addition"}),
                "--priority",
                "5",
            ],
        )

        assert result.exit_code == 0
        assert "Enqueued GENERATE_QUESTIONS" in result.stdout
        mock_client.enqueue_job.assert_called_once_with(
            "GENERATE_QUESTIONS",
            {"topic_id": "t", "topic_name": "Addition"},
            priority=5,
            delay_seconds=0,
            max_attempts=None,
            run_now=False,
        )

    def test_enqueue_rejects_invalid_json(self, runner):
        result = runner.invoke(app, ["enqueue", "GENERATE_PDF", "--payload", "{oops"])
        assert result.exit_code == 1
        assert "not valid JSON" in result.stdout

    @patch("tutor_jobs_cli.commands.jobs.TutorJobsClient")
    def test_reconcile(self, mock_client_class, mock_client, runner):
        mock_client.enqueue_job.return_value = {
            "job_id": "r1",
            "status": "completed",
            "job": {
                "status": "completed",
                "result": {
                    "checked": 3,
                    "still_running": 1,
                    "completed": 1,
                    "failed": 0,
                    "errors": [{"job_id": "b3", "error": "poll timed out"}],
                },
            },
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["reconcile", "--limit", "20"])

        assert result.exit_code == 0
        assert "Checked 3 batch(es)" in result.stdout
        assert "poll timed out" in result.stdout
        mock_client.enqueue_job.assert_called_once_with(
            "PROCESS_BATCH_RESULT", {"limit": 20}, run_now=True
        )

    @patch("tutor_jobs_cli.commands.jobs.TutorJobsClient")
    def test_stats(self, mock_client_class, mock_client, runner):
        mock_client.get_stats.return_value = {
            "total_jobs": 7,
            "queue_depth": 2,
            "batch_pending": 1,
            "failed_last_hour": 0,
            "by_status": {"pending": 2, "completed": 4, "batch_pending": 1},
            "by_type": {"GENERATE_PDF": 7},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["stats"])

        assert result.exit_code == 0
        assert "Job Statistics" in result.stdout
        assert "GENERATE_PDF" in result.stdout

    @patch("tutor_jobs_cli.commands.jobs.TutorJobsClient")
    def test_cancel_conflict(self, mock_client_class, mock_client, runner):
        mock_client.cancel_job.side_effect = TutorJobsError("API Error 409", 409)
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["cancel", JOB["id"]])

        assert result.exit_code == 1
        assert "Failed to cancel job" in result.stdout


class TestClient:
    """Test HTTP client envelope handling"""

    def test_unwraps_success_envelope(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/jobs/process"
            assert request.url.params["limit"] == "4"
            assert request.headers["Authorization"] == "Bearer s3cret"
            return httpx.Response(200, json={"ok": True, "data": {"processed": 4}})

        with TutorJobsClient(
            base_url="http://api.test",
            cron_secret="s3cret",
            transport=httpx.MockTransport(handler),
        ) as client:
            assert client.process_jobs(4) == {"processed": 4}

    def test_error_envelope_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404, json={"ok": False, "error": {"message": "Job not found", "code": 404}}
            )

        with APIClient("http://api.test", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(TutorJobsError, match="Job not found") as exc_info:
                api.get("/jobs/123")

        assert exc_info.value.status_code == 404

    def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with APIClient("http://api.test", transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(TutorJobsError, match="Connection failed"):
                api.get("/healthz")


class TestConfigManager:
    """Test CLI configuration storage"""

    def test_defaults_without_file(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "cfg")

        assert manager.get("api.timeout") == 30
        assert manager.get("dispatch.default_limit") == 10
        assert manager.get("api.missing", "fallback") == "fallback"

    def test_set_and_get_nested(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "cfg")

        manager.set("api.headers.X-Workspace-ID", "alpha")
        manager.set("api.base_url", "http://jobs.internal:8000")

        assert manager.get("api.headers.X-Workspace-ID") == "alpha"
        assert manager.get("api.base_url") == "http://jobs.internal:8000"
        # Sections merge with defaults
        assert manager.get("api.timeout") == 30

    def test_reset(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "cfg")
        manager.set("api.timeout", 5)

        manager.reset()

        assert manager.get("api.timeout") == 30


class TestConfigCommands:
    """Test config sub-commands against the isolated config"""

    def test_set_and_get(self, runner):
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://jobs:9000"])
        assert result.exit_code == 0
        assert cli_config.get("api.base_url") == "http://jobs:9000"

        result = runner.invoke(app, ["config", "get", "api.base_url"])
        assert result.exit_code == 0
        assert "http://jobs:9000" in result.stdout

    def test_set_rejects_bad_url(self, runner):
        result = runner.invoke(app, ["config", "set", "api.base_url", "jobs:9000"])
        assert result.exit_code == 1
        assert cli_config.get("api.base_url") != "jobs:9000"

    def test_numeric_values_are_stored_as_int(self, runner):
        result = runner.invoke(app, ["config", "set", "dispatch.default_limit", "25"])
        assert result.exit_code == 0
        assert cli_config.get("dispatch.default_limit") == 25

        result = runner.invoke(app, ["config", "set", "api.timeout", "soon"])
        assert result.exit_code == 1

    def test_dev_mode_sets_headers(self, runner):
        result = runner.invoke(app, ["config", "dev-mode", "user-1", "workspace-1"])

        assert result.exit_code == 0
        assert cli_config.get("api.headers") == {
            "X-User-ID": "user-1",
            "X-Workspace-ID": "workspace-1",
        }

    def test_reset_with_yes(self, runner):
        runner.invoke(app, ["config", "set", "api.timeout", "5"])

        result = runner.invoke(app, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert cli_config.get("api.timeout") == 30
