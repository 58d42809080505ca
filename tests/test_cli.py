"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from api.v1.infra.jobs.models import Job
from api.v1.infra.outbox.models import OutboxEvent, QueueStatus
from cli.client.base import APIClient, RelayError
from cli.commands.worker import _repair, _run_bridge
from cli.main import app
from cli.utils.config_manager import ConfigManager


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


def _mock_client(mock_client_class) -> Mock:
    mock_client = Mock()
    mock_client.__enter__ = Mock(return_value=mock_client)
    mock_client.__exit__ = Mock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


STATS = {
    "jobs_by_status": {"pending": 3, "processing": 0, "done": 10, "failed": 0, "dead": 1},
    "outbox_by_queue_status": {"bridged": 14},
    "heartbeats": [
        {
            "worker_id": "host-1-abcd",
            "last_seen": "2026-01-05T12:00:00+00:00",
            "status": "running",
            "age_seconds": 4.2,
            "stale": False,
        }
    ],
    "recent_errors": [
        {
            "id": 7,
            "job_type": "send_email",
            "status": "dead",
            "attempts": 1,
            "max_attempts": 5,
            "last_error": "bad recipient",
        }
    ],
    "condition": "has_dead_jobs",
    "alerts": ["dead_jobs: 1 jobs in dead-letter"],
}


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Outbox Relay CLI" in result.stdout

    @patch("cli.main.RelayClient")
    def test_status_success(self, mock_client_class, runner):
        """Test status command with successful connection"""
        client = _mock_client(mock_client_class)
        client.health_check.return_value = {
            "version": "1.0.0",
            "environment": "development",
            "worker": {"alive": True, "queue_depth": 2},
        }

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout
        assert "alive" in result.stdout

    @patch("cli.main.RelayClient")
    def test_status_failure(self, mock_client_class, runner):
        """Test status command with connection failure"""
        client = _mock_client(mock_client_class)
        client.health_check.side_effect = RelayError("Connection failed")

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestQueueCommands:
    @patch("cli.commands.queue.RelayClient")
    def test_stats(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.get_queue_stats.return_value = STATS

        result = runner.invoke(app, ["stats", "--recent", "5"])

        assert result.exit_code == 0
        client.get_queue_stats.assert_called_once_with(recent_limit=5)
        assert "HAS_DEAD_JOBS" in result.stdout
        assert "dead_jobs: 1 jobs in dead-letter" in result.stdout
        assert "host-1-abcd" in result.stdout
        assert "bad recipient" in result.stdout

    @patch("cli.commands.queue.RelayClient")
    def test_stats_without_heartbeats(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.get_queue_stats.return_value = {
            **STATS,
            "heartbeats": [],
            "recent_errors": [],
            "condition": "worker_down",
        }

        result = runner.invoke(app, ["stats"])

        assert result.exit_code == 0
        assert "No worker heartbeats recorded" in result.stdout

    @patch("cli.commands.queue.RelayClient")
    def test_stats_api_error(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.get_queue_stats.side_effect = RelayError("API Error 401: Unauthorized")

        result = runner.invoke(app, ["stats"])

        assert result.exit_code == 1
        assert "Failed to get queue stats" in result.stdout

    @patch("cli.commands.queue.RelayClient")
    def test_replay(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.replay_job.return_value = {"replayed_from": 7, "job": {"id": 12}}

        result = runner.invoke(app, ["replay", "7"])

        assert result.exit_code == 0
        client.replay_job.assert_called_once_with(7)
        assert "Job 7 replayed as job 12" in result.stdout

    @patch("cli.commands.queue.RelayClient")
    def test_replay_conflict(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.replay_job.side_effect = RelayError("API Error 409: Job 7 is pending")

        result = runner.invoke(app, ["replay", "7"])

        assert result.exit_code == 1
        assert "Failed to replay job 7" in result.stdout


class TestJobCommands:
    @patch("cli.commands.jobs.RelayClient")
    def test_list_empty(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.list_jobs.return_value = {"jobs": [], "total": 0}

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert "No jobs found" in result.stdout

    @patch("cli.commands.jobs.RelayClient")
    def test_list_with_filters(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.list_jobs.return_value = {
            "jobs": [
                {
                    "id": 7,
                    "job_type": "send_email",
                    "status": "dead",
                    "attempts": 5,
                    "max_attempts": 5,
                    "run_at": "2026-01-05T12:00:00+00:00",
                    "last_error": "smtp down",
                }
            ],
            "total": 1,
        }

        result = runner.invoke(
            app, ["jobs", "list", "--status", "dead", "--type", "send_email", "--limit", "5"]
        )

        assert result.exit_code == 0
        client.list_jobs.assert_called_once_with(
            status=["dead"], job_type="send_email", limit=5, offset=0
        )
        assert "send_email" in result.stdout
        assert "Showing 1 of 1 jobs" in result.stdout

    @patch("cli.commands.jobs.RelayClient")
    def test_show(self, mock_client_class, runner):
        client = _mock_client(mock_client_class)
        client.get_job.return_value = {
            "id": 7,
            "job_type": "send_email",
            "status": "dead",
            "attempts": 1,
            "max_attempts": 5,
            "run_at": "2026-01-05T12:00:00+00:00",
            "payload": {"email": "driver@example.com"},
            "last_error": "bad recipient",
        }

        result = runner.invoke(app, ["jobs", "show", "7"])

        assert result.exit_code == 0
        assert "driver@example.com" in result.stdout
        assert "Last Error" in result.stdout


class TestConfigCommands:
    @pytest.fixture
    def manager(self, tmp_path):
        manager = ConfigManager(tmp_path)
        with patch("cli.commands.config.config", manager):
            yield manager

    def test_set_and_get(self, runner, manager):
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://relay:9000"])
        assert result.exit_code == 0
        assert manager.get("api.base_url") == "http://relay:9000"

        result = runner.invoke(app, ["config", "get", "api.base_url"])
        assert "http://relay:9000" in result.stdout

    def test_set_rejects_bad_url(self, runner, manager):
        result = runner.invoke(app, ["config", "set", "api.base_url", "relay:9000"])

        assert result.exit_code == 1
        assert not manager.config_file.exists()

    def test_set_rejects_unknown_key(self, runner, manager):
        result = runner.invoke(app, ["config", "set", "api.retries", "3"])

        assert result.exit_code == 1
        assert "Unknown key" in result.stdout
        assert not manager.config_file.exists()

    def test_set_parses_numbers(self, runner, manager):
        bad = runner.invoke(app, ["config", "set", "api.timeout", "soon"])
        good = runner.invoke(app, ["config", "set", "api.timeout", "45"])

        assert bad.exit_code == 1
        assert good.exit_code == 0
        assert manager.get("api.timeout") == 45

    def test_admin_token_is_masked(self, runner, manager):
        result = runner.invoke(app, ["config", "set", "api.admin_token", "s3cret"])

        assert result.exit_code == 0
        assert "s3cret" not in result.stdout
        assert manager.get("api.admin_token") == "s3cret"

        shown = runner.invoke(app, ["config", "show"])
        assert "s3cret" not in shown.stdout

    def test_reset(self, runner, manager):
        manager.set("display.jobs_per_page", 99)

        result = runner.invoke(app, ["config", "reset", "--yes"])

        assert result.exit_code == 0
        assert manager.get("display.jobs_per_page") == 20

    def test_env_override_is_not_persisted(self, manager, monkeypatch):
        monkeypatch.setenv("RELAY_API_URL", "http://staging-relay:8000")

        manager.set("api.timeout", 5)

        assert manager.get("api.base_url") == "http://staging-relay:8000"
        assert "staging-relay" not in manager.config_file.read_text()
        assert manager.get("api.timeout") == 5


class TestAPIClient:
    def _client(self, status_code: int, body: dict) -> APIClient:
        client = APIClient(base_url="http://relay")
        client.client = httpx.Client(
            base_url="http://relay",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(status_code, json=body)
            ),
        )
        return client

    def test_unwraps_success_envelope(self):
        client = self._client(200, {"ok": True, "data": {"ok": True}, "message": None})

        with client:
            assert client.get("/healthz") == {"ok": True}

    def test_error_envelope_raises(self):
        client = self._client(
            404, {"ok": False, "error": {"message": "Job 9 not found", "code": 404}}
        )

        with client, pytest.raises(RelayError, match="API Error 404: Job 9 not found"):
            client.get("/jobs/9")

    def test_error_carries_status_and_request_id(self):
        client = self._client(
            409,
            {
                "ok": False,
                "error": {"message": "Job 7 is pending, expected dead", "code": 409},
                "request_id": "req-1",
            },
        )

        with client, pytest.raises(RelayError) as excinfo:
            client.post("/jobs/7/replay")

        assert excinfo.value.status_code == 409
        assert excinfo.value.request_id == "req-1"


class TestDatabaseCommands:
    async def test_bridge_once(self, settings, database, add_event):
        await add_event("request_created")

        await _run_bridge(settings, once=True)

        async with database.session() as session:
            [job] = (await session.execute(Job.__table__.select())).all()
        assert job.job_type == "realtime_push"

    async def test_repair(self, settings, database, db_session, add_event):
        event = await add_event("request_created")
        await db_session.execute(
            OutboxEvent.__table__.update()
            .where(OutboxEvent.__table__.c.id == event.id)
            .values(queue_status=None)
        )
        await db_session.commit()

        repaired = await _repair(settings)

        assert repaired == {"jobs": 0, "events": 1}
        async with database.session() as session:
            refreshed = await session.get(OutboxEvent, event.id, populate_existing=True)
        assert refreshed.queue_status == QueueStatus.PENDING.value
