"""
Tests for the webhook, health and job inspection endpoints
"""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient

from main import create_app
from src.services.errors import BrokerError
from src.services.event_classifier import EventClassifier
from src.services.job_queue import JobQueue
from src.services.job_store import InMemoryJobStore


def webhook_headers(event_type="pull_request", **extra):
    headers = {
        "Content-Type": "application/json",
        "X-GitHub-Event": event_type,
        "X-GitHub-Delivery": "delivery-1",
    }
    headers.update(extra)
    return headers


class TestWebhookEndpoint:
    """Test cases for POST /webhook"""

    @pytest.fixture
    def job_queue(self):
        return JobQueue(InMemoryJobStore(), enqueue_retry_delay=0)

    @pytest.fixture
    def client(self, job_queue):
        app = create_app(
            job_queue=job_queue,
            event_classifier=EventClassifier(bot_username="review-bot[bot]", bot_marker="🤖 "),
        )
        with TestClient(app) as client:
            yield client

    @pytest.fixture
    def pull_request_payload(self):
        return {
            "action": "opened",
            "installation": {"id": 123},
            "repository": {"name": "repo", "full_name": "owner/repo", "owner": {"login": "owner"}},
            "pull_request": {"number": 42, "html_url": "https://github.com/owner/repo/pull/42"},
            "sender": {"login": "alice"},
        }

    @pytest.fixture
    def issue_comment_payload(self):
        return {
            "action": "created",
            "installation": {"id": 123},
            "repository": {"name": "repo", "owner": {"login": "owner"}},
            "issue": {"number": 7, "pull_request": {"url": "https://api.github.com/repos/owner/repo/pulls/7"}},
            "comment": {"id": 1001, "body": "🤖 looks good", "user": {"login": "alice"}},
            "sender": {"login": "alice"},
        }

    def test_pull_request_opened_enqueues_review(self, client, pull_request_payload):
        """Test a PR opened event is acknowledged and queued as a review job"""
        response = client.post("/webhook", content=json.dumps(pull_request_payload), headers=webhook_headers())

        assert response.status_code == 202
        assert response.json() == {"status": "Accepted"}

        jobs = client.get("/jobs").json()
        assert len(jobs) == 1
        assert jobs[0]["job_type"] == "pr-review"
        assert jobs[0]["status"] == "pending"
        assert jobs[0]["max_attempts"] == 3
        assert jobs[0]["payload"] == {
            "installation_id": "123",
            "owner": "owner",
            "repo": "repo",
            "pull_number": 42,
        }

    def test_bot_comment_acknowledged_without_job(self, client, issue_comment_payload):
        """Test a marker-prefixed comment is accepted but never queued"""
        response = client.post(
            "/webhook", content=json.dumps(issue_comment_payload), headers=webhook_headers("issue_comment")
        )

        assert response.status_code == 202
        assert response.json() == {"status": "Accepted"}
        assert client.get("/jobs").json() == []

    def test_human_comment_enqueued(self, client, issue_comment_payload):
        issue_comment_payload["comment"]["body"] = "Why was this changed?"

        response = client.post(
            "/webhook", content=json.dumps(issue_comment_payload), headers=webhook_headers("issue_comment")
        )

        assert response.status_code == 202
        jobs = client.get("/jobs").json()
        assert [job["job_type"] for job in jobs] == ["issue-comment"]
        assert jobs[0]["payload"]["comment_body"] == "Why was this changed?"

    def test_unhandled_event_type_acknowledged(self, client, pull_request_payload):
        response = client.post("/webhook", content=json.dumps(pull_request_payload), headers=webhook_headers("push"))

        assert response.status_code == 202
        assert client.get("/jobs").json() == []

    def test_missing_event_header_rejected(self, client, pull_request_payload):
        """Test requests without X-GitHub-Event are malformed"""
        response = client.post(
            "/webhook",
            content=json.dumps(pull_request_payload),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Missing X-GitHub-Event header"}

    def test_invalid_json_rejected(self, client):
        response = client.post("/webhook", content=b"{not json", headers=webhook_headers())

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON payload"}

    def test_non_object_payload_rejected(self, client):
        response = client.post("/webhook", content=b"[1, 2, 3]", headers=webhook_headers())

        assert response.status_code == 400

    def test_missing_installation_rejected(self, client, pull_request_payload):
        """Test events without installation.id are malformed and not queued"""
        del pull_request_payload["installation"]

        response = client.post("/webhook", content=json.dumps(pull_request_payload), headers=webhook_headers())

        assert response.status_code == 400
        assert response.json() == {"error": "Missing installation ID in webhook"}
        assert client.get("/jobs").json() == []

    def test_broker_failure_returns_error(self, client, job_queue, pull_request_payload):
        """Test enqueue failures are answered with a non-fatal 4xx after the enqueue retries"""
        job_queue.store.add = AsyncMock(side_effect=BrokerError("connection refused"))

        response = client.post("/webhook", content=json.dumps(pull_request_payload), headers=webhook_headers())

        assert response.status_code == 429
        assert response.json() == {"error": "Job queue unavailable"}
        assert job_queue.store.add.await_count == job_queue.enqueue_retries + 1

    def test_unexpected_failure_returns_500(self, job_queue, pull_request_payload):
        classifier = Mock()
        classifier.classify.side_effect = RuntimeError("classifier bug")
        app = create_app(job_queue=job_queue, event_classifier=classifier)

        with TestClient(app) as client:
            response = client.post(
                "/webhook", content=json.dumps(pull_request_payload), headers=webhook_headers()
            )

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestWebhookSignature:
    """Test cases for webhook signature verification"""

    @pytest.fixture
    def client(self):
        app = create_app(job_queue=JobQueue(InMemoryJobStore()))
        with patch("src.api.webhooks.settings") as mock_settings:
            mock_settings.GITHUB_WEBHOOK_SECRET = "webhook-secret"
            with TestClient(app) as client:
                yield client

    @pytest.fixture
    def body(self):
        return json.dumps({"action": "opened", "installation": {"id": 1}}).encode()

    def test_missing_signature_rejected(self, client, body):
        response = client.post("/webhook", content=body, headers=webhook_headers())

        assert response.status_code == 401

    def test_invalid_signature_rejected(self, client, body):
        headers = webhook_headers(**{"X-Hub-Signature-256": "sha256=" + "0" * 64})

        response = client.post("/webhook", content=body, headers=headers)

        assert response.status_code == 401

    def test_valid_signature_accepted(self, client, body):
        digest = hmac.new(b"webhook-secret", body, hashlib.sha256).hexdigest()
        headers = webhook_headers("ping", **{"X-Hub-Signature-256": f"sha256={digest}"})

        response = client.post("/webhook", content=body, headers=headers)

        assert response.status_code == 202


class TestOperatorEndpoints:
    """Test cases for health and job inspection endpoints"""

    @pytest.fixture
    def job_queue(self):
        return JobQueue(InMemoryJobStore(), queue_name="test-queue")

    @pytest.fixture
    def client(self, job_queue):
        with TestClient(create_app(job_queue=job_queue)) as client:
            yield client

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["webhook"] == "/webhook"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["ready"] is True
        assert data["checks"]["queue_broker"] is True
        assert data["draining_in_process"] is False

    def test_not_ready_when_broker_unreachable(self, client, job_queue):
        job_queue.store.ping = AsyncMock(return_value=False)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["ready"] is False

    def test_job_stats_and_lookup(self, client):
        payload = {
            "action": "synchronize",
            "installation": {"id": 5},
            "repository": {"name": "repo", "owner": {"login": "owner"}},
            "pull_request": {"number": 3},
        }
        client.post("/webhook", content=json.dumps(payload), headers=webhook_headers())

        stats = client.get("/jobs/stats").json()
        assert stats == {
            "queue": "test-queue",
            "counts": {"pending": 1, "active": 0, "completed": 0, "failed": 0},
        }

        job_id = client.get("/jobs").json()[0]["job_id"]
        job = client.get(f"/jobs/{job_id}")
        assert job.status_code == 200
        assert job.json()["payload"]["pull_number"] == 3

        assert client.get("/jobs", params={"status": "completed"}).json() == []

    def test_unknown_job_returns_404(self, client):
        response = client.get("/jobs/does-not-exist")

        assert response.status_code == 404

    def test_broker_failure_on_stats(self, client, job_queue):
        job_queue.store.counts = AsyncMock(side_effect=BrokerError("down"))

        response = client.get("/jobs/stats")

        assert response.status_code == 503


class TestInProcessWorker:
    """Test cases for draining the queue inside the web process"""

    def test_worker_started_and_stopped_with_app(self):
        job_queue = JobQueue(InMemoryJobStore(), poll_interval=0.01)
        processor = Mock()

        with patch("main.build_job_processor", return_value=processor):
            app = create_app(job_queue=job_queue, run_worker=True)
            with TestClient(app) as client:
                processor.register_handlers.assert_called_once_with(job_queue)
                assert app.state.drain_task is not None
                assert client.get("/health").status_code == 200

        assert app.state.drain_task is None
        assert job_queue.is_draining is False
