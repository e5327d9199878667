"""Tests for the FastAPI endpoints.

The lifespan is not entered, so module globals are set per test and no
database or Slack connection is made.
"""

import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.featureflow import main
from src.featureflow.chat.events import SlackEventParser
from tests.fakes import run_async


SIGNING_SECRET = "test-signing-secret"


def _signed_headers(body: bytes, **extra) -> dict:
    timestamp = str(int(time.time()))
    base = b"v0:" + timestamp.encode() + b":" + body
    signature = "v0=" + hmac.new(SIGNING_SECRET.encode(), base, hashlib.sha256).hexdigest()
    headers = {
        "X-Slack-Request-Timestamp": timestamp,
        "X-Slack-Signature": signature,
        "Content-Type": "application/json",
    }
    headers.update(extra)
    return headers


@pytest.fixture
def dispatched(monkeypatch):
    dispatch = MagicMock()
    monkeypatch.setattr(main, "_dispatch", dispatch)
    return dispatch


@pytest.fixture
def client(monkeypatch, dispatched):
    monkeypatch.setattr(
        main, "event_parser", SlackEventParser(signing_secret=SIGNING_SECRET)
    )
    monkeypatch.setattr(main, "workflow", MagicMock())
    monkeypatch.setattr(main, "gateway", None)
    return TestClient(main.app)


def _mention_body(text: str = "<@U0BOT> feature request") -> bytes:
    return json.dumps(
        {
            "type": "event_callback",
            "event": {
                "type": "app_mention",
                "user": "U1",
                "channel": "C1",
                "ts": "1700000000.000100",
                "text": text,
            },
        }
    ).encode()


class TestSlackEvents:
    def test_url_verification_echoes_challenge(self, client):
        body = json.dumps({"type": "url_verification", "challenge": "3eZbrw1a"}).encode()
        response = client.post("/slack/events", content=body, headers=_signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"challenge": "3eZbrw1a"}

    def test_invalid_signature_rejected(self, client, dispatched):
        body = _mention_body()
        headers = _signed_headers(body)
        headers["X-Slack-Signature"] = "v0=" + "0" * 64

        response = client.post("/slack/events", content=body, headers=headers)

        assert response.status_code == 401
        dispatched.assert_not_called()

    def test_mention_is_dispatched(self, client, dispatched):
        body = _mention_body()
        response = client.post("/slack/events", content=body, headers=_signed_headers(body))

        assert response.status_code == 200
        assert response.json() == {"status": "accepted", "thread_id": "1700000000.000100"}
        event = dispatched.call_args.args[0]
        assert event.text == "feature request"
        assert event.is_mention is True

    def test_retry_delivery_ignored(self, client, dispatched):
        body = _mention_body()
        headers = _signed_headers(body, **{"X-Slack-Retry-Num": "1"})

        response = client.post("/slack/events", content=body, headers=headers)

        assert response.json()["status"] == "ignored"
        dispatched.assert_not_called()

    def test_bot_message_ignored(self, client, dispatched):
        body = json.dumps(
            {
                "type": "event_callback",
                "event": {
                    "type": "message",
                    "bot_id": "B1",
                    "channel": "C1",
                    "ts": "1700000000.000100",
                    "text": "Implementation plan ready",
                },
            }
        ).encode()
        response = client.post("/slack/events", content=body, headers=_signed_headers(body))

        assert response.json() == {"status": "ignored"}
        dispatched.assert_not_called()

    def test_malformed_json_rejected(self, client):
        body = b"{not json"
        response = client.post("/slack/events", content=body, headers=_signed_headers(body))
        assert response.status_code == 400

    def test_not_initialized(self, monkeypatch):
        monkeypatch.setattr(main, "event_parser", None)
        monkeypatch.setattr(main, "workflow", None)
        response = TestClient(main.app).post("/slack/events", content=b"{}")
        assert response.status_code == 503


class TestProbes:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_ready_without_database(self, client):
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["dependencies"]["database"] == "unhealthy"

    def test_ready_with_database(self, client, monkeypatch):
        gateway = MagicMock()
        gateway.health_check = AsyncMock(return_value=True)
        monkeypatch.setattr(main, "gateway", gateway)

        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_metrics_exposed(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "featureflow_transitions_total" in response.text


class TestRouting:
    def test_route_errors_are_logged_not_raised(self, monkeypatch):
        workflow = MagicMock()
        workflow.route = AsyncMock(side_effect=RuntimeError("boom"))
        monkeypatch.setattr(main, "workflow", workflow)
        parser = SlackEventParser()
        event = parser.parse_event(json.loads(_mention_body()))

        run_async(main._route_event(event))
        workflow.route.assert_awaited_once_with(event)


def test_redact_secret():
    assert main._redact_secret("xoxb-123456") == "xoxb*******"
    assert main._redact_secret("abc") == "***"
    assert main._redact_secret(None) == "<unset>"
