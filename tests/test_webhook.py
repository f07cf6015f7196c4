"""
Tests for the POST /webhook endpoint.

Tests cover:
- Bare and enveloped Evolution payloads
- Dropped messages still answer 200
- Optional HMAC signature (401)
- Undecodable bodies (422) and non-message events
"""

import hashlib
import hmac
import json

import pytest

from app.config import settings
from app.models import MessageLog

from conftest import FakeResponse, analysis_response, inbound_payload


COMPLETIONS = "/chat/completions"


def compute_signature(body: str, secret: str) -> str:
    """Compute HMAC-SHA256 signature for request body."""
    return hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


@pytest.fixture
def ready(make_settings, make_product, openrouter_session):
    """Active settings, one matching product and a strong analysis."""
    make_settings()
    make_product("Frontal Galaxy S20", "Galaxy S20", preco="189.90", quantidade=5)
    openrouter_session.route("POST", COMPLETIONS, analysis_response(
        hasProductIntent=True, extractedModel="Galaxy S20", extractedPart="frontal", confidence=0.9
    ))


class TestWebhookProcessing:
    """Messages reaching the pipeline."""

    def test_bare_message(self, client, db, ready, evolution_session):
        response = client.post("/webhook", json=inbound_payload())

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "result": "sent"}
        text = evolution_session.calls_to("/message/sendText/loja1")[0]["json"]["textMessage"]["text"]
        assert "R$ 189,90" in text
        assert db.query(MessageLog).count() == 1

    def test_evolution_envelope(self, client, db, ready):
        body = {"event": "messages.upsert", "instance": "loja1", "data": inbound_payload()}

        response = client.post("/webhook", json=body)

        assert response.status_code == 200
        assert response.json()["result"] == "sent"

    def test_extended_text_message(self, client, ready):
        payload = inbound_payload()
        payload["message"] = {"extendedTextMessage": {"text": "frontal do galaxy s20"}}

        response = client.post("/webhook", json=payload)

        assert response.json()["result"] == "sent"

    def test_send_failure_still_ok(self, client, db, ready, evolution_session):
        evolution_session.route("POST", "/message/sendText/loja1", FakeResponse(500, {}))

        response = client.post("/webhook", json=inbound_payload())

        assert response.status_code == 200
        assert response.json()["result"] == "send_failed"
        assert db.query(MessageLog).one().resposta_ia is None

    def test_redelivery_is_processed_again(self, client, db, make_settings, openrouter_session):
        make_settings()
        strong = dict(hasProductIntent=True, extractedModel="Galaxy S20", extractedPart="frontal", confidence=0.9)
        openrouter_session.route("POST", COMPLETIONS, [analysis_response(**strong), analysis_response(**strong)])

        client.post("/webhook", json=inbound_payload())
        client.post("/webhook", json=inbound_payload())

        assert db.query(MessageLog).count() == 2

    def test_response_includes_request_id_header(self, client, ready):
        response = client.post("/webhook", json=inbound_payload())

        assert "x-request-id" in response.headers


class TestWebhookDropped:
    """Dropped messages answer 200 and write nothing."""

    def test_own_message(self, client, db, ready, openrouter_session):
        response = client.post("/webhook", json=inbound_payload(from_me=True))

        assert response.json() == {"status": "ok", "result": "ineligible"}
        assert openrouter_session.calls == []
        assert db.query(MessageLog).count() == 0

    def test_group_message(self, client, db, ready):
        response = client.post("/webhook", json=inbound_payload(remote_jid="120363025246125486@g.us"))

        assert response.json()["result"] == "ineligible"

    def test_message_without_text(self, client, db, ready):
        payload = inbound_payload()
        payload["message"] = {"imageMessage": {"caption": None}}

        response = client.post("/webhook", json=payload)

        assert response.json()["result"] == "ineligible"

    def test_ai_disabled(self, client, db, make_settings):
        make_settings(ia_ativa=False)

        response = client.post("/webhook", json=inbound_payload())

        assert response.json()["result"] == "disabled"
        assert db.query(MessageLog).count() == 0

    def test_no_settings(self, client, db):
        response = client.post("/webhook", json=inbound_payload())

        assert response.json()["result"] == "no_settings"


class TestWebhookSignature:
    """HMAC signature is enforced only when WEBHOOK_SECRET is set."""

    @pytest.fixture
    def secret(self, monkeypatch) -> str:
        monkeypatch.setattr(settings, "WEBHOOK_SECRET", "test-secret")
        return "test-secret"

    def test_valid_signature(self, client, ready, secret):
        body = json.dumps(inbound_payload())

        response = client.post(
            "/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": compute_signature(body, secret)}
        )

        assert response.status_code == 200

    def test_missing_signature(self, client, ready, secret):
        response = client.post("/webhook", json=inbound_payload())

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid signature"}

    def test_wrong_secret(self, client, ready, secret):
        body = json.dumps(inbound_payload())

        response = client.post(
            "/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": compute_signature(body, "wrong")}
        )

        assert response.status_code == 401

    def test_no_secret_configured_accepts_unsigned(self, client, ready):
        response = client.post("/webhook", json=inbound_payload())

        assert response.status_code == 200


class TestWebhookValidationErrors:
    """Undecodable bodies (422) and non-message events (200, ineligible)."""

    def test_invalid_json(self, client):
        response = client.post(
            "/webhook",
            content="not valid json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 422

    def test_invalid_utf8_body(self, client):
        response = client.post(
            "/webhook",
            content=b'{"key": "\xff\xfe"}',
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 422

    def test_json_array_body(self, client):
        response = client.post("/webhook", json=[inbound_payload()])

        assert response.status_code == 422
        assert response.json() == {"detail": "Payload must be a JSON object"}

    def test_missing_key_is_ineligible(self, client, db):
        response = client.post("/webhook", json={"message": {"conversation": "oi"}})

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "result": "ineligible"}
        assert db.query(MessageLog).count() == 0

    def test_empty_remote_jid_is_ineligible(self, client, ready, openrouter_session):
        payload = inbound_payload()
        payload["key"]["remoteJid"] = ""

        response = client.post("/webhook", json=payload)

        assert response.json()["result"] == "ineligible"
        assert openrouter_session.calls == []

    def test_connection_update_event_is_ineligible(self, client):
        response = client.post("/webhook", json={"event": "connection.update", "data": {"state": "open"}})

        assert response.status_code == 200
        assert response.json()["result"] == "ineligible"
