# tests/test_chat.py
"""
Flask app factory + /api/chat endpoints, upstream faked.

Run:  pytest -q
"""

from __future__ import annotations

import base64
import io
from typing import Dict

import requests

from chatflow_widget import RATE_LIMIT_MESSAGE, create_app

from .fakes import FakeResponse, FakeSession, make_client, prediction


def _send(client, **body):
    body.setdefault("userId", "u1")
    body.setdefault("message", "hello")
    return client.post("/api/chat/send", json=body)


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    data: Dict = res.get_json()
    assert data["status"] == "healthy"
    assert data["flowise"] == {"configured": True}
    assert data["timestamp"].endswith("Z")


def test_health_reports_missing_chatflow(cfg, store):
    cfg.FLOWISE_CHATFLOW_ID = ""
    app = create_app(config=cfg, store=store, client=make_client(FakeSession(prediction())))
    res = app.test_client().get("/api/health")
    assert res.get_json()["flowise"] == {"configured": False}


def test_cors_header_on_api(client):
    res = client.get("/api/health", headers={"Origin": "http://shop.example"})
    assert res.headers.get("Access-Control-Allow-Origin") == "*"


def test_cors_origin_list_only_allows_listed(cfg, store):
    cfg.CORS_ORIGIN = "http://shop.example, http://admin.example"
    app = create_app(config=cfg, store=store, client=make_client(FakeSession(prediction())))
    client = app.test_client()

    allowed = client.get("/api/health", headers={"Origin": "http://shop.example"})
    assert allowed.headers.get("Access-Control-Allow-Origin") == "http://shop.example"

    other = client.get("/api/health", headers={"Origin": "http://evil.example"})
    assert other.headers.get("Access-Control-Allow-Origin") is None
    app.extensions["pipeline"].shutdown()


def test_unknown_endpoint_is_json_404(client):
    res = client.get("/api/nope")
    assert res.status_code == 404
    assert res.get_json()["error"] == "Endpoint not found"


def test_send_happy_path(client, upstream):
    upstream.outcomes = [prediction("Hi, how can I help?", session_id="sess-42")]

    res = _send(client)
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert "warning" not in body

    data = body["data"]
    assert data["conversationId"]
    assert data["userMessage"]["role"] == "user"
    assert data["userMessage"]["status"] == "sent"
    assert data["userMessage"]["content"] == "hello"
    assert data["assistantMessage"]["role"] == "assistant"
    assert data["assistantMessage"]["content"] == "Hi, how can I help?"
    assert data["assistantMessage"]["metadata"]["flowiseResponse"]["sessionId"] == "sess-42"


def test_send_continues_existing_conversation(client, upstream):
    first = _send(client).get_json()["data"]["conversationId"]
    second = _send(client, conversationId=first, message="and again").get_json()["data"]["conversationId"]

    assert second == first
    assert upstream.calls[1]["json"]["sessionId"] == "sess-1"


def test_send_validation_failure(client, store):
    res = client.post("/api/chat/send", json={"message": "x" * 5001})
    assert res.status_code == 400
    body = res.get_json()
    assert body["error"] == "Validation failed"
    fields = {d["field"] for d in body["details"]}
    assert {"userId", "message"} <= fields
    assert store.stats()["conversations"] == 0


def test_send_rejects_non_json_body(client):
    res = client.post("/api/chat/send", data="not json", content_type="text/plain")
    assert res.status_code == 400
    assert res.get_json()["error"] == "Validation failed"


def test_send_soft_failure_returns_warning(client, upstream):
    upstream.outcomes = [FakeResponse(500, text="kaput", reason="Internal Server Error")]

    res = _send(client)
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert body["warning"] == "Bot response failed, showing error message"
    assert body["data"]["userMessage"]["status"] == "failed"
    assert body["data"]["assistantMessage"]["content"].startswith("I apologize")


def test_history_is_idempotent(client):
    conversation_id = _send(client).get_json()["data"]["conversationId"]

    first = client.post("/api/chat/history", json={"conversationId": conversation_id})
    second = client.post("/api/chat/history", json={"conversationId": conversation_id})

    assert first.status_code == 200
    assert first.get_json() == second.get_json()
    data = first.get_json()["data"]
    assert data["total"] == 2
    assert data["conversation"]["id"] == conversation_id
    assert [m["role"] for m in data["messages"]] == ["user", "assistant"]


def test_history_limit_and_unknown(client):
    conversation_id = _send(client).get_json()["data"]["conversationId"]

    limited = client.post("/api/chat/history", json={"conversationId": conversation_id, "limit": 1})
    assert [m["role"] for m in limited.get_json()["data"]["messages"]] == ["assistant"]

    assert client.post("/api/chat/history", json={"conversationId": conversation_id, "limit": 0}).status_code == 400
    missing = client.post("/api/chat/history", json={"conversationId": "nope"})
    assert missing.status_code == 404
    assert missing.get_json()["error"] == "Conversation not found"


def test_user_conversations(client):
    a = _send(client, userId="alice").get_json()["data"]["conversationId"]
    b = _send(client, userId="alice").get_json()["data"]["conversationId"]
    _send(client, userId="bob")

    body = client.get("/api/chat/conversations/alice").get_json()
    assert body["total"] == 2
    assert [c["id"] for c in body["data"]] == [b, a]
    assert client.get("/api/chat/conversations/nobody").get_json() == {"success": True, "data": [], "total": 0}


def test_user_conversations_error_hides_details_in_production(cfg, store, monkeypatch):
    cfg.APP_ENV = "production"
    app = create_app(config=cfg, store=store, client=make_client(FakeSession(prediction())))

    def _boom(_user_id):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "get_user_conversations", _boom)
    res = app.test_client().get("/api/chat/conversations/u1")
    assert res.status_code == 500
    assert res.get_json() == {"error": "Failed to retrieve conversations", "details": "An unexpected error occurred"}


def test_error_details_shown_outside_production(client, store, monkeypatch):
    def _boom(_user_id):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "get_user_conversations", _boom)
    res = client.get("/api/chat/conversations/u1")
    assert res.status_code == 500
    assert res.get_json()["details"] == "disk on fire"


# ─────────────────────────────────────────────────────────────
# Upload
# ─────────────────────────────────────────────────────────────
def _upload(client, content=b"hello", filename="note.txt", mimetype="text/plain", **form):
    data = {"conversationId": "c1", "messageId": "m1", **form}
    if filename is not None:
        data["file"] = (io.BytesIO(content), filename, mimetype)
    return client.post("/api/chat/upload", data=data, content_type="multipart/form-data")


def test_upload_returns_data_url_attachment(client):
    res = _upload(client, content=b"\x89PNG fake", filename="photo.png", mimetype="image/png")
    assert res.status_code == 200
    attachment = res.get_json()["data"]
    assert attachment["id"].startswith("file-")
    assert attachment["filename"] == "photo.png"
    assert attachment["fileType"] == "image/png"
    assert attachment["fileSize"] == 9
    assert attachment["url"] == "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()
    assert attachment["uploadedAt"]


def test_upload_rejects_disallowed_type(client):
    res = _upload(client, filename="run.sh", mimetype="application/x-sh")
    assert res.status_code == 400
    assert res.get_json()["error"].startswith("File type application/x-sh not allowed")


def test_upload_requires_file(client):
    res = _upload(client, filename=None)
    assert res.status_code == 400
    assert res.get_json()["error"] == "No file provided"


def test_upload_requires_ids(client):
    res = client.post(
        "/api/chat/upload",
        data={"file": (io.BytesIO(b"x"), "a.txt", "text/plain")},
        content_type="multipart/form-data",
    )
    assert res.status_code == 400
    assert res.get_json()["error"] == "conversationId and messageId are required"


def test_oversized_request_is_413(cfg, store):
    cfg.MAX_CONTENT_LENGTH = 1024
    app = create_app(config=cfg, store=store, client=make_client(FakeSession(prediction())))
    res = _upload(app.test_client(), content=b"x" * 4096)
    assert res.status_code == 413
    assert "error" in res.get_json()


# ─────────────────────────────────────────────────────────────
# Chatflows + rate limiting
# ─────────────────────────────────────────────────────────────
def test_list_chatflows(client, upstream):
    upstream.outcomes = [FakeResponse(200, [{"id": "flow-123", "name": "Support"}])]
    body = client.get("/api/chatflows").get_json()
    assert body["data"] == [{"id": "flow-123", "name": "Support"}]
    assert body["total"] == 1


def test_list_chatflows_upstream_failure_is_502(client, upstream):
    upstream.outcomes = [requests.exceptions.ConnectionError("refused")]
    res = client.get("/api/chatflows")
    assert res.status_code == 502
    assert res.get_json()["error"] == "Failed to fetch chatflows"


def test_rate_limit_shared_across_api(cfg, store):
    cfg.RATE_LIMIT = "3 per minute"
    app = create_app(config=cfg, store=store, client=make_client(FakeSession(prediction())))
    c = app.test_client()

    assert c.get("/api/health").status_code == 200
    assert c.get("/api/chat/conversations/u1").status_code == 200
    assert c.get("/api/health").status_code == 200

    limited = c.get("/api/chat/conversations/u1")
    assert limited.status_code == 429
    assert limited.get_json() == {"error": RATE_LIMIT_MESSAGE}

    # the widget page is outside /api
    assert c.get("/widget").status_code == 200


def test_rate_limit_can_be_disabled(cfg, store):
    cfg.RATE_LIMIT = "1 per minute"
    cfg.RATELIMIT_ENABLED = False
    app = create_app(config=cfg, store=store, client=make_client(FakeSession(prediction())))
    c = app.test_client()
    assert [c.get("/api/health").status_code for _ in range(3)] == [200, 200, 200]
