from __future__ import annotations

import re

import pytest

from chatflow_widget import create_app

from .fakes import FakeSession, make_client, prediction


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def ticket_created(self, url, ticket, conversation):
        self.sent.append((url, ticket, conversation))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(cfg, store, notifier):
    application = create_app(config=cfg, store=store, client=make_client(FakeSession(prediction())), notifier=notifier)
    yield application
    application.extensions["pipeline"].shutdown()


def _conversation(client):
    return client.post("/api/chat/send", json={"userId": "u1", "message": "hello"}).get_json()["data"]["conversationId"]


def _ticket(client, conversation_id, **extra):
    body = {"conversationId": conversation_id, "subject": "Order missing", "description": "Never arrived", **extra}
    return client.post("/api/tickets/create", json=body)


def test_create_ticket_escalates(client):
    conversation_id = _conversation(client)

    res = _ticket(client, conversation_id, priority="high", category="shipping")
    assert res.status_code == 200
    ticket = res.get_json()["data"]
    assert re.match(r"^TKT-\d{8}-\d{4}$", ticket["ticketNumber"])
    assert ticket["status"] == "open"
    assert ticket["priority"] == "high"
    assert ticket["category"] == "shipping"

    history = client.post("/api/chat/history", json={"conversationId": conversation_id}).get_json()
    assert history["data"]["conversation"]["status"] == "escalated"


def test_create_ticket_defaults_priority(client):
    ticket = _ticket(client, _conversation(client)).get_json()["data"]
    assert ticket["priority"] == "medium"


def test_create_ticket_sanitizes_text_and_metadata(client, store):
    conversation_id = _conversation(client)

    res = _ticket(
        client,
        conversation_id,
        subject="  <b>Help</b> ",
        description="<script>x</script>",
        metadata={"nested": {"a": 1}, "long": "y" * 5000, "page": "checkout"},
    )
    assert res.status_code == 200
    ticket = res.get_json()["data"]
    assert ticket["subject"] == "bHelp/b"
    assert ticket["description"] == "scriptx/script"
    assert ticket["metadata"] == {"long": "y" * 1000, "page": "checkout"}

    stored = store.get_ticket(ticket["id"])
    assert stored.subject == "bHelp/b"
    assert "nested" not in stored.metadata


def test_create_ticket_unknown_conversation(client, store):
    res = _ticket(client, "nope")
    assert res.status_code == 404
    assert res.get_json()["error"] == "Conversation not found"
    assert store.stats()["tickets"] == 0


def test_create_ticket_validation(client):
    res = client.post("/api/tickets/create", json={"conversationId": "c", "subject": "s" * 201, "priority": "critical"})
    assert res.status_code == 400
    fields = {d["field"] for d in res.get_json()["details"]}
    assert {"subject", "description", "priority"} <= fields


def test_webhook_fired_only_when_requested(client, notifier):
    conversation_id = _conversation(client)

    _ticket(client, conversation_id)
    assert notifier.sent == []

    ticket = _ticket(client, conversation_id, webhookUrl="https://hooks.example/tickets").get_json()["data"]
    url, sent_ticket, conversation = notifier.sent[0]
    assert url == "https://hooks.example/tickets"
    assert sent_ticket["id"] == ticket["id"]
    assert conversation["id"] == conversation_id
    assert conversation["status"] == "escalated"


def test_get_ticket_by_id_and_number(client):
    ticket = _ticket(client, _conversation(client)).get_json()["data"]

    by_id = client.get(f"/api/tickets/{ticket['id']}")
    by_number = client.get(f"/api/tickets/number/{ticket['ticketNumber']}")
    assert by_id.get_json()["data"] == ticket
    assert by_number.get_json()["data"] == ticket

    missing = client.get("/api/tickets/nope")
    assert missing.status_code == 404
    assert missing.get_json()["error"] == "Ticket not found"
    assert client.get("/api/tickets/number/TKT-00000000-0000").status_code == 404


def test_conversation_tickets_newest_first(client):
    conversation_id = _conversation(client)
    first = _ticket(client, conversation_id).get_json()["data"]
    second = _ticket(client, conversation_id).get_json()["data"]

    body = client.get(f"/api/chat/conversations/{conversation_id}/tickets").get_json()
    assert [t["id"] for t in body["data"]] == [second["id"], first["id"]]
    assert client.get("/api/chat/conversations/nope/tickets").status_code == 404


def test_patch_ticket(client):
    ticket = _ticket(client, _conversation(client)).get_json()["data"]

    res = client.patch(f"/api/tickets/{ticket['id']}", json={"status": "resolved", "assignedTo": "agent-7"})
    assert res.status_code == 200
    updated = res.get_json()["data"]
    assert updated["status"] == "resolved"
    assert updated["assignedTo"] == "agent-7"
    assert updated["resolvedAt"]

    assert client.patch(f"/api/tickets/{ticket['id']}", json={}).status_code == 400
    assert client.patch(f"/api/tickets/{ticket['id']}", json={"status": "bogus"}).status_code == 400
    assert client.patch("/api/tickets/nope", json={"status": "closed"}).status_code == 404
