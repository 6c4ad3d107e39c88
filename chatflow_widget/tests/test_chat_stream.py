from __future__ import annotations

from chatflow_widget.enums import MessageRole
from chatflow_widget.utils.sse import make_event, parse_events

from .fakes import FakeResponse


def _stream(client, **body):
    body.setdefault("userId", "u1")
    body.setdefault("message", "hello")
    return client.post("/api/chat/stream", json=body)


def test_stream_route_emits_start_chunks_complete(client, upstream, store):
    upstream.outcomes = [FakeResponse(200, chunks=[b"Hi ", b"there"])]

    resp = _stream(client)

    # Flask test client buffers the stream; headers and frames are what matter.
    assert resp.status_code == 200
    assert resp.headers.get("Content-Type", "").startswith("text/event-stream")
    assert resp.headers.get("Cache-Control") == "no-cache, no-transform"
    assert resp.headers.get("X-Accel-Buffering") == "no"

    events = parse_events(resp.get_data(as_text=True))
    names = [name for name, _ in events]
    assert names == ["start", "chunk", "chunk", "complete"]

    start = events[0][1]
    assert start["type"] == "start"
    assert start["userMessage"]["status"] == "delivered"
    assert "".join(p["content"] for n, p in events if n == "chunk") == "Hi there"

    complete = events[-1][1]
    assert complete["message"]["content"] == "Hi there"
    stored = store.get_messages(start["conversationId"])
    assert [m.content for m in stored] == ["hello", "Hi there"]


def test_stream_route_upstream_error(client, upstream, store):
    upstream.outcomes = [FakeResponse(502, text="", reason="Bad Gateway")]

    resp = _stream(client)
    assert resp.status_code == 200
    events = parse_events(resp.get_data(as_text=True))

    assert [name for name, _ in events] == ["start", "error"]
    assert "502" in events[-1][1]["error"]
    assert len(upstream.calls) == 1
    assert len(store.get_messages(events[0][1]["conversationId"])) == 1


def test_stream_route_store_failure_ends_with_error(client, upstream, store, monkeypatch):
    upstream.outcomes = [FakeResponse(200, chunks=[b"Hi"])]
    original_add = store.add_message

    def _add_message(conversation_id, role, *args, **kwargs):
        if role == MessageRole.ASSISTANT:
            raise RuntimeError("store down")
        return original_add(conversation_id, role, *args, **kwargs)

    monkeypatch.setattr(store, "add_message", _add_message)

    resp = _stream(client)
    assert resp.status_code == 200
    events = parse_events(resp.get_data(as_text=True))

    assert [name for name, _ in events] == ["start", "chunk", "error"]
    assert events[-1][1] == {"type": "error", "error": "Failed to stream message"}

    # conversation lock was released
    conversation_id = events[0][1]["conversationId"]
    monkeypatch.setattr(store, "add_message", original_add)
    upstream.outcomes = [FakeResponse(200, {"text": "sent"})]
    res = client.post("/api/chat/send", json={"userId": "u1", "message": "next", "conversationId": conversation_id})
    assert res.status_code == 200


def test_stream_route_validation(client):
    resp = client.post("/api/chat/stream", json={"userId": "u1"})
    assert resp.status_code == 400
    assert resp.get_json()["details"][0]["field"] == "message"


def test_stream_then_send_on_same_conversation(client, upstream):
    upstream.outcomes = [FakeResponse(200, chunks=[b"streamed"]), FakeResponse(200, {"text": "sent"})]
    conversation_id = parse_events(_stream(client).get_data(as_text=True))[0][1]["conversationId"]

    res = client.post("/api/chat/send", json={"userId": "u1", "message": "next", "conversationId": conversation_id})
    assert res.status_code == 200
    assert res.get_json()["data"]["conversationId"] == conversation_id


def test_make_event_frame():
    frame = make_event("chunk", {"type": "chunk", "content": "ü"})
    assert frame == 'event: chunk\ndata: {"type": "chunk", "content": "ü"}\n\n'
    assert parse_events(frame) == [("chunk", {"type": "chunk", "content": "ü"})]
