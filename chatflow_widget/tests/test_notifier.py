from __future__ import annotations

import asyncio

from aiohttp import test_utils, web

from chatflow_widget.notifier import TicketNotifier


def _hook_app(received, status=200, delay=0.0):
    async def handler(request):
        received.append(await request.json())
        if delay:
            await asyncio.sleep(delay)
        return web.json_response({"ok": status < 400}, status=status)

    app = web.Application()
    app.router.add_post("/hook", handler)
    return app


async def test_post_json_delivers_payload():
    received = []
    async with test_utils.TestServer(_hook_app(received)) as server:
        ok = await TicketNotifier(timeout=5).post_json(str(server.make_url("/hook")), {"event": "ticket.created"})

    assert ok is True
    assert received == [{"event": "ticket.created"}]


async def test_post_json_bad_status_is_false():
    received = []
    async with test_utils.TestServer(_hook_app(received, status=500)) as server:
        ok = await TicketNotifier(timeout=5).post_json(str(server.make_url("/hook")), {"event": "x"})
    assert ok is False
    assert len(received) == 1


async def test_post_json_timeout_is_false():
    async with test_utils.TestServer(_hook_app([], delay=1.0)) as server:
        ok = await TicketNotifier(timeout=0.1).post_json(str(server.make_url("/hook")), {"event": "x"})
    assert ok is False


async def test_post_json_unreachable_is_false():
    ok = await TicketNotifier(timeout=1).post_json("http://127.0.0.1:1/hook", {"event": "x"})
    assert ok is False


async def test_post_json_unserializable_payload_is_false():
    ok = await TicketNotifier().post_json("http://127.0.0.1:1/hook", {("not", "a", "str"): 1})
    assert ok is False


def test_notify_without_url_is_noop():
    assert TicketNotifier().notify_in_background("", {"event": "x"}) is None


def test_ticket_created_runs_in_background_thread(monkeypatch):
    posted = []

    async def _fake_post(self, url, payload):
        posted.append((url, payload))
        return True

    monkeypatch.setattr(TicketNotifier, "post_json", _fake_post)
    thread = TicketNotifier().ticket_created("https://hooks.example", {"id": "t1"}, {"id": "c1"})
    thread.join(timeout=5)

    assert posted == [(
        "https://hooks.example",
        {"event": "ticket.created", "ticket": {"id": "t1"}, "conversation": {"id": "c1"}},
    )]
