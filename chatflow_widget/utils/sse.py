from __future__ import annotations

import json
from typing import Any, Dict

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def make_event(event_type: str, data: Dict[str, Any]) -> str:
    """Serialize an SSE event frame with JSON payload."""
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event_type}\ndata: {payload}\n\n"


def parse_events(body: str) -> list[tuple[str, Dict[str, Any]]]:
    """Split a buffered SSE body back into (event, payload) pairs."""
    events: list[tuple[str, Dict[str, Any]]] = []
    for frame in body.split("\n\n"):
        name, data = "message", None
        for line in frame.splitlines():
            if line.startswith("event:"):
                name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data = line[len("data:"):].strip()
        if data is not None:
            events.append((name, json.loads(data)))
    return events
