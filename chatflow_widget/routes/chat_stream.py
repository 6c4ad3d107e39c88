from __future__ import annotations

import logging
import time
from typing import Iterator

from flask import Blueprint, Response, request, stream_with_context

from ..chat_pipeline import ChatRequest, StreamSession
from ..schemas import SendMessageBody
from ..utils.sse import SSE_HEADERS, make_event
from ._helpers import error_response, parse_body, service

log = logging.getLogger(__name__)

bp = Blueprint("chat_stream", __name__)


@bp.post("/chat/stream")
def chat_stream() -> Response:
    body, invalid = parse_body(SendMessageBody)
    if invalid:
        return invalid

    # Store work happens before the stream opens so it can still fail with a 500.
    try:
        session: StreamSession = service("pipeline").prepare_stream(ChatRequest(
            user_id=body.user_id,
            message=body.message,
            conversation_id=body.conversation_id,
            metadata=body.metadata or {},
        ))
    except Exception as e:
        log.error(f"STREAM_PREPARE_ERROR | user={body.user_id} | error={e}", exc_info=True)
        return error_response("Failed to stream message", e)

    conversation_id = session.conversation.id

    def generate() -> Iterator[str]:
        start_ts = time.time()
        chunks = 0
        for event in session.events():
            if event.type.value == "chunk":
                chunks += 1
            else:
                log.info(f"SSE_EMIT | event={event.type.value} | conversation={conversation_id}")
            yield make_event(event.type.value, event.to_payload())
        log.info(
            f"SSE_END | conversation={conversation_id} | chunks={chunks} "
            f"| elapsed_s={time.time() - start_ts:.3f}"
        )

    headers = dict(SSE_HEADERS)
    headers["Access-Control-Allow-Origin"] = request.headers.get("Origin", "*")

    response = Response(
        stream_with_context(generate()),
        headers=headers,
        mimetype="text/event-stream",
        direct_passthrough=True,
    )
    response.call_on_close(session.close)
    return response
