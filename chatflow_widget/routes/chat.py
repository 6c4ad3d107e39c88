# chatflow_widget/routes/chat.py
"""
Chat endpoints
==============

POST /chat/send                          → run the pipeline, answer with both messages
POST /chat/history                       → conversation + message log
GET  /chat/conversations/<user_id>       → user's conversations, newest update first
GET  /chat/conversations/<id>/tickets    → tickets raised from a conversation
POST /chat/upload                        → inline data-URL attachment (not stored)
GET  /chatflows                          → chatflows known to the prediction API
"""

from __future__ import annotations

import base64
import logging
import uuid
from typing import Any, Dict

from flask import Blueprint, Response, jsonify, request

from ..chat_pipeline import ChatRequest
from ..errors import UpstreamError
from ..models import FileAttachment
from ..schemas import HistoryBody, SendMessageBody
from ..validation import validate_file_upload
from ._helpers import error_response, not_found, parse_body, service

log = logging.getLogger(__name__)
bp = Blueprint("chat", __name__)


@bp.post("/chat/send")
def send_message() -> Response:
    body, invalid = parse_body(SendMessageBody)
    if invalid:
        return invalid

    try:
        result = service("pipeline").send(ChatRequest(
            user_id=body.user_id,
            message=body.message,
            conversation_id=body.conversation_id,
            metadata=body.metadata or {},
        ))
    except Exception as e:
        log.error(f"CHAT_SEND_ERROR | user={body.user_id} | error={e}", exc_info=True)
        return error_response("Failed to process message", e)

    payload: Dict[str, Any] = {"success": True, "data": result.to_dict()}
    if result.warning:
        payload["warning"] = result.warning
    log.info(
        f"CHAT_SEND_OK | user={body.user_id} | conversation={result.conversation.id} "
        f"| user_status={result.user_message.status.value} | warning={bool(result.warning)}"
    )
    return jsonify(payload), 200


@bp.post("/chat/history")
def get_history() -> Response:
    body, invalid = parse_body(HistoryBody)
    if invalid:
        return invalid

    try:
        store = service("store")
        conversation = store.get_conversation(body.conversation_id)
        if conversation is None:
            return not_found("Conversation")
        messages = store.get_messages(body.conversation_id, body.limit)
    except Exception as e:
        log.error(f"CHAT_HISTORY_ERROR | conversation={body.conversation_id} | error={e}", exc_info=True)
        return error_response("Failed to retrieve history", e)

    return jsonify({
        "success": True,
        "data": {
            "conversation": conversation.to_dict(),
            "messages": [m.to_dict() for m in messages],
            "total": len(messages),
        },
    }), 200


@bp.get("/chat/conversations/<user_id>")
def get_user_conversations(user_id: str) -> Response:
    try:
        conversations = service("store").get_user_conversations(user_id)
    except Exception as e:
        log.error(f"CHAT_CONVERSATIONS_ERROR | user={user_id} | error={e}", exc_info=True)
        return error_response("Failed to retrieve conversations", e)

    return jsonify({
        "success": True,
        "data": [c.to_dict() for c in conversations],
        "total": len(conversations),
    }), 200


@bp.get("/chat/conversations/<conversation_id>/tickets")
def get_conversation_tickets(conversation_id: str) -> Response:
    store = service("store")
    if store.get_conversation(conversation_id) is None:
        return not_found("Conversation")
    tickets = store.get_conversation_tickets(conversation_id)
    return jsonify({"success": True, "data": [t.to_dict() for t in tickets], "total": len(tickets)}), 200


@bp.post("/chat/upload")
def upload_file() -> Response:
    file = request.files.get("file")
    if file is None:
        return jsonify({"error": "No file provided"}), 400

    try:
        raw = file.read()
        check = validate_file_upload(file.filename, file.mimetype, len(raw))
        if not check.valid:
            log.warning(f"UPLOAD_REJECTED | filename={file.filename!r} | mime={file.mimetype} | reason={check.error}")
            return jsonify({"error": check.error}), 400

        conversation_id = request.form.get("conversationId")
        message_id = request.form.get("messageId")
        if not conversation_id or not message_id:
            return jsonify({"error": "conversationId and messageId are required"}), 400

        attachment = FileAttachment(
            id=f"file-{uuid.uuid4().hex}",
            filename=file.filename,
            file_type=file.mimetype,
            file_size=len(raw),
            url=f"data:{file.mimetype};base64,{base64.b64encode(raw).decode('ascii')}",
        )
    except Exception as e:
        log.error(f"UPLOAD_ERROR | error={e}", exc_info=True)
        return error_response("Failed to upload file", e)

    log.info(f"UPLOAD_OK | id={attachment.id} | mime={attachment.file_type} | size={attachment.file_size}")
    return jsonify({"success": True, "data": attachment.to_dict()}), 200


@bp.get("/chatflows")
def list_chatflows() -> Response:
    try:
        flows = service("flowise_client").list_chatflows()
    except UpstreamError as e:
        log.error(f"CHATFLOWS_UPSTREAM_ERROR | status={e.status_code} | error={e}")
        return error_response("Failed to fetch chatflows", e, status=502)
    return jsonify({"success": True, "data": flows, "total": len(flows)}), 200
