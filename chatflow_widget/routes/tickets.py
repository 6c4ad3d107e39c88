# chatflow_widget/routes/tickets.py
"""
Support ticket endpoints.

Creating a ticket escalates its conversation. When the body carries a
``webhookUrl`` a ``ticket.created`` event is posted there in the background;
delivery failures never affect the response.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify

from ..schemas import CreateTicketBody, UpdateTicketBody
from ..validation import sanitize_input, sanitize_metadata
from ._helpers import error_response, not_found, parse_body, service

log = logging.getLogger(__name__)
bp = Blueprint("tickets", __name__)


@bp.post("/tickets/create")
def create_ticket() -> Response:
    body, invalid = parse_body(CreateTicketBody)
    if invalid:
        return invalid

    store = service("store")
    try:
        if store.get_conversation(body.conversation_id) is None:
            return not_found("Conversation")
        ticket = store.create_ticket(
            conversation_id=body.conversation_id,
            subject=sanitize_input(body.subject),
            description=sanitize_input(body.description),
            priority=body.priority,
            category=body.category,
            metadata=sanitize_metadata(body.metadata or {}),
        )
        conversation = store.get_conversation(body.conversation_id)
    except Exception as e:
        log.error(f"TICKET_CREATE_ERROR | conversation={body.conversation_id} | error={e}", exc_info=True)
        return error_response("Failed to create ticket", e)

    if body.webhook_url:
        log.info(f"TICKET_WEBHOOK_QUEUED | ticket={ticket.ticket_number} | url={body.webhook_url}")
        service("notifier").ticket_created(body.webhook_url, ticket.to_dict(), conversation.to_dict())

    return jsonify({"success": True, "data": ticket.to_dict()}), 200


@bp.get("/tickets/<ticket_id>")
def get_ticket(ticket_id: str) -> Response:
    ticket = service("store").get_ticket(ticket_id)
    if ticket is None:
        return not_found("Ticket")
    return jsonify({"success": True, "data": ticket.to_dict()}), 200


@bp.get("/tickets/number/<ticket_number>")
def get_ticket_by_number(ticket_number: str) -> Response:
    ticket = service("store").get_ticket_by_number(ticket_number)
    if ticket is None:
        return not_found("Ticket")
    return jsonify({"success": True, "data": ticket.to_dict()}), 200


@bp.patch("/tickets/<ticket_id>")
def update_ticket(ticket_id: str) -> Response:
    body, invalid = parse_body(UpdateTicketBody)
    if invalid:
        return invalid

    updates = body.model_dump(exclude_none=True)
    if not updates:
        return jsonify({"error": "Validation failed", "details": [
            {"field": "body", "message": "At least one of status, priority, assignedTo is required"}
        ]}), 400

    try:
        ticket = service("store").update_ticket(ticket_id, **updates)
    except Exception as e:
        log.error(f"TICKET_UPDATE_ERROR | ticket={ticket_id} | error={e}", exc_info=True)
        return error_response("Failed to update ticket", e)
    if ticket is None:
        return not_found("Ticket")

    log.info(f"TICKET_UPDATED | ticket={ticket.ticket_number} | fields={sorted(updates)} | status={ticket.status.value}")
    return jsonify({"success": True, "data": ticket.to_dict()}), 200
