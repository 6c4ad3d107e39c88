"""
In-memory conversation store
============================

Single source of truth for conversations, their ordered message logs, support
tickets and the per-user index. State lives for the process lifetime only.

Every public method takes the store lock, so a mutation is atomic with respect
to other request threads. Records handed out are deep copies; callers change
state only through the store.
"""
from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .enums import (
    ConversationStatus, MessageRole, MessageStatus,
    TicketPriority, TicketStatus,
)
from .models import Conversation, Message, SupportTicket, utc_now

log = logging.getLogger(__name__)

_CONVERSATION_FIELDS = {"status", "metadata", "flowise_session_id"}
_TICKET_FIELDS = {"status", "priority", "category", "assigned_to", "subject", "description", "metadata"}


def new_id() -> str:
    return uuid.uuid4().hex


class ConversationStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._tickets: Dict[str, SupportTicket] = {}
        self._user_conversations: Dict[str, List[str]] = {}
        self._ticket_counter = 0

    # ─────────────────────────────────────────────────────────────
    # Conversations
    # ─────────────────────────────────────────────────────────────
    def create_conversation(self, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> Conversation:
        now = utc_now()
        conversation = Conversation(
            id=new_id(),
            user_id=user_id,
            status=ConversationStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._conversations[conversation.id] = conversation
            self._user_conversations.setdefault(user_id, []).append(conversation.id)
        log.info(f"CONVERSATION_CREATED | id={conversation.id} | user={user_id}")
        return copy.deepcopy(conversation)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return copy.deepcopy(conversation) if conversation else None

    def get_user_conversations(self, user_id: str) -> List[Conversation]:
        with self._lock:
            ids = self._user_conversations.get(user_id, [])
            found = [copy.deepcopy(self._conversations[cid]) for cid in ids if cid in self._conversations]
        return sorted(found, key=lambda c: c.updated_at, reverse=True)

    def update_conversation(self, conversation_id: str, **updates: Any) -> Optional[Conversation]:
        unknown = set(updates) - _CONVERSATION_FIELDS
        if unknown:
            raise ValueError(f"Unsupported conversation fields: {sorted(unknown)}")
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            for key, value in updates.items():
                setattr(conversation, key, value)
            conversation.updated_at = utc_now()
            return copy.deepcopy(conversation)

    def bind_session(self, conversation_id: str, session_id: str) -> Optional[Conversation]:
        """Bind the upstream session id once; an existing binding always wins."""
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return None
            if not conversation.flowise_session_id and session_id:
                conversation.flowise_session_id = session_id
                conversation.updated_at = utc_now()
                log.info(f"SESSION_BOUND | conversation={conversation_id} | session={session_id}")
            elif session_id and session_id != conversation.flowise_session_id:
                log.info(
                    f"SESSION_BIND_IGNORED | conversation={conversation_id} "
                    f"| bound={conversation.flowise_session_id} | offered={session_id}"
                )
            return copy.deepcopy(conversation)

    # ─────────────────────────────────────────────────────────────
    # Messages
    # ─────────────────────────────────────────────────────────────
    def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        status: MessageStatus = MessageStatus.SENT,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> Message:
        message = Message(
            id=new_id(),
            conversation_id=conversation_id,
            role=MessageRole(role),
            content=content,
            status=MessageStatus(status),
            attachments=list(attachments) if attachments else None,
            metadata=dict(metadata) if metadata else None,
        )
        with self._lock:
            # Unknown conversation ids get an orphan log, same as lookups by id never raise.
            self._messages.setdefault(conversation_id, []).append(message)
            conversation = self._conversations.get(conversation_id)
            if conversation is not None:
                conversation.updated_at = utc_now()
            else:
                log.warning(f"ORPHAN_MESSAGE_LOG | conversation={conversation_id} | message={message.id}")
            return copy.deepcopy(message)

    def get_messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        with self._lock:
            messages = self._messages.get(conversation_id, [])
            if limit:
                messages = messages[-limit:]
            return [copy.deepcopy(m) for m in messages]

    def get_message(self, message_id: str, conversation_id: str) -> Optional[Message]:
        with self._lock:
            for message in self._messages.get(conversation_id, []):
                if message.id == message_id:
                    return copy.deepcopy(message)
        return None

    def update_message_status(
        self,
        message_id: str,
        conversation_id: str,
        status: MessageStatus,
        *,
        only_from: Optional[MessageStatus] = None,
    ) -> Optional[Message]:
        """
        Set a message's delivery status. With ``only_from`` the change applies
        only while the message is still in that status.
        """
        with self._lock:
            for message in self._messages.get(conversation_id, []):
                if message.id != message_id:
                    continue
                if only_from is not None and message.status != only_from:
                    return copy.deepcopy(message)
                message.status = MessageStatus(status)
                return copy.deepcopy(message)
        return None

    # ─────────────────────────────────────────────────────────────
    # Tickets
    # ─────────────────────────────────────────────────────────────
    def _next_ticket_number(self) -> str:
        # counter is process-wide; it widens past four digits after 9999 tickets
        self._ticket_counter += 1
        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        return f"TKT-{day}-{self._ticket_counter:04d}"

    def create_ticket(
        self,
        conversation_id: str,
        subject: str,
        description: str,
        priority: TicketPriority = TicketPriority.MEDIUM,
        category: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SupportTicket:
        with self._lock:
            now = utc_now()
            ticket = SupportTicket(
                id=new_id(),
                ticket_number=self._next_ticket_number(),
                conversation_id=conversation_id,
                subject=subject,
                description=description,
                priority=TicketPriority(priority),
                status=TicketStatus.OPEN,
                category=category,
                created_at=now,
                updated_at=now,
                metadata=dict(metadata or {}),
            )
            self._tickets[ticket.id] = ticket
            self.update_conversation(conversation_id, status=ConversationStatus.ESCALATED)
        log.info(
            f"TICKET_CREATED | id={ticket.id} | number={ticket.ticket_number} "
            f"| conversation={conversation_id} | priority={ticket.priority.value}"
        )
        return copy.deepcopy(ticket)

    def get_ticket(self, ticket_id: str) -> Optional[SupportTicket]:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            return copy.deepcopy(ticket) if ticket else None

    def get_ticket_by_number(self, ticket_number: str) -> Optional[SupportTicket]:
        with self._lock:
            for ticket in self._tickets.values():
                if ticket.ticket_number == ticket_number:
                    return copy.deepcopy(ticket)
        return None

    def get_conversation_tickets(self, conversation_id: str) -> List[SupportTicket]:
        with self._lock:
            found = [copy.deepcopy(t) for t in self._tickets.values() if t.conversation_id == conversation_id]
        return sorted(found, key=lambda t: (t.created_at, t.ticket_number), reverse=True)

    def update_ticket(self, ticket_id: str, **updates: Any) -> Optional[SupportTicket]:
        unknown = set(updates) - _TICKET_FIELDS
        if unknown:
            raise ValueError(f"Unsupported ticket fields: {sorted(unknown)}")
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                return None
            previous = ticket.status
            for key, value in updates.items():
                if key == "status":
                    value = TicketStatus(value)
                elif key == "priority":
                    value = TicketPriority(value)
                setattr(ticket, key, value)
            ticket.updated_at = utc_now()
            if ticket.status.is_terminal and ticket.status != previous:
                ticket.resolved_at = ticket.updated_at
            return copy.deepcopy(ticket)

    # ─────────────────────────────────────────────────────────────
    # Ops
    # ─────────────────────────────────────────────────────────────
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "conversations": len(self._conversations),
                "messages": sum(len(v) for v in self._messages.values()),
                "tickets": len(self._tickets),
                "users": len(self._user_conversations),
            }

    def clear(self) -> None:
        with self._lock:
            self._conversations.clear()
            self._messages.clear()
            self._tickets.clear()
            self._user_conversations.clear()
            self._ticket_counter = 0
        log.info("STORE_CLEARED")
