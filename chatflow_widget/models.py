"""
Dataclass models for conversations, messages and support tickets.

Attributes are snake_case; ``to_dict()`` renders the camelCase shape the
widget and the HTTP API speak.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .enums import (
    ConversationStatus, MessageRole, MessageStatus,
    TicketPriority, TicketStatus,
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_wire(obj: Any) -> Dict[str, Any]:
    """asdict() + camelCase keys + enum values, dropping unset optionals."""
    out: Dict[str, Any] = {}
    for key, value in asdict(obj).items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        out[_camel(key)] = value
    return out


@dataclass
class Conversation:
    id: str
    user_id: str
    status: ConversationStatus = ConversationStatus.ACTIVE
    flowise_session_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _to_wire(self)


@dataclass
class FileAttachment:
    id: str
    filename: str
    file_type: str
    file_size: int
    url: str
    uploaded_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return _to_wire(self)


@dataclass
class Message:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    status: MessageStatus = MessageStatus.SENT
    attachments: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return _to_wire(self)


@dataclass
class SupportTicket:
    id: str
    ticket_number: str
    conversation_id: str
    subject: str
    description: str
    priority: TicketPriority = TicketPriority.MEDIUM
    status: TicketStatus = TicketStatus.OPEN
    category: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    resolved_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _to_wire(self)


@dataclass
class PredictionResult:
    """Normalized answer from the prediction API."""
    text: str
    session_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
