"""Request bodies for the /api surface (camelCase on the wire)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .enums import TicketPriority, TicketStatus
from .validation import MAX_MESSAGE_LENGTH


class _Body(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class SendMessageBody(_Body):
    conversation_id: Optional[str] = None
    user_id: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("conversation_id")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class HistoryBody(_Body):
    conversation_id: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=100)


class CreateTicketBody(_Body):
    conversation_id: str = Field(min_length=1)
    subject: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    priority: TicketPriority = TicketPriority.MEDIUM
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    webhook_url: Optional[str] = None


class UpdateTicketBody(_Body):
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    assigned_to: Optional[str] = None


def validation_details(exc: ValidationError) -> List[Dict[str, str]]:
    """One entry per offending field, camelCase names."""
    details: List[Dict[str, str]] = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "__root__"]
        details.append({
            "field": ".".join(loc) or "body",
            "message": err.get("msg", "invalid value"),
        })
    return details
