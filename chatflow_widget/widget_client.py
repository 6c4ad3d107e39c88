"""
Widget client
=============
Client-side chat state for one conversation, driven over the /api surface
with aiohttp. Mirrors what the /widget page does in the browser:

    idle ──send──▶ sending ──ok──▶ idle
                      │
                      ├──failure──▶ error ──clear_error──▶ idle
                      └──cancel───▶ idle   (no error recorded)

The conversation id is adopted from the first successful send and never
replaced afterwards.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import aiohttp

from .enums import MessageRole, TicketPriority, WidgetState

log = logging.getLogger(__name__)


class WidgetRequestError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class WidgetAttachment:
    filename: str
    content: bytes
    content_type: str


class ChatWidgetClient:
    def __init__(
        self,
        api_url: str,
        user_id: str,
        *,
        conversation_id: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_conversation_created: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        timeout: float = 60.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.user_id = user_id
        self.conversation_id = conversation_id
        self.on_conversation_created = on_conversation_created
        self.on_error = on_error
        self.timeout = timeout

        self.state: WidgetState = WidgetState.IDLE
        self.messages: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

        self._session = session
        self._owns_session = session is None
        self._inflight: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def _http(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "ChatWidgetClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def is_loading(self) -> bool:
        return self.state == WidgetState.SENDING

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    async def _read(self, resp, fallback: str) -> Dict[str, Any]:
        try:
            data = await resp.json()
        except (aiohttp.ContentTypeError, ValueError):
            data = {}
        if resp.status >= 400:
            message = (data or {}).get("error") or f"{fallback}: {resp.status} {resp.reason or ''}".strip()
            raise WidgetRequestError(message, resp.status)
        return data or {}

    async def _post_json(self, path: str, body: Dict[str, Any], fallback: str) -> Dict[str, Any]:
        async with self._http().post(f"{self.api_url}{path}", json=body) as resp:
            return await self._read(resp, fallback)

    async def _upload(self, attachment: WidgetAttachment) -> Dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("file", attachment.content, filename=attachment.filename, content_type=attachment.content_type)
        form.add_field("conversationId", self.conversation_id or "temp")
        form.add_field("messageId", "temp")
        async with self._http().post(f"{self.api_url}/chat/upload", data=form) as resp:
            result = await self._read(resp, "Failed to upload file")
        return result["data"]

    def _adopt_conversation(self, conversation_id: Optional[str]) -> None:
        if self.conversation_id or not conversation_id:
            return
        self.conversation_id = conversation_id
        log.info(f"WIDGET_CONVERSATION_ADOPTED | conversation={conversation_id} | user={self.user_id}")
        if self.on_conversation_created:
            self.on_conversation_created(conversation_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def send(self, content: str, attachments: Optional[Sequence[WidgetAttachment]] = None) -> Optional[Dict[str, Any]]:
        """Returns the send payload's ``data`` or None when nothing was sent."""
        if not (content or "").strip() and not attachments:
            return None

        self.state = WidgetState.SENDING
        self.error = None
        self._inflight = asyncio.ensure_future(self._send(content, list(attachments or [])))
        try:
            data = await self._inflight
        except asyncio.CancelledError:
            log.info(f"WIDGET_SEND_CANCELLED | conversation={self.conversation_id}")
            self.state = WidgetState.IDLE
            return None
        except Exception as e:
            log.warning(f"WIDGET_SEND_FAILED | conversation={self.conversation_id} | error={e}")
            self.error = e
            self.state = WidgetState.ERROR
            if self.on_error:
                self.on_error(e)
            return None
        finally:
            self._inflight = None

        self.state = WidgetState.IDLE
        return data

    async def _send(self, content: str, attachments: List[WidgetAttachment]) -> Dict[str, Any]:
        uploaded = [await self._upload(a) for a in attachments]

        body: Dict[str, Any] = {"userId": self.user_id, "message": content if content.strip() else "(attachment)"}
        if self.conversation_id:
            body["conversationId"] = self.conversation_id
        if uploaded:
            body["metadata"] = {"attachments": uploaded}

        result = await self._post_json("/chat/send", body, "Failed to send message")
        data = result.get("data") or {}
        self._adopt_conversation(data.get("conversationId"))
        self.messages.extend(m for m in (data.get("userMessage"), data.get("assistantMessage")) if m)
        if result.get("warning"):
            log.warning(f"WIDGET_SEND_WARNING | conversation={self.conversation_id} | warning={result['warning']}")
        return data

    async def retry_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        message = next((m for m in self.messages if m.get("id") == message_id), None)
        if message is None or message.get("role") != MessageRole.USER.value:
            return None
        self.messages = [m for m in self.messages if m.get("id") != message_id]
        return await self.send(message.get("content", ""))

    def cancel(self) -> bool:
        if self._inflight is None or self._inflight.done():
            return False
        return self._inflight.cancel()

    def clear_error(self) -> None:
        self.error = None
        if self.state == WidgetState.ERROR:
            self.state = WidgetState.IDLE

    async def load_history(self) -> List[Dict[str, Any]]:
        if not self.conversation_id:
            return self.messages
        try:
            result = await self._post_json(
                "/chat/history", {"conversationId": self.conversation_id}, "Failed to load conversation history"
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, WidgetRequestError) as e:
            log.error(f"WIDGET_HISTORY_ERROR | conversation={self.conversation_id} | error={e}")
            return self.messages
        messages = (result.get("data") or {}).get("messages")
        if result.get("success") and messages is not None:
            self.messages = list(messages)
        return self.messages

    async def create_ticket(
        self,
        subject: str = "Support Request",
        priority: TicketPriority = TicketPriority.MEDIUM,
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not self.conversation_id:
            raise WidgetRequestError("No conversation to raise a ticket for")
        body: Dict[str, Any] = {
            "conversationId": self.conversation_id,
            "subject": subject,
            "description": self.transcript(),
            "priority": TicketPriority(priority).value,
        }
        if category:
            body["category"] = category
        result = await self._post_json("/tickets/create", body, "Failed to create ticket")
        ticket = result.get("data") or {}
        log.info(f"WIDGET_TICKET_CREATED | number={ticket.get('ticketNumber')} | conversation={self.conversation_id}")
        return ticket

    def transcript(self) -> str:
        return "\n".join(f"{m.get('role')}: {m.get('content')}" for m in self.messages)
