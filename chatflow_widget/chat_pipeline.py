"""
Chat pipeline
=============

Flow for one /chat/send request:
1. Resolve (or create) the conversation
2. Persist the user message as ``sent`` and schedule the ``delivered`` flip
3. Ask the prediction API, correlating on the bound upstream session id
4. Persist the assistant answer, or mark the user message failed and record
   an apology so the conversation shows a degraded state

The streaming variant shares steps 1-2 and then relays upstream fragments as
tagged events, persisting the assistant message only on completion.

Runs for the same conversation id are serialized, so messages land in
submission order and the upstream session id is bound once.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .enums import MessageRole, MessageStatus, RelayEventType
from .flowise_client import FlowiseClient, UpstreamChunk, UpstreamComplete
from .models import Conversation, Message
from .store import ConversationStore
from .utils.smart_logger import get_smart_logger
from .validation import sanitize_input, sanitize_metadata

log = logging.getLogger(__name__)
smart_log = get_smart_logger("chat_pipeline")

EMPTY_ANSWER_TEXT = "I apologize, but I could not generate a response."
FAILED_ANSWER_TEXT = "I apologize, but I encountered an error processing your message. Please try again."
FAILURE_WARNING = "Bot response failed, showing error message"
STREAM_FAILED_TEXT = "Failed to stream message"


# ─────────────────────────────────────────────────────────────
# Request / result types
# ─────────────────────────────────────────────────────────────
@dataclass
class ChatRequest:
    user_id: str
    message: str
    conversation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.message = sanitize_input(self.message)
        self.metadata = sanitize_metadata(self.metadata)


@dataclass
class ChatResult:
    conversation: Conversation
    user_message: Message
    assistant_message: Message
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation.id,
            "userMessage": self.user_message.to_dict(),
            "assistantMessage": self.assistant_message.to_dict(),
        }


@dataclass(frozen=True)
class StartEvent:
    conversation_id: str
    user_message: Message
    type: RelayEventType = RelayEventType.START

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "conversationId": self.conversation_id,
            "userMessage": self.user_message.to_dict(),
        }


@dataclass(frozen=True)
class ChunkEvent:
    content: str
    type: RelayEventType = RelayEventType.CHUNK

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "content": self.content}


@dataclass(frozen=True)
class CompleteEvent:
    message: Message
    type: RelayEventType = RelayEventType.COMPLETE

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "message": self.message.to_dict()}


@dataclass(frozen=True)
class ErrorEvent:
    error: str
    type: RelayEventType = RelayEventType.ERROR

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, "error": self.error}


RelayEvent = Union[StartEvent, ChunkEvent, CompleteEvent, ErrorEvent]


# ─────────────────────────────────────────────────────────────
# Delivery timer
# ─────────────────────────────────────────────────────────────
class DeliveryScheduler:
    """
    Owns the ``sent -> delivered`` timers. Each handle can be cancelled on its
    own (e.g. once the message is marked failed) and all pending handles are
    cancelled on shutdown.
    """

    def __init__(self, store: ConversationStore, delay_seconds: float = 0.5) -> None:
        self.store = store
        self.delay_seconds = delay_seconds
        self._pending: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _deliver(self, message_id: str, conversation_id: str) -> None:
        with self._lock:
            self._pending.pop(message_id, None)
        self.store.update_message_status(
            message_id, conversation_id, MessageStatus.DELIVERED, only_from=MessageStatus.SENT
        )
        log.debug(f"MESSAGE_DELIVERED | message={message_id} | conversation={conversation_id}")

    def schedule(self, message_id: str, conversation_id: str) -> Optional[threading.Timer]:
        if self._closed:
            return None
        if self.delay_seconds <= 0:
            self._deliver(message_id, conversation_id)
            return None
        timer = threading.Timer(self.delay_seconds, self._deliver, args=(message_id, conversation_id))
        timer.daemon = True
        with self._lock:
            self._pending[message_id] = timer
        timer.start()
        return timer

    def cancel(self, message_id: str) -> bool:
        with self._lock:
            timer = self._pending.pop(message_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            timers = list(self._pending.values())
            self._pending.clear()
        for timer in timers:
            timer.cancel()
        log.info(f"DELIVERY_SCHEDULER_SHUTDOWN | cancelled={len(timers)}")


# ─────────────────────────────────────────────────────────────
# Streaming session
# ─────────────────────────────────────────────────────────────
class StreamSession:
    """
    Prepared streaming run: the user message is already stored. ``events()``
    drives the upstream call; ``close()`` releases the conversation lock and
    is safe to call more than once.
    """

    def __init__(self, pipeline: "ChatPipeline", conversation: Conversation,
                 user_message: Message, question: str, lock: threading.Lock) -> None:
        self.pipeline = pipeline
        self.conversation = conversation
        self.user_message = user_message
        self.question = question
        self._lock = lock
        self._released = False
        self._release_guard = threading.Lock()

    def close(self) -> None:
        with self._release_guard:
            if self._released:
                return
            self._released = True
        self._lock.release()

    def events(self) -> Iterator[RelayEvent]:
        try:
            yield from self.pipeline._relay(self)
        finally:
            self.close()


# ─────────────────────────────────────────────────────────────
# Pipeline
# ─────────────────────────────────────────────────────────────
class ChatPipeline:
    def __init__(
        self,
        store: ConversationStore,
        client: FlowiseClient,
        *,
        delivered_delay_seconds: float = 0.5,
    ) -> None:
        self.store = store
        self.client = client
        self.delivery = DeliveryScheduler(store, delivered_delay_seconds)
        # one lock per conversation, kept for the process lifetime like the store
        self._conversation_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._conversation_locks.setdefault(conversation_id, threading.Lock())

    def _acquire_conversation(self, request: ChatRequest) -> Tuple[Conversation, threading.Lock]:
        """Resolve the conversation and return it with its lock held."""
        if request.conversation_id:
            lock = self._lock_for(request.conversation_id)
            lock.acquire()
            try:
                conversation = self.store.get_conversation(request.conversation_id)
            except Exception:
                lock.release()
                raise
            if conversation is not None:
                return conversation, lock
            lock.release()
            log.info(f"CONVERSATION_MISS | id={request.conversation_id} | creating_new=True")

        conversation = self.store.create_conversation(request.user_id, request.metadata)
        lock = self._lock_for(conversation.id)
        lock.acquire()
        return conversation, lock

    def _store_user_message(self, conversation: Conversation, request: ChatRequest,
                            status: MessageStatus) -> Message:
        attachments = _attachments_from(request.metadata)
        return self.store.add_message(
            conversation.id,
            MessageRole.USER,
            request.message,
            status,
            metadata=request.metadata or None,
            attachments=attachments or None,
        )

    @staticmethod
    def _session_key(conversation: Conversation) -> str:
        return conversation.flowise_session_id or conversation.id

    # ------------------------------------------------------------------
    # Non-streaming send
    # ------------------------------------------------------------------
    def send(self, request: ChatRequest) -> ChatResult:
        conversation, lock = self._acquire_conversation(request)
        try:
            smart_log.message_received(request.user_id, conversation.id, request.message)
            user_message = self._store_user_message(conversation, request, MessageStatus.SENT)
            self.delivery.schedule(user_message.id, conversation.id)
            return self._answer(conversation, request, user_message)
        finally:
            lock.release()

    def _answer(self, conversation: Conversation, request: ChatRequest, user_message: Message) -> ChatResult:
        uploads = _uploads_from(request.metadata)
        try:
            smart_log.upstream_call(request.user_id, "send_message", self._session_key(conversation))
            prediction = self.client.send_message(
                request.message,
                session_id=self._session_key(conversation),
                chat_id=conversation.id,
                uploads=uploads or None,
            )
        except Exception as e:
            log.error(f"UPSTREAM_SEND_FAILED | conversation={conversation.id} | error={e}")
            smart_log.warning_event(request.user_id, "upstream_failed", str(e))
            self.delivery.cancel(user_message.id)
            failed = self.store.update_message_status(user_message.id, conversation.id, MessageStatus.FAILED)
            apology = self.store.add_message(
                conversation.id,
                MessageRole.ASSISTANT,
                FAILED_ANSWER_TEXT,
                MessageStatus.DELIVERED,
                metadata={"error": str(e) or type(e).__name__},
            )
            return ChatResult(
                conversation=self.store.get_conversation(conversation.id) or conversation,
                user_message=failed or user_message,
                assistant_message=apology,
                warning=FAILURE_WARNING,
            )

        if prediction.session_id:
            self.store.bind_session(conversation.id, prediction.session_id)

        assistant_message = self.store.add_message(
            conversation.id,
            MessageRole.ASSISTANT,
            prediction.text or EMPTY_ANSWER_TEXT,
            MessageStatus.DELIVERED,
            metadata={"flowiseResponse": prediction.raw},
        )
        smart_log.response_generated(request.user_id, "delivered", len(assistant_message.content))
        return ChatResult(
            conversation=self.store.get_conversation(conversation.id) or conversation,
            user_message=user_message,
            assistant_message=assistant_message,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    def prepare_stream(self, request: ChatRequest) -> StreamSession:
        """Store-side work that must succeed before the event stream opens."""
        conversation, lock = self._acquire_conversation(request)
        try:
            smart_log.message_received(request.user_id, conversation.id, request.message)
            user_message = self._store_user_message(conversation, request, MessageStatus.DELIVERED)
        except Exception:
            lock.release()
            raise
        return StreamSession(self, conversation, user_message, request.message, lock)

    def stream(self, request: ChatRequest) -> Iterator[RelayEvent]:
        return self.prepare_stream(request).events()

    def _relay(self, session: StreamSession) -> Iterator[RelayEvent]:
        conversation = session.conversation
        yield StartEvent(conversation.id, session.user_message)

        accumulated = ""
        smart_log.upstream_call(conversation.user_id, "stream_message", self._session_key(conversation))
        try:
            for event in self.client.stream_message(
                session.question,
                session_id=self._session_key(conversation),
                chat_id=conversation.id,
            ):
                if isinstance(event, UpstreamChunk):
                    accumulated += event.text
                    yield ChunkEvent(event.text)
                elif isinstance(event, UpstreamComplete):
                    assistant_message = self.store.add_message(
                        conversation.id,
                        MessageRole.ASSISTANT,
                        event.full_text or accumulated,
                        MessageStatus.DELIVERED,
                    )
                    smart_log.response_generated(conversation.user_id, "streamed", len(assistant_message.content))
                    yield CompleteEvent(assistant_message)
                    return
                else:
                    log.error(f"STREAM_RELAY_FAILED | conversation={conversation.id} | error={event.error}")
                    smart_log.warning_event(conversation.user_id, "stream_failed", str(event.error))
                    yield ErrorEvent(str(event.error))
                    return
        except Exception as e:
            # start already went out; always close with a terminal event
            log.error(f"STREAM_RELAY_ERROR | conversation={conversation.id} | error={e}", exc_info=True)
            smart_log.warning_event(conversation.user_id, "stream_failed", str(e))
            yield ErrorEvent(STREAM_FAILED_TEXT)
    def shutdown(self) -> None:
        self.delivery.shutdown()


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────
def _attachments_from(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    items = metadata.get("attachments") if metadata else None
    if not isinstance(items, list):
        return []
    return [a for a in items if isinstance(a, dict)]


def _uploads_from(metadata: Dict[str, Any]) -> List[Dict[str, str]]:
    """Inline data-URL attachments in the prediction API's ``uploads`` shape."""
    uploads: List[Dict[str, str]] = []
    for attachment in _attachments_from(metadata):
        url = str(attachment.get("url") or "")
        if not url.startswith("data:"):
            continue
        uploads.append({
            "data": url,
            "type": "file",
            "name": str(attachment.get("filename") or "upload"),
            "mime": str(attachment.get("fileType") or ""),
        })
    return uploads
