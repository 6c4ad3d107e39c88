"""
Ticket webhook notifier
=======================
Best-effort POST of ``ticket.created`` events. One attempt, no retry; every
failure is logged and swallowed so ticket creation never depends on it.
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, Optional

import aiohttp

log = logging.getLogger(__name__)


class TicketNotifier:
    """Webhook poster with detailed logging."""

    def __init__(self, timeout: float = 10.0, max_log_bytes: int = 4096):
        self.timeout = timeout
        self.max_log_bytes = max_log_bytes

    def _truncate(self, s: str) -> str:
        if len(s) <= self.max_log_bytes:
            return s
        return f"{s[:self.max_log_bytes]}... (truncated {len(s) - self.max_log_bytes} bytes)"

    async def post_json(self, url: str, payload: Dict[str, Any]) -> bool:
        """POST JSON once. Returns True on 2xx; never raises."""
        try:
            body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)
        except (TypeError, ValueError) as e:
            log.error(f"WEBHOOK_JSON_ERROR | url={url} | error={e}")
            return False

        log.info(f"WEBHOOK_POST | url={url} | payload={self._truncate(body)}")
        started = time.perf_counter()
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    url, data=body, headers={"Content-Type": "application/json"}
                ) as resp:
                    text = await resp.text()
                    log.info(
                        "WEBHOOK_RESPONSE | status=%s | elapsed_ms=%.1f | body=%s",
                        resp.status,
                        (time.perf_counter() - started) * 1000,
                        self._truncate(text or ""),
                    )
                    if 200 <= resp.status < 300:
                        return True
                    log.warning(f"WEBHOOK_BAD_STATUS | status={resp.status} | url={url}")
                    return False
        except asyncio.TimeoutError:
            log.error(f"WEBHOOK_TIMEOUT | url={url} | timeout_s={self.timeout}")
        except aiohttp.ClientError as e:
            log.error(f"WEBHOOK_CLIENT_ERROR | url={url} | error={e} | type={type(e).__name__}")
        except Exception as e:
            log.error(f"WEBHOOK_UNEXPECTED_ERROR | url={url} | error={e} | type={type(e).__name__}", exc_info=True)
        return False

    def notify_in_background(self, url: str, payload: Dict[str, Any]) -> Optional[threading.Thread]:
        """Fire-and-forget delivery outside the request's lifecycle."""
        if not url:
            return None

        def _run() -> None:
            asyncio.run(self.post_json(url, payload))

        thread = threading.Thread(target=_run, name="ticket-webhook", daemon=True)
        thread.start()
        return thread

    def ticket_created(self, url: str, ticket: Dict[str, Any], conversation: Dict[str, Any]) -> Optional[threading.Thread]:
        return self.notify_in_background(
            url, {"event": "ticket.created", "ticket": ticket, "conversation": conversation}
        )
