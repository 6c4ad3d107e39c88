"""
Flowise prediction API client
=============================

- Bearer auth when an API key is configured
- Linear-backoff retry for transient failures (send / list only)
- Streaming relay that decodes the response body into text fragments and
  reports them as tagged events, finishing with exactly one terminal event
"""
from __future__ import annotations

import codecs
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar, Union

import requests

from .config import BaseConfig
from .errors import (
    UpstreamError,
    UpstreamHTTPError,
    UpstreamNetworkError,
    UpstreamStreamError,
    UpstreamTimeoutError,
    is_transient,
)
from .models import PredictionResult

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class UpstreamChunk:
    text: str


@dataclass(frozen=True)
class UpstreamComplete:
    full_text: str


@dataclass(frozen=True)
class UpstreamFailure:
    error: UpstreamError


UpstreamEvent = Union[UpstreamChunk, UpstreamComplete, UpstreamFailure]


class FlowiseClient:
    def __init__(
        self,
        api_url: str,
        chatflow_id: str,
        api_key: Optional[str] = None,
        *,
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.chatflow_id = chatflow_id
        self.api_key = api_key or None
        self.max_attempts = max(1, max_attempts)
        self.retry_base_seconds = retry_base_seconds
        self.timeout = timeout
        self.http = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: BaseConfig) -> "FlowiseClient":
        return cls(
            cfg.FLOWISE_API_URL,
            cfg.FLOWISE_CHATFLOW_ID,
            cfg.FLOWISE_API_KEY,
            max_attempts=cfg.UPSTREAM_MAX_ATTEMPTS,
            retry_base_seconds=cfg.UPSTREAM_RETRY_BASE_MS / 1000.0,
            timeout=cfg.UPSTREAM_TIMEOUT_SECONDS,
        )

    # ------------------------------------------------------------------
    # URLs / headers
    # ------------------------------------------------------------------
    @property
    def prediction_url(self) -> str:
        return f"{self.api_url}/api/v1/prediction/{self.chatflow_id}"

    @property
    def chatflows_url(self) -> str:
        return f"{self.api_url}/api/v1/chatflows"

    def _headers(self, *, json_body: bool) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _payload(question: str, session_id: Optional[str], chat_id: Optional[str],
                 uploads: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"question": question}
        if session_id:
            payload["sessionId"] = session_id
        if chat_id:
            payload["chatId"] = chat_id
        if uploads:
            payload["uploads"] = uploads
        return payload

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Single HTTP call with transport errors mapped onto UpstreamError."""
        try:
            return self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise UpstreamTimeoutError(f"Upstream timeout: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise UpstreamNetworkError(f"Upstream network error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Upstream request failed: {e}") from e

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------
    def _with_retry(self, operation: str, fn: Callable[[], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except Exception as e:
                if attempt >= self.max_attempts or not is_transient(e):
                    log.warning(
                        f"UPSTREAM_GIVING_UP | op={operation} | attempt={attempt}/{self.max_attempts} "
                        f"| transient={is_transient(e)} | error={e}"
                    )
                    raise
                delay = self.retry_base_seconds * attempt
                log.warning(
                    f"UPSTREAM_RETRY | op={operation} | attempt={attempt}/{self.max_attempts} "
                    f"| retry_in_ms={delay * 1000:.0f} | error={e}"
                )
                self._sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def send_message(
        self,
        question: str,
        session_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        uploads: Optional[List[Dict[str, Any]]] = None,
    ) -> PredictionResult:
        payload = self._payload(question, session_id, chat_id, uploads)

        def _call() -> PredictionResult:
            resp = self._request(
                "POST", self.prediction_url, json=payload, headers=self._headers(json_body=True)
            )
            if not resp.ok:
                raise UpstreamHTTPError(resp.status_code, resp.reason or "", resp.text)
            try:
                data = resp.json()
            except ValueError as e:
                raise UpstreamError(f"Malformed upstream response: {e}", status_code=resp.status_code) from e
            if not isinstance(data, dict):
                data = {"text": str(data)}
            return PredictionResult(
                text=str(data.get("text") or ""),
                session_id=data.get("sessionId") or None,
                raw=data,
            )

        log.info(f"UPSTREAM_SEND | chatflow={self.chatflow_id} | session={session_id} | q='{question[:50]}'")
        return self._with_retry("send_message", _call)

    def list_chatflows(self) -> List[Any]:
        def _call() -> List[Any]:
            resp = self._request("GET", self.chatflows_url, headers=self._headers(json_body=False))
            if not resp.ok:
                raise UpstreamHTTPError(
                    resp.status_code, resp.reason or "", "", prefix="Failed to fetch chatflows"
                )
            return resp.json()

        return self._with_retry("list_chatflows", _call)

    def stream_message(
        self,
        question: str,
        session_id: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> Iterator[UpstreamEvent]:
        """
        One request, no retries. Yields UpstreamChunk per decoded fragment and
        then exactly one UpstreamComplete or UpstreamFailure.
        """
        payload = self._payload(question, session_id, chat_id)
        decoder = codecs.getincrementaldecoder("utf-8")()
        full_text = ""
        resp: Optional[requests.Response] = None

        log.info(f"UPSTREAM_STREAM_OPEN | chatflow={self.chatflow_id} | session={session_id}")
        try:
            try:
                resp = self._request(
                    "POST", self.prediction_url, json=payload,
                    headers=self._headers(json_body=True), stream=True,
                )
                if not resp.ok:
                    raise UpstreamHTTPError(resp.status_code, resp.reason or "", resp.text)
                if resp.raw is None:
                    raise UpstreamStreamError("Response body is null")

                for raw_chunk in resp.iter_content(chunk_size=None):
                    text = decoder.decode(raw_chunk)
                    if text:
                        full_text += text
                        yield UpstreamChunk(text)
                tail = decoder.decode(b"", final=True)
                if tail:
                    full_text += tail
                    yield UpstreamChunk(tail)
            except UpstreamError as e:
                log.error(f"UPSTREAM_STREAM_ERROR | error={e}")
                yield UpstreamFailure(e)
                return
            except (requests.exceptions.RequestException, UnicodeDecodeError) as e:
                log.error(f"UPSTREAM_STREAM_ERROR | error={e} | type={type(e).__name__}")
                yield UpstreamFailure(UpstreamStreamError(str(e)))
                return

            log.info(f"UPSTREAM_STREAM_COMPLETE | chars={len(full_text)}")
            yield UpstreamComplete(full_text)
        finally:
            if resp is not None:
                resp.close()

    def relay(
        self,
        question: str,
        on_chunk: Callable[[str], None],
        on_complete: Callable[[str], None],
        on_error: Callable[[UpstreamError], None],
        session_id: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> None:
        """Callback façade over stream_message(); at most one terminal callback fires."""
        for event in self.stream_message(question, session_id=session_id, chat_id=chat_id):
            if isinstance(event, UpstreamChunk):
                on_chunk(event.text)
            elif isinstance(event, UpstreamComplete):
                on_complete(event.full_text)
                return
            else:
                on_error(event.error)
                return
