# chatflow_widget/utils/smart_logger.py
"""
Smart, modular logging for the chat pipeline.
Provides clean, contextual logs with configurable verbosity levels.
"""

import logging
import os
from datetime import datetime
from enum import Enum
from typing import Any, Dict


class LogLevel(Enum):
    MINIMAL = 1      # Only critical flow events
    STANDARD = 2     # Key decisions and state changes
    DETAILED = 3     # Include sizes and timing
    DEBUG = 4        # Everything including upstream calls


class SmartLogger:
    def __init__(self, name: str, level: LogLevel = LogLevel.STANDARD):
        self.logger = logging.getLogger(name)
        self.level = level
        self._request_contexts: Dict[str, str] = {}

    def set_level(self, level: LogLevel):
        """Change logging verbosity at runtime"""
        self.level = level

    def _should_log(self, required_level: LogLevel) -> bool:
        return self.level.value >= required_level.value

    def _format_request_id(self, user_id: str) -> str:
        timestamp = datetime.now().strftime('%H%M%S')
        return f"{user_id[-6:]}_{timestamp}"

    def _clean_log(self, level: str, emoji: str, category: str, message: str, **kwargs):
        details = " | ".join([f"{k}={v}" for k, v in kwargs.items() if v is not None])
        if details:
            full_message = f"{emoji} {category} | {message} | {details}"
        else:
            full_message = f"{emoji} {category} | {message}"

        getattr(self.logger, level.lower())(full_message)

    # ═══════════════════════════════════════════════════════════
    # FLOW EVENTS
    # ═══════════════════════════════════════════════════════════

    def message_received(self, user_id: str, conversation_id: str, message: str):
        """Log start of a pipeline run"""
        if not self._should_log(LogLevel.MINIMAL):
            return

        req_id = self._format_request_id(user_id)
        self._request_contexts[user_id] = req_id

        preview = message[:50] + "..." if len(message) > 50 else message
        self._clean_log("info", "🚀", "MESSAGE_IN", f"'{preview}'",
                        req=req_id, conversation=conversation_id)

    def upstream_call(self, user_id: str, operation: str, session_key: str):
        if not self._should_log(LogLevel.STANDARD):
            return

        req_id = self._request_contexts.get(user_id, "unknown")
        self._clean_log("info", "📡", "UPSTREAM", operation, req=req_id, session=session_key)

    def response_generated(self, user_id: str, outcome: str, chars: int = None):
        """Log a stored assistant answer"""
        if not self._should_log(LogLevel.MINIMAL):
            return

        req_id = self._request_contexts.get(user_id, "unknown")
        extras = {"req": req_id}
        if self._should_log(LogLevel.DETAILED) and chars is not None:
            extras["chars"] = chars
        self._clean_log("info", "✅", "RESPONSE", outcome, **extras)

        self._request_contexts.pop(user_id, None)

    def warning_event(self, user_id: str, warning_type: str, details: str = None):
        if not self._should_log(LogLevel.MINIMAL):
            return

        req_id = self._request_contexts.pop(user_id, "unknown")
        self._clean_log("warning", "⚠️", "WARNING", warning_type, req=req_id, details=details)

    def debug_state(self, user_id: str, state_name: str, state_data: Dict[str, Any]):
        if not self._should_log(LogLevel.DEBUG):
            return

        req_id = self._request_contexts.get(user_id, "unknown")
        summary = {k: len(v) if isinstance(v, (list, dict, str)) else str(v)[:20]
                   for k, v in state_data.items()}
        self._clean_log("debug", "🔍", "STATE", state_name, req=req_id, **summary)


# ═══════════════════════════════════════════════════════════════════════════════
# GLOBAL LOGGER INSTANCES AND CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

_loggers: Dict[str, SmartLogger] = {}


def resolve_level(name: str = None) -> LogLevel:
    name = (name or os.getenv('BOT_LOG_LEVEL', 'STANDARD')).upper()
    return LogLevel[name] if name in LogLevel.__members__ else LogLevel.STANDARD


def get_smart_logger(module_name: str, level: LogLevel = None) -> SmartLogger:
    """Get or create a smart logger for a module"""
    if module_name not in _loggers:
        _loggers[module_name] = SmartLogger(module_name, level or resolve_level())

    if level:
        _loggers[module_name].set_level(level)

    return _loggers[module_name]


def set_smart_level(level: LogLevel) -> None:
    for smart_logger in _loggers.values():
        smart_logger.set_level(level)
