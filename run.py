#!/usr/bin/env python3
"""
Chatflow Widget Application Entry Point
- Works under both Gunicorn (WSGI import) and python CLI.
- Ensures logging is initialized exactly once per process.
- Aligns Flask app logger with root logger for consistent output.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Tuple

from dotenv import load_dotenv
from flask import request

# Load env before any other imports that might read it
load_dotenv()

# Local imports after env load
from chatflow_widget import create_app
from chatflow_widget.logging_setup import setup_logging
from chatflow_widget.utils.smart_logger import resolve_level

_LOGGING_INITIALIZED = False  # process-level guard


def init_logging() -> None:
    """Idempotent: won't add duplicate handlers if called multiple times."""
    global _LOGGING_INITIALIZED
    if not _LOGGING_INITIALIZED:
        setup_logging(os.getenv("LOG_LEVEL", "INFO"))
        _LOGGING_INITIALIZED = True


def _wire_app_logger(app) -> None:
    """Make Flask's app.logger flow into the root logger."""
    if app.logger.handlers:
        app.logger.handlers.clear()
    app.logger.propagate = True
    app.logger.setLevel(logging.getLogger().level)


def create_application():
    init_logging()
    app = create_app()
    _wire_app_logger(app)

    @app.before_request
    def _log_request():
        app.logger.info("→ %s %s", request.method, request.path)

    return app


# --------------------------------------------------------------------------------------
# Local dev server (python run.py)
# --------------------------------------------------------------------------------------

def _resolve_server_config() -> Tuple[str, int, bool]:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3001"))

    flask_debug = os.getenv("FLASK_DEBUG", "").lower()
    if flask_debug in ("1", "true", "yes", "on"):
        debug = True
    elif flask_debug in ("0", "false", "no", "off"):
        debug = False
    else:
        debug = os.getenv("APP_ENV", "development").lower() == "development"

    return host, port, debug


def _print_startup_info(host: str, port: int, debug: bool) -> None:
    print("Chatflow Widget Starting")
    print("=" * 60)
    print(f"Server:       http://{host}:{port}")
    print(f"Health check: http://{host}:{port}/api/health")
    print(f"Widget:       http://{host}:{port}/widget")
    print(f"Environment:  {os.getenv('APP_ENV', 'development')}")
    print(f"Flowise API:  {os.getenv('FLOWISE_API_URL', 'http://localhost:3000')}")
    print(f"Chatflow ID:  {os.getenv('FLOWISE_CHATFLOW_ID') or '(not set)'}")
    print(f"Debug mode:   {debug}")
    print(f"Log level:    {os.getenv('LOG_LEVEL', 'INFO')} / bot={resolve_level().name}")
    print(f"Process ID:   {os.getpid()}")
    print("=" * 60)


def main() -> None:
    host, port, debug = _resolve_server_config()
    _print_startup_info(host, port, debug)

    try:
        app.run(
            host=host,
            port=port,
            debug=debug,
            use_reloader=False,  # Avoid double init/log handlers in dev
            threaded=True,
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
    except Exception as e:
        print(f"Server error: {e}")
        sys.exit(1)


# WSGI entrypoint for Gunicorn: `gunicorn run:app`
app = create_application()

if __name__ == "__main__":
    main()
