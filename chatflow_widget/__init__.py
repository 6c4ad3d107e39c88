"""
Chatflow Widget Application Factory
===================================

Wires the pieces together:
- ConversationStore (in-process conversations, messages, tickets)
- FlowiseClient (prediction API, retries, streaming)
- ChatPipeline (send / stream orchestration)
- TicketNotifier (best-effort webhooks)
- /api blueprints behind a shared rate limit, plus the /widget page
"""

from __future__ import annotations

import atexit
import logging
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .chat_pipeline import ChatPipeline
from .config import BaseConfig, get_config
from .flowise_client import FlowiseClient
from .models import utc_now
from .notifier import TicketNotifier
from .routes import register_routes
from .store import ConversationStore

log = logging.getLogger(__name__)

__version__ = "1.0.0"

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def create_app(
    config: Optional[BaseConfig] = None,
    store: Optional[ConversationStore] = None,
    client: Optional[FlowiseClient] = None,
    notifier: Optional[TicketNotifier] = None,
) -> Flask:
    """
    App factory. Every collaborator can be injected (tests pass fakes);
    anything missing is built from the config.
    """
    cfg = config or get_config()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = cfg.SECRET_KEY
    app.config["MAX_CONTENT_LENGTH"] = cfg.MAX_CONTENT_LENGTH
    app.config["TESTING"] = bool(getattr(cfg, "TESTING", False))
    app.json.sort_keys = cfg.JSON_SORT_KEYS

    # a bare "*" keeps the wildcard header; flask-cors reflects the Origin for lists
    origins = [o.strip() for o in cfg.CORS_ORIGIN.split(",") if o.strip()]
    if not origins or "*" in origins:
        origins = "*"
    CORS(
        app,
        resources={
            r"/api/*": {"origins": origins},
            r"/widget": {"origins": origins},
        },
        methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        supports_credentials=False,
    )

    # ────────────────────────────────────────────────────────
    # STEP 1: Core services
    # ────────────────────────────────────────────────────────
    if not cfg.chatflow_configured:
        log.warning("⚠️ FLOWISE_CHATFLOW_ID not set | prediction calls will fail until it is configured")

    store = store if store is not None else ConversationStore()
    client = client if client is not None else FlowiseClient.from_config(cfg)
    notifier = notifier if notifier is not None else TicketNotifier(timeout=cfg.WEBHOOK_TIMEOUT_SECONDS)
    pipeline = ChatPipeline(store, client, delivered_delay_seconds=cfg.DELIVERED_DELAY_MS / 1000.0)
    atexit.register(pipeline.shutdown)

    app.extensions["app_config"] = cfg
    app.extensions["store"] = store
    app.extensions["flowise_client"] = client
    app.extensions["notifier"] = notifier
    app.extensions["pipeline"] = pipeline
    log.info(
        f"INIT_SERVICES | flowise_url={cfg.FLOWISE_API_URL} | chatflow_configured={cfg.chatflow_configured} "
        f"| auth={'bearer' if cfg.FLOWISE_API_KEY else 'none'}"
    )

    # ────────────────────────────────────────────────────────
    # STEP 2: Rate limiting + routes
    # ────────────────────────────────────────────────────────
    limiter = Limiter(
        get_remote_address,
        app=app,
        storage_uri=cfg.RATELIMIT_STORAGE_URI,
        enabled=cfg.RATELIMIT_ENABLED,
    )
    app.extensions["rate_limiter"] = limiter
    registered = register_routes(app, limiter, cfg.RATE_LIMIT)
    log.info(
        f"REGISTER_ROUTES_SUCCESS | blueprints={registered} | rate_limit={cfg.RATE_LIMIT} "
        f"| storage={cfg.RATELIMIT_STORAGE_URI.split('://', 1)[0]}"
    )

    # ────────────────────────────────────────────────────────
    # STEP 3: Error handlers
    # ────────────────────────────────────────────────────────
    @app.errorhandler(429)
    def handle_rate_limited(error):
        log.warning(f"RATE_LIMITED | ip={get_remote_address()} | path={request.path} | limit={error.description}")
        return jsonify({"error": RATE_LIMIT_MESSAGE}), 429

    @app.errorhandler(413)
    def handle_too_large(error):
        log.warning(f"REQUEST_TOO_LARGE | path={request.path} | max_bytes={cfg.MAX_CONTENT_LENGTH}")
        return jsonify({"error": "Request body too large"}), 413

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({"error": "Endpoint not found", "timestamp": utc_now()}), 404

    @app.errorhandler(500)
    def handle_internal_error(error):
        log.error(f"INTERNAL_ERROR | error={error}", exc_info=True)
        return jsonify({
            "error": "Internal server error",
            "details": "An unexpected error occurred" if cfg.is_production else str(error),
        }), 500

    log.info(f"APP_INIT_COMPLETE | env={cfg.APP_ENV} | extensions={sorted(app.extensions)}")
    app.version = __version__
    return app
