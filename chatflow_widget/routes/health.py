# chatflow_widget/routes/health.py
"""
Liveness probe.

Always 200 while Flask is up. Reports whether a chatflow id is configured
so a missing FLOWISE_CHATFLOW_ID shows up without a prediction call.
"""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify

from ..models import utc_now

bp = Blueprint("health", __name__)


@bp.get("/health")
def health_check() -> tuple[Dict[str, Any], int]:
    cfg = current_app.extensions["app_config"]
    return jsonify({
        "status": "healthy",
        "timestamp": utc_now(),
        "service": "chatflow-widget",
        "flowise": {"configured": cfg.chatflow_configured},
        "store": current_app.extensions["store"].stats(),
    }), 200
