"""Shared plumbing for the /api blueprints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from flask import current_app, jsonify, request
from pydantic import BaseModel, ValidationError

from ..schemas import validation_details

log = logging.getLogger(__name__)

B = TypeVar("B", bound=BaseModel)


def service(name: str) -> Any:
    """Shared objects live in app.extensions (see create_app)."""
    return current_app.extensions[name]


def parse_body(model: Type[B]) -> Tuple[Optional[B], Optional[Tuple[Any, int]]]:
    """Validate the JSON body; on failure return a ready 400 response."""
    data: Dict[str, Any] = request.get_json(silent=True) or {}
    try:
        return model.model_validate(data), None
    except ValidationError as e:
        details = validation_details(e)
        log.warning(f"VALIDATION_FAILED | path={request.path} | fields={[d['field'] for d in details]}")
        return None, (jsonify({"error": "Validation failed", "details": details}), 400)


def error_response(context: str, exc: BaseException, status: int = 500) -> Tuple[Any, int]:
    """Generic message in production, the exception text elsewhere."""
    cfg = current_app.extensions["app_config"]
    details = "An unexpected error occurred" if cfg.is_production else (str(exc) or type(exc).__name__)
    return jsonify({"error": context, "details": details}), status


def not_found(what: str) -> Tuple[Any, int]:
    return jsonify({"error": f"{what} not found"}), 404
