# chatflow_widget/routes/__init__.py
"""
Blueprint auto-registration.

Put any flask.Blueprint in `chatflow_widget/routes/<name>.py`
with the variable name **bp** and it will be discovered &
registered when `register_routes(app, limiter)` is called.

Blueprints are mounted under `/api` and rate limited as one shared
bucket, unless the module sets `URL_PREFIX` (the widget page does).

The app factory (chatflow_widget.__init__.py) stores shared
objects like `store` and `pipeline` into `app.extensions`
so the individual route modules can access them via
`from flask import current_app`.
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from types import ModuleType
from typing import List, Optional

from flask import Blueprint, Flask
from flask_limiter import Limiter

log = logging.getLogger(__name__)

API_PREFIX = "/api"


def register_routes(app: Flask, limiter: Optional[Limiter] = None, rate_limit: Optional[str] = None) -> List[str]:
    registered: List[str] = []
    for _finder, name, _ in pkgutil.iter_modules(__path__):
        if name.startswith("_"):
            continue
        module: ModuleType = importlib.import_module(f"{__name__}.{name}")
        bp: Blueprint | None = getattr(module, "bp", None)
        if not isinstance(bp, Blueprint):
            continue

        prefix = getattr(module, "URL_PREFIX", API_PREFIX)
        if prefix == API_PREFIX and limiter is not None and rate_limit:
            limiter.shared_limit(rate_limit, scope="api")(bp)
        app.register_blueprint(bp, url_prefix=prefix or None)
        registered.append(name)
        log.info(f"REGISTER_ROUTES | blueprint={bp.name} | prefix={prefix or '/'}")
    return registered
