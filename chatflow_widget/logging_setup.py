import logging
import os
import sys

from .utils.smart_logger import resolve_level, set_smart_level

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level_name: str = None) -> None:
    level = getattr(logging, (level_name or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(sh)

    # Tidy / tune levels regardless of backend
    logging.captureWarnings(True)
    for noisy in ("urllib3", "werkzeug", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    for name in (
        "chatflow_widget",
        "chatflow_widget.chat_pipeline",
        "chatflow_widget.flowise_client",
        "gunicorn.error",
        "gunicorn.access",
    ):
        logging.getLogger(name).setLevel(level)

    set_smart_level(resolve_level())
