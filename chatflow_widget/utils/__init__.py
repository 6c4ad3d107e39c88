# chatflow_widget/utils/__init__.py
"""
Expose helpers at package-level for convenience:

    from chatflow_widget.utils import make_event
"""

from .sse import SSE_HEADERS, make_event, parse_events  # noqa: F401
from .smart_logger import LogLevel, get_smart_logger  # noqa: F401
