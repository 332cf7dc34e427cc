"""Core infrastructure module.

Foundation services required by the streaming and API layers:
- Configuration schemas (Valves, EncryptedStr)
- Error classes
- Session logging
- Timing instrumentation
- Pure utility functions
"""

from .config import Valves, EncryptedStr, LOGGER
from .errors import OpenRouterAPIError
from .logging_system import SessionLogger
from .timing_logger import timed, timing_mark, timing_scope
from .utils import (
    _safe_json_loads,
    _pretty_json,
)

__all__ = [
    "Valves",
    "EncryptedStr",
    "LOGGER",
    "OpenRouterAPIError",
    "SessionLogger",
    "timed",
    "timing_mark",
    "timing_scope",
    "_safe_json_loads",
    "_pretty_json",
]
