"""
Utility modules for Streamrelay.
"""
from app.utils.logger import setup_logger
from app.utils.cache import TTLCache
from app.utils.clock import utcnow, parse_rfc3339, to_rfc3339

__all__ = [
    "setup_logger",
    "TTLCache",
    "utcnow",
    "parse_rfc3339",
    "to_rfc3339",
]
