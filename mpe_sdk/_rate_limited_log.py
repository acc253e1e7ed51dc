"""
Thread-safe rate-limited logging.

Used on fail-safe paths (for example the free-call availability check) that
may fail on every call while a daemon is down, so the same warning is not
written once per request.
"""
import logging
import threading
from typing import Dict, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# One TTLCache per interval so each message expires after its own interval
_seen_messages: Dict[int, TTLCache] = {}
_seen_messages_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None
) -> bool:
    """
    Log a message at most once per ``interval`` seconds.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between identical messages in seconds
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was written, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    key = f"{log_instance.name}:{level}:{message}"

    with _seen_messages_lock:
        cache = _seen_messages.get(interval)
        if cache is None:
            cache = TTLCache(maxsize=256, ttl=interval)
            _seen_messages[interval] = cache
        if key in cache:
            return False
        cache[key] = True

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget every suppressed message"""
    with _seen_messages_lock:
        _seen_messages.clear()
