import logging
import os
from typing import Optional

_configured = False

# Loggers of third-party libraries that are chatty at INFO during reconnects.
_NOISY_LOGGERS = ("livekit", "httpx", "httpcore")


def _configure_root_logger() -> None:
    global _configured
    if _configured:
        return
    level = os.getenv("BOTICAL_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module logger with consistent formatting.

    The root logger is configured on first use; the level comes from
    BOTICAL_LOG_LEVEL (default INFO).
    """
    _configure_root_logger()
    return logging.getLogger(name or "botical")
