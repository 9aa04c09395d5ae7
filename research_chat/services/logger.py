"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from research_chat.config import settings

# Remove default handler
logger.remove()

# Add console handler with color
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

if settings.log_to_file:
    LOG_DIR = Path(settings.log_dir)
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger.add(
        LOG_DIR / "research_chat_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="00:00",  # New file at midnight
        retention="7 days",
        compression="zip",
    )

# Reduce noise from network libraries
for logger_name in ("httpx", "httpcore", "hpack", "asyncio"):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_api_call(
    method: str,
    path: str,
    status: str = "success",
    status_code: Optional[int] = None,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log a call to the research chat API."""
    call_data = {
        "timestamp": _now(),
        "method": method,
        "path": path,
        "status": status,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "error": error,
    }
    if error:
        logger.warning(f"API_CALL_FAILED: {call_data}")
    else:
        logger.debug(f"API_CALL: {call_data}")


def log_session_transition(
    session_id: Optional[str],
    previous: str,
    current: str,
    event: str,
) -> None:
    """Log a session status change."""
    transition = {
        "timestamp": _now(),
        "session_id": session_id,
        "from": previous,
        "to": current,
        "event": event,
    }
    logger.info(f"SESSION_TRANSITION: {transition}")


def log_poll(
    session_id: Optional[str],
    status: str,
    messages: int = 0,
    is_completed: bool = False,
    has_error: bool = False,
    error: Optional[str] = None,
) -> None:
    """Log one poll cycle of the result synchronizer."""
    poll_data = {
        "timestamp": _now(),
        "session_id": session_id,
        "status": status,
        "messages": messages,
        "is_completed": is_completed,
        "has_error": has_error,
        "error": error,
    }
    if error:
        logger.warning(f"POLL_FAILED: {poll_data}")
    else:
        logger.debug(f"POLL: {poll_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
