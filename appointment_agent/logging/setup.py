from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_NOISY_LOGGERS = (
    "uvicorn.access",
    "websockets",
    "websockets.protocol",
    "websockets.server",
    "httpx",
    "httpcore",
    "openai",
)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the service and quiet chatty dependencies."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, None)
    if not isinstance(resolved, int):
        raise ValueError(f"Invalid LOG_LEVEL: {level_name!r}")

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(resolved)
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )

    # Clear existing handlers so repeated calls don't duplicate output
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("appointment_agent").setLevel(resolved)
