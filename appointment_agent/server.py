from __future__ import annotations

import os

import uvicorn

from appointment_agent.logging.setup import setup_logging


def _port() -> int:
    raw = os.getenv("PORT", "8000")
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid PORT: {raw!r} (expected an integer)") from exc


def run() -> None:
    setup_logging()
    uvicorn.run(
        "appointment_agent.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=_port(),
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    run()
