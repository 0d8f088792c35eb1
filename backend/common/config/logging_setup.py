"""Logging setup shared by the API process and worker processes."""
from __future__ import annotations

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(processName)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Apply the process-wide log format once; later calls only adjust the level."""
    root = logging.getLogger()
    resolved = (level or LOG_LEVEL).upper()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    else:
        root.setLevel(resolved)
