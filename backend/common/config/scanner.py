"""Scan pipeline runtime settings."""
from __future__ import annotations

import os

_DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


def _truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", "")
    if raw.strip():
        return [o.strip() for o in raw.split(",") if o.strip()]
    return list(_DEFAULT_CORS_ORIGINS)


DEFAULT_FREQUENCY_HZ = float(os.getenv("SCANNER_DEFAULT_FREQUENCY_HZ", "60"))
# Rate of the presentation clock that drives continuous mode (display refresh)
FRAME_CLOCK_HZ = float(os.getenv("SCANNER_FRAME_CLOCK_HZ", "120"))
DECODE_SINGLE_TIMEOUT_SEC = float(os.getenv("SCANNER_DECODE_SINGLE_TIMEOUT_SEC", "30"))
DECODE_SINGLE_IMAGE_SIZE = int(os.getenv("SCANNER_DECODE_SINGLE_IMAGE_SIZE", "800"))
WORKER_JOIN_TIMEOUT_SEC = float(os.getenv("SCANNER_WORKER_JOIN_TIMEOUT_SEC", "5"))
RESULT_SINK_REDIS_ENABLED = _truthy(os.getenv("SCANNER_RESULT_SINK_REDIS"), default=False)
MAX_UPLOAD_BYTES = int(os.getenv("SCANNER_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
RECENT_DETECTIONS_LIMIT = int(os.getenv("SCANNER_RECENT_DETECTIONS_LIMIT", "50"))
CORS_ORIGINS = tuple(_parse_cors_origins())
