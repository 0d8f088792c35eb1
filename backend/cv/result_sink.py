"""Result sinks fed by the publisher for every decoded code."""
from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Iterable, List, Optional

import cv2
import numpy as np
from redis.exceptions import RedisError

from common.config import create_redis_client, detections_channel
from cv.types import CodeResult

logger = logging.getLogger(__name__)


def _matches(code_result: CodeResult, patterns: Iterable[dict]) -> bool:
    """True when every key of some pattern equals the code result's field."""
    fields = code_result.to_dict()
    return any(all(fields.get(k) == v for k, v in pattern.items()) for pattern in patterns)


class ResultCollector:
    """Keeps up to ``capacity`` decoded codes, optionally with a PNG of the frame."""

    def __init__(
        self,
        capacity: int = 20,
        capture: bool = False,
        blacklist: Optional[List[dict]] = None,
        filter: Optional[Callable[[CodeResult], bool]] = None,
    ):
        self._capacity = capacity
        self._capture = capture
        self._blacklist = blacklist or []
        self._filter = filter
        self._results: list[dict] = []
        self._lock = threading.Lock()

    def _accepts(self, code_result: CodeResult) -> bool:
        if self._blacklist and _matches(code_result, self._blacklist):
            return False
        if self._filter is not None and not self._filter(code_result):
            return False
        return True

    def add_result(self, image_data: np.ndarray, canvas_size, code_result: CodeResult) -> None:
        with self._lock:
            if self._capacity <= 0 or not self._accepts(code_result):
                return
            self._capacity -= 1
            entry = {"code_result": code_result, "canvas_size": tuple(canvas_size)}
            if self._capture:
                ok, png = cv2.imencode(".png", np.ascontiguousarray(image_data))
                entry["frame"] = png.tobytes() if ok else None
            self._results.append(entry)

    def get_results(self) -> list[dict]:
        with self._lock:
            return list(self._results)


class RedisResultSink:
    """Publishes every decoded code on the scanner's Redis channel."""

    def __init__(self, scanner_id: str):
        self.scanner_id = scanner_id
        self._channel = detections_channel(scanner_id)
        self._redis = create_redis_client()

    def add_result(self, image_data: np.ndarray, canvas_size, code_result: CodeResult) -> bool:
        payload = {
            "type": "detected",
            "scanner_id": self.scanner_id,
            "timestamp_ms": time.time() * 1000.0,
            "canvas_size": list(canvas_size),
            "code_result": code_result.to_dict(),
        }
        try:
            self._redis.publish(self._channel, json.dumps(payload))
            return True
        except RedisError as exc:
            logger.warning("[%s] Redis publish failed: %s", self.scanner_id, exc)
            return False

    def close(self) -> None:
        try:
            self._redis.close()
        except Exception:
            pass
