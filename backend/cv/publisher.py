"""Classify decode results and publish them on the pipeline's event bus."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

import numpy as np

from common.events import DETECTED, PROCESSED, EventBus
from cv.transform import transform_result
from cv.types import CompositeResult, DecodeResult, has_code, iter_leaves

logger = logging.getLogger(__name__)


class ResultPublisher:
    """Transforms each result once, feeds the result sink, and emits events.

    ``offset`` and ``canvas_size`` are callables so they follow the current
    source after a re-init.
    """

    def __init__(
        self,
        events: EventBus,
        offset: Callable[[], Sequence[float]] = lambda: (0, 0),
        canvas_size: Callable[[], Sequence[int]] = lambda: (0, 0),
        transform_results: bool = True,
    ):
        self._events = events
        self._offset = offset
        self._canvas_size = canvas_size
        self.transform_results = transform_results
        self._sink = None

    @property
    def sink(self):
        return self._sink

    def set_sink(self, sink) -> bool:
        """Register a result sink; rejected unless it has a callable ``add_result``."""
        if sink is not None and callable(getattr(sink, "add_result", None)):
            self._sink = sink
            return True
        return False

    def _add_result(self, result: DecodeResult, image_data: Optional[np.ndarray]) -> None:
        if image_data is None or self._sink is None:
            return
        canvas_size = tuple(self._canvas_size())
        for leaf in iter_leaves(result):
            # Sentinel leaves (no code this tick) never reach the sink
            if leaf.code_result is None or leaf.code_result.code is None:
                continue
            try:
                self._sink.add_result(image_data, canvas_size, leaf.code_result)
            except Exception:
                logger.exception("Result sink failed")

    def publish(self, result: DecodeResult | None, image_data: Optional[np.ndarray] = None):
        payload = result
        if result is not None:
            if self.transform_results:
                transform_result(result, self._offset())
            self._add_result(result, image_data)
            if isinstance(result, CompositeResult):
                payload = result.barcodes

        self._events.publish(PROCESSED, payload)
        if has_code(result):
            self._events.publish(DETECTED, payload)
        return payload
