"""
Barcode decoder over the shared frame buffer.

Regions come in as frame-coordinate boxes; the decoder samples the matching
buffer pixels and reports lines and boxes back in frame coordinates.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Type

import cv2
import numpy as np

from cv import readers as reader_registry
from cv.buffers import FrameBuffer
from cv.readers import BarcodeReader, ReaderHit
from cv.types import BarcodeResult, CodeResult, CompositeResult, DecodeResult

logger = logging.getLogger(__name__)

# Padding around located regions, as a fraction of the region size
REGION_PADDING = 0.1


def _line_from_polygon(polygon: np.ndarray) -> np.ndarray:
    """Horizontal scan line through the middle of the symbol."""
    x_min, y_min = polygon.min(axis=0)
    x_max, y_max = polygon.max(axis=0)
    mid_y = (y_min + y_max) / 2.0
    return np.array([[x_min, mid_y], [x_max, mid_y]], dtype=np.float64)


def _box_from_polygon(polygon: np.ndarray) -> np.ndarray:
    rect = cv2.minAreaRect(polygon.astype(np.float32))
    return cv2.boxPoints(rect).astype(np.float64)


class BarcodeDecoder:
    def __init__(self, config, frame_buffer: FrameBuffer):
        self._config = config
        self._buffer = frame_buffer
        self._reader_names: List[str] = list(config.readers)
        self._extra: Dict[str, Type[BarcodeReader]] = {}
        self._readers = reader_registry.build_readers(self._reader_names, self._extra)

    @property
    def reader_names(self) -> List[str]:
        return list(self._reader_names)

    def set_readers(self, readers: List[str]) -> None:
        self._reader_names = list(readers)
        self._readers = reader_registry.build_readers(self._reader_names, self._extra)
        logger.debug("Decoder readers set to %s", self._reader_names)

    def register_reader(self, name: str, reader: Type[BarcodeReader]) -> None:
        self._extra[name] = reader
        if name not in self._reader_names:
            self._reader_names.append(name)
        self._readers = reader_registry.build_readers(self._reader_names, self._extra)

    def _run_readers(self, image: np.ndarray) -> List[ReaderHit]:
        hits: List[ReaderHit] = []
        for reader in self._readers:
            try:
                hits.extend(reader.decode(image))
            except Exception:
                logger.exception("Reader %s failed", type(reader).__name__)
        return hits

    def _leaf(self, hit: ReaderHit, offset: np.ndarray, box: np.ndarray | None = None) -> BarcodeResult:
        polygon = (hit.polygon + offset) * self._buffer.scale
        return BarcodeResult(
            code_result=CodeResult(code=hit.code, format=hit.format),
            line=_line_from_polygon(polygon),
            box=box.copy() if box is not None else _box_from_polygon(polygon),
        )

    def decode_from_bounding_boxes(self, boxes: List[np.ndarray]) -> DecodeResult | None:
        results: List[BarcodeResult] = []
        data = self._buffer.data
        scale = self._buffer.scale
        height, width = data.shape[:2]

        for box in boxes:
            pts = np.asarray(box, dtype=np.float64) / scale
            x_min, y_min = pts.min(axis=0)
            x_max, y_max = pts.max(axis=0)
            pad_x = (x_max - x_min) * REGION_PADDING
            pad_y = (y_max - y_min) * REGION_PADDING
            x0 = int(max(0, np.floor(x_min - pad_x)))
            y0 = int(max(0, np.floor(y_min - pad_y)))
            x1 = int(min(width, np.ceil(x_max + pad_x)))
            y1 = int(min(height, np.ceil(y_max + pad_y)))
            if x1 <= x0 or y1 <= y0:
                continue

            hits = self._run_readers(data[y0:y1, x0:x1])
            if not hits:
                continue
            leaf = self._leaf(hits[0], np.array([x0, y0], dtype=np.float64), box=np.asarray(box, dtype=np.float64))
            if not self._config.multiple:
                return leaf
            results.append(leaf)

        if self._config.multiple and results:
            return CompositeResult(barcodes=results)
        return None

    def decode_from_image(self, frame_buffer: FrameBuffer | None = None) -> DecodeResult | None:
        buffer = frame_buffer or self._buffer
        hits = self._run_readers(buffer.data)
        if not hits:
            return None
        origin = np.zeros(2, dtype=np.float64)
        if self._config.multiple:
            return CompositeResult(barcodes=[self._leaf(hit, origin) for hit in hits])
        return self._leaf(hits[0], origin)
