"""
Locate + decode step shared by the control thread and worker processes.
"""
from __future__ import annotations

from typing import List

import numpy as np

from cv.types import BarcodeResult, DecodeResult, no_detection


def get_bounding_boxes(locator, box_size: np.ndarray, locate: bool) -> List[np.ndarray] | None:
    if locate:
        return locator.locate() if locator is not None else None
    return [box_size.copy()]


def locate_and_decode(frame_buffer, locator, decoder, box_size: np.ndarray, locate: bool = True) -> DecodeResult:
    """Run one decode pass over the current buffer contents.

    Returns the decode result, an empty result carrying the searched boxes when
    regions were found but nothing decoded, or the no-detection sentinel.
    """
    boxes = get_bounding_boxes(locator, box_size, locate)
    if boxes:
        result = decoder.decode_from_bounding_boxes(boxes) or BarcodeResult()
        if isinstance(result, BarcodeResult):
            result.boxes = [np.array(b, dtype=np.float64) for b in boxes]
        return result

    result = decoder.decode_from_image(frame_buffer)
    return result if result is not None else no_detection()
