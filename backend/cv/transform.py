"""Map decode results from frame coordinates back to source coordinates."""
from __future__ import annotations

from typing import Sequence

import numpy as np

from cv.types import DecodeResult, iter_leaves


def move_box(box: np.ndarray, x_offset: float, y_offset: float) -> None:
    box[:, 0] += x_offset
    box[:, 1] += y_offset


def move_line(line: np.ndarray, x_offset: float, y_offset: float) -> None:
    line[0, 0] += x_offset
    line[0, 1] += y_offset
    line[1, 0] += x_offset
    line[1, 1] += y_offset


def transform_result(result: DecodeResult | None, offset: Sequence[float]) -> DecodeResult | None:
    """Shift every line and box of ``result`` by ``offset`` in place.

    Not idempotent: each call shifts again, so the publisher applies it exactly
    once per result.
    """
    x_offset, y_offset = float(offset[0]), float(offset[1])
    if result is None or (x_offset == 0 and y_offset == 0):
        return result

    for leaf in iter_leaves(result):
        if leaf.line is not None and len(leaf.line) == 2:
            move_line(leaf.line, x_offset, y_offset)
        if leaf.box is not None:
            move_box(leaf.box, x_offset, y_offset)
        if leaf.boxes:
            for box in leaf.boxes:
                move_box(box, x_offset, y_offset)
    return result
