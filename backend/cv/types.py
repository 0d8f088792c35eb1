"""
Internal data structures for the scan pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

import numpy as np


def as_points(points, count: int | None = None) -> np.ndarray:
    """Coerce a point sequence into a float (N, 2) array so it can be shifted in place."""
    arr = np.array(points, dtype=np.float64).reshape(-1, 2)
    if count is not None and len(arr) != count:
        raise ValueError(f"Expected {count} points, got {len(arr)}")
    return arr


@dataclass
class CodeResult:
    """Symbol text reported by a reader."""
    code: Optional[str]
    format: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None
    direction: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "format": self.format,
            "start": self.start,
            "end": self.end,
            "direction": self.direction,
        }


@dataclass
class BarcodeResult:
    """Leaf decode outcome for one region (or the whole frame)."""
    code_result: Optional[CodeResult] = None
    line: Optional[np.ndarray] = None     # [[x1, y1], [x2, y2]]
    box: Optional[np.ndarray] = None      # [[x, y]] * 4
    boxes: Optional[List[np.ndarray]] = None
    angle: Optional[float] = None
    pattern: Optional[List[int]] = None

    def __post_init__(self):
        if self.line is not None:
            self.line = as_points(self.line)
        if self.box is not None:
            self.box = as_points(self.box)
        if self.boxes is not None:
            self.boxes = [as_points(b) for b in self.boxes]

    def to_dict(self) -> dict:
        return {
            "code_result": self.code_result.to_dict() if self.code_result else None,
            "line": self.line.tolist() if self.line is not None else None,
            "box": self.box.tolist() if self.box is not None else None,
            "boxes": [b.tolist() for b in self.boxes] if self.boxes is not None else None,
            "angle": self.angle,
        }


@dataclass
class CompositeResult:
    """Several barcodes decoded from one frame."""
    barcodes: List[BarcodeResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"barcodes": [b.to_dict() for b in self.barcodes]}


DecodeResult = Union[BarcodeResult, CompositeResult]


def no_detection() -> BarcodeResult:
    """Sentinel for a tick that produced no code."""
    return BarcodeResult(code_result=CodeResult(code=None))


def iter_leaves(result: DecodeResult | None) -> Iterator[BarcodeResult]:
    """Walk a result depth-first, yielding every leaf."""
    if result is None:
        return
    if isinstance(result, CompositeResult):
        for child in result.barcodes:
            yield from iter_leaves(child)
        return
    yield result


def has_code(result: DecodeResult | None) -> bool:
    return any(
        leaf.code_result is not None and leaf.code_result.code is not None
        for leaf in iter_leaves(result)
    )
