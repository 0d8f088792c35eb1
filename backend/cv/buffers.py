"""
Reusable grayscale frame buffer sized to the processing resolution.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class FrameBuffer:
    """Single grayscale buffer overwritten in place every tick.

    ``scale`` is the number of frame pixels per buffer pixel (2.0 when
    half-sampling). Callers must copy what they need; the contents change on
    the next grab.
    """
    data: np.ndarray
    scale: float = 1.0

    @classmethod
    def allocate(cls, width: int, height: int, scale: float = 1.0) -> "FrameBuffer":
        return cls(data=np.zeros((height, width), dtype=np.uint8), scale=scale)

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def frame_size(self) -> tuple[float, float]:
        """Size of the region this buffer samples, in frame coordinates."""
        return self.width * self.scale, self.height * self.scale

    def write(self, image: np.ndarray) -> None:
        """Overwrite the buffer contents without reallocating."""
        np.copyto(self.data, image, casting="unsafe")


def processing_size(width: int, height: int, half_sample: bool) -> tuple[int, int]:
    factor = 0.5 if half_sample else 1.0
    return int(width * factor), int(height * factor)


def default_box(frame_width: float, frame_height: float) -> np.ndarray:
    """Bounding box covering the whole frame, used when locating is disabled."""
    return np.array(
        [
            [0.0, 0.0],
            [0.0, frame_height],
            [frame_width, frame_height],
            [frame_width, 0.0],
        ],
        dtype=np.float64,
    )


def init_buffers(source, locator_config, frame_buffer: FrameBuffer | None = None) -> tuple[FrameBuffer, np.ndarray]:
    """Allocate the processing buffer for ``source`` and derive the default box.

    A caller-supplied buffer (headless mode) is used as-is.
    """
    if frame_buffer is None:
        half_sample = bool(getattr(locator_config, "half_sample", False))
        width, height = processing_size(source.width, source.height, half_sample)
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid processing size {width}x{height}")
        frame_buffer = FrameBuffer.allocate(width, height, scale=2.0 if half_sample else 1.0)
        logger.debug(
            "Allocated %dx%d frame buffer for %dx%d source",
            width,
            height,
            source.width,
            source.height,
        )

    box_size = default_box(*frame_buffer.frame_size)
    return frame_buffer, box_size
