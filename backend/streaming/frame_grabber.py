"""Copy the current source frame into the processing buffer."""
from __future__ import annotations

import logging

import cv2
import numpy as np

from cv.buffers import FrameBuffer

logger = logging.getLogger(__name__)


class FrameGrabber:
    """Crops the source frame to the working area, converts it to gray and
    down-samples it into a frame buffer without reallocating that buffer."""

    def __init__(self, input_stream, frame_buffer: FrameBuffer | None = None):
        self._stream = input_stream
        self._buffer = frame_buffer

    def attach_data(self, frame_buffer: FrameBuffer) -> None:
        self._buffer = frame_buffer

    def _gray(self, frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            return frame
        if self._stream.config.single_channel:
            # Red channel of a BGR frame
            return np.ascontiguousarray(frame[:, :, 2])
        if frame.shape[2] == 4:
            return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

    def grab(self) -> bool:
        """Fill the attached buffer with the next frame; False when none is available."""
        if self._buffer is None:
            return False
        frame = self._stream.read()
        if frame is None:
            return False

        sx, sy = self._stream.get_top_right()
        width, height = self._stream.width, self._stream.height
        region = frame[sy:sy + height, sx:sx + width]
        if region.shape[0] != height or region.shape[1] != width:
            logger.debug(
                "Frame %s smaller than working area %dx%d at (%d, %d)",
                frame.shape,
                width,
                height,
                sx,
                sy,
            )
            return False

        gray = self._gray(region)
        target = self._buffer.data
        if gray.shape == target.shape:
            np.copyto(target, gray)
        else:
            np.copyto(target, cv2.resize(gray, (target.shape[1], target.shape[0]), interpolation=cv2.INTER_AREA))
        return True
