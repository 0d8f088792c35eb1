"""
Camera acquisition through OpenCV.
"""
from __future__ import annotations

import logging

import cv2

from common.exceptions import AcquisitionError

logger = logging.getLogger(__name__)


class CameraAccess:
    """Opens one capture device and releases it on demand."""

    def __init__(self) -> None:
        self._cap: cv2.VideoCapture | None = None

    @property
    def capture(self) -> cv2.VideoCapture | None:
        return self._cap

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def request(self, constraints) -> cv2.VideoCapture:
        """Open the device named by ``constraints.device_id`` at the requested size."""
        self.release()
        device = constraints.device_id
        if isinstance(device, str) and device.isdigit():
            device = int(device)
        cap = cv2.VideoCapture(device)
        if not cap.isOpened():
            cap.release()
            raise AcquisitionError(f"Camera '{constraints.device_id}' is not available")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        self._cap = cap
        logger.info(
            "Camera '%s' opened at %dx%d",
            constraints.device_id,
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        return cap

    def release(self) -> None:
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None
        logger.info("Camera released")
