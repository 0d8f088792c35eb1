"""
Barcode region locator and image constraint checks.

``check_image_constraints`` trims the source to a whole number of locator
patches and records the crop origin (the source's top-right point) that the
publisher later adds back to every result.
"""
from __future__ import annotations

import logging
import math
import re

import cv2
import numpy as np

from common.exceptions import ConstraintViolationError
from cv.buffers import FrameBuffer

logger = logging.getLogger(__name__)

PATCHES_PER_SIDE = [8, 10, 15, 20, 32, 60, 80]
PATCH_SIZE_INDEX = {"x-small": 5, "small": 4, "medium": 3, "large": 2, "x-large": 1}

_DIMENSION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(%|px)?\s*$")

# Regions smaller than this (in buffer pixels) are ignored.
MIN_REGION_AREA = 200


def _divisors(value: int) -> list[int]:
    small, large = [], []
    for i in range(1, int(math.isqrt(value)) + 1):
        if value % i == 0:
            small.append(i)
            if i != value // i:
                large.insert(0, value // i)
    return small + large


def calculate_patch_size(patch_size: str, width: int, height: int) -> tuple[int, int] | None:
    """Pick a square patch edge that evenly divides the image near the desired patch count."""
    idx = PATCH_SIZE_INDEX.get(patch_size, PATCH_SIZE_INDEX["medium"])
    nr_of_patches = PATCHES_PER_SIDE[idx]
    wide_side = max(width, height)
    desired = wide_side // nr_of_patches
    if desired <= 0:
        return None

    def find(divisors: list[int]) -> tuple[int, int] | None:
        if not divisors:
            return None
        i = 0
        found = divisors[len(divisors) // 2]
        while i < len(divisors) - 1 and divisors[i] < desired:
            i += 1
        if i > 0:
            if abs(divisors[i] - desired) > abs(divisors[i - 1] - desired):
                found = divisors[i - 1]
            else:
                found = divisors[i]
        ratio = desired / found
        upper = PATCHES_PER_SIDE[idx + 1] / PATCHES_PER_SIDE[idx]
        lower = PATCHES_PER_SIDE[idx - 1] / PATCHES_PER_SIDE[idx]
        if lower < ratio < upper:
            return found, found
        return None

    common = sorted(set(_divisors(width)) & set(_divisors(height)))
    return (
        find(common)
        or find(_divisors(wide_side))
        or find(_divisors(desired * nr_of_patches))
    )


def _parse_dimension(value: str) -> tuple[float, str]:
    match = _DIMENSION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid area dimension: {value!r}")
    return float(match.group(1)), match.group(2) or "px"


def _to_pixels(value: str, extent: int) -> float:
    amount, unit = _parse_dimension(value)
    if unit == "%":
        return math.floor(extent * amount / 100)
    return amount


def compute_image_area(width: int, height: int, area) -> tuple[int, int, int, int]:
    """Return ``(sx, sy, sw, sh)`` for an area given as per-side insets."""
    top = _to_pixels(area.top, height)
    left = _to_pixels(area.left, width)
    right = width - _to_pixels(area.right, width)
    bottom = height - _to_pixels(area.bottom, height)
    sw, sh = int(right - left), int(bottom - top)
    if sw <= 0 or sh <= 0:
        raise ConstraintViolationError(f"Area {area!r} leaves no pixels of a {width}x{height} frame")
    return int(left), int(top), sw, sh


def check_image_constraints(input_stream, locator_config) -> tuple[int, int]:
    """Crop the stream to the configured area and to whole patches.

    Updates the stream's top-right offset, canvas size and working size in
    place, and returns the patch size. Raises ConstraintViolationError when
    no patch size fits.
    """
    width, height = input_stream.width, input_stream.height
    half = 0.5 if locator_config.half_sample else 1.0

    area = getattr(input_stream.config, "area", None)
    if area is not None:
        sx, sy, sw, sh = compute_image_area(width, height, area)
        input_stream.set_top_right((sx, sy))
        input_stream.set_canvas_size((width, height))
        width, height = sw, sh

    size_x, size_y = int(width * half), int(height * half)
    patch = calculate_patch_size(locator_config.patch_size, size_x, size_y)
    if patch is None:
        raise ConstraintViolationError(
            f"Image dimensions {width}x{height} are too small for patch size '{locator_config.patch_size}'"
        )

    input_stream.width = int((size_x // patch[0]) * (1 / half) * patch[0])
    input_stream.height = int((size_y // patch[1]) * (1 / half) * patch[1])
    if input_stream.width <= 0 or input_stream.height <= 0:
        raise ConstraintViolationError(
            f"Image dimensions {width}x{height} must hold at least one {patch[0]}px patch"
        )
    logger.debug(
        "Patch size %s, working size %dx%d, top-right %s",
        patch,
        input_stream.width,
        input_stream.height,
        input_stream.get_top_right(),
    )
    return patch


class BarcodeLocator:
    """Finds candidate barcode regions in the frame buffer.

    Uses the gradient-difference approach: bars produce a strong horizontal
    (or vertical) gradient and little gradient along their length. Boxes are
    reported in frame coordinates.
    """

    def __init__(self, frame_buffer: FrameBuffer, config):
        self._buffer = frame_buffer
        self._config = config
        self._kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (21, 7))

    def locate(self) -> list[np.ndarray] | None:
        gray = self._buffer.data
        grad_x = cv2.Sobel(gray, ddepth=cv2.CV_32F, dx=1, dy=0, ksize=-1)
        grad_y = cv2.Sobel(gray, ddepth=cv2.CV_32F, dx=0, dy=1, ksize=-1)
        gradient = cv2.convertScaleAbs(cv2.subtract(grad_x, grad_y))
        blurred = cv2.blur(gradient, (9, 9))
        _, thresh = cv2.threshold(blurred, 225, 255, cv2.THRESH_BINARY)
        closed = cv2.morphologyEx(thresh, cv2.MORPH_CLOSE, self._kernel)
        closed = cv2.erode(closed, None, iterations=4)
        closed = cv2.dilate(closed, None, iterations=4)

        contours, _ = cv2.findContours(closed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        boxes = []
        for contour in sorted(contours, key=cv2.contourArea, reverse=True):
            if cv2.contourArea(contour) < MIN_REGION_AREA:
                break
            points = cv2.boxPoints(cv2.minAreaRect(contour))
            boxes.append(points.astype(np.float64) * self._buffer.scale)
        return boxes or None
