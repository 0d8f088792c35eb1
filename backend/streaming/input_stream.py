"""
Frame sources for the scan pipeline: camera, video file, and still images.

Every stream exposes the same surface: a ``canrecord`` event fired once the
source is ready, its working size (``width``/``height``, trimmed by the
constraint check), the crop origin (``get_top_right``) and the full frame size
(``get_canvas_size``).
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Tuple

import cv2
import numpy as np

from common.exceptions import AcquisitionError
from streaming.camera_access import CameraAccess

logger = logging.getLogger(__name__)

CANRECORD = "canrecord"


class InputStream:
    def __init__(self, config) -> None:
        self.config = config
        self.width = 0
        self.height = 0
        self.real_width = 0
        self.real_height = 0
        self._top_right: Tuple[int, int] = (0, 0)
        self._canvas_size: Tuple[int, int] = (0, 0)
        self._handlers: Dict[str, List[Tuple[Callable, bool]]] = {}
        self._lock = threading.Lock()
        self._paused = True
        self.ended = False

    # ---- events ----

    def add_event_listener(self, event: str, handler: Callable, once: bool = False) -> None:
        with self._lock:
            self._handlers.setdefault(event, []).append((handler, once))

    def trigger(self, event: str, *args) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, []))
            self._handlers[event] = [(h, once) for h, once in handlers if not once]
        for handler, _ in handlers:
            handler(*args)

    def clear_event_handlers(self) -> None:
        with self._lock:
            self._handlers.clear()

    # ---- geometry ----

    def _set_size(self, width: int, height: int) -> None:
        self.real_width, self.real_height = width, height
        self.width, self.height = width, height
        self._canvas_size = (width, height)

    def get_top_right(self) -> Tuple[int, int]:
        return self._top_right

    def set_top_right(self, top_right) -> None:
        self._top_right = (int(top_right[0]), int(top_right[1]))

    def get_canvas_size(self) -> Tuple[int, int]:
        return self._canvas_size

    def set_canvas_size(self, size) -> None:
        self._canvas_size = (int(size[0]), int(size[1]))

    # ---- playback ----

    @property
    def paused(self) -> bool:
        return self._paused

    def load(self) -> None:
        """Open the source, then fire ``canrecord``."""
        raise NotImplementedError

    def play(self) -> None:
        self._paused = False

    def pause(self) -> None:
        self._paused = True

    def read(self) -> np.ndarray | None:
        raise NotImplementedError

    def release(self) -> None:
        pass


class VideoStream(InputStream):
    """Video file or URL read through ``cv2.VideoCapture``."""

    def __init__(self, config) -> None:
        super().__init__(config)
        self._cap: cv2.VideoCapture | None = None

    def _open(self) -> cv2.VideoCapture:
        src = self.config.src
        if not src or not isinstance(src, str):
            raise AcquisitionError("VideoStream requires a single 'src'")
        cap = cv2.VideoCapture(src)
        if not cap.isOpened():
            cap.release()
            raise AcquisitionError(f"Failed to open video source: {src}")
        return cap

    def load(self) -> None:
        self._cap = self._open()
        self._set_size(
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        logger.info("Video source ready at %dx%d", self.real_width, self.real_height)
        self.trigger(CANRECORD)

    def read(self) -> np.ndarray | None:
        if self._cap is None or self._paused:
            return None
        ret, frame = self._cap.read()
        if not ret:
            self.ended = True
            return None
        return frame

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class LiveStream(VideoStream):
    """Camera stream; acquisition goes through CameraAccess."""

    def __init__(self, config, camera: CameraAccess | None = None) -> None:
        super().__init__(config)
        self.camera = camera or CameraAccess()

    def _open(self) -> cv2.VideoCapture:
        return self.camera.request(self.config.constraints)

    def release(self) -> None:
        self.camera.release()
        self._cap = None


class ImageStream(InputStream):
    """One still image, or a sequence of them, optionally scaled to ``size``."""

    def __init__(self, config, images: List[np.ndarray] | None = None) -> None:
        super().__init__(config)
        self._images: List[np.ndarray] = list(images or [])
        self._index = 0

    def _paths(self) -> List[str]:
        src = self.config.src
        if src is None:
            return []
        if isinstance(src, str):
            path = Path(src)
            if self.config.sequence and path.is_dir():
                return sorted(str(p) for p in path.iterdir() if p.is_file())
            return [src]
        return list(src) if self.config.sequence else list(src[:1])

    def _scaled(self, image: np.ndarray) -> np.ndarray:
        size = self.config.size
        if not size:
            return image
        height, width = image.shape[:2]
        if width > height:
            new_w, new_h = size, int(height / width * size)
        else:
            new_w, new_h = int(width / height * size), size
        if (new_w, new_h) == (width, height):
            return image
        return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)

    def load(self) -> None:
        if not self._images:
            for path in self._paths():
                image = cv2.imread(path, cv2.IMREAD_COLOR)
                if image is None:
                    raise AcquisitionError(f"Failed to load image: {path}")
                self._images.append(image)
        if not self._images:
            raise AcquisitionError("ImageStream has no image to read")

        self._images = [self._scaled(img) for img in self._images]
        height, width = self._images[0].shape[:2]
        self._set_size(width, height)
        self._index = 0
        self.ended = False
        logger.info("Image source ready: %d image(s) at %dx%d", len(self._images), width, height)
        self.trigger(CANRECORD)

    def read(self) -> np.ndarray | None:
        if self._index >= len(self._images):
            self.ended = True
            return None
        frame = self._images[self._index]
        self._index += 1
        return frame

    def release(self) -> None:
        self._images = []


def create_input_stream(config, image: np.ndarray | None = None, camera: CameraAccess | None = None) -> InputStream:
    """Build the stream named by ``config.type``; ``image`` feeds an ImageStream directly."""
    if config.type == "LiveStream":
        return LiveStream(config, camera=camera)
    if config.type == "VideoStream":
        return VideoStream(config)
    return ImageStream(config, images=[image] if image is not None else None)
