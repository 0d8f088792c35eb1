"""Barcode locating and decoding: frame buffers, locator, readers, worker pool."""

import os

# VideoStream sources go through OpenCV's FFmpeg backend; keep its chatter down.
os.environ.setdefault("OPENCV_FFMPEG_LOGLEVEL", "error")
