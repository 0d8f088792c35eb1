"""
Pydantic models for API request/response validation.
"""
from typing import Any

from pydantic import BaseModel, Field


class CodeResultModel(BaseModel):
    """
    Decoded symbol text and the reader that produced it.
    """
    code: str | None = None
    format: str | None = None      # Reader symbology, e.g. "code_128"
    start: int | None = None
    end: int | None = None
    direction: int | None = None


class BarcodeModel(BaseModel):
    """
    One decoded (or searched) region, in source image pixels.
    """
    code_result: CodeResultModel | None = None
    line: list[list[float]] | None = None         # Scan line through the symbol
    box: list[list[float]] | None = None          # Four corner points
    boxes: list[list[list[float]]] | None = None  # Every region searched this frame
    angle: float | None = None


class DecodeResponse(BaseModel):
    """
    Result of decoding a single uploaded image.
    """
    codes: list[str]
    barcodes: list[BarcodeModel]


class ScannerStartRequest(BaseModel):
    """
    Pipeline overrides merged over the defaults, e.g.
    ``{"input_stream": {"type": "VideoStream", "src": "clip.mp4"}}``.
    """
    config: dict[str, Any] = Field(default_factory=dict)


class ScannerStatus(BaseModel):
    initialized: bool
    running: bool
    stopped: bool
    source_type: str | None = None
    working_size: tuple[int, int] | None = None
    top_right: tuple[int, int] = (0, 0)
    workers: list[dict[str, Any]] = Field(default_factory=list)
    single_shot_busy: bool = False
    recent: list[BarcodeModel] = Field(default_factory=list)
