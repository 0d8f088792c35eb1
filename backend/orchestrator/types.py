"""Types for scan pipeline configuration and per-pipeline state."""
from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

InputStreamType = Literal["LiveStream", "VideoStream", "ImageStream"]
PatchSize = Literal["x-small", "small", "medium", "large", "x-large"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class CameraConstraints(_Frozen):
    width: int = Field(640, gt=0)
    height: int = Field(480, gt=0)
    device_id: int | str = 0


class AreaConfig(_Frozen):
    """Crop applied to every frame, as CSS-like percentages per side."""

    top: str = "0%"
    right: str = "0%"
    bottom: str = "0%"
    left: str = "0%"


class InputStreamConfig(_Frozen):
    name: str = "Live"
    type: InputStreamType = "LiveStream"
    src: str | list[str] | None = None
    constraints: CameraConstraints = CameraConstraints()
    area: AreaConfig = AreaConfig()
    # Display surface name; the headless pipeline carries it for API consumers.
    target: str | None = None
    # Longest side, in pixels, that static images are scaled to.
    size: int | None = Field(None, gt=0)
    sequence: bool = False
    single_channel: bool = False


class LocatorConfig(_Frozen):
    half_sample: bool = True
    patch_size: PatchSize = "medium"


class DecoderConfig(_Frozen):
    readers: list[str] = Field(default_factory=lambda: ["code_128_reader"])
    multiple: bool = False


class ScannerConfig(_Frozen):
    """Complete pipeline configuration, read-only once merged."""

    input_stream: InputStreamConfig = InputStreamConfig()
    locator: LocatorConfig = LocatorConfig()
    decoder: DecoderConfig = DecoderConfig()
    num_of_workers: int = Field(0, ge=0)
    frequency: float | None = Field(None, gt=0)
    locate: bool = True

    @property
    def is_live(self) -> bool:
        return self.input_stream.type == "LiveStream"


def _deep_merge(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_config(
    base: ScannerConfig | dict | None = None,
    overrides: ScannerConfig | dict | None = None,
) -> ScannerConfig:
    """Deep-merge caller overrides over ``base`` (defaults when omitted)."""
    if base is None:
        base = ScannerConfig()
    base_dict = base.model_dump() if isinstance(base, ScannerConfig) else dict(base)
    if isinstance(overrides, ScannerConfig):
        overrides = overrides.model_dump(exclude_unset=True)
    return ScannerConfig.model_validate(_deep_merge(base_dict, overrides or {}))


@dataclass
class PipelineContext:
    """Mutable state of one running pipeline, owned by the orchestrator."""

    config: ScannerConfig
    input_stream: Any = None
    frame_grabber: Any = None
    frame_buffer: Any = None
    box_size: np.ndarray | None = None
    locator: Any = None
    decoder: Any = None
    headless: bool = False
    released: bool = False
    stopped: threading.Event = field(default_factory=threading.Event)
