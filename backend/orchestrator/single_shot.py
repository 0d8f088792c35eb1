"""Serialized one-image decodes on top of the shared pipeline."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import numpy as np

from common.config.scanner import DECODE_SINGLE_IMAGE_SIZE, DECODE_SINGLE_TIMEOUT_SEC
from common.events import PROCESSED
from common.exceptions import SingleShotTimeoutError
from orchestrator.types import ScannerConfig, merge_config

logger = logging.getLogger(__name__)


def single_shot_defaults(src=None) -> dict:
    return {
        "input_stream": {
            "type": "ImageStream",
            "sequence": False,
            "size": DECODE_SINGLE_IMAGE_SIZE,
            "src": src,
        },
        "num_of_workers": 0,
        "locator": {"half_sample": False},
    }


def build_single_shot_config(config: ScannerConfig | dict | None) -> ScannerConfig:
    """Merge caller config over the one-shot defaults.

    A top-level ``src`` is accepted as shorthand for ``input_stream.src``.
    The worker pool is always zero: one image is decoded on the calling side.
    """
    if isinstance(config, ScannerConfig):
        overrides: dict = config.model_dump(exclude_unset=True)
    else:
        overrides = dict(config or {})
    src = overrides.pop("src", None)
    base = merge_config(None, single_shot_defaults(src))
    merged = merge_config(base, overrides)
    if merged.num_of_workers > 0:
        merged = merged.model_copy(update={"num_of_workers": 0})
    return merged


class SingleShotDecoder:
    """Runs ``decode_once`` requests one at a time, first come first served.

    Each request re-initializes the orchestrator with an image source, waits
    for the first ``processed`` event and stops the pipeline again.
    """

    def __init__(self, orchestrator, timeout: float = DECODE_SINGLE_TIMEOUT_SEC):
        self._orchestrator = orchestrator
        self._timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scan-single")
        self._busy = threading.Event()

    @property
    def busy(self) -> bool:
        return self._busy.is_set()

    def decode_once(
        self,
        config: ScannerConfig | dict | None = None,
        callback: Callable[[Any], None] | None = None,
        image: np.ndarray | None = None,
    ) -> Future:
        return self._executor.submit(self._run, config, callback, image)

    def _run(self, config, callback, image):
        self._busy.set()
        done = threading.Event()
        holder: dict = {}

        def on_processed(result):
            holder["result"] = result
            done.set()

        def on_ready():
            self._orchestrator.events.once(PROCESSED, on_processed)
            self._orchestrator.start()

        events = self._orchestrator.events
        try:
            merged = build_single_shot_config(config)
            self._orchestrator.init(merged, on_ready=on_ready, image=image)
            if not done.wait(self._timeout):
                raise SingleShotTimeoutError(f"No decode result within {self._timeout:.0f}s")
        except Exception:
            events.unsubscribe(PROCESSED, on_processed)
            self._busy.clear()
            self._orchestrator.stop()
            raise

        result = holder.get("result")
        if callback is not None:
            try:
                callback(result)
            except Exception:
                logger.exception("Single decode callback failed")
        self._busy.clear()
        self._orchestrator.stop()
        return result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
