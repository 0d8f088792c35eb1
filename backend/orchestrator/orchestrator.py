"""Scan pipeline lifecycle: init, start, stop, pause and the per-frame tick."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable

import numpy as np

from common.events import DETECTED, PROCESSED, EventBus
from common.exceptions import PipelineNotInitializedError
from cv import readers
from cv.buffers import FrameBuffer, init_buffers
from cv.decoder import BarcodeDecoder
from cv.locator import BarcodeLocator, check_image_constraints
from cv.pipeline import locate_and_decode
from cv.pool import WorkerPool
from cv.publisher import ResultPublisher
from orchestrator.scheduler import FrameLoop
from orchestrator.single_shot import SingleShotDecoder
from orchestrator.types import PipelineContext, ScannerConfig, merge_config
from streaming.camera_access import CameraAccess
from streaming.frame_grabber import FrameGrabber
from streaming.input_stream import CANRECORD, create_input_stream

logger = logging.getLogger(__name__)

CONTINUOUS_SOURCES = ("LiveStream", "VideoStream")


class ScanOrchestrator:
    def __init__(
        self,
        camera: CameraAccess | None = None,
        pool: WorkerPool | None = None,
        frame_clock: Callable[[], float] | None = None,
        frame_interval: float | None = None,
    ):
        self._events = EventBus()
        self._camera = camera or CameraAccess()
        self._pool = pool or WorkerPool(on_result=self._on_worker_result)
        self._publisher = ResultPublisher(
            self._events,
            offset=self._offset,
            canvas_size=self._canvas_size,
        )
        self._frame_clock = frame_clock
        self._frame_interval = frame_interval
        self._ctx: PipelineContext | None = None
        self._loop: FrameLoop | None = None
        self._lock = threading.RLock()
        self._single_shot = SingleShotDecoder(self)

    # ---- state ----

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def publisher(self) -> ResultPublisher:
        return self._publisher

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    @property
    def context(self) -> PipelineContext | None:
        return self._ctx

    @property
    def config(self) -> ScannerConfig | None:
        return self._ctx.config if self._ctx else None

    @property
    def frame_buffer(self) -> FrameBuffer | None:
        return self._ctx.frame_buffer if self._ctx else None

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.running

    def status(self) -> dict:
        ctx = self._ctx
        stream = ctx.input_stream if ctx else None
        return {
            "initialized": bool(ctx and ctx.frame_buffer is not None),
            "running": self.running,
            "stopped": ctx.stopped.is_set() if ctx else True,
            "source_type": ctx.config.input_stream.type if ctx else None,
            "working_size": (stream.width, stream.height) if stream else None,
            "top_right": stream.get_top_right() if stream else (0, 0),
            "workers": self._pool.list_slots(),
            "single_shot_busy": self._single_shot.busy,
        }

    def _offset(self):
        ctx = self._ctx
        if ctx is None or ctx.input_stream is None:
            return (0, 0)
        return ctx.input_stream.get_top_right()

    def _canvas_size(self):
        ctx = self._ctx
        if ctx is None or ctx.input_stream is None:
            return (0, 0)
        return ctx.input_stream.get_canvas_size()

    # ---- lifecycle ----

    def init(
        self,
        config: ScannerConfig | dict | None = None,
        on_ready: Callable[[], None] | None = None,
        frame_buffer: FrameBuffer | None = None,
        image: np.ndarray | None = None,
    ) -> None:
        """Prepare a pipeline for ``config``.

        With ``frame_buffer`` the pipeline runs headless: the caller fills the
        buffer and results are published without the crop offset. Otherwise
        the configured source is opened; ``on_ready`` runs once the source can
        record and the worker pool is initialized.

        Raises AcquisitionError when the source cannot be opened and
        ConstraintViolationError when its size does not fit the locator.
        """
        with self._lock:
            if self._ctx is not None:
                self.stop()

            merged = merge_config(None, config)
            ctx = PipelineContext(config=merged)
            self._ctx = ctx

            if frame_buffer is not None:
                ctx.headless = True
                self._publisher.transform_results = False
                self._initialize_data(ctx, frame_buffer)
                logger.info("Headless pipeline initialized (%dx%d)", frame_buffer.width, frame_buffer.height)
                if on_ready:
                    on_ready()
                return

            self._publisher.transform_results = True
            stream = create_input_stream(merged.input_stream, image=image, camera=self._camera)
            ctx.input_stream = stream
            stream.add_event_listener(CANRECORD, lambda: self._can_record(ctx, on_ready), once=True)
            stream.load()

    def _initialize_data(self, ctx: PipelineContext, frame_buffer: FrameBuffer | None = None) -> None:
        ctx.frame_buffer, ctx.box_size = init_buffers(ctx.input_stream, ctx.config.locator, frame_buffer)
        if ctx.frame_grabber is not None:
            ctx.frame_grabber.attach_data(ctx.frame_buffer)
        ctx.locator = BarcodeLocator(ctx.frame_buffer, ctx.config.locator) if ctx.config.locate else None
        # Kept even with workers so the tick can decode locally if the pool empties.
        ctx.decoder = BarcodeDecoder(ctx.config.decoder, ctx.frame_buffer)

    def _can_record(self, ctx: PipelineContext, on_ready: Callable[[], None] | None) -> None:
        check_image_constraints(ctx.input_stream, ctx.config.locator)
        ctx.frame_grabber = FrameGrabber(ctx.input_stream)
        self._initialize_data(ctx)

        def ready():
            if ctx.stopped.is_set() or ctx is not self._ctx:
                logger.debug("Pipeline stopped before it became ready")
                return
            ctx.input_stream.play()
            if on_ready:
                on_ready()

        self._pool.adjust_pool(
            ctx.config.num_of_workers,
            config=ctx.config,
            frame_buffer=ctx.frame_buffer,
            on_ready=ready,
        )

    def start(self) -> None:
        with self._lock:
            ctx = self._ctx
            if ctx is None or ctx.frame_buffer is None:
                raise PipelineNotInitializedError("Call init() before start()")
            ctx.stopped.clear()

            if not ctx.headless and ctx.config.input_stream.type in CONTINUOUS_SOURCES:
                if self.running:
                    return
                self._loop = FrameLoop(
                    self._update,
                    frequency=ctx.config.frequency,
                    clock=self._frame_clock,
                    frame_interval=self._frame_interval,
                )
                self._loop.start()
                return

        FrameLoop(self._update).run_once()

    def stop(self) -> None:
        """Stop ticking, retire the workers and, for a camera, release it."""
        with self._lock:
            ctx = self._ctx
            if ctx is None:
                return
            ctx.stopped.set()
            if self._loop is not None:
                self._loop.stop()
                self._loop = None
            try:
                self._pool.adjust_pool(0)
            except Exception:
                logger.exception("Failed to shrink worker pool")
            if ctx.config.is_live and ctx.input_stream is not None and not ctx.released:
                ctx.input_stream.release()
                ctx.input_stream.clear_event_handlers()
                ctx.released = True
        logger.debug("Pipeline stopped")

    def pause(self) -> None:
        ctx, loop = self._ctx, self._loop
        if ctx is not None:
            ctx.stopped.set()
        if loop is not None:
            loop.stop()

    def close(self) -> None:
        self.stop()
        self._single_shot.shutdown(wait=False)
        self._pool.shutdown()

    # ---- frame tick ----

    def _update(self) -> None:
        ctx = self._ctx
        if ctx is None or ctx.stopped.is_set():
            return

        if ctx.headless:
            if ctx.frame_grabber is not None:
                ctx.frame_grabber.grab()
            self._locate_and_decode(ctx)
            return

        if not ctx.frame_grabber.grab():
            logger.debug("No frame available this tick")
            return
        if self._pool.dispatch(ctx.frame_buffer):
            return
        self._locate_and_decode(ctx)

    def _locate_and_decode(self, ctx: PipelineContext) -> None:
        result = locate_and_decode(
            ctx.frame_buffer,
            ctx.locator,
            ctx.decoder,
            ctx.box_size,
            locate=ctx.config.locate,
        )
        self._publisher.publish(result, ctx.frame_buffer.data)

    def _on_worker_result(self, result, image_data) -> None:
        ctx = self._ctx
        if ctx is None or ctx.stopped.is_set():
            logger.debug("Discarding worker result after stop")
            return
        self._publisher.publish(result, image_data)

    # ---- events ----

    def on_detected(self, callback: Callable[[Any], None]) -> None:
        self._events.subscribe(DETECTED, callback)

    def off_detected(self, callback: Callable[[Any], None] | None = None) -> None:
        self._events.unsubscribe(DETECTED, callback)

    def on_processed(self, callback: Callable[[Any], None]) -> None:
        self._events.subscribe(PROCESSED, callback)

    def off_processed(self, callback: Callable[[Any], None] | None = None) -> None:
        self._events.unsubscribe(PROCESSED, callback)

    # ---- readers and sinks ----

    def set_readers(self, reader_names: list[str]) -> None:
        ctx = self._ctx
        if ctx is not None and ctx.decoder is not None:
            ctx.decoder.set_readers(reader_names)
        self._pool.set_readers(reader_names)

    def register_reader(self, name: str, reader) -> None:
        readers.register_reader(name, reader)
        ctx = self._ctx
        if ctx is not None and ctx.decoder is not None:
            ctx.decoder.register_reader(name, reader)
        self._pool.register_reader(name, reader)

    def register_result_collector(self, sink) -> bool:
        return self._publisher.set_sink(sink)

    def decode_single(
        self,
        config: ScannerConfig | dict | None = None,
        callback: Callable[[Any], None] | None = None,
        image: np.ndarray | None = None,
    ) -> Future:
        """Decode one image; concurrent calls run one after another."""
        return self._single_shot.decode_once(config, callback=callback, image=image)
