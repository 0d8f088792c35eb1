"""Worker pool: dispatches frames to decode processes and drains their results."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from multiprocessing import Process, Queue
from queue import Empty
from typing import Callable, Optional

import numpy as np

from common.config.scanner import WORKER_JOIN_TIMEOUT_SEC
from cv import worker
from cv.buffers import FrameBuffer

logger = logging.getLogger(__name__)

ResultCallback = Callable[[object, Optional[np.ndarray]], None]


@dataclass
class WorkerSlot:
    """Handle for one decode worker process."""

    slot_id: int
    process: Process
    inbound: Queue
    busy: bool = False
    ready: bool = False
    snapshot: np.ndarray | None = None
    started_at: float = field(default_factory=time.monotonic)
    frames_processed: int = 0

    @property
    def is_alive(self) -> bool:
        return self.process.is_alive()

    def terminate(self, timeout: float = WORKER_JOIN_TIMEOUT_SEC):
        # Ask the worker to leave its loop before forcing it.
        try:
            self.inbound.put_nowait(None)
        except Exception:
            pass

        self.process.join(timeout=timeout)
        if self.process.is_alive():
            self.process.terminate()
            self.process.join(timeout=1)
            if self.process.is_alive():
                self.process.kill()
                self.process.join(timeout=1)

    def to_dict(self) -> dict:
        return {
            "slot_id": self.slot_id,
            "pid": self.process.pid,
            "status": "running" if self.is_alive else "stopped",
            "busy": self.busy,
            "ready": self.ready,
            "frames_processed": self.frames_processed,
            "started_at_monotonic": self.started_at,
        }


class WorkerPool:
    """Owns N decode worker processes; zero slots means decode in-process.

    Completions arrive on one shared result queue drained by a background
    thread; they are not synchronized with frame ticks.
    """

    def __init__(self, on_result: ResultCallback, drain_interval_seconds: float = 0.05):
        self._on_result = on_result
        self._drain_interval_seconds = drain_interval_seconds
        self._slots: dict[int, WorkerSlot] = {}
        self._lock = threading.Lock()
        self._resize_lock = threading.Lock()
        self._results: Queue = Queue()
        self._next_slot_id = 0
        self._pending_ready: set[int] = set()
        self._on_ready: Callable[[], None] | None = None
        self._drain_thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._slots)

    @property
    def result_queue(self) -> Queue:
        return self._results

    def list_slots(self) -> list[dict]:
        with self._lock:
            return [s.to_dict() for s in self._slots.values()]

    # ---- sizing ----

    def adjust_pool(
        self,
        target_size: int,
        config=None,
        frame_buffer: FrameBuffer | None = None,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        """Bring the pool to ``target_size`` slots, then call ``on_ready``.

        ``on_ready`` runs once every newly spawned worker reported it is
        initialized, or immediately when nothing had to be spawned.
        """
        target_size = max(0, int(target_size))
        with self._resize_lock:
            with self._lock:
                current = len(self._slots)
                removed: list[WorkerSlot] = []
                if target_size < current:
                    for slot_id in sorted(self._slots)[target_size:]:
                        removed.append(self._slots.pop(slot_id))
                        self._pending_ready.discard(slot_id)

            for slot in removed:
                slot.terminate()
                logger.info("Stopped worker slot %s", slot.slot_id)

            spawned = 0
            if target_size > current:
                if config is None or frame_buffer is None:
                    raise ValueError("config and frame_buffer are required to grow the pool")
                self._ensure_drain_thread()
                for _ in range(target_size - current):
                    self._spawn(config, frame_buffer)
                    spawned += 1

            if spawned:
                with self._lock:
                    self._on_ready = on_ready
                logger.info("Worker pool growing to %d slot(s)", target_size)
                self._maybe_ready()
            else:
                if target_size == 0:
                    with self._lock:
                        self._on_ready = None
                    self._stop_drain_thread()
                if on_ready:
                    on_ready()

    def _spawn(self, config, frame_buffer: FrameBuffer) -> WorkerSlot:
        # Held across start so the drain thread cannot see the worker's
        # first message before the slot is registered.
        with self._lock:
            slot_id = self._next_slot_id
            self._next_slot_id += 1
            process, inbound = worker.start(
                slot_id=slot_id,
                config=config,
                frame_shape=(frame_buffer.width, frame_buffer.height),
                scale=frame_buffer.scale,
                results=self._results,
            )
            slot = WorkerSlot(slot_id=slot_id, process=process, inbound=inbound)
            self._slots[slot_id] = slot
            self._pending_ready.add(slot_id)
        logger.info("Started worker slot %s with pid=%s", slot_id, process.pid)
        return slot

    def _maybe_ready(self) -> None:
        with self._lock:
            if self._pending_ready or self._on_ready is None:
                return
            callback, self._on_ready = self._on_ready, None
        callback()

    def shutdown(self) -> None:
        self.adjust_pool(0)
        self._stop_drain_thread()
        logger.info("Worker pool shutdown complete")

    # ---- frame dispatch ----

    def _reap_dead(self) -> None:
        with self._lock:
            dead = [s for s in self._slots.values() if not s.is_alive]
            for slot in dead:
                self._slots.pop(slot.slot_id, None)
                self._pending_ready.discard(slot.slot_id)
        for slot in dead:
            logger.warning("Worker slot %s died (exit=%s); removed from pool", slot.slot_id, slot.process.exitcode)

    def dispatch(self, frame_buffer: FrameBuffer) -> bool:
        """Hand a snapshot of the buffer to an idle slot.

        Returns False only when the pool is empty, meaning the caller decodes
        locally. When every slot is busy the frame is dropped.
        """
        self._reap_dead()
        with self._lock:
            if not self._slots:
                return False
            slot = next((s for s in self._slots.values() if s.ready and not s.busy), None)
            if slot is None:
                return True
            snapshot = frame_buffer.data.copy()
            slot.busy = True
            slot.snapshot = snapshot

        try:
            slot.inbound.put_nowait({"cmd": "process", "image": snapshot})
        except Exception:
            logger.exception("Dispatch to worker slot %s failed", slot.slot_id)
            with self._lock:
                slot.busy = False
                slot.snapshot = None
        return True

    # ---- live reconfiguration ----

    def _broadcast(self, message: dict) -> None:
        with self._lock:
            slots = list(self._slots.values())
        for slot in slots:
            try:
                slot.inbound.put_nowait(message)
            except Exception:
                logger.exception("Failed to reconfigure worker slot %s", slot.slot_id)

    def set_readers(self, readers: list[str]) -> None:
        self._broadcast({"cmd": "set_readers", "readers": list(readers)})

    def register_reader(self, name: str, reader) -> None:
        self._broadcast({"cmd": "register_reader", "name": name, "reader": reader})

    # ---- result draining ----

    def _ensure_drain_thread(self) -> None:
        if self._drain_thread and self._drain_thread.is_alive():
            return
        self._stop_event.clear()
        self._drain_thread = threading.Thread(target=self._drain_loop, name="scan-pool-drain", daemon=True)
        self._drain_thread.start()

    def _stop_drain_thread(self) -> None:
        self._stop_event.set()
        thread = self._drain_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5)
            self._drain_thread = None

    def _drain_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                message = self._results.get(timeout=self._drain_interval_seconds)
            except Empty:
                continue
            try:
                self._handle_message(message)
            except Exception:
                logger.exception("Failed to handle worker message")

    def _handle_message(self, message: dict) -> None:
        slot_id = message.get("slot")
        kind = message.get("type")
        with self._lock:
            slot = self._slots.get(slot_id)
            if slot is None:
                logger.debug("Discarding '%s' from retired worker slot %s", kind, slot_id)
                return
            snapshot = None
            if kind == "initialized":
                slot.ready = True
                self._pending_ready.discard(slot_id)
            elif kind in ("processed", "failed"):
                slot.busy = False
                snapshot, slot.snapshot = slot.snapshot, None
                if kind == "processed":
                    slot.frames_processed += 1

        if kind == "initialized":
            logger.debug("Worker slot %s initialized", slot_id)
            self._maybe_ready()
        elif kind == "processed":
            self._on_result(message.get("result"), snapshot)
