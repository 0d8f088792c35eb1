"""Decode worker process: owns its own buffer, locator and decoder."""
from __future__ import annotations

import logging
from multiprocessing import Process, Queue

from common.config.logging_setup import configure_logging
from cv import readers
from cv.buffers import FrameBuffer, init_buffers
from cv.decoder import BarcodeDecoder
from cv.locator import BarcodeLocator
from cv.pipeline import locate_and_decode

logger = logging.getLogger(__name__)


def run(
    slot_id: int,
    config,
    frame_shape: tuple[int, int],
    scale: float,
    inbound: Queue,
    results: Queue,
):
    configure_logging()
    width, height = frame_shape
    frame_buffer = FrameBuffer.allocate(width, height, scale=scale)
    _, box_size = init_buffers(None, config.locator, frame_buffer)
    locator = BarcodeLocator(frame_buffer, config.locator)
    decoder = BarcodeDecoder(config.decoder, frame_buffer)

    results.put({"type": "initialized", "slot": slot_id})
    logger.info("[slot %s] Worker ready (%dx%d)", slot_id, width, height)

    while True:
        message = inbound.get()
        if message is None:
            break

        cmd = message.get("cmd")
        if cmd == "process":
            frame_buffer.write(message["image"])
            try:
                result = locate_and_decode(frame_buffer, locator, decoder, box_size, locate=config.locate)
            except Exception:
                logger.exception("[slot %s] Decode failed", slot_id)
                results.put({"type": "failed", "slot": slot_id})
                continue
            results.put({"type": "processed", "slot": slot_id, "result": result})
        elif cmd == "set_readers":
            decoder.set_readers(message["readers"])
        elif cmd == "register_reader":
            readers.register_reader(message["name"], message["reader"])
            decoder.register_reader(message["name"], message["reader"])
        else:
            logger.warning("[slot %s] Unknown command %r", slot_id, cmd)

    logger.info("[slot %s] Worker stopped", slot_id)


def start(
    slot_id: int,
    config,
    frame_shape: tuple[int, int],
    scale: float,
    results: Queue,
) -> tuple[Process, Queue]:
    inbound: Queue = Queue()
    process = Process(
        target=run,
        args=(slot_id, config, frame_shape, scale, inbound, results),
        name=f"scan-worker-{slot_id}",
        daemon=True,
    )
    process.start()
    return process, inbound
