"""FastAPI backend for the barcode scanner."""
from __future__ import annotations

import asyncio
import logging
import re
import threading
from collections import deque
from contextlib import asynccontextmanager

import cv2
import numpy as np
from fastapi import FastAPI, File, Form, HTTPException, UploadFile, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from redis.exceptions import RedisError
from starlette.websockets import WebSocketDisconnect

from common.config import (
    CORS_ORIGINS,
    DEFAULT_SCANNER_ID,
    MAX_UPLOAD_BYTES,
    RECENT_DETECTIONS_LIMIT,
    RESULT_SINK_REDIS_ENABLED,
    create_async_redis_client,
    detections_channel,
)
from common.config.logging_setup import configure_logging
from cv.result_sink import RedisResultSink
from cv.types import BarcodeResult, CompositeResult
from orchestrator import (
    AcquisitionError,
    ConstraintViolationError,
    ScannerError,
    ScanOrchestrator,
    SingleShotTimeoutError,
)
from schemas import DecodeResponse, ScannerStartRequest, ScannerStatus

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Barcode Scanner API",
    description="API for live barcode scanning and single image decoding",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

SCANNER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Continuous scanning pipeline
scanner: ScanOrchestrator | None = None
# Separate pipeline for uploads so a decode does not stop the live scan
image_decoder: ScanOrchestrator | None = None
result_sink: RedisResultSink | None = None

_recent: deque = deque(maxlen=RECENT_DETECTIONS_LIMIT)
_recent_lock = threading.Lock()


def serialize_result(payload) -> list[dict]:
    """Flatten a processed/detected payload into a list of barcode dicts."""
    if payload is None:
        return []
    if isinstance(payload, CompositeResult):
        payload = payload.barcodes
    if isinstance(payload, BarcodeResult):
        payload = [payload]
    return [barcode.to_dict() for barcode in payload]


def _remember_detection(payload) -> None:
    with _recent_lock:
        _recent.extend(serialize_result(payload))


@asynccontextmanager
async def lifespan(_: FastAPI):
    global scanner, image_decoder, result_sink

    configure_logging()
    app.state.redis_client = create_async_redis_client()
    scanner = ScanOrchestrator()
    scanner.on_detected(_remember_detection)
    image_decoder = ScanOrchestrator()

    if RESULT_SINK_REDIS_ENABLED:
        result_sink = RedisResultSink(DEFAULT_SCANNER_ID)
        scanner.register_result_collector(result_sink)

    yield

    await app.state.redis_client.aclose()
    if scanner:
        scanner.close()
        scanner = None
    if image_decoder:
        image_decoder.close()
        image_decoder = None
    if result_sink:
        result_sink.close()
        result_sink = None


app.router.lifespan_context = lifespan


def _require_scanner() -> ScanOrchestrator:
    if not scanner:
        raise HTTPException(status_code=503, detail="Scanner not initialized")
    return scanner


def _status(orchestrator: ScanOrchestrator) -> dict:
    with _recent_lock:
        recent = list(_recent)
    return ScannerStatus(**orchestrator.status(), recent=recent).model_dump()


@app.get("/")
def read_root():
    return {
        "status": "ok",
        "message": "Barcode Scanner API is running",
        "endpoints": {
            "decode": "/api/decode",
            "scanner": "/api/scanner",
            "scanner_start": "/api/scanner/start",
            "scanner_stop": "/api/scanner/stop",
            "scanner_pause": "/api/scanner/pause",
            "detections_ws": "/api/detections/ws/{scanner_id}",
            "health": "/health",
        },
    }


@app.get("/health")
def health_check():
    return {
        "status": "ok",
        "scanner_running": bool(scanner and scanner.running),
        "result_sink": "redis" if result_sink else None,
    }


@app.post("/api/decode", response_model=DecodeResponse)
async def decode_image(
    file: UploadFile = File(...),
    readers: str | None = Form(None),
    multiple: bool = Form(False),
    locate: bool = Form(True),
):
    """Decode barcodes from one uploaded image."""
    if not image_decoder:
        raise HTTPException(status_code=503, detail="Decoder not initialized")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No file provided")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Image too large")

    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise HTTPException(status_code=400, detail="File is not a readable image")

    config: dict = {"decoder": {"multiple": multiple}, "locate": locate}
    if readers:
        config["decoder"]["readers"] = [r.strip() for r in readers.split(",") if r.strip()]

    try:
        future = image_decoder.decode_single(config, image=image)
        payload = await asyncio.wrap_future(future)
    except SingleShotTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc))
    except (ConstraintViolationError, ValidationError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ScannerError as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    barcodes = serialize_result(payload)
    codes = [
        b["code_result"]["code"]
        for b in barcodes
        if b.get("code_result") and b["code_result"].get("code") is not None
    ]
    return {"codes": codes, "barcodes": barcodes}


@app.post("/api/scanner/start", status_code=201)
async def start_scanner(request: ScannerStartRequest):
    orchestrator = _require_scanner()
    try:
        await asyncio.to_thread(orchestrator.init, request.config, orchestrator.start)
    except AcquisitionError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except (ConstraintViolationError, ValidationError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"status": "started", **_status(orchestrator)}


@app.post("/api/scanner/stop")
async def stop_scanner():
    orchestrator = _require_scanner()
    await asyncio.to_thread(orchestrator.stop)
    return {"status": "stopped", **_status(orchestrator)}


@app.post("/api/scanner/pause")
async def pause_scanner():
    orchestrator = _require_scanner()
    orchestrator.pause()
    return {"status": "paused", **_status(orchestrator)}


@app.get("/api/scanner")
async def get_scanner():
    return _status(_require_scanner())


@app.websocket("/api/detections/ws/{scanner_id}")
async def websocket_detections(websocket: WebSocket, scanner_id: str):
    if not SCANNER_ID_PATTERN.fullmatch(scanner_id):
        await websocket.close(code=1008, reason="invalid_scanner_id")
        return

    await websocket.accept()

    channel = detections_channel(scanner_id)
    redis_client = websocket.app.state.redis_client
    pubsub = redis_client.pubsub()

    try:
        await pubsub.subscribe(channel)
    except RedisError as exc:
        logger.warning("Redis subscribe failed for channel '%s': %s", channel, exc)
        try:
            await websocket.send_json(
                {"type": "error", "message": f"Detection stream unavailable: {type(exc).__name__}"}
            )
        finally:
            await websocket.close(code=1011)
        return

    await websocket.send_json({"type": "ready", "scanner_id": scanner_id})

    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            payload = message.get("data")
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            await websocket.send_text(payload)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Detections websocket stream failed for channel '%s'", channel)
    finally:
        try:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
        except Exception:
            logger.exception("Failed to clean up pubsub for channel '%s'", channel)


@app.websocket("/api/detections/ws")
async def websocket_detections_default(websocket: WebSocket):
    await websocket_detections(websocket, DEFAULT_SCANNER_ID)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, workers=1, loop="asyncio")
