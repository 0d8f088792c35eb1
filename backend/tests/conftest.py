"""Shared test fixtures for backend tests.

Provides pipeline fixtures (fake workers, fake sources, fake decoders) so
tests run without spawning decode processes, opening a camera, or needing
real barcodes in the frames.
"""
from __future__ import annotations

from queue import Queue

import pytest
from fastapi.testclient import TestClient

from common.config import create_redis_client


# ---------- Worker fixtures ----------

@pytest.fixture()
def fake_worker_start(monkeypatch):
    """Patch worker.start to return FakeProcess + Queue without spawning.

    Each fake worker reports itself initialized right away, as a real worker
    does once its decoder is built.
    """
    from tests.fakes import FakeProcess

    started: list[dict] = []

    def _fake_start(slot_id, config, frame_shape, scale, results):
        proc = FakeProcess()
        inbound: Queue = Queue()
        started.append(
            {"slot_id": slot_id, "process": proc, "inbound": inbound, "frame_shape": frame_shape, "scale": scale}
        )
        results.put({"type": "initialized", "slot": slot_id})
        return proc, inbound

    monkeypatch.setattr("cv.pool.worker.start", _fake_start)
    return started


# ---------- Pipeline fixtures ----------

@pytest.fixture()
def fake_source(monkeypatch):
    """Route every input stream the orchestrator creates to a FakeInputStream.

    Returns a dict whose keys are passed to FakeInputStream; tests adjust it
    before calling ``init``. The created streams are collected in ``created``.
    """
    from tests.fakes import FakeInputStream

    options: dict = {"width": 800, "height": 600, "top_right": (0, 0), "frames": None}
    created: list[FakeInputStream] = []

    def _create(config, image=None, camera=None):
        kwargs = {k: v for k, v in options.items() if k != "created"}
        stream = FakeInputStream(**kwargs)
        created.append(stream)
        return stream

    options["created"] = created
    monkeypatch.setattr("orchestrator.orchestrator.create_input_stream", _create)
    return options


@pytest.fixture()
def fake_decoder(monkeypatch):
    """Replace BarcodeDecoder in the orchestrator with a canned-result FakeDecoder."""
    from tests.fakes import FakeDecoder

    decoder = FakeDecoder()
    monkeypatch.setattr("orchestrator.orchestrator.BarcodeDecoder", decoder)
    return decoder


@pytest.fixture()
def orchestrator_factory():
    """Create a ScanOrchestrator; all created orchestrators are closed on teardown."""
    from orchestrator import ScanOrchestrator

    created: list[ScanOrchestrator] = []

    def _factory(**kwargs) -> ScanOrchestrator:
        orch = ScanOrchestrator(**kwargs)
        created.append(orch)
        return orch

    yield _factory

    for orch in created:
        orch.close()


# ---------- API fixtures ----------

@pytest.fixture()
def app_client():
    """TestClient for the full api.app."""
    import api

    with TestClient(api.app) as c:
        yield c


@pytest.fixture
def redis_available():
    client = create_redis_client()
    try:
        client.ping()
    except Exception as exc:
        pytest.skip(f"Redis unavailable for integration tests: {exc}")
    finally:
        client.close()
