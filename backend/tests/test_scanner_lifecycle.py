"""Tests for ScanOrchestrator lifecycle: init, start, stop, pause, and the frame tick."""
from __future__ import annotations

import pytest

from common.exceptions import (
    AcquisitionError,
    ConstraintViolationError,
    PipelineNotInitializedError,
)
from cv.buffers import FrameBuffer
from cv.readers import BarcodeReader
from cv.result_sink import ResultCollector
from cv.types import CodeResult
from tests.fakes import code_result, wait_for

IMAGE_CONFIG = {"input_stream": {"type": "ImageStream"}}


def _recorders(orch) -> tuple[list, list]:
    processed, detected = [], []
    orch.on_processed(processed.append)
    orch.on_detected(detected.append)
    return processed, detected


class PluginReader(BarcodeReader):
    FORMAT = "plugin"

    def decode(self, image):
        return []


# ---------- Init ----------

class TestInit:
    def test_on_ready_called_and_source_played(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        ready = []
        orch.init(IMAGE_CONFIG, on_ready=lambda: ready.append(True))
        assert ready == [True]
        stream = fake_source["created"][0]
        assert not stream.paused
        assert orch.status()["initialized"] is True

    def test_800x600_half_sample_buffer(self, orchestrator_factory, fake_source, fake_decoder):
        fake_source.update(width=800, height=600, top_right=(50, 20))
        orch = orchestrator_factory()
        orch.init(IMAGE_CONFIG)
        assert orch.frame_buffer.size == (400, 300)
        assert orch.frame_buffer.scale == 2.0

    def test_acquisition_error_propagates(self, orchestrator_factory):
        orch = orchestrator_factory()
        ready = []
        with pytest.raises(AcquisitionError):
            orch.init(
                {"input_stream": {"type": "VideoStream", "src": "/nonexistent/clip.mp4"}},
                on_ready=lambda: ready.append(True),
            )
        assert ready == []

    def test_constraint_violation_propagates(self, orchestrator_factory, fake_source, fake_decoder):
        fake_source.update(width=4, height=4)
        orch = orchestrator_factory()
        with pytest.raises(ConstraintViolationError):
            orch.init(IMAGE_CONFIG)

    def test_invalid_config_rejected(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        with pytest.raises(ValueError):
            orch.init({"num_of_workers": -1})

    def test_headless_uses_supplied_buffer(self, orchestrator_factory, fake_decoder):
        orch = orchestrator_factory()
        buffer = FrameBuffer.allocate(64, 48)
        ready = []
        orch.init(IMAGE_CONFIG, on_ready=lambda: ready.append(True), frame_buffer=buffer)
        assert ready == [True]
        assert orch.frame_buffer is buffer

    def test_start_before_init_raises(self, orchestrator_factory):
        with pytest.raises(PipelineNotInitializedError):
            orchestrator_factory().start()


# ---------- Local decoding ----------

class TestLocalDecode:
    def test_zero_workers_decodes_synchronously(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        processed, detected = _recorders(orch)
        orch.init(IMAGE_CONFIG)
        orch.start()
        assert len(processed) == 1
        assert len(detected) == 1
        assert fake_decoder.calls == 1
        assert orch.pool.dispatch(orch.frame_buffer) is False

    def test_results_shifted_by_crop_origin(self, orchestrator_factory, fake_source, fake_decoder):
        fake_source.update(width=800, height=600, top_right=(50, 20))
        orch = orchestrator_factory()
        _, detected = _recorders(orch)
        orch.init(IMAGE_CONFIG)
        orch.start()
        result = detected[0]
        assert result.box.tolist() == [[60, 30], [60, 50], [160, 50], [160, 30]]
        assert result.line.tolist() == [[60, 40], [160, 40]]

    def test_no_code_is_processed_not_detected(self, orchestrator_factory, fake_source, monkeypatch):
        from tests.fakes import FakeDecoder

        monkeypatch.setattr("orchestrator.orchestrator.BarcodeDecoder", FakeDecoder(lambda: None))
        orch = orchestrator_factory()
        processed, detected = _recorders(orch)
        orch.init(IMAGE_CONFIG)
        orch.start()
        assert len(processed) == 1
        assert processed[0].code_result.code is None
        assert detected == []

    def test_no_frame_skips_tick(self, orchestrator_factory, fake_source, fake_decoder):
        fake_source.update(frames=0)
        orch = orchestrator_factory()
        processed, _ = _recorders(orch)
        orch.init(IMAGE_CONFIG)
        orch.start()
        assert processed == []
        assert fake_decoder.calls == 0

    def test_headless_results_are_not_shifted(self, orchestrator_factory, fake_decoder):
        orch = orchestrator_factory()
        _, detected = _recorders(orch)
        orch.init(IMAGE_CONFIG, frame_buffer=FrameBuffer.allocate(64, 48))
        orch.start()
        assert detected[0].box[0].tolist() == [10, 10]

    def test_locate_disabled_searches_whole_frame(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        processed, _ = _recorders(orch)
        orch.init({**IMAGE_CONFIG, "locate": False})
        orch.start()
        assert orch.context.locator is None
        assert processed[0].boxes[0].tolist() == [[0, 0], [0, 600], [800, 600], [800, 0]]

    def test_result_collector_receives_codes(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        collector = ResultCollector(capacity=5)
        assert orch.register_result_collector(collector) is True
        assert orch.register_result_collector(object()) is False
        orch.init(IMAGE_CONFIG)
        orch.start()
        results = collector.get_results()
        assert len(results) == 1
        assert isinstance(results[0]["code_result"], CodeResult)


# ---------- Worker decoding ----------

class TestWorkerDecode:
    def _init_with_workers(self, orch, count: int = 2):
        ready = []
        orch.init({**IMAGE_CONFIG, "num_of_workers": count}, on_ready=lambda: ready.append(True))
        assert wait_for(lambda: ready == [True])

    def test_dispatch_skips_local_decode(
        self, orchestrator_factory, fake_source, fake_decoder, fake_worker_start
    ):
        orch = orchestrator_factory()
        processed, _ = _recorders(orch)
        self._init_with_workers(orch)
        orch.start()
        assert fake_decoder.calls == 0
        assert processed == []
        assert fake_worker_start[0]["inbound"].get_nowait()["cmd"] == "process"

    def test_worker_result_published_once_with_offset(
        self, orchestrator_factory, fake_source, fake_decoder, fake_worker_start
    ):
        fake_source.update(top_right=(50, 20))
        orch = orchestrator_factory()
        processed, detected = _recorders(orch)
        self._init_with_workers(orch, count=1)
        orch.start()
        orch.pool.result_queue.put({"type": "processed", "slot": 0, "result": code_result()})
        assert wait_for(lambda: len(detected) == 1)
        assert len(processed) == 1
        assert detected[0].box[0].tolist() == [60, 30]

    def test_late_results_discarded_after_stop(
        self, orchestrator_factory, fake_source, fake_decoder, fake_worker_start
    ):
        orch = orchestrator_factory()
        processed, _ = _recorders(orch)
        self._init_with_workers(orch, count=1)
        orch.start()
        orch.stop()
        orch._on_worker_result(code_result(), None)
        assert processed == []

    def test_stop_retires_workers(self, orchestrator_factory, fake_source, fake_decoder, fake_worker_start):
        orch = orchestrator_factory()
        self._init_with_workers(orch)
        orch.stop()
        assert orch.pool.size == 0
        assert all(not w["process"].is_alive() for w in fake_worker_start)


# ---------- Continuous mode ----------

class TestContinuous:
    def _live(self, orchestrator_factory):
        return orchestrator_factory(frame_interval=0.001)

    def test_live_stream_ticks_until_stopped(self, orchestrator_factory, fake_source, fake_decoder):
        orch = self._live(orchestrator_factory)
        processed, _ = _recorders(orch)
        orch.init({"frequency": 1000})
        orch.start()
        assert wait_for(lambda: len(processed) >= 3)
        assert orch.running
        orch.stop()
        assert not orch.running
        count = len(processed)
        assert wait_for(lambda: len(processed) == count, timeout=0.05)

    def test_stop_is_idempotent(self, orchestrator_factory, fake_source, fake_decoder):
        orch = self._live(orchestrator_factory)
        orch.init({"frequency": 1000})
        orch.start()
        orch.stop()
        orch.stop()
        stream = fake_source["created"][0]
        assert stream.released == 1
        assert orch.status()["stopped"] is True

    def test_stop_before_init(self, orchestrator_factory):
        orchestrator_factory().stop()

    def test_image_stream_not_released_on_stop(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        orch.init(IMAGE_CONFIG)
        orch.stop()
        assert fake_source["created"][0].released == 0

    def test_pause_then_resume(self, orchestrator_factory, fake_source, fake_decoder):
        orch = self._live(orchestrator_factory)
        processed, _ = _recorders(orch)
        orch.init({"frequency": 1000})
        orch.start()
        assert wait_for(lambda: len(processed) >= 1)
        orch.pause()
        assert wait_for(lambda: not orch.running)
        assert fake_source["created"][0].released == 0
        paused_at = len(processed)
        orch.start()
        assert wait_for(lambda: len(processed) > paused_at)
        orch.stop()

    def test_detected_subscriber_can_stop_pipeline(self, orchestrator_factory, fake_source, fake_decoder):
        orch = self._live(orchestrator_factory)
        detected = []

        def _on_detected(result):
            detected.append(result)
            orch.stop()

        orch.on_detected(_on_detected)
        orch.init({"frequency": 1000})
        orch.start()
        assert wait_for(lambda: not orch.running)
        assert len(detected) == 1

    def test_reinit_stops_previous_pipeline(self, orchestrator_factory, fake_source, fake_decoder):
        orch = self._live(orchestrator_factory)
        orch.init({"frequency": 1000})
        orch.start()
        orch.init(IMAGE_CONFIG)
        assert not orch.running
        assert fake_source["created"][0].released == 1


# ---------- Events and readers ----------

class TestEventSurface:
    def test_off_processed(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        processed = []
        orch.on_processed(processed.append)
        orch.off_processed(processed.append)
        orch.init(IMAGE_CONFIG)
        orch.start()
        assert processed == []

    def test_off_detected_without_callback_clears_topic(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        detected = []
        orch.on_detected(detected.append)
        orch.off_detected()
        orch.init(IMAGE_CONFIG)
        orch.start()
        assert detected == []

    def test_set_readers_reaches_decoder(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        orch.init(IMAGE_CONFIG)
        orch.set_readers(["ean_reader", "qr_reader"])
        assert fake_decoder.readers == ["ean_reader", "qr_reader"]

    def test_register_reader_reaches_decoder(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        orch.init(IMAGE_CONFIG)
        orch.register_reader("plugin_reader", PluginReader)
        assert fake_decoder.registered == {"plugin_reader": PluginReader}
