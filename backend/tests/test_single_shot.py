"""Tests for serialized single-image decodes."""
from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from common.exceptions import AcquisitionError, SingleShotTimeoutError
from orchestrator.single_shot import SingleShotDecoder, build_single_shot_config
from tests.fakes import FakeDecoder, code_result


class TestSingleShotConfig:
    def test_defaults(self):
        config = build_single_shot_config(None)
        assert config.input_stream.type == "ImageStream"
        assert config.input_stream.sequence is False
        assert config.input_stream.size == 800
        assert config.num_of_workers == 0
        assert config.locator.half_sample is False

    def test_top_level_src_shorthand(self):
        config = build_single_shot_config({"src": "/tmp/code.png"})
        assert config.input_stream.src == "/tmp/code.png"

    def test_caller_overrides_win(self):
        config = build_single_shot_config({"decoder": {"readers": ["ean_reader"]}, "input_stream": {"size": 640}})
        assert config.decoder.readers == ["ean_reader"]
        assert config.input_stream.size == 640
        assert config.input_stream.type == "ImageStream"

    def test_worker_count_forced_to_zero(self):
        config = build_single_shot_config({"num_of_workers": 2, "decoder": {"multiple": True}})
        assert config.num_of_workers == 0
        assert config.decoder.multiple is True


class TestDecodeSingle:
    def test_resolves_with_result_and_calls_back(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        received = []
        future = orch.decode_single({"src": "ignored.png"}, callback=received.append)
        result = future.result(timeout=5)
        assert result.code_result.code == "ABC-123"
        assert received == [result]
        assert orch.context.stopped.is_set()

    def test_in_memory_image(self, orchestrator_factory, fake_decoder):
        orch = orchestrator_factory()
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        result = orch.decode_single(image=image).result(timeout=5)
        assert result.code_result.code == "ABC-123"
        # Scaled so the long side is 800px
        assert orch.context.input_stream.real_width == 800
        assert orch.context.input_stream.real_height == 600

    def test_concurrent_requests_run_one_at_a_time(self, orchestrator_factory, fake_source, monkeypatch):
        lock = threading.Lock()
        state = {"active": 0, "max_active": 0}

        def _slow_result():
            with lock:
                state["active"] += 1
                state["max_active"] = max(state["max_active"], state["active"])
            time.sleep(0.05)
            with lock:
                state["active"] -= 1
            return code_result()

        monkeypatch.setattr("orchestrator.orchestrator.BarcodeDecoder", FakeDecoder(_slow_result))
        orch = orchestrator_factory()
        first = orch.decode_single({"src": "a.png"})
        second = orch.decode_single({"src": "b.png"})
        assert first.result(timeout=5).code_result.code == "ABC-123"
        assert second.result(timeout=5).code_result.code == "ABC-123"
        assert state["max_active"] == 1

    def test_requests_served_in_order(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()
        order = []
        futures = [
            orch.decode_single({"src": f"{i}.png"}, callback=lambda _r, i=i: order.append(i))
            for i in range(3)
        ]
        for future in futures:
            future.result(timeout=5)
        assert order == [0, 1, 2]

    def test_setup_error_fails_future_and_frees_slot(self, orchestrator_factory, fake_decoder):
        orch = orchestrator_factory()
        failing = orch.decode_single({"src": "/nonexistent/code.png"})
        with pytest.raises(AcquisitionError):
            failing.result(timeout=5)
        assert orch.status()["single_shot_busy"] is False

        image = np.zeros((100, 100, 3), dtype=np.uint8)
        assert orch.decode_single(image=image).result(timeout=5) is not None

    def test_callback_error_does_not_fail_future(self, orchestrator_factory, fake_source, fake_decoder):
        orch = orchestrator_factory()

        def _boom(_result):
            raise RuntimeError("callback failed")

        assert orch.decode_single({"src": "x.png"}, callback=_boom).result(timeout=5) is not None

    def test_decode_error_fails_future_without_timeout(self, orchestrator_factory, fake_source, monkeypatch):
        def _broken():
            raise RuntimeError("decoder crashed")

        monkeypatch.setattr("orchestrator.orchestrator.BarcodeDecoder", FakeDecoder(_broken))
        orch = orchestrator_factory()
        started = time.monotonic()
        with pytest.raises(RuntimeError, match="decoder crashed"):
            orch.decode_single({"src": "x.png"}).result(timeout=5)
        assert time.monotonic() - started < 5
        assert orch.status()["single_shot_busy"] is False
        assert orch.context.stopped.is_set()

    def test_workers_requested_still_decodes_locally(
        self, orchestrator_factory, fake_source, fake_decoder, fake_worker_start
    ):
        orch = orchestrator_factory()
        result = orch.decode_single({"src": "x.png", "num_of_workers": 3}).result(timeout=5)
        assert result.code_result.code == "ABC-123"
        assert fake_worker_start == []
        assert fake_decoder.calls == 1


class TestTimeout:
    def test_no_processed_event_times_out(self):
        class _SilentOrchestrator:
            def __init__(self):
                from common.events import EventBus

                self.events = EventBus()
                self.stopped = 0

            def init(self, config, on_ready=None, image=None):
                pass

            def start(self):
                pass

            def stop(self):
                self.stopped += 1

        orch = _SilentOrchestrator()
        decoder = SingleShotDecoder(orch, timeout=0.05)
        try:
            with pytest.raises(SingleShotTimeoutError):
                decoder.decode_once({}).result(timeout=5)
            assert decoder.busy is False
            assert orch.stopped == 1
        finally:
            decoder.shutdown()
