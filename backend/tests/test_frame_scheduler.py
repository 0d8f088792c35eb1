"""Tests for the fixed-cadence frame loop."""
from __future__ import annotations

import threading

import pytest

from orchestrator.scheduler import FrameCadence, FrameLoop
from tests.fakes import wait_for


class TestFrameCadence:
    def test_first_timestamp_fires(self):
        assert FrameCadence(60).should_fire(1234.0) is True

    def test_60hz_over_one_second_of_10ms_clock(self):
        cadence = FrameCadence(60)
        fired = sum(cadence.should_fire(t) for t in range(0, 1000, 10))
        assert 59 <= fired <= 61

    def test_default_frequency(self):
        cadence = FrameCadence(None)
        assert cadence.frequency == 60
        assert abs(cadence.period_ms - 1000 / 60) < 1e-9

    def test_no_drift_after_late_tick(self):
        cadence = FrameCadence(10)
        assert cadence.should_fire(0)
        # 150ms late: the missed deadline is caught up on the 100ms grid
        assert cadence.should_fire(250)
        assert cadence.should_fire(250)
        assert not cadence.should_fire(250)
        assert cadence.should_fire(300)

    def test_reset_restarts_from_next_timestamp(self):
        cadence = FrameCadence(10)
        cadence.should_fire(0)
        cadence.reset()
        assert cadence.should_fire(5)


class TestFrameLoop:
    def test_run_once_ticks_on_caller_thread(self):
        threads = []
        FrameLoop(lambda: threads.append(threading.current_thread())).run_once()
        assert threads == [threading.current_thread()]

    def test_run_once_raises_tick_errors(self):
        def _boom():
            raise RuntimeError("tick failed")

        with pytest.raises(RuntimeError, match="tick failed"):
            FrameLoop(_boom).run_once()

    def test_continuous_loop_ticks_until_stopped(self):
        ticks = []
        now = {"t": 0.0}

        def _clock():
            now["t"] += 10.0
            return now["t"]

        loop = FrameLoop(lambda: ticks.append(now["t"]), frequency=50, clock=_clock, frame_interval=0.001)
        loop.start()
        try:
            assert wait_for(lambda: len(ticks) >= 5)
            assert loop.running
        finally:
            loop.stop()
        count = len(ticks)
        assert not loop.running
        assert wait_for(lambda: len(ticks) == count, timeout=0.1)

    def test_cadence_gates_clock_reads(self):
        ticks = []
        now = {"t": 0.0}

        def _clock():
            now["t"] += 10.0
            return now["t"]

        loop = FrameLoop(lambda: ticks.append(now["t"]), frequency=50, clock=_clock, frame_interval=0.001)
        loop.start()
        try:
            assert wait_for(lambda: len(ticks) >= 4)
        finally:
            loop.stop()
        # 50Hz is a 20ms period over a 10ms clock: every other reading ticks
        assert all(b - a == 20.0 for a, b in zip(ticks, ticks[1:4]))

    def test_loop_survives_tick_errors(self):
        calls = []

        def _tick():
            calls.append(1)
            raise ValueError("bad frame")

        loop = FrameLoop(_tick, frequency=1000, frame_interval=0.001)
        loop.start()
        try:
            assert wait_for(lambda: len(calls) >= 3)
        finally:
            loop.stop()

    def test_stop_from_tick_does_not_deadlock(self):
        holder = {}

        def _tick():
            holder["loop"].stop()

        loop = FrameLoop(_tick, frequency=1000, frame_interval=0.001)
        holder["loop"] = loop
        loop.start()
        assert wait_for(lambda: not loop.running)
