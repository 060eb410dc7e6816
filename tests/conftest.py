"""Shared fixtures for the cpu-stress test suite."""

import io
import threading

import pytest


class FakeClock:
    """Manual monotonic clock."""

    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeStop:
    """Stop flag whose wait() advances a FakeClock instead of sleeping."""

    def __init__(self, clock):
        self.clock = clock
        self._set = False

    def set(self):
        self._set = True

    def is_set(self):
        return self._set

    def wait(self, timeout=None):
        if not self._set and timeout:
            self.clock.advance(timeout)
        return self._set


@pytest.fixture
def stop_event():
    return threading.Event()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_stop(fake_clock):
    return FakeStop(fake_clock)


@pytest.fixture
def stream():
    return io.StringIO()
