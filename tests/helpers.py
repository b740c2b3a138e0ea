"""Shared fakes for tests: synthetic audio, a controllable clock and a fake microphone."""

import threading
import time

import numpy as np


def speech_frame(n_samples: int = 160, amplitude: int = 3000) -> bytes:
    return np.full(n_samples, amplitude, dtype="<i2").tobytes()


def silence_frame(n_samples: int = 160) -> bytes:
    return np.zeros(n_samples, dtype="<i2").tobytes()


def wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStream:
    """Microphone stand-in: plays back queued frames, then returns silence."""

    def __init__(self, frames=None, open_error=None):
        self._frames = list(frames or [])
        self._lock = threading.Lock()
        self.open_error = open_error
        self.opened = False
        self.closed = False
        self.aborted = False

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True
        return self

    def read(self) -> bytes:
        with self._lock:
            item = self._frames.pop(0) if self._frames else None
        if isinstance(item, Exception):
            raise item
        if item is None:
            time.sleep(0.005)
            return silence_frame()
        return item

    def abort(self):
        self.aborted = True

    def close(self):
        self.closed = True


class FailingStream(FakeStream):
    """Every read fails."""

    def read(self) -> bytes:
        raise OSError("Input overflowed")
