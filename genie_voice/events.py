"""Event values and the thread-safe channel used to hand them to a consumer thread."""

import threading
import time
from dataclasses import dataclass, field
from queue import Queue, Empty
from typing import Callable, Optional


@dataclass(frozen=True)
class WishEvent:
    """A completed wish, spoken after a wake phrase."""

    text: str
    backend: str = ""
    timestamp: float = field(default_factory=time.time)
    # Seconds between wake-phrase detection and finalization
    duration: float = 0.0


@dataclass(frozen=True)
class PartialResultEvent:
    """In-progress transcription, for live feedback only."""

    text: str
    backend: str = ""
    timestamp: float = field(default_factory=time.time)


WishCallback = Callable[[WishEvent], None]
PartialResultCallback = Callable[[PartialResultEvent], None]
ErrorCallback = Callable[[Exception], None]
Dispatcher = Callable[[Callable[[], None]], None]


def dispatch_inline(fn: Callable[[], None]) -> None:
    """Run ``fn`` immediately on the calling thread."""
    fn()


class EventChannel:
    """
    Queue of pending callback invocations, drained by the consumer's own thread.

    Pass ``channel.submit`` as the ``dispatch`` argument of ``CaptureManager`` and
    call ``run_pending()`` from the UI loop; callbacks then never run on a
    capture thread.
    """

    def __init__(self):
        self._queue: "Queue[Callable[[], None]]" = Queue()
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, fn: Callable[[], None]) -> None:
        with self._lock:
            if self._closed:
                return
            self._queue.put(fn)

    def try_get(self) -> Optional[Callable[[], None]]:
        try:
            return self._queue.get_nowait()
        except Empty:
            return None

    def run_pending(self, max_items: int = 100) -> int:
        """
        Run queued calls on the current thread.

        Args:
            max_items: Upper bound on calls run in this pass

        Returns:
            Number of calls that were run
        """
        ran = 0
        for _ in range(max_items):
            fn = self.try_get()
            if fn is None:
                break
            try:
                fn()
            except Exception as e:
                print(f"⚠️  Event handler failed: {e}")
            ran += 1
        return ran

    def wait_and_run(self, timeout: Optional[float] = None) -> bool:
        """
        Block until one call is available, then run it.

        Returns:
            True if a call was run, False on timeout
        """
        try:
            fn = self._queue.get(timeout=timeout)
        except Empty:
            return False
        try:
            fn()
        except Exception as e:
            print(f"⚠️  Event handler failed: {e}")
        return True

    def pending_count(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop accepting new calls and drop the ones still queued."""
        with self._lock:
            self._closed = True
        while self.try_get() is not None:
            pass
