"""Base classes and interfaces for voice capture backends."""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..config import Config
from ..events import (
    ErrorCallback,
    PartialResultCallback,
    PartialResultEvent,
    WishCallback,
    WishEvent,
)
from ..exceptions import AudioDeviceError, DeviceUnavailableError
from ..wake import WAKE_PHRASES, WakePhraseStateMachine
from .audio import MicrophoneStream, UtteranceSegmenter


class VoiceBackend(ABC):
    """
    Abstract base class for continuous wake-phrase listening.

    Every backend runs its recognition loop on one dedicated thread. That
    thread is the only one that touches the backend's wake-phrase state and
    the only one that invokes the registered callbacks.
    """

    name = "Unknown"

    def __init__(self, config: Optional[Config] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or Config()
        self._clock = clock
        self._lock = threading.RLock()
        self._listening = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._on_wish: Optional[WishCallback] = None
        self._on_partial: Optional[PartialResultCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._reported_errors = set()
        self.wake = WakePhraseStateMachine(on_partial=self._emit_partial, clock=clock)

    def get_name(self) -> str:
        return self.name

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check whether this backend can run on this machine.

        Must not leave anything open behind it.
        """
        pass

    @abstractmethod
    def start_listening(self) -> None:
        """Start the recognition loop. Does nothing if already listening."""
        pass

    @abstractmethod
    def stop_listening(self) -> None:
        """Stop the recognition loop and release the device. Does nothing if not listening."""
        pass

    def is_listening(self) -> bool:
        return self._listening.is_set()

    def set_on_wish_recognized(self, callback: Optional[WishCallback]) -> None:
        self._on_wish = callback

    def set_on_partial_result(self, callback: Optional[PartialResultCallback]) -> None:
        self._on_partial = callback

    def set_on_error(self, callback: Optional[ErrorCallback]) -> None:
        self._on_error = callback

    def shutdown(self) -> None:
        """Release everything the backend holds. Stops listening first."""
        self.stop_listening()

    def _emit_wish(self, text: str, duration: float = 0.0) -> None:
        callback = self._on_wish
        if callback is None:
            return
        event = WishEvent(text=text, backend=self.name, timestamp=time.time(), duration=duration)
        try:
            callback(event)
        except Exception as e:
            print(f"⚠️  Wish callback failed: {e}")

    def _emit_partial(self, text: str) -> None:
        callback = self._on_partial
        if callback is None:
            return
        try:
            callback(PartialResultEvent(text=text, backend=self.name, timestamp=time.time()))
        except Exception as e:
            print(f"⚠️  Partial result callback failed: {e}")

    def _report_error(self, error: Exception) -> None:
        """Hand an error to the error callback, once per error class for the backend's lifetime."""
        kind = type(error)
        if kind in self._reported_errors:
            return
        self._reported_errors.add(kind)
        callback = self._on_error
        if callback is None:
            return
        try:
            callback(error)
        except Exception as e:
            print(f"⚠️  Error callback failed: {e}")

    def _finalize_wish(self) -> Optional[str]:
        """Finalize the wish in progress and emit it if anything is left."""
        since = self.wake.awaiting_since
        wish = self.wake.finalize()
        if wish:
            duration = self._clock() - since if since is not None else 0.0
            print(f"   Wish captured: '{wish}'")
            self._emit_wish(wish, duration)
        return wish


class FrameCaptureBackend(VoiceBackend):
    """
    Backend that reads fixed-size frames from the microphone itself.

    Owns the capture thread and the device. Subclasses only implement
    ``_handle_frame``; ``_prepare`` and ``_release`` bracket each listening
    session for resources that live as long as the session.

    Each session has its own stop event. A capture thread that outlives its
    session (stuck in a slow upload past the join timeout) must check that
    event before touching the wake state, which by then belongs to the next
    session.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        stream_factory: Optional[Callable[[], MicrophoneStream]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config, clock)
        self._stream_factory = stream_factory or (lambda: MicrophoneStream(self.config.frame_samples))
        self._stream = None
        self.segmenter = UtteranceSegmenter.from_config(self.config, clock)

    @abstractmethod
    def _handle_frame(self, frame: bytes, stop_event: threading.Event) -> None:
        """Process one frame read by the session that ``stop_event`` belongs to."""
        pass

    def _prepare(self) -> None:
        pass

    def _release(self) -> None:
        pass

    def start_listening(self) -> None:
        with self._lock:
            if self._listening.is_set():
                return

            stream = None
            try:
                self._prepare()
                stream = self._stream_factory()
                stream.open()
            except DeviceUnavailableError as e:
                print(f"❌ {self.name} could not start: {e}")
                if stream is not None:
                    stream.close()
                self._release()
                self._report_error(e)
                return

            stop_event = threading.Event()
            self._stop_event = stop_event
            self._stream = stream
            self.wake.reset()
            self.segmenter.reset()
            self._listening.set()
            self._thread = threading.Thread(
                target=self._capture_loop,
                args=(stream, stop_event),
                name=f"{type(self).__name__}Capture",
                daemon=True,
            )
            self._thread.start()

        print(f"🎤 {self.name} listening for: {', '.join(WAKE_PHRASES)}")

    def stop_listening(self) -> None:
        with self._lock:
            if not self._listening.is_set() and self._thread is None:
                return
            self._listening.clear()
            self._stop_event.set()
            thread, self._thread = self._thread, None
            stream, self._stream = self._stream, None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.join_timeout)
            if thread.is_alive() and stream is not None:
                # Blocked in a device read; abort the device so the read returns
                stream.abort()
                thread.join(timeout=self.config.join_timeout)
            if thread.is_alive():
                print(f"⚠️  {self.name} capture thread did not stop in time")

        with self._lock:
            if not self._listening.is_set():
                self._release()

        print(f"🔇 {self.name} stopped listening")

    def _capture_loop(self, stream, stop_event: threading.Event) -> None:
        consecutive_errors = 0
        try:
            while not stop_event.is_set():
                try:
                    frame = stream.read()
                except (AudioDeviceError, OSError) as e:
                    if stop_event.is_set():
                        break
                    consecutive_errors += 1
                    print(f"⚠️  Error reading audio (attempt {consecutive_errors}): {e}")
                    if consecutive_errors >= self.config.max_read_errors:
                        raise DeviceUnavailableError(
                            "Microphone access was interrupted. Voice commands are disabled; "
                            "turn continuous listening off and on again to retry."
                        ) from e
                    stop_event.wait(0.1)
                    continue

                consecutive_errors = 0
                if frame:
                    self._handle_frame(frame, stop_event)
        except DeviceUnavailableError as e:
            print(f"❌ {e}")
            self._report_error(e)
        finally:
            stream.close()
            self._on_loop_exit(stop_event)

    def _on_loop_exit(self, stop_event: threading.Event) -> None:
        """Mark the backend stopped when the loop ended on its own."""
        if stop_event.is_set():
            return
        stop_event.set()
        with self._lock:
            if self._stop_event is stop_event:
                self._listening.clear()
                self._thread = None
                self._stream = None
                self._release()
