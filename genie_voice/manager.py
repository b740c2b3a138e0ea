"""Capture manager: picks the best available backend and owns the continuous-listening switch."""

import threading
from typing import Callable, List, Optional

from .capture.base import VoiceBackend
from .capture.factory import create_candidate_backends
from .config import Config
from .events import (
    Dispatcher,
    ErrorCallback,
    PartialResultCallback,
    PartialResultEvent,
    WishCallback,
    WishEvent,
    dispatch_inline,
)


class CaptureManager:
    """
    Selects a voice backend and forwards its events to the application.

    Construct one at application start, call ``initialize()``, and call
    ``shutdown()`` once at application stop. Outward callbacks are handed to
    ``dispatch`` (e.g. ``EventChannel.submit``) so they can run on the
    consumer's own thread; without it they run on the capture thread.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        backends: Optional[List[VoiceBackend]] = None,
        always_listening: Optional[bool] = None,
        on_always_listening_changed: Optional[Callable[[bool], None]] = None,
        dispatch: Optional[Dispatcher] = None,
    ):
        """
        Initialize the capture manager.

        Args:
            config: Configuration (defaults to a fresh Config)
            backends: Candidate backends, best first (defaults to the configured priority)
            always_listening: Initial state of continuous listening (defaults to config value)
            on_always_listening_changed: Called with the new value so it can be persisted
            dispatch: Hands each outward callback invocation to the consumer's context
        """
        self.config = config or Config()
        self._candidates = backends
        self._always_listening = self.config.always_listening if always_listening is None else always_listening
        self._persist = on_always_listening_changed
        self._dispatch = dispatch or dispatch_inline
        self._lock = threading.Lock()
        self._active: Optional[VoiceBackend] = None
        self._initialized = False
        self._wish_callback: Optional[WishCallback] = None
        self._partial_callback: Optional[PartialResultCallback] = None
        self._error_callback: Optional[ErrorCallback] = None

    @property
    def active_backend(self) -> Optional[VoiceBackend]:
        return self._active

    def initialize(self) -> Optional[VoiceBackend]:
        """
        Select the first available backend and start it if continuous listening is enabled.

        Returns:
            The selected backend, or None if none is available
        """
        with self._lock:
            if self._initialized:
                return self._active
            self._initialized = True

            settings = self.config.as_dict()
            print(f"   Voice backend setting: {settings['voice_backend'].upper()} "
                  f"(OpenAI API key: {settings['openai_api_key'] or 'not set'})")
            candidates = self._candidates if self._candidates is not None else create_candidate_backends(self.config)
            for backend in candidates:
                if backend.is_available():
                    self._active = backend
                    print(f"✅ Using {backend.get_name()} for voice recognition")
                    break

            if self._active is None:
                print("⚠️  No voice capture implementation available - need OpenAI API key or Vosk model")
                return None

            self._active.set_on_wish_recognized(self._handle_wish_recognized)
            self._active.set_on_partial_result(self._handle_partial_result)
            self._active.set_on_error(self._handle_error)

        if self._always_listening:
            self.start_always_listening()
        return self._active

    def set_on_wish_recognized(self, callback: Optional[WishCallback]) -> None:
        self._wish_callback = callback

    def set_on_partial_result(self, callback: Optional[PartialResultCallback]) -> None:
        self._partial_callback = callback

    def set_on_error(self, callback: Optional[ErrorCallback]) -> None:
        self._error_callback = callback

    def set_always_listening_enabled(self, enabled: bool) -> None:
        """Enable or disable continuous listening and persist the choice."""
        self._always_listening = enabled
        if self._persist is not None:
            self._persist(enabled)

        if enabled:
            self.start_always_listening()
        else:
            self.stop_always_listening()

    def is_always_listening_enabled(self) -> bool:
        return self._always_listening

    def start_always_listening(self) -> None:
        backend = self._active
        if backend is not None and not backend.is_listening():
            backend.start_listening()
            print("   Always-listening mode started")

    def stop_always_listening(self) -> None:
        backend = self._active
        if backend is not None and backend.is_listening():
            backend.stop_listening()
            print("   Always-listening mode stopped")

    def is_voice_capture_available(self) -> bool:
        return self._active is not None and self._active.is_available()

    def get_active_implementation_name(self) -> str:
        return self._active.get_name() if self._active is not None else "None"

    def is_listening(self) -> bool:
        return self._active is not None and self._active.is_listening()

    def shutdown(self) -> None:
        if self._active is not None:
            self._active.shutdown()

    def _handle_wish_recognized(self, event: WishEvent) -> None:
        print(f"🧞 Wish recognized: '{event.text}'")
        callback = self._wish_callback
        if callback is not None:
            self._dispatch(lambda: callback(event))

    def _handle_partial_result(self, event: PartialResultEvent) -> None:
        callback = self._partial_callback
        if callback is not None:
            self._dispatch(lambda: callback(event))

    def _handle_error(self, error: Exception) -> None:
        callback = self._error_callback
        if callback is not None:
            self._dispatch(lambda: callback(error))
