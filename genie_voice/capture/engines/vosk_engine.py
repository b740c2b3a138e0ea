"""Vosk offline speech-to-text backend implementation."""

import importlib.util
import json
import os
import threading
import time
from typing import Callable, Optional

from ...config import Config, SAMPLE_RATE
from ...exceptions import DeviceUnavailableError, MalformedOutputError
from ..audio import MicrophoneStream, is_speech, probe_microphone
from ..base import FrameCaptureBackend

# Vosk module cache
_vosk_module = None


def _get_vosk():
    """Get the vosk module, importing it if needed."""
    global _vosk_module
    if _vosk_module is None:
        try:
            import vosk
        except ImportError as e:
            raise DeviceUnavailableError("vosk not installed. Install with: pip install vosk") from e
        vosk.SetLogLevel(-1)
        _vosk_module = vosk
    return _vosk_module


def parse_result(raw: str, final: bool) -> str:
    """Text of a Vosk JSON result (``text`` for final results, ``partial`` otherwise)."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedOutputError(f"{raw!r}") from e
    if not isinstance(payload, dict):
        raise MalformedOutputError(f"{raw!r}")
    text = payload.get("text" if final else "partial") or ""
    if not isinstance(text, str):
        raise MalformedOutputError(f"{raw!r}")
    return text


class VoskVoiceBackend(FrameCaptureBackend):
    """
    Offline backend feeding every microphone frame into a Vosk recognizer.

    Vosk decides where utterances end. The energy level of each frame is only
    used to force-finalize a wish once the speaker has been quiet for
    ``wish_silence_timeout`` seconds.
    """

    name = "Vosk (Offline)"

    def __init__(
        self,
        config: Optional[Config] = None,
        stream_factory: Optional[Callable[[], MicrophoneStream]] = None,
        recognizer_factory: Optional[Callable[[], object]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config, stream_factory, clock)
        self._recognizer_factory = recognizer_factory or self._create_recognizer
        self._model = None
        self._recognizer = None
        self._last_sound_time: Optional[float] = None

    def find_model_path(self) -> Optional[str]:
        """First existing model directory among the configured candidates."""
        for path in self.config.vosk_model_paths:
            if os.path.isdir(path):
                return path
        return None

    def is_available(self) -> bool:
        if importlib.util.find_spec("vosk") is None:
            print("   Vosk voice capture not available - vosk not installed")
            return False
        if self.find_model_path() is None:
            print("   Vosk model not found. Download from https://alphacephei.com/vosk/models")
            return False
        return probe_microphone()

    def _create_recognizer(self):
        model_path = self.find_model_path()
        if model_path is None:
            raise DeviceUnavailableError("Vosk model not found")
        vosk = _get_vosk()
        try:
            self._model = vosk.Model(model_path)
            return vosk.KaldiRecognizer(self._model, SAMPLE_RATE)
        except Exception as e:
            self._model = None
            raise DeviceUnavailableError(f"Could not load Vosk model from {model_path}: {e}") from e

    def _prepare(self) -> None:
        self._recognizer = self._recognizer_factory()
        self._last_sound_time = self._clock()

    def _release(self) -> None:
        self._recognizer = None
        self._model = None

    def _handle_frame(self, frame: bytes, stop_event: threading.Event) -> None:
        if stop_event.is_set():
            return
        now = self._clock()
        if is_speech(frame, self.config.energy_threshold):
            self._last_sound_time = now

        recognizer = self._recognizer
        if recognizer is None:
            return

        try:
            if recognizer.AcceptWaveform(frame):
                self._handle_result(recognizer.Result(), final=True)
            else:
                self._handle_result(recognizer.PartialResult(), final=False)
        except Exception as e:
            # A bad frame must not stop the loop
            print(f"⚠️  Vosk recognizer error: {e}")

        if self.wake.is_awaiting:
            last_activity = max(self._last_sound_time or 0.0, self.wake.awaiting_since or 0.0)
            if now - last_activity > self.config.wish_silence_timeout:
                self._flush_and_finalize(recognizer)

    def _handle_result(self, raw: str, final: bool) -> None:
        try:
            text = parse_result(raw, final)
        except MalformedOutputError as e:
            print(f"   Ignoring malformed Vosk result: {e}")
            return
        if final and text:
            print(f"   Heard: '{text}'")
        self.wake.feed(text, final)

    def _flush_and_finalize(self, recognizer) -> None:
        """Pull whatever Vosk still holds for the stalled wish, then finalize it."""
        try:
            self._handle_result(recognizer.FinalResult(), final=True)
        except Exception as e:
            print(f"⚠️  Vosk recognizer error: {e}")
        self._finalize_wish()
        try:
            recognizer.Reset()
        except Exception as e:
            print(f"⚠️  Could not reset Vosk recognizer: {e}")
