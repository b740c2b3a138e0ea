"""OpenAI Whisper cloud transcription backend implementation."""

import os
import threading
import time
from typing import Callable, Optional

import openai

from ...config import Config
from ...exceptions import (
    DeviceUnavailableError,
    MalformedOutputError,
    NetworkUnreachableError,
    ServiceTransientError,
    ServiceUnauthorizedError,
)
from ..audio import MicrophoneStream, bytes_to_seconds, pcm_to_wav, probe_microphone
from ..base import FrameCaptureBackend

# Fix SSL certificate issues on macOS
if "SSL_CERT_FILE" not in os.environ:
    try:
        import certifi
        os.environ["SSL_CERT_FILE"] = certifi.where()
    except ImportError:
        pass  # certifi not available, will use system defaults

WHISPER_API_URL = "https://api.openai.com/v1/audio/transcriptions"

# Shown once a wake phrase was heard but no wish text has arrived yet
LISTENING_PLACEHOLDER = "Listening for your wish..."


def response_text(response) -> str:
    """Transcript carried by a transcription response."""
    text = getattr(response, "text", None)
    if not isinstance(text, str):
        raise MalformedOutputError(f"{response!r}")
    return text


class WhisperVoiceBackend(FrameCaptureBackend):
    """
    Cloud backend: buffers whole utterances and uploads each one to Whisper.

    Every transcription is treated as one final result. Rate limits, server
    errors and network errors are retried a bounded number of times; an
    invalid API key is reported once and never retried. Network failures
    that survive their retries count towards a session-wide budget, and
    exhausting it shuts the capture loop down.
    """

    name = "OpenAI Whisper (cloud-based)"

    def __init__(
        self,
        config: Optional[Config] = None,
        stream_factory: Optional[Callable[[], MicrophoneStream]] = None,
        client=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config, stream_factory, clock)
        self._client = client
        self._consecutive_failures = 0

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def _get_client(self):
        """Get the OpenAI client, creating it if needed."""
        if self._client is None:
            # Retries are handled here so that each error class gets its own policy
            self._client = openai.OpenAI(
                api_key=self.config.openai_api_key,
                base_url=self.config.transcription_base_url,
                timeout=self.config.request_timeout,
                max_retries=0,
            )
        return self._client

    def is_available(self) -> bool:
        if not self.config.has_api_key():
            print("   Whisper voice capture not available - no OpenAI API key")
            return False
        return probe_microphone()

    def shutdown(self) -> None:
        super().shutdown()
        client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            client.close()

    def _prepare(self) -> None:
        # A new listening session gets a fresh failure budget
        self._consecutive_failures = 0

    def _handle_frame(self, frame: bytes, stop_event: threading.Event) -> None:
        utterance = self.segmenter.process(frame)
        if utterance is not None:
            self.process_utterance(utterance, stop_event)
            return

        # Wake phrase heard on its own and nobody spoke since: give up on the wish
        if self.wake.is_awaiting and not self.segmenter.recording:
            last_activity = max(self.wake.awaiting_since or 0.0, self.segmenter.last_speech_time or 0.0)
            if self._clock() - last_activity > self.config.wish_timeout:
                self._finalize_wish()

    def process_utterance(self, pcm: bytes, stop_event: Optional[threading.Event] = None) -> Optional[str]:
        """
        Transcribe one finished utterance and run it through wake-phrase matching.

        Args:
            pcm: Raw 16-bit mono PCM of the utterance
            stop_event: Stop event of the session that recorded the utterance
                (defaults to the current one)

        Returns:
            The transcribed text, or None if transcription failed
        """
        print(f"   Processing {bytes_to_seconds(len(pcm)):.1f}s of audio with Whisper...")
        if stop_event is None:
            stop_event = self._stop_event
        text = self.transcribe(pcm_to_wav(pcm), stop_event)
        if stop_event.is_set():
            # Listening stopped during the upload; the wake state now belongs to the next session
            print("   Listening stopped, discarding transcript")
            return None
        if text is None:
            return None
        text = text.strip()
        if not text:
            return text

        print(f"   Heard: '{text}'")
        self.wake.feed(text, final=True)
        if self.wake.is_awaiting:
            if self.wake.wish_text:
                self._finalize_wish()
            else:
                self._emit_partial(LISTENING_PLACEHOLDER)
        return text

    def transcribe(self, wav: bytes, stop_event: Optional[threading.Event] = None) -> Optional[str]:
        """
        Upload a WAV file to the transcription endpoint.

        Args:
            wav: Complete WAV file contents
            stop_event: Aborts retries when set (defaults to the current session's)

        Returns:
            Transcribed text, or None if this utterance could not be transcribed

        Raises:
            DeviceUnavailableError: If network failures exhausted the session budget
        """
        if stop_event is None:
            stop_event = self._stop_event
        client = self._get_client()
        attempts = self.config.max_retries + 1
        error = None

        for attempt in range(attempts):
            try:
                response = client.audio.transcriptions.create(
                    model=self.config.transcription_model,
                    file=("audio.wav", wav, "audio/wav"),
                    language=self.config.transcription_language,
                )
            except openai.AuthenticationError as e:
                print(f"❌ Whisper API rejected the API key: {e}")
                self._report_error(ServiceUnauthorizedError(
                    "Your OpenAI API key is invalid. Please update it in Settings."
                ))
                return None
            except (openai.RateLimitError, openai.InternalServerError) as e:
                error = ServiceTransientError(f"Whisper API error {e.status_code}: {e.message}")
            except openai.APIConnectionError as e:
                error = NetworkUnreachableError(f"Network error calling Whisper API: {e}")
            except openai.APIStatusError as e:
                print(f"⚠️  Whisper API error {e.status_code}: {e.message}")
                return None
            except (openai.APIResponseValidationError, ValueError) as e:
                print(f"⚠️  Malformed Whisper API response: {e}")
                return None
            else:
                self._consecutive_failures = 0
                try:
                    return response_text(response)
                except MalformedOutputError as e:
                    print(f"⚠️  Malformed Whisper API response: {e}")
                    return None

            print(f"⚠️  {error}")
            if attempt < attempts - 1:
                print("   Retrying Whisper API call...")
                if stop_event.wait(self.config.retry_delay):
                    return None

        if stop_event.is_set():
            return None
        if isinstance(error, NetworkUnreachableError):
            self._record_failure()
        print("   Whisper API unavailable, dropping this utterance")
        return None

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.config.max_consecutive_failures:
            raise DeviceUnavailableError(
                f"Whisper API unreachable after {self._consecutive_failures} attempts in a row. "
                "Voice commands are disabled; turn continuous listening off and on again to retry."
            )
