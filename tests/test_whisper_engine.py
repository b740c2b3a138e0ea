"""Tests for the Whisper cloud backend."""

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from genie_voice.capture.engines.whisper_engine import (
    LISTENING_PLACEHOLDER,
    WHISPER_API_URL,
    WhisperVoiceBackend,
)
from genie_voice.config import Config
from genie_voice.exceptions import DeviceUnavailableError, ServiceUnauthorizedError
from genie_voice.wake import WakeState

from helpers import FailingStream, FakeStream, silence_frame, speech_frame, wait_for


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

def _config(**overrides) -> Config:
    options = dict(openai_api_key="sk-test", retry_delay=0, max_retries=2, join_timeout=1.0)
    options.update(overrides)
    return Config(**options)


def _status_error(cls, status_code: int):
    request = httpx.Request("POST", WHISPER_API_URL)
    response = httpx.Response(status_code, request=request, json={"error": {"message": "boom"}})
    return cls("boom", response=response, body=None)


def _connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", WHISPER_API_URL))


def _transcript(text: str):
    return SimpleNamespace(text=text)


def _backend(client, **overrides):
    backend = WhisperVoiceBackend(_config(**overrides), client=client)
    wishes, partials, errors = [], [], []
    backend.set_on_wish_recognized(wishes.append)
    backend.set_on_partial_result(partials.append)
    backend.set_on_error(errors.append)
    return backend, wishes, partials, errors


def _utterance() -> bytes:
    return speech_frame(8000)


# ---------------------------------------------------------------
# Transcription and wake phrase handling
# ---------------------------------------------------------------

def test_wake_phrase_and_wish_in_one_utterance() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.return_value = _transcript("Hey Genie, what is a mutex?")
    backend, wishes, _, errors = _backend(client)

    assert backend.process_utterance(_utterance()) == "Hey Genie, what is a mutex?"

    assert [w.text for w in wishes] == ["a mutex"]
    assert wishes[0].backend == "OpenAI Whisper (cloud-based)"
    assert backend.wake.state is WakeState.IDLE
    assert errors == []

    kwargs = client.audio.transcriptions.create.call_args.kwargs
    assert kwargs["model"] == "whisper-1"
    assert kwargs["language"] == "en"
    filename, payload, content_type = kwargs["file"]
    assert filename == "audio.wav"
    assert payload[:4] == b"RIFF"
    assert content_type == "audio/wav"


def test_wake_phrase_alone_waits_for_next_utterance() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = [
        _transcript("Hey Genie."),
        _transcript("How do hash maps work?"),
    ]
    backend, wishes, partials, _ = _backend(client)

    backend.process_utterance(_utterance())

    assert wishes == []
    assert [p.text for p in partials] == [LISTENING_PLACEHOLDER]
    assert backend.wake.state is WakeState.AWAITING_WISH

    backend.process_utterance(_utterance())

    assert [w.text for w in wishes] == ["how do hash maps work"]
    assert backend.wake.state is WakeState.IDLE


def test_speech_without_wake_phrase_is_ignored() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.return_value = _transcript("Let's get lunch")
    backend, wishes, partials, _ = _backend(client)

    backend.process_utterance(_utterance())

    assert wishes == []
    assert partials == []


def test_wish_mentioning_words_like_the_wake_name_is_kept_whole() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = [
        _transcript("Hey Genie, tell me about genies in folklore"),
        _transcript("Hey Genie what is a genius"),
    ]
    backend, wishes, _, _ = _backend(client)

    backend.process_utterance(_utterance())
    backend.process_utterance(_utterance())

    assert [w.text for w in wishes] == ["genies in folklore", "a genius"]


# ---------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------

def test_server_errors_are_retried_until_success() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = [
        _status_error(openai.InternalServerError, 500),
        _status_error(openai.InternalServerError, 500),
        _transcript("genie what is recursion"),
    ]
    backend, wishes, _, errors = _backend(client)
    backend.wake.feed = MagicMock(wraps=backend.wake.feed)

    backend.process_utterance(_utterance())

    assert client.audio.transcriptions.create.call_count == 3
    assert backend.wake.feed.call_count == 1
    assert [w.text for w in wishes] == ["recursion"]
    assert errors == []


def test_exhausted_retries_drop_the_utterance() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = _status_error(openai.RateLimitError, 429)
    backend, wishes, _, errors = _backend(client)

    assert backend.process_utterance(_utterance()) is None

    assert client.audio.transcriptions.create.call_count == 3
    assert wishes == []
    assert errors == []
    assert backend.consecutive_failures == 0


def test_unauthorized_is_not_retried_and_reported_once() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = _status_error(openai.AuthenticationError, 401)
    backend, wishes, _, errors = _backend(client)

    backend.process_utterance(_utterance())

    assert client.audio.transcriptions.create.call_count == 1
    assert len(errors) == 1
    assert isinstance(errors[0], ServiceUnauthorizedError)

    backend.process_utterance(_utterance())

    assert client.audio.transcriptions.create.call_count == 2
    assert len(errors) == 1
    assert wishes == []


def test_client_errors_are_not_retried() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = _status_error(openai.BadRequestError, 400)
    backend, _, _, errors = _backend(client)

    assert backend.process_utterance(_utterance()) is None
    assert client.audio.transcriptions.create.call_count == 1
    assert errors == []


def test_network_errors_are_retried() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = [_connection_error(), _transcript("genie tell me about owls")]
    backend, wishes, _, _ = _backend(client)

    backend.process_utterance(_utterance())

    assert client.audio.transcriptions.create.call_count == 2
    assert [w.text for w in wishes] == ["owls"]


def test_sustained_network_failure_exhausts_session_budget() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = _connection_error()
    backend, _, _, _ = _backend(client, max_retries=0, max_consecutive_failures=3)

    assert backend.process_utterance(_utterance()) is None
    assert backend.process_utterance(_utterance()) is None
    assert backend.consecutive_failures == 2

    with pytest.raises(DeviceUnavailableError):
        backend.process_utterance(_utterance())


def test_success_resets_failure_budget() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.side_effect = [_connection_error(), _transcript("hello")]
    backend, _, _, _ = _backend(client, max_retries=0)

    backend.process_utterance(_utterance())
    assert backend.consecutive_failures == 1

    backend.process_utterance(_utterance())
    assert backend.consecutive_failures == 0


def test_malformed_response_is_dropped() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.return_value = SimpleNamespace(text=None)
    backend, wishes, _, _ = _backend(client)

    assert backend.process_utterance(_utterance()) is None
    assert wishes == []


# ---------------------------------------------------------------
# Availability
# ---------------------------------------------------------------

def test_not_available_without_api_key() -> None:
    backend = WhisperVoiceBackend(Config(openai_api_key=None), client=MagicMock())
    assert backend.is_available() is False
    assert backend.get_name() == "OpenAI Whisper (cloud-based)"


# ---------------------------------------------------------------
# Capture loop
# ---------------------------------------------------------------

def _spoken_wish_frames():
    return [speech_frame() for _ in range(30)] + [silence_frame() for _ in range(20)]


def _capture_threads():
    return [t for t in threading.enumerate() if t.name == "WhisperVoiceBackendCapture" and t.is_alive()]


def test_capture_loop_delivers_wish() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.return_value = _transcript("hey genie what is recursion")
    stream = FakeStream(_spoken_wish_frames())
    backend = WhisperVoiceBackend(_config(), stream_factory=lambda: stream, client=client)
    wishes = []
    backend.set_on_wish_recognized(wishes.append)

    backend.start_listening()
    try:
        assert wait_for(lambda: len(wishes) == 1)
    finally:
        backend.stop_listening()

    assert wishes[0].text == "recursion"
    assert client.audio.transcriptions.create.call_count == 1
    assert stream.closed


def test_start_listening_twice_runs_one_loop() -> None:
    client = MagicMock()
    client.audio.transcriptions.create.return_value = _transcript("hey genie what is recursion")
    streams = []

    def factory():
        streams.append(FakeStream(_spoken_wish_frames()))
        return streams[-1]

    backend = WhisperVoiceBackend(_config(), stream_factory=factory, client=client)
    wishes = []
    backend.set_on_wish_recognized(wishes.append)

    backend.start_listening()
    backend.start_listening()
    try:
        assert backend.is_listening()
        assert len(streams) == 1
        assert len(_capture_threads()) == 1
        assert wait_for(lambda: len(wishes) == 1)
    finally:
        backend.stop_listening()

    assert [w.text for w in wishes] == ["recursion"]


def test_stop_then_start_resumes_listening() -> None:
    streams = []

    def factory():
        streams.append(FakeStream())
        return streams[-1]

    backend = WhisperVoiceBackend(_config(), stream_factory=factory, client=MagicMock())

    backend.start_listening()
    backend.stop_listening()
    backend.stop_listening()

    assert not backend.is_listening()
    assert streams[0].closed

    backend.start_listening()
    try:
        assert backend.is_listening()
        assert len(streams) == 2
        assert wait_for(lambda: len(_capture_threads()) == 1)
    finally:
        backend.stop_listening()

    assert streams[1].closed
    assert wait_for(lambda: _capture_threads() == [])


def test_upload_finishing_after_restart_leaves_new_session_alone() -> None:
    uploading = threading.Event()
    release = threading.Event()

    def slow_create(**kwargs):
        uploading.set()
        release.wait(5.0)
        return _transcript("hey genie")

    client = MagicMock()
    client.audio.transcriptions.create.side_effect = slow_create
    streams = []

    def factory():
        streams.append(FakeStream([] if streams else _spoken_wish_frames()))
        return streams[-1]

    backend = WhisperVoiceBackend(_config(join_timeout=0.1), stream_factory=factory, client=client)
    wishes, partials = [], []
    backend.set_on_wish_recognized(wishes.append)
    backend.set_on_partial_result(partials.append)

    backend.start_listening()
    try:
        assert uploading.wait(3.0)
        old_thread = backend._thread
        backend.stop_listening()
        backend.start_listening()
        assert backend.wake.state is WakeState.IDLE

        release.set()
        old_thread.join(3.0)

        assert not old_thread.is_alive()
        assert backend.is_listening()
        assert backend.wake.state is WakeState.IDLE
        assert partials == []
        assert wishes == []
    finally:
        release.set()
        backend.stop_listening()


def test_repeated_read_errors_disable_capture() -> None:
    backend = WhisperVoiceBackend(_config(max_read_errors=3), stream_factory=FailingStream, client=MagicMock())
    errors = []
    backend.set_on_error(errors.append)

    backend.start_listening()

    assert wait_for(lambda: not backend.is_listening())
    assert len(errors) == 1
    assert isinstance(errors[0], DeviceUnavailableError)

    # explicit re-enable is allowed, and the failure is not announced again
    backend.start_listening()
    assert wait_for(lambda: not backend.is_listening())
    assert len(errors) == 1


def test_microphone_that_cannot_open_is_reported() -> None:
    stream = FakeStream(open_error=DeviceUnavailableError("no microphone"))
    backend = WhisperVoiceBackend(_config(), stream_factory=lambda: stream, client=MagicMock())
    errors = []
    backend.set_on_error(errors.append)

    backend.start_listening()

    assert not backend.is_listening()
    assert len(errors) == 1
    assert stream.closed


def test_shutdown_while_listening_stops_and_closes_client() -> None:
    client = MagicMock()
    backend = WhisperVoiceBackend(_config(), stream_factory=FakeStream, client=client)

    backend.start_listening()
    backend.shutdown()

    assert not backend.is_listening()
    client.close.assert_called_once()
