"""Audio front-end: microphone access, energy-based speech detection and utterance segmentation."""

import io
import time
import wave
from typing import Callable, Optional

import numpy as np

from ..config import SAMPLE_RATE, SAMPLE_WIDTH, CHANNELS
from ..exceptions import AudioDeviceError, DeviceUnavailableError

# sounddevice loads PortAudio at import time, so it is only imported on first use
_sounddevice_module = None


def _get_sounddevice():
    """Get the sounddevice module, importing it if needed."""
    global _sounddevice_module
    if _sounddevice_module is None:
        try:
            import sounddevice
        except (ImportError, OSError) as e:
            raise DeviceUnavailableError(f"sounddevice/PortAudio not available: {e}") from e
        _sounddevice_module = sounddevice
    return _sounddevice_module


def calculate_audio_level(frame: bytes) -> float:
    """
    Mean absolute amplitude of a block of signed 16-bit little-endian samples.

    Args:
        frame: Raw PCM bytes

    Returns:
        Level in sample units (0 for an empty frame)
    """
    samples = np.frombuffer(frame[: len(frame) - len(frame) % 2], dtype="<i2")
    if samples.size == 0:
        return 0.0
    # Widen before abs() so -32768 does not overflow
    return float(np.mean(np.abs(samples.astype(np.int32))))


def is_speech(frame: bytes, energy_threshold: float = 500) -> bool:
    """True if the frame's level exceeds the speech threshold."""
    return calculate_audio_level(frame) > energy_threshold


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Wrap raw 16-bit mono PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(CHANNELS)
        wav_file.setsampwidth(SAMPLE_WIDTH)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


def bytes_to_seconds(size: int) -> float:
    return size / float(SAMPLE_RATE * SAMPLE_WIDTH * CHANNELS)


class UtteranceSegmenter:
    """
    Splits a stream of frames into utterances.

    Recording starts on the first speech frame. While recording every frame
    is kept, silent or not. The utterance ends after more than
    ``silence_frames`` consecutive silent frames, or once ``speech_timeout``
    seconds have passed since the last speech frame. Utterances smaller than
    ``min_utterance_bytes`` are dropped as noise.
    """

    def __init__(
        self,
        energy_threshold: float = 500,
        silence_frames: int = 15,
        speech_timeout: float = 2.0,
        min_utterance_bytes: int = 8000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.energy_threshold = energy_threshold
        self.silence_frames = silence_frames
        self.speech_timeout = speech_timeout
        self.min_utterance_bytes = min_utterance_bytes
        self._clock = clock
        self._buffer = bytearray()
        self._silent_count = 0
        self.recording = False
        self.last_speech_time: Optional[float] = None

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = time.monotonic) -> "UtteranceSegmenter":
        return cls(
            energy_threshold=config.energy_threshold,
            silence_frames=config.silence_frames,
            speech_timeout=config.speech_timeout,
            min_utterance_bytes=config.min_utterance_bytes,
            clock=clock,
        )

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def process(self, frame: bytes) -> Optional[bytes]:
        """
        Feed one frame.

        Returns:
            The finished utterance as PCM bytes, or None while nothing is complete
        """
        now = self._clock()
        if is_speech(frame, self.energy_threshold):
            if not self.recording:
                self.recording = True
                self._buffer = bytearray()
            self._buffer.extend(frame)
            self.last_speech_time = now
            self._silent_count = 0
            return None

        if not self.recording:
            return None

        self._silent_count += 1
        self._buffer.extend(frame)
        if self._silent_count > self.silence_frames or now - self.last_speech_time > self.speech_timeout:
            utterance = bytes(self._buffer)
            self.reset()
            if len(utterance) < self.min_utterance_bytes:
                return None
            return utterance
        return None

    def reset(self) -> None:
        self.recording = False
        self._buffer = bytearray()
        self._silent_count = 0


class MicrophoneStream:
    """Blocking reader of fixed-size 16 kHz mono int16 frames from the default input device."""

    def __init__(self, frame_samples: int = 2048, device=None):
        self.frame_samples = frame_samples
        self.device = device
        self._stream = None

    def open(self) -> "MicrophoneStream":
        sd = _get_sounddevice()
        try:
            self._stream = sd.RawInputStream(
                samplerate=SAMPLE_RATE,
                channels=CHANNELS,
                dtype="int16",
                blocksize=self.frame_samples,
                device=self.device,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise DeviceUnavailableError(f"Microphone not available: {e}") from e
        return self

    def read(self) -> bytes:
        """Read one frame, blocking until it is available."""
        stream = self._stream
        if stream is None:
            raise AudioDeviceError("Microphone stream is closed")
        sd = _get_sounddevice()
        try:
            data, _overflowed = stream.read(self.frame_samples)
        except sd.PortAudioError as e:
            raise AudioDeviceError(str(e)) from e
        return bytes(data)

    def abort(self) -> None:
        """Stop the device immediately so a pending read returns."""
        stream = self._stream
        if stream is None:
            return
        try:
            stream.abort()
        except Exception as e:
            print(f"   Warning: could not abort microphone stream: {e}")

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            if stream.active:
                stream.stop()
            stream.close()
        except Exception as e:
            print(f"   Warning: could not close microphone stream: {e}")


def probe_microphone(device=None) -> bool:
    """Check that an input device supports 16 kHz mono int16 capture without opening a stream."""
    try:
        sd = _get_sounddevice()
    except DeviceUnavailableError as e:
        print(f"   Microphone not available: {e}")
        return False
    try:
        sd.check_input_settings(device=device, channels=CHANNELS, dtype="int16", samplerate=SAMPLE_RATE)
        return True
    except Exception as e:
        print(f"   Microphone not available: {e}")
        return False
