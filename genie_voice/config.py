"""Configuration for the voice capture core."""

import os
import sys
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Audio format shared by every backend: 16 kHz, mono, signed 16-bit little endian
SAMPLE_RATE = 16000
SAMPLE_WIDTH = 2
CHANNELS = 1

VOSK_MODEL_NAME = "vosk-model-small-en-us-0.15"

VALID_BACKENDS = ["auto", "whisper", "vosk", "macos"]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def default_vosk_model_paths() -> List[str]:
    """Candidate directories for the offline recognizer model, in probe order."""
    home = os.path.expanduser("~")
    return [
        VOSK_MODEL_NAME,
        os.path.join("models", VOSK_MODEL_NAME),
        os.path.join(home, ".genie", VOSK_MODEL_NAME),
        os.path.join(home, "Library", "Application Support", "Genie", VOSK_MODEL_NAME),
    ]


def default_native_command() -> List[str]:
    """Command line of the bundled continuous-recognition helper."""
    return [sys.executable, "-m", "genie_voice.capture.engines.macos_helper"]


class Config:
    """Configuration class for voice capture."""

    def __init__(self, **overrides: Any):
        """
        Initialize configuration from environment variables.

        Args:
            **overrides: Explicit values that take precedence over the environment
                (e.g. ``Config(energy_threshold=800, max_retries=0)``)
        """
        # Cloud transcription service
        self.openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY") or None
        self.transcription_model = os.getenv("GENIE_TRANSCRIPTION_MODEL", "whisper-1")
        self.transcription_language = os.getenv("GENIE_TRANSCRIPTION_LANGUAGE", "en")
        self.transcription_base_url: Optional[str] = os.getenv("GENIE_TRANSCRIPTION_BASE_URL") or None
        self.request_timeout = float(os.getenv("GENIE_REQUEST_TIMEOUT", "30"))

        # Backend selection: "auto" tries whisper, then vosk
        self.voice_backend = os.getenv("GENIE_VOICE_BACKEND", "auto").lower()

        # Continuous listening switch (persisted by the host application)
        self.always_listening = _env_bool("GENIE_ALWAYS_LISTENING", False)

        # Audio front-end
        self.frame_samples = int(os.getenv("GENIE_FRAME_SAMPLES", "2048"))
        self.energy_threshold = float(os.getenv("GENIE_ENERGY_THRESHOLD", "500"))
        self.silence_frames = int(os.getenv("GENIE_SILENCE_FRAMES", "15"))
        self.speech_timeout = float(os.getenv("GENIE_SPEECH_TIMEOUT", "2.0"))
        self.min_utterance_seconds = float(os.getenv("GENIE_MIN_UTTERANCE_SECONDS", "0.25"))
        self.max_read_errors = int(os.getenv("GENIE_MAX_READ_ERRORS", "5"))

        # Wish finalization
        self.wish_silence_timeout = float(os.getenv("GENIE_WISH_SILENCE_TIMEOUT", "1.5"))
        self.wish_timeout = float(os.getenv("GENIE_WISH_TIMEOUT", "5.0"))

        # Retry policy for the transcription service
        self.max_retries = int(os.getenv("GENIE_MAX_RETRIES", "2"))
        self.retry_delay = float(os.getenv("GENIE_RETRY_DELAY", "0.5"))
        self.max_consecutive_failures = int(os.getenv("GENIE_MAX_CONSECUTIVE_FAILURES", "5"))

        # Thread/process supervision
        self.join_timeout = float(os.getenv("GENIE_JOIN_TIMEOUT", "2.0"))
        native_command = os.getenv("GENIE_NATIVE_COMMAND")
        self.native_command: List[str] = native_command.split() if native_command else default_native_command()
        self.native_startup_grace = float(os.getenv("GENIE_NATIVE_STARTUP_GRACE", "0.5"))

        # Offline model discovery; an explicit path is probed first
        self.vosk_model_paths = default_vosk_model_paths()
        explicit_model = os.getenv("GENIE_VOSK_MODEL_PATH")
        if explicit_model:
            self.vosk_model_paths.insert(0, explicit_model)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise ValueError(f"Unknown configuration key '{key}'")
            setattr(self, key, value)

        # Validate configuration
        self._validate()

    @property
    def min_utterance_bytes(self) -> int:
        """Utterances shorter than this many bytes are discarded as noise."""
        return int(self.min_utterance_seconds * SAMPLE_RATE) * SAMPLE_WIDTH * CHANNELS

    def has_api_key(self) -> bool:
        return bool(self.openai_api_key and self.openai_api_key.strip())

    def as_dict(self) -> Dict[str, Any]:
        """Settings as a plain dict, with the API key masked."""
        values = dict(vars(self))
        if values.get("openai_api_key"):
            values["openai_api_key"] = "***"
        return values

    def _validate(self):
        """Validate configuration values."""
        if self.voice_backend not in VALID_BACKENDS:
            raise ValueError(
                f"Invalid voice backend '{self.voice_backend}'. "
                f"Must be one of: {', '.join(VALID_BACKENDS)}"
            )

        if self.frame_samples <= 0:
            raise ValueError(f"Frame size must be positive, got {self.frame_samples}")

        if self.energy_threshold < 0:
            raise ValueError(f"Energy threshold must not be negative, got {self.energy_threshold}")

        for name in ("silence_frames", "max_read_errors", "max_consecutive_failures"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        for name in ("speech_timeout", "wish_silence_timeout", "wish_timeout", "join_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        for name in ("min_utterance_seconds", "retry_delay", "native_startup_grace"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")

        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {self.max_retries}")

        if not self.native_command:
            raise ValueError("native_command must not be empty")


__all__ = [
    "Config",
    "SAMPLE_RATE",
    "SAMPLE_WIDTH",
    "CHANNELS",
    "VOSK_MODEL_NAME",
    "VALID_BACKENDS",
    "default_vosk_model_paths",
    "default_native_command",
]
