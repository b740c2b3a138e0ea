"""Voice capture backends: offline Vosk, cloud Whisper and native macOS recognition."""

from .base import VoiceBackend, FrameCaptureBackend
from .factory import create_backend, create_candidate_backends

__all__ = ["VoiceBackend", "FrameCaptureBackend", "create_backend", "create_candidate_backends"]
