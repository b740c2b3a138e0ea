"""Factory for creating voice capture backends based on configuration."""

from typing import List, Optional

from ..config import Config
from ..exceptions import BackendNotFoundError
from .base import VoiceBackend

# Priority used when the backend is "auto". The native helper is never picked
# automatically; it has to be requested by name.
AUTO_PRIORITY = ("whisper", "vosk")
BACKEND_NAMES = ("whisper", "vosk", "macos")


def create_backend(name: str, config: Optional[Config] = None) -> VoiceBackend:
    """
    Create a backend instance by name.

    Args:
        name: "whisper", "vosk" or "macos"
        config: Configuration shared with the backend (defaults to a fresh Config)

    Returns:
        VoiceBackend instance

    Raises:
        BackendNotFoundError: If the name is unknown
    """
    config = config or Config()
    backend = name.lower()

    if backend == "whisper":
        from .engines.whisper_engine import WhisperVoiceBackend
        return WhisperVoiceBackend(config)
    elif backend == "vosk":
        from .engines.vosk_engine import VoskVoiceBackend
        return VoskVoiceBackend(config)
    elif backend == "macos":
        from .engines.macos_engine import MacOSVoiceBackend
        return MacOSVoiceBackend(config)
    else:
        raise BackendNotFoundError(
            f"Unknown voice backend '{name}'. Use one of: {', '.join(BACKEND_NAMES)}"
        )


def create_candidate_backends(config: Optional[Config] = None) -> List[VoiceBackend]:
    """Backends to try, best first, according to ``config.voice_backend``."""
    config = config or Config()
    names = AUTO_PRIORITY if config.voice_backend == "auto" else (config.voice_backend,)
    return [create_backend(name, config) for name in names]
