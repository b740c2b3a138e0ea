"""Custom exception classes for the voice capture core."""


class GenieVoiceError(Exception):
    """Base exception for voice capture errors."""
    pass


class AudioDeviceError(GenieVoiceError):
    """Exception raised when a single read from the audio device fails."""
    pass


class DeviceUnavailableError(GenieVoiceError):
    """Exception raised when the microphone (or the service behind a backend) cannot be used."""
    pass


class ServiceUnauthorizedError(GenieVoiceError):
    """Exception raised when the transcription service rejects our credentials."""
    pass


class ServiceTransientError(GenieVoiceError):
    """Exception raised for rate-limit and server-side transcription errors."""
    pass


class NetworkUnreachableError(GenieVoiceError):
    """Exception raised when the transcription service cannot be reached."""
    pass


class ProcessFailureError(GenieVoiceError):
    """Exception raised when the native recognition helper fails to start or dies."""
    pass


class MalformedOutputError(GenieVoiceError):
    """Exception raised for unparseable recognizer or service output."""
    pass


class BackendNotFoundError(GenieVoiceError):
    """Exception raised when a backend name is unknown."""
    pass
