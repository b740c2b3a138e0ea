"""Wake-phrase voice capture for the Genie desktop assistant."""

from .config import Config
from .events import EventChannel, PartialResultEvent, WishEvent
from .manager import CaptureManager
from .wake import WakePhraseStateMachine, WakeState

__all__ = [
    "CaptureManager",
    "Config",
    "EventChannel",
    "PartialResultEvent",
    "WakePhraseStateMachine",
    "WakeState",
    "WishEvent",
]
