"""Wake-phrase matching and wish extraction shared by every backend."""

import re
import time
from enum import Enum
from functools import lru_cache
from typing import Callable, List, Optional, Sequence, Tuple

# The product name plus the ways speech recognizers commonly mishear it
WAKE_NAMES = ("genie", "jeannie", "jeanie", "geni")
GREETINGS = ("hey", "ok")

WAKE_PHRASES: Tuple[str, ...] = tuple(
    phrase
    for name in WAKE_NAMES
    for phrase in [name] + [f"{greeting} {name}" for greeting in GREETINGS]
)

# Leading filler stripped from a finished wish. Longest first so that
# "tell me about" wins over "tell me".
FILLER_PREFIXES: Tuple[str, ...] = (
    "i want to know",
    "tell me about",
    "i wish",
    "tell me",
    "what's",
    "what is",
    "about",
)

_EDGE_CHARS = " \t\r\n,.!?;:-"


class WakeState(Enum):
    """Wake-phrase state of one backend."""

    IDLE = "idle"
    AWAITING_WISH = "awaiting_wish"


def normalize_text(text: Optional[str]) -> str:
    """Lower-case and collapse whitespace."""
    if not text:
        return ""
    return " ".join(text.lower().split())


def find_wake_phrase(text: str, phrases: Sequence[str] = WAKE_PHRASES) -> Optional[Tuple[str, int, int]]:
    """
    Find the first occurring wake phrase in ``text`` by substring match.

    When two phrases start at the same position the longer one wins, so
    "hey genie" is preferred over "genie" and "genie" over "geni".

    Args:
        text: Normalized (lower-case) transcription
        phrases: Wake phrases to look for

    Returns:
        Tuple of (phrase, start, end) or None when no phrase occurs
    """
    best = None
    for phrase in phrases:
        start = text.find(phrase)
        if start < 0:
            continue
        if best is None or start < best[1] or (start == best[1] and len(phrase) > len(best[0])):
            best = (phrase, start, start + len(phrase))
    return best


@lru_cache(maxsize=8)
def _whole_word_pattern(phrases: Tuple[str, ...]):
    alternatives = "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))
    return re.compile(r"\b(?:" + alternatives + r")\b[,.!?;:]*")


def strip_wake_phrases(text: str, phrases: Sequence[str] = WAKE_PHRASES) -> str:
    """
    Remove wake phrases spoken as whole words from a fragment.

    Only the phrase itself goes; the words around it stay, and words that
    merely contain a phrase ("genius", "genies") are left alone.
    """
    text = _whole_word_pattern(tuple(phrases)).sub(" ", text)
    return " ".join(text.split()).strip(_EDGE_CHARS)


def strip_filler_prefixes(text: str, prefixes: Sequence[str] = FILLER_PREFIXES) -> str:
    """
    Remove leading filler words ("I wish", "tell me about", ...) from a wish.

    Prefixes only match on word boundaries and are removed repeatedly, so
    "tell me about what is x" becomes "x".
    """
    text = text.strip(_EDGE_CHARS)
    ordered = sorted(prefixes, key=len, reverse=True)
    stripped = True
    while stripped and text:
        stripped = False
        for prefix in ordered:
            if text == prefix:
                return ""
            if text.startswith(prefix) and text[len(prefix)] in _EDGE_CHARS:
                text = text[len(prefix):].strip(_EDGE_CHARS)
                stripped = True
                break
    return text


class WakePhraseStateMachine:
    """
    Turns transcribed text (partial or final) into wishes.

    Owned by exactly one backend and only ever driven from that backend's
    capture thread. Finalized fragments are collected in the wish buffer;
    the latest partial fragment is kept apart and only used for previews.
    A wake phrase heard while already awaiting a wish does not restart
    capture; it is stripped from the fragment like any other occurrence.
    """

    def __init__(
        self,
        wake_phrases: Sequence[str] = WAKE_PHRASES,
        filler_prefixes: Sequence[str] = FILLER_PREFIXES,
        on_partial: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.wake_phrases = tuple(wake_phrases)
        self.filler_prefixes = tuple(filler_prefixes)
        self.on_partial = on_partial
        self._clock = clock
        self.state = WakeState.IDLE
        self.awaiting_since: Optional[float] = None
        self._fragments: List[str] = []
        self._pending = ""
        self._last_preview = ""

    @property
    def is_awaiting(self) -> bool:
        return self.state is WakeState.AWAITING_WISH

    @property
    def wish_text(self) -> str:
        """Finalized text accumulated since the wake phrase."""
        return " ".join(self._fragments)

    @property
    def preview(self) -> str:
        """Finalized text plus the in-progress partial fragment."""
        parts = self._fragments + ([self._pending] if self._pending else [])
        return " ".join(parts)

    def feed(self, text: Optional[str], final: bool) -> bool:
        """
        Process one recognizer result.

        Args:
            text: Transcribed text
            final: True for a final result, False for a partial one

        Returns:
            True if this result moved the machine from idle to awaiting a wish
        """
        text = normalize_text(text)
        if not text:
            return False

        if self.state is WakeState.IDLE:
            match = find_wake_phrase(text, self.wake_phrases)
            if match is None:
                return False
            phrase, _, end = match
            print(f"✨ Wake phrase detected: '{phrase}'")
            self.state = WakeState.AWAITING_WISH
            self.awaiting_since = self._clock()
            self._fragments = []
            self._pending = ""
            self._last_preview = ""
            trailing = text[end:].strip(_EDGE_CHARS)
            if trailing:
                if final:
                    self._fragments.append(trailing)
                else:
                    self._pending = trailing
            return True

        fragment = strip_wake_phrases(text, self.wake_phrases)
        if final:
            if fragment:
                self._fragments.append(fragment)
            self._pending = ""
        else:
            self._pending = fragment
        self._surface_preview()
        return False

    def finalize(self) -> Optional[str]:
        """
        End the current wish and return to idle.

        Returns:
            The wish with filler stripped, or None if nothing is left
        """
        if self.state is WakeState.IDLE:
            return None
        wish = strip_filler_prefixes(self.wish_text, self.filler_prefixes)
        self.reset()
        return wish or None

    def reset(self) -> None:
        self.state = WakeState.IDLE
        self.awaiting_since = None
        self._fragments = []
        self._pending = ""
        self._last_preview = ""

    def _surface_preview(self) -> None:
        preview = self.preview
        if not preview or preview == self._last_preview:
            return
        self._last_preview = preview
        if self.on_partial is not None:
            self.on_partial(preview)
