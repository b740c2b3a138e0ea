"""macOS native speech recognition backend, driven through a helper process."""

import importlib.util
import shutil
import subprocess
import sys
import threading
import time
from typing import Callable, Optional

from ...config import Config, default_native_command
from ...exceptions import ProcessFailureError
from ...wake import WAKE_PHRASES
from ..base import VoiceBackend

PARTIAL_PREFIX = "PARTIAL:"
FINAL_PREFIX = "FINAL:"
ERROR_PREFIX = "ERROR:"


def parse_helper_line(line: str):
    """
    Split one line of helper output.

    Returns:
        Tuple of (kind, text) where kind is "partial", "final" or "error",
        or None for a line that does not follow the protocol
    """
    line = line.strip()
    for prefix, kind in ((PARTIAL_PREFIX, "partial"), (FINAL_PREFIX, "final"), (ERROR_PREFIX, "error")):
        if line.startswith(prefix):
            return kind, line[len(prefix):].strip()
    return None


class MacOSVoiceBackend(VoiceBackend):
    """
    Supervises an external continuous-recognition process.

    The process prints ``PARTIAL:``, ``FINAL:`` and ``ERROR:`` lines on stdout
    and starts a fresh recognition session after every final result, so a
    single process serves any number of wishes. A process that fails to
    start or exits while we are listening is reported and not restarted.
    """

    name = "macOS Native (SFSpeechRecognizer)"

    def __init__(
        self,
        config: Optional[Config] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config, clock)
        self._popen = popen
        self._process: Optional[subprocess.Popen] = None

    def _uses_bundled_helper(self) -> bool:
        return list(self.config.native_command) == default_native_command()

    def is_available(self) -> bool:
        if self._uses_bundled_helper():
            if sys.platform != "darwin":
                return False
            # The bundled helper needs PyObjC's Speech bindings
            return importlib.util.find_spec("Speech") is not None
        return shutil.which(self.config.native_command[0]) is not None

    def start_listening(self) -> None:
        with self._lock:
            if self._listening.is_set():
                return

            command = list(self.config.native_command)
            print(f"🎤 Starting speech helper: {' '.join(command)}")
            try:
                process = self._popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    bufsize=1,
                )
            except OSError as e:
                print(f"❌ Speech helper failed to start: {e}")
                self._report_error(ProcessFailureError(f"Speech helper failed to start: {e}"))
                return

            # Give the helper a moment; an immediate exit means it cannot run here
            try:
                process.wait(timeout=self.config.native_startup_grace)
            except subprocess.TimeoutExpired:
                pass
            else:
                output = ""
                if process.stdout is not None:
                    output = process.stdout.read()
                    process.stdout.close()
                print(f"❌ Speech helper exited with code {process.returncode}: {output.strip()}")
                self._report_error(ProcessFailureError(
                    f"Speech helper exited with code {process.returncode}: {output.strip()}"
                ))
                return

            stop_event = threading.Event()
            self._stop_event = stop_event
            self._process = process
            self.wake.reset()
            self._listening.set()
            self._thread = threading.Thread(
                target=self._monitor_output,
                args=(process, stop_event),
                name="MacOSSpeechMonitor",
                daemon=True,
            )
            self._thread.start()

        print(f"🎤 {self.name} listening for: {', '.join(WAKE_PHRASES)}")

    def stop_listening(self) -> None:
        with self._lock:
            if not self._listening.is_set() and self._process is None:
                return
            self._listening.clear()
            self._stop_event.set()
            process, self._process = self._process, None
            thread, self._thread = self._thread, None

        if process is not None:
            try:
                process.kill()
            except OSError:
                pass
            try:
                process.wait(timeout=self.config.join_timeout)
            except subprocess.TimeoutExpired:
                print("⚠️  Speech helper did not exit in time")

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.join_timeout)

        if process is not None and process.stdout is not None:
            try:
                process.stdout.close()
            except OSError:
                pass

        print(f"🔇 {self.name} stopped listening")

    def _monitor_output(self, process: subprocess.Popen, stop_event: threading.Event) -> None:
        try:
            for line in process.stdout:
                if stop_event.is_set():
                    break
                self.handle_line(line)
        except (OSError, ValueError) as e:
            # ValueError: the pipe was closed by stop_listening()
            if not stop_event.is_set():
                print(f"⚠️  Error reading speech helper output: {e}")
        finally:
            if not stop_event.is_set():
                self._on_unexpected_exit(process, stop_event)

    def _on_unexpected_exit(self, process: subprocess.Popen, stop_event: threading.Event) -> None:
        try:
            code = process.wait(timeout=self.config.join_timeout)
        except subprocess.TimeoutExpired:
            code = None
        print(f"❌ Speech helper exited unexpectedly (code {code})")
        stop_event.set()
        with self._lock:
            if self._stop_event is stop_event:
                self._listening.clear()
                self._process = None
                self._thread = None
        self._report_error(ProcessFailureError(f"Speech helper exited unexpectedly (code {code})"))

    def handle_line(self, line: str) -> None:
        """Apply one line of helper output to the wake-phrase state."""
        parsed = parse_helper_line(line)
        if parsed is None:
            if line.strip():
                print(f"   Ignoring malformed speech helper output: {line.strip()!r}")
            return

        kind, text = parsed
        if kind == "error":
            print(f"⚠️  Speech recognition error: {text}")
            return

        # Wake phrase spoken on its own and nothing followed in time
        if self.wake.is_awaiting and self._clock() - self.wake.awaiting_since > self.config.wish_timeout:
            self._finalize_wish()

        final = kind == "final"
        self.wake.feed(text, final)
        if final and self.wake.is_awaiting and self.wake.wish_text:
            self._finalize_wish()
