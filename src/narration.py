"""
Narration gateway and remote playback controls.

The player hands each instruction to a NarrationGateway as plain text and
only listens to three events: utterance started, finished and cancelled.
Those drive the player's is_speaking flag and nothing else; navigation
never waits for an utterance to end. A new utterance interrupts the current
one instead of queueing behind it.

Implementations:
- SilentNarrator: logs and records utterances, for headless runs and tests
- EspeakNarrator: speaks through the espeak command line synthesizer
"""

import shutil
import subprocess
import threading
from typing import Callable, List, Optional

from PySide6.QtCore import QObject, Signal

from logger import get_logger

logger = get_logger(__name__)


class NarrationGateway(QObject):
    """
    Text-to-speech collaborator interface.

    Subclasses implement speak() and stop_immediately(); stopping while
    nothing is being spoken must be a silent no-op.

    Signals:
        utterance_started (str): Text that started playing
        utterance_finished (str): Text that played to the end
        utterance_cancelled (str): Text that was interrupted
    """

    utterance_started = Signal(str)
    utterance_finished = Signal(str)
    utterance_cancelled = Signal(str)

    def speak(self, text: str) -> None:
        raise NotImplementedError

    def stop_immediately(self) -> None:
        raise NotImplementedError

    @property
    def is_speaking(self) -> bool:
        raise NotImplementedError

    def activate_audio_session(self) -> None:
        """Acquire the audio output before the first utterance."""

    def deactivate_audio_session(self) -> None:
        """Release the audio output; called on pause, stop and abandon."""


class SilentNarrator(NarrationGateway):
    """
    Records utterances instead of playing them.

    With auto_finish=True (default) every utterance starts and finishes
    immediately. With auto_finish=False it stays "speaking" until
    finish_current() or stop_immediately() is called.
    """

    def __init__(self, auto_finish: bool = True):
        super().__init__()
        self.auto_finish = auto_finish
        self.spoken: List[str] = []
        self.audio_session_active = False
        self._current: Optional[str] = None

    def speak(self, text: str) -> None:
        self.stop_immediately()
        logger.info(f"Narration: {text}")
        self.spoken.append(text)
        self._current = text
        self.utterance_started.emit(text)
        if self.auto_finish:
            self.finish_current()

    def finish_current(self) -> None:
        if self._current is None:
            return
        text, self._current = self._current, None
        self.utterance_finished.emit(text)

    def stop_immediately(self) -> None:
        if self._current is None:
            return
        text, self._current = self._current, None
        self.utterance_cancelled.emit(text)

    @property
    def is_speaking(self) -> bool:
        return self._current is not None

    def activate_audio_session(self) -> None:
        self.audio_session_active = True

    def deactivate_audio_session(self) -> None:
        self.audio_session_active = False


class EspeakNarrator(NarrationGateway):
    """
    Speaks through the espeak binary.

    Each utterance runs in its own espeak process watched by a daemon thread;
    speaking again or stopping terminates the running process.
    """

    def __init__(self, voice: str = "en", words_per_minute: int = 160, executable: str = "espeak"):
        super().__init__()
        self.voice = voice
        self.words_per_minute = words_per_minute
        self.executable = shutil.which(executable) or executable
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._generation = 0

        logger.info(f"EspeakNarrator initialized - Voice: {voice}, Rate: {words_per_minute} wpm")

    def speak(self, text: str) -> None:
        self.stop_immediately()

        cmd = [self.executable, '-v', self.voice, '-s', str(self.words_per_minute), text]
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.error(f"Could not start espeak: {e}")
            self.utterance_cancelled.emit(text)
            return

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._process = process

        self.utterance_started.emit(text)
        threading.Thread(
            target=self._watch, args=(process, generation, text), daemon=True, name="espeak-watch"
        ).start()

    def _watch(self, process: subprocess.Popen, generation: int, text: str) -> None:
        return_code = process.wait()
        with self._lock:
            superseded = generation != self._generation
            if not superseded:
                self._process = None

        # Cancellation of a superseded utterance is reported by stop_immediately()
        if superseded:
            return
        if return_code == 0:
            self.utterance_finished.emit(text)
        else:
            logger.warning(f"espeak exited with code {return_code}")
            self.utterance_cancelled.emit(text)

    def stop_immediately(self) -> None:
        with self._lock:
            process = self._process
            self._process = None
            self._generation += 1

        if process is None:
            return

        # An exited process whose watcher lost the race is still reported here,
        # the watcher sees itself superseded and stays silent
        if process.poll() is None:
            try:
                process.terminate()
                process.wait(timeout=1)
                logger.debug("Stopped narration")
            except subprocess.TimeoutExpired:
                process.kill()
        self.utterance_cancelled.emit("")

    @property
    def is_speaking(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None


class RemoteCommandBridge:
    """
    Headset / lock-screen playback buttons.

    Next-track advances the session and previous-track repeats the current
    instruction. The base class only tracks the handlers; a platform
    integration forwards its button events to trigger_next() and
    trigger_previous().
    """

    def __init__(self):
        self._on_next: Optional[Callable[[], None]] = None
        self._on_previous: Optional[Callable[[], None]] = None

    @property
    def is_active(self) -> bool:
        return self._on_next is not None

    def activate(self, on_next: Callable[[], None], on_previous: Callable[[], None]) -> None:
        if self.is_active:
            return
        self._on_next = on_next
        self._on_previous = on_previous
        logger.debug("Remote playback controls enabled")

    def deactivate(self) -> None:
        if not self.is_active:
            return
        self._on_next = None
        self._on_previous = None
        logger.debug("Remote playback controls disabled")

    def trigger_next(self) -> None:
        if self._on_next is not None:
            self._on_next()

    def trigger_previous(self) -> None:
        if self._on_previous is not None:
            self._on_previous()


def create_narrator(engine: str, voice: str = "en", words_per_minute: int = 160) -> NarrationGateway:
    """Narrator for a [Narration] Engine setting; unknown engines fall back to silent."""
    if engine == "espeak":
        return EspeakNarrator(voice=voice, words_per_minute=words_per_minute)
    if engine != "silent":
        logger.warning(f"Unknown narration engine '{engine}', using silent narration")
    return SilentNarrator()
