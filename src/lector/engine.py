from __future__ import annotations

import enum
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Protocol


class PlaybackState(enum.Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    LOADING = "loading"


@dataclass(frozen=True)
class Utterance:
    """One sentence submitted to a speech engine."""

    text: str
    identifier: str = field(default_factory=lambda: uuid.uuid4().hex)


class SpeechEngineError(RuntimeError):
    """Raised or reported when a speech engine cannot speak an utterance."""


class EngineListener(Protocol):
    """
    Receiver for engine callbacks.

    Engines deliver callbacks on their owner's thread, per utterance in the
    order started -> word ranges -> exactly one finished or error.
    """

    def on_utterance_started(self, utterance: Utterance) -> None: ...

    def on_utterance_finished(self, utterance: Utterance) -> None: ...

    def on_word_range(self, start: int, end: int, utterance: Utterance) -> None: ...

    def on_error(self, error: Exception) -> None: ...


def clamp_rate(rate: float) -> float:
    return max(0.0, min(1.0, float(rate)))


class SpeechEngine(ABC):
    """Abstract text-to-speech engine driven one utterance at a time."""

    def __init__(self) -> None:
        self._listener: EngineListener | None = None
        self._state = PlaybackState.IDLE
        self._rate = 0.5

    def bind(self, listener: EngineListener | None) -> None:
        self._listener = listener

    @property
    def playback_state(self) -> PlaybackState:
        return self._state

    @property
    def rate(self) -> float:
        return self._rate

    def set_rate(self, rate: float) -> None:
        self._rate = clamp_rate(rate)

    @abstractmethod
    def speak(self, utterance: Utterance) -> None:
        """Begin speaking ``utterance``; only one utterance is ever in flight."""

    @abstractmethod
    def pause(self) -> None:
        """Pause the in-flight utterance; a no-op unless playing."""

    @abstractmethod
    def resume(self) -> None:
        """Resume a paused utterance; a no-op unless paused."""

    @abstractmethod
    def stop(self) -> None:
        """Cancel the in-flight utterance and acknowledge it with a finish callback."""

    def _notify_started(self, utterance: Utterance) -> None:
        if self._listener is not None:
            self._listener.on_utterance_started(utterance)

    def _notify_finished(self, utterance: Utterance) -> None:
        if self._listener is not None:
            self._listener.on_utterance_finished(utterance)

    def _notify_word_range(self, start: int, end: int, utterance: Utterance) -> None:
        if self._listener is not None:
            self._listener.on_word_range(start, end, utterance)

    def _notify_error(self, error: Exception) -> None:
        if self._listener is not None:
            self._listener.on_error(error)


class ManualSpeechEngine(SpeechEngine):
    """
    Deterministic engine that produces no audio.

    With ``auto_finish`` off, an utterance stays in flight until
    :meth:`finish_current` is called, which lets tests step playback.
    """

    def __init__(self, auto_finish: bool = True) -> None:
        super().__init__()
        self.auto_finish = auto_finish
        self.spoken: list[Utterance] = []
        self.current: Utterance | None = None
        self.pause_calls = 0
        self.resume_calls = 0
        self.stop_calls = 0

    def speak(self, utterance: Utterance) -> None:
        self.spoken.append(utterance)
        self.current = utterance
        self._state = PlaybackState.PLAYING
        self._notify_started(utterance)
        if self.auto_finish:
            self.finish_current()

    def pause(self) -> None:
        self.pause_calls += 1
        if self._state is PlaybackState.PLAYING:
            self._state = PlaybackState.PAUSED

    def resume(self) -> None:
        self.resume_calls += 1
        if self._state is PlaybackState.PAUSED:
            self._state = PlaybackState.PLAYING

    def stop(self) -> None:
        self.stop_calls += 1
        utterance = self.current
        self.current = None
        self._state = PlaybackState.IDLE
        if utterance is not None:
            self._notify_finished(utterance)

    def finish_current(self) -> None:
        utterance = self.current
        if utterance is None:
            return
        self.current = None
        self._state = PlaybackState.IDLE
        self._notify_finished(utterance)

    def simulate_word_range(self, start: int, end: int, utterance: Utterance | None = None) -> None:
        target = utterance or self.current
        if target is not None:
            self._notify_word_range(start, end, target)

    def simulate_error(self, error: Exception | None = None) -> None:
        self.current = None
        self._state = PlaybackState.IDLE
        self._notify_error(error or SpeechEngineError("simulated engine failure"))
