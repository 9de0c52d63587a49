from __future__ import annotations

import enum
import math
import time
from typing import Callable

from .engine import PlaybackState
from .playback import PlaybackCoordinator


class SleepMode(enum.Enum):
    MINUTES = "minutes"
    END_OF_CHAPTER = "end_of_chapter"


class SleepTimer:
    """
    Stops playback after a delay or when the current chapter ends.

    The timer does not schedule anything itself; the owner's loop calls
    :meth:`tick` periodically on the coordinator's thread.
    """

    def __init__(
        self,
        coordinator: PlaybackCoordinator,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.coordinator = coordinator
        self.clock = clock
        self.mode: SleepMode | None = None
        self._deadline: float | None = None
        self._chapter_index: int | None = None

    @property
    def is_active(self) -> bool:
        return self.mode is not None

    def start_minutes(self, minutes: float) -> None:
        self.cancel()
        self.mode = SleepMode.MINUTES
        self._deadline = self.clock() + max(0.0, minutes) * 60.0

    def start_end_of_chapter(self) -> None:
        self.cancel()
        self.mode = SleepMode.END_OF_CHAPTER
        self._chapter_index = self.coordinator.chapter_index

    def cancel(self) -> None:
        self.mode = None
        self._deadline = None
        self._chapter_index = None

    @property
    def remaining_seconds(self) -> int:
        if self.mode is not SleepMode.MINUTES or self._deadline is None:
            return 0
        return max(0, math.ceil(self._deadline - self.clock()))

    @property
    def formatted_remaining(self) -> str:
        if self.mode is None:
            return ""
        if self.mode is SleepMode.END_OF_CHAPTER:
            return "End of chapter"
        minutes, seconds = divmod(self.remaining_seconds, 60)
        return f"{minutes}:{seconds:02d}"

    def tick(self) -> bool:
        """Stop playback if the timer has expired; returns True when it fired."""
        if self.mode is SleepMode.MINUTES:
            expired = self._deadline is not None and self.clock() >= self._deadline
        elif self.mode is SleepMode.END_OF_CHAPTER:
            expired = (
                self.coordinator.chapter_index != self._chapter_index
                or self.coordinator.state is PlaybackState.IDLE
            )
        else:
            return False
        if not expired:
            return False
        self.coordinator.stop()
        self.cancel()
        return True
