from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Protocol, Sequence

from .engine import PlaybackState, SpeechEngine, Utterance
from .library import Book, Chapter, ReadingPosition

logger = logging.getLogger(__name__)


class PositionStore(Protocol):
    """Persistence for the single reading position of each book."""

    def load_position(self, book_id: str) -> ReadingPosition | None: ...

    def save_position(self, book_id: str, chapter_index: int, sentence_index: int) -> ReadingPosition: ...


@dataclass(frozen=True)
class PlaybackSnapshot:
    version: int = 0
    state: PlaybackState = PlaybackState.IDLE
    chapter_index: int = 0
    sentence_index: int = 0
    word_range: tuple[int, int] | None = None
    rate: float = 0.5
    last_error: Exception | None = None


Subscriber = Callable[[PlaybackSnapshot], None]


class PlaybackCoordinator:
    """
    Feeds a book to a speech engine one sentence at a time.

    The coordinator owns the playback position, advances it as the engine
    finishes utterances (rolling over chapter boundaries), and saves it through
    ``store`` on pause, stop and chapter changes. Every change is published to
    subscribers as an immutable :class:`PlaybackSnapshot`.
    """

    def __init__(self, engine: SpeechEngine, store: PositionStore | None = None) -> None:
        self.engine = engine
        self.store = store
        self._snapshot = PlaybackSnapshot(rate=engine.rate)
        self._subscribers: list[Subscriber] = []
        self._book: Book | None = None
        self._chapters: list[Chapter] = []
        self._utterance_seq = 0
        self._pending_utterance: str | None = None
        self._in_speak = False
        self._advance_requested = False
        engine.bind(self)

    # State

    @property
    def snapshot(self) -> PlaybackSnapshot:
        return self._snapshot

    @property
    def state(self) -> PlaybackState:
        return self._snapshot.state

    @property
    def chapter_index(self) -> int:
        return self._snapshot.chapter_index

    @property
    def sentence_index(self) -> int:
        return self._snapshot.sentence_index

    @property
    def word_range(self) -> tuple[int, int] | None:
        return self._snapshot.word_range

    @property
    def rate(self) -> float:
        return self._snapshot.rate

    @property
    def last_error(self) -> Exception | None:
        return self._snapshot.last_error

    @property
    def book(self) -> Book | None:
        return self._book

    @property
    def chapters(self) -> Sequence[Chapter]:
        return tuple(self._chapters)

    @property
    def current_chapter(self) -> Chapter | None:
        if 0 <= self.chapter_index < len(self._chapters):
            return self._chapters[self.chapter_index]
        return None

    @property
    def current_sentence(self) -> str | None:
        chapter = self.current_chapter
        if chapter is None or not 0 <= self.sentence_index < len(chapter.sentences):
            return None
        return chapter.sentences[self.sentence_index]

    @property
    def chapter_progress(self) -> float:
        chapter = self.current_chapter
        if chapter is None or not chapter.sentences:
            return 0.0
        return self.sentence_index / len(chapter.sentences)

    @property
    def book_progress(self) -> float:
        total = sum(len(chapter.sentences) for chapter in self._chapters)
        if total == 0:
            return 0.0
        before = sum(len(chapter.sentences) for chapter in self._chapters[: self.chapter_index])
        return (before + self.sentence_index) / total

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _update(self, **changes: object) -> None:
        snapshot = replace(self._snapshot, **changes)
        if snapshot == self._snapshot:
            return
        self._snapshot = replace(snapshot, version=self._snapshot.version + 1)
        for callback in list(self._subscribers):
            callback(self._snapshot)

    # Loading

    def load(self, book: Book) -> None:
        self.stop()
        self._book = book
        self._chapters = sorted(book.chapters, key=lambda chapter: chapter.spine_index)
        self._update(state=PlaybackState.IDLE, word_range=None, last_error=None)

        if not self._chapters:
            self._update(chapter_index=0, sentence_index=0)
            return

        position = self._load_position(book)
        chapter_index = sentence_index = 0
        if position is not None:
            chapter_index = min(max(position.chapter_index, 0), len(self._chapters) - 1)
            sentence_count = len(self._chapters[chapter_index].sentences)
            if sentence_count > 0:
                sentence_index = min(max(position.sentence_index, 0), sentence_count - 1)
        self._update(chapter_index=chapter_index, sentence_index=sentence_index)

    def _load_position(self, book: Book) -> ReadingPosition | None:
        if self.store is None:
            return None
        try:
            return self.store.load_position(book.id)
        except (OSError, ValueError) as exc:
            logger.warning("Could not load reading position for %s: %s", book.title, exc)
            return None

    # Playback controls

    def play(self) -> None:
        if self.current_sentence is None:
            return
        if self.state is PlaybackState.PAUSED:
            if self._pending_utterance is None:
                # Navigation while paused dropped the paused utterance.
                self._update(state=PlaybackState.PLAYING, last_error=None)
                self._speak_current_sentence()
                return
            self.engine.resume()
            self._update(state=PlaybackState.PLAYING)
            return
        if self.state is not PlaybackState.IDLE:
            return
        self._update(state=PlaybackState.PLAYING, last_error=None)
        self._speak_current_sentence()

    def pause(self) -> None:
        if self.state is not PlaybackState.PLAYING:
            return
        self.engine.pause()
        self._update(state=PlaybackState.PAUSED)
        self._persist_position()

    def stop(self) -> None:
        self._update(state=PlaybackState.IDLE)
        self._cancel_utterance()
        self._update(word_range=None)
        self._persist_position()

    def toggle_play_pause(self) -> None:
        if self.state in (PlaybackState.IDLE, PlaybackState.PAUSED):
            self.play()
        elif self.state is PlaybackState.PLAYING:
            self.pause()

    def set_rate(self, rate: float) -> None:
        self.engine.set_rate(rate)
        self._update(rate=self.engine.rate)

    # Navigation

    def skip_forward(self) -> None:
        chapter = self.current_chapter
        if chapter is None:
            return
        if self.sentence_index < len(chapter.sentences) - 1:
            self._update(sentence_index=self.sentence_index + 1)
        elif self.chapter_index < len(self._chapters) - 1:
            self._update(chapter_index=self.chapter_index + 1, sentence_index=0)
        self._restart_if_playing()
        self._persist_position()

    def skip_backward(self) -> None:
        if self.current_chapter is None:
            return
        if self.sentence_index > 0:
            self._update(sentence_index=self.sentence_index - 1)
        elif self.chapter_index > 0:
            previous = self._chapters[self.chapter_index - 1]
            self._update(
                chapter_index=self.chapter_index - 1,
                sentence_index=max(0, len(previous.sentences) - 1),
            )
        self._restart_if_playing()
        self._persist_position()

    def jump_to_chapter(self, index: int) -> None:
        if not 0 <= index < len(self._chapters):
            return
        self._update(chapter_index=index, sentence_index=0)
        self._restart_if_playing()
        self._persist_position()

    # Engine callbacks

    def on_utterance_started(self, utterance: Utterance) -> None:
        pass

    def on_utterance_finished(self, utterance: Utterance) -> None:
        if self.state is not PlaybackState.PLAYING:
            return
        if utterance.identifier != self._pending_utterance:
            # Acknowledgement of a cancelled utterance.
            return
        self._pending_utterance = None
        if self._in_speak:
            # Finished synchronously inside engine.speak(); the speak loop advances.
            self._advance_requested = True
            return
        self._advance_after_finish()

    def on_word_range(self, start: int, end: int, utterance: Utterance) -> None:
        if utterance.identifier != self._pending_utterance:
            return
        self._update(word_range=(start, end))

    def on_error(self, error: Exception) -> None:
        logger.warning("Speech engine error: %s", error)
        self._pending_utterance = None
        self._update(state=PlaybackState.IDLE, word_range=None, last_error=error)

    # Internals

    def _speak_current_sentence(self) -> None:
        """
        Issue the current sentence, then keep issuing the next one for as long
        as the engine finishes synchronously from inside ``speak``.
        """
        while True:
            text = self.current_sentence
            if text is None:
                self._update(state=PlaybackState.IDLE)
                return
            self._utterance_seq += 1
            utterance = Utterance(
                text=text,
                identifier=f"{self.chapter_index}-{self.sentence_index}-{self._utterance_seq}",
            )
            self._pending_utterance = utterance.identifier
            self._advance_requested = False
            self._update(word_range=None)
            outer = self._in_speak
            self._in_speak = True
            try:
                self.engine.speak(utterance)
            finally:
                self._in_speak = outer
            if not self._advance_requested:
                return
            self._advance_requested = False
            if not self._move_to_next_sentence():
                return

    def _cancel_utterance(self) -> None:
        self._pending_utterance = None
        self.engine.stop()

    def _restart_if_playing(self) -> None:
        if self.state is PlaybackState.PLAYING:
            self._cancel_utterance()
            self._speak_current_sentence()
        elif self.state is PlaybackState.PAUSED and self._pending_utterance is not None:
            self._cancel_utterance()

    def _advance_after_finish(self) -> None:
        if self._move_to_next_sentence():
            self._speak_current_sentence()

    def _move_to_next_sentence(self) -> bool:
        """Step past the finished sentence; False once the book is done."""
        chapter = self.current_chapter
        if chapter is None:
            self._update(state=PlaybackState.IDLE)
            return False
        if self.sentence_index < len(chapter.sentences) - 1:
            self._update(sentence_index=self.sentence_index + 1)
            return True
        if self.chapter_index < len(self._chapters) - 1:
            self._update(chapter_index=self.chapter_index + 1, sentence_index=0)
            self._persist_position()
            return True
        self._update(state=PlaybackState.IDLE, word_range=None)
        self._persist_position()
        return False

    def _persist_position(self) -> None:
        if self._book is None or self.store is None:
            return
        try:
            self.store.save_position(self._book.id, self.chapter_index, self.sentence_index)
        except (OSError, ValueError) as exc:
            logger.warning("Could not save reading position for %s: %s", self._book.title, exc)
