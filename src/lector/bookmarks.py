from __future__ import annotations

from .library import Bookmark, LibraryStore
from .playback import PlaybackCoordinator


class BookmarkService:
    def __init__(self, store: LibraryStore) -> None:
        self.store = store

    def create(
        self,
        book_id: str,
        label: str | None,
        chapter_index: int,
        sentence_index: int,
    ) -> Bookmark:
        return self.store.add_bookmark(book_id, chapter_index, sentence_index, label=label)

    def create_at_current(self, coordinator: PlaybackCoordinator, label: str | None = None) -> Bookmark | None:
        """Bookmark the coordinator's current sentence; None when no book is loaded."""
        book = coordinator.book
        if book is None:
            return None
        if label is None:
            chapter = coordinator.current_chapter
            label = chapter.title if chapter is not None else None
        return self.create(book.id, label, coordinator.chapter_index, coordinator.sentence_index)

    def bookmarks(self, book_id: str) -> list[Bookmark]:
        return self.store.list_bookmarks(book_id)

    def delete(self, book_id: str, bookmark_id: str) -> bool:
        return self.store.delete_bookmark(book_id, bookmark_id)
