from __future__ import annotations

import json
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

BOOK_FILENAME = "book.json"
POSITION_FILENAME = "position.json"
BOOKMARKS_FILENAME = "bookmarks.json"
BOOK_STATE_VERSION = 1


@dataclass
class Chapter:
    title: str
    sentences: list[str]
    spine_index: int
    href: str | None = None


@dataclass
class Book:
    id: str
    title: str
    author: str | None
    file_path: str
    imported_at: float
    chapters: list[Chapter] = field(default_factory=list)
    cover_path: Path | None = None

    @property
    def cover_bytes(self) -> bytes | None:
        if self.cover_path is None:
            return None
        try:
            return self.cover_path.read_bytes()
        except OSError:
            return None


@dataclass
class ReadingPosition:
    chapter_index: int = 0
    sentence_index: int = 0
    updated_at: float | None = None


@dataclass
class Bookmark:
    id: str
    label: str | None
    chapter_index: int
    sentence_index: int
    created_at: float


def _cover_extension(data: bytes) -> str:
    if data.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return ".gif"
    if data.lstrip().startswith(b"<svg") or b"<svg" in data[:512]:
        return ".svg"
    return ".img"


def _read_json(path: Path) -> object | None:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


def _write_json(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _chapter_from_payload(entry: object, fallback_index: int) -> Chapter | None:
    if not isinstance(entry, dict):
        return None
    sentences = entry.get("sentences")
    if not isinstance(sentences, list):
        return None
    sentences = [s for s in sentences if isinstance(s, str)]
    title = entry.get("title")
    spine_index = entry.get("spine_index")
    href = entry.get("href")
    return Chapter(
        title=title if isinstance(title, str) else "",
        sentences=sentences,
        spine_index=spine_index if isinstance(spine_index, int) else fallback_index,
        href=href if isinstance(href, str) else None,
    )


def _bookmark_from_payload(entry: object) -> Bookmark | None:
    if not isinstance(entry, dict):
        return None
    entry_id = entry.get("id")
    chapter_index = entry.get("chapter_index")
    sentence_index = entry.get("sentence_index")
    if not isinstance(entry_id, str) or not entry_id.strip():
        return None
    if not isinstance(chapter_index, int) or not isinstance(sentence_index, int):
        return None
    label = entry.get("label")
    created_at = entry.get("created_at")
    return Bookmark(
        id=entry_id,
        label=label if isinstance(label, str) else None,
        chapter_index=chapter_index,
        sentence_index=sentence_index,
        created_at=float(created_at) if isinstance(created_at, (int, float)) else 0.0,
    )


class LibraryStore:
    """
    JSON-on-disk store for imported books.

    Each book lives in ``root/<book id>/`` with its chapters in ``book.json``
    and its dependents (cover, reading position, bookmarks) beside it.
    Unreadable or malformed files read as absent.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _book_dir(self, book_id: str) -> Path:
        if not book_id or "/" in book_id or "\\" in book_id or book_id in {".", ".."}:
            raise ValueError(f"Invalid book id: {book_id!r}")
        return self.root / book_id

    # Books

    def create_book(
        self,
        *,
        title: str,
        author: str | None,
        chapters: list[Chapter],
        file_path: str,
        cover_bytes: bytes | None = None,
    ) -> Book:
        book_id = uuid.uuid4().hex
        book_dir = self._book_dir(book_id)
        book_dir.mkdir(parents=True, exist_ok=False)
        cover_path = None
        if cover_bytes:
            cover_path = book_dir / f"cover{_cover_extension(cover_bytes)}"
            cover_path.write_bytes(cover_bytes)
        book = Book(
            id=book_id,
            title=title,
            author=author,
            file_path=file_path,
            imported_at=time.time(),
            chapters=list(chapters),
            cover_path=cover_path,
        )
        _write_json(book_dir / BOOK_FILENAME, self._book_payload(book))
        return book

    def _book_payload(self, book: Book) -> dict[str, object]:
        return {
            "version": BOOK_STATE_VERSION,
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "file": book.file_path,
            "imported_at": book.imported_at,
            "cover": book.cover_path.name if book.cover_path else None,
            "chapters": [
                {
                    "title": chapter.title,
                    "spine_index": chapter.spine_index,
                    "href": chapter.href,
                    "sentences": chapter.sentences,
                }
                for chapter in book.chapters
            ],
        }

    def get_book(self, book_id: str) -> Book | None:
        try:
            book_dir = self._book_dir(book_id)
        except ValueError:
            return None
        payload = _read_json(book_dir / BOOK_FILENAME)
        if not isinstance(payload, dict):
            return None
        title = payload.get("title")
        file_path = payload.get("file")
        if not isinstance(title, str) or not isinstance(file_path, str):
            return None
        author = payload.get("author")
        imported_at = payload.get("imported_at")
        cover_name = payload.get("cover")
        cover_path = None
        if isinstance(cover_name, str) and (book_dir / cover_name).exists():
            cover_path = book_dir / cover_name
        chapters: list[Chapter] = []
        chapters_payload = payload.get("chapters")
        if isinstance(chapters_payload, list):
            for index, entry in enumerate(chapters_payload):
                chapter = _chapter_from_payload(entry, index)
                if chapter is not None:
                    chapters.append(chapter)
        return Book(
            id=book_id,
            title=title,
            author=author if isinstance(author, str) else None,
            file_path=file_path,
            imported_at=float(imported_at) if isinstance(imported_at, (int, float)) else 0.0,
            chapters=chapters,
            cover_path=cover_path,
        )

    def list_books(self) -> list[Book]:
        if not self.root.exists():
            return []
        books: list[Book] = []
        for entry in self.root.iterdir():
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            book = self.get_book(entry.name)
            if book is not None:
                books.append(book)
        books.sort(
            key=lambda book: (
                0 if book.author else 1,
                (book.author or "").casefold(),
                book.title.casefold(),
                book.id,
            )
        )
        return books

    def find_book(self, title: str, author: str | None) -> Book | None:
        for book in self.list_books():
            if book.title == title and book.author == author:
                return book
        return None

    def delete_book(self, book_id: str) -> bool:
        """Remove a book together with its position, bookmarks and cover."""
        book_dir = self._book_dir(book_id)
        if not book_dir.is_dir():
            return False
        # Rename first so a half-deleted directory never reads as a book.
        trash = book_dir.with_name(f".{book_id}.deleting")
        book_dir.rename(trash)
        shutil.rmtree(trash)
        return True

    # Reading position

    def load_position(self, book_id: str) -> ReadingPosition | None:
        payload = _read_json(self._book_dir(book_id) / POSITION_FILENAME)
        if not isinstance(payload, dict):
            return None
        chapter_index = payload.get("chapter_index")
        sentence_index = payload.get("sentence_index")
        if not isinstance(chapter_index, int) or not isinstance(sentence_index, int):
            return None
        updated_at = payload.get("updated_at")
        return ReadingPosition(
            chapter_index=chapter_index,
            sentence_index=sentence_index,
            updated_at=float(updated_at) if isinstance(updated_at, (int, float)) else None,
        )

    def save_position(self, book_id: str, chapter_index: int, sentence_index: int) -> ReadingPosition:
        if chapter_index < 0 or sentence_index < 0:
            raise ValueError("Reading position indices must be non-negative.")
        book_dir = self._book_dir(book_id)
        if not book_dir.is_dir():
            raise FileNotFoundError(f"Book not found: {book_id}")
        position = ReadingPosition(
            chapter_index=chapter_index,
            sentence_index=sentence_index,
            updated_at=time.time(),
        )
        _write_json(
            book_dir / POSITION_FILENAME,
            {
                "chapter_index": position.chapter_index,
                "sentence_index": position.sentence_index,
                "updated_at": position.updated_at,
            },
        )
        return position

    # Bookmarks

    def _load_bookmarks(self, book_id: str) -> list[Bookmark]:
        payload = _read_json(self._book_dir(book_id) / BOOKMARKS_FILENAME)
        if not isinstance(payload, dict):
            return []
        entries = payload.get("bookmarks")
        if not isinstance(entries, list):
            return []
        bookmarks: list[Bookmark] = []
        seen_ids: set[str] = set()
        for entry in entries:
            bookmark = _bookmark_from_payload(entry)
            if bookmark is None or bookmark.id in seen_ids:
                continue
            seen_ids.add(bookmark.id)
            bookmarks.append(bookmark)
        return bookmarks

    def _save_bookmarks(self, book_id: str, bookmarks: list[Bookmark]) -> None:
        _write_json(
            self._book_dir(book_id) / BOOKMARKS_FILENAME,
            {
                "version": BOOK_STATE_VERSION,
                "bookmarks": [
                    {
                        "id": bookmark.id,
                        "label": bookmark.label,
                        "chapter_index": bookmark.chapter_index,
                        "sentence_index": bookmark.sentence_index,
                        "created_at": bookmark.created_at,
                    }
                    for bookmark in bookmarks
                ],
            },
        )

    def add_bookmark(
        self,
        book_id: str,
        chapter_index: int,
        sentence_index: int,
        label: str | None = None,
    ) -> Bookmark:
        if not self._book_dir(book_id).is_dir():
            raise FileNotFoundError(f"Book not found: {book_id}")
        bookmarks = self._load_bookmarks(book_id)
        bookmark = Bookmark(
            id=uuid.uuid4().hex,
            label=label,
            chapter_index=chapter_index,
            sentence_index=sentence_index,
            created_at=time.time(),
        )
        bookmarks.append(bookmark)
        self._save_bookmarks(book_id, bookmarks)
        return bookmark

    def list_bookmarks(self, book_id: str) -> list[Bookmark]:
        """Bookmarks for ``book_id``, newest first."""
        bookmarks = self._load_bookmarks(book_id)
        return sorted(bookmarks, key=lambda bookmark: bookmark.created_at, reverse=True)

    def delete_bookmark(self, book_id: str, bookmark_id: str) -> bool:
        bookmarks = self._load_bookmarks(book_id)
        filtered = [bookmark for bookmark in bookmarks if bookmark.id != bookmark_id]
        if len(filtered) == len(bookmarks):
            return False
        self._save_bookmarks(book_id, filtered)
        return True

    def rename_bookmark(self, book_id: str, bookmark_id: str, label: str | None) -> bool:
        bookmarks = self._load_bookmarks(book_id)
        updated = False
        for bookmark in bookmarks:
            if bookmark.id == bookmark_id:
                bookmark.label = label
                updated = True
                break
        if updated:
            self._save_bookmarks(book_id, bookmarks)
        return updated
