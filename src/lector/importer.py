from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

from .core import FileSystem, ParsedBook, parse_epub
from .errors import EPUBError
from .library import Book, Chapter, LibraryStore

logger = logging.getLogger(__name__)


class BookImportError(RuntimeError):
    """Base class for failures while importing a book into the library."""


class FileNotAccessibleError(BookImportError):
    """Raised when the selected EPUB cannot be read."""


class CopyFailedError(BookImportError):
    """Raised when the EPUB cannot be copied into the books directory."""


class ParsingFailedError(BookImportError):
    """Raised when the copied EPUB cannot be ingested."""

    def __init__(self, cause: EPUBError) -> None:
        super().__init__(f"Failed to parse EPUB: {cause}")
        self.cause = cause


class DuplicateBookError(BookImportError):
    """Raised when a book with the same title and author is already imported."""

    def __init__(self, title: str) -> None:
        super().__init__(f"'{title}' has already been imported.")
        self.title = title


def _unique_destination(file_name: str, directory: Path) -> Path:
    dest = directory / file_name
    if dest.exists():
        stem = Path(file_name).stem
        suffix = Path(file_name).suffix
        dest = directory / f"{stem}-{uuid.uuid4().hex}{suffix}"
    return dest


class BookImportService:
    """Copies an EPUB into the books directory, parses it and persists it."""

    def __init__(
        self,
        store: LibraryStore,
        books_dir: Path,
        *,
        fs: FileSystem | None = None,
        language: str | None = None,
        default_language: str | None = None,
    ) -> None:
        self.store = store
        self.books_dir = Path(books_dir)
        self.fs = fs
        self.language = language
        self.default_language = default_language

    def import_book(self, source: Path) -> Book:
        source = Path(source)
        if not source.is_file():
            raise FileNotAccessibleError(f"The selected file could not be accessed: {source}")

        try:
            self.books_dir.mkdir(parents=True, exist_ok=True)
            dest = _unique_destination(source.name, self.books_dir)
            shutil.copy2(source, dest)
        except OSError as exc:
            raise CopyFailedError(f"Failed to copy file: {exc}") from exc

        try:
            parsed = parse_epub(
                dest,
                fs=self.fs,
                language=self.language,
                default_language=self.default_language,
            )
        except EPUBError as exc:
            dest.unlink(missing_ok=True)
            raise ParsingFailedError(exc) from exc

        title = parsed.title or source.name
        if self.store.find_book(title, parsed.author) is not None:
            dest.unlink(missing_ok=True)
            raise DuplicateBookError(title)

        book = self.store.create_book(
            title=title,
            author=parsed.author,
            chapters=chapters_from_parsed(parsed),
            file_path=dest.name,
            cover_bytes=parsed.cover_bytes,
        )
        self.store.save_position(book.id, 0, 0)
        logger.info("Imported %s (%d chapters)", title, len(book.chapters))
        return book


def chapters_from_parsed(parsed: ParsedBook) -> list[Chapter]:
    return [
        Chapter(
            title=chapter.title,
            sentences=list(chapter.sentences),
            spine_index=index,
            href=chapter.href,
        )
        for index, chapter in enumerate(parsed.chapters)
    ]
