from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from lector import library
from lector.library import Chapter, LibraryStore


def _chapters() -> list[Chapter]:
    return [
        Chapter(title="One", sentences=["A.", "B."], spine_index=0, href="ch1.xhtml"),
        Chapter(title="Two", sentences=["C."], spine_index=1, href="ch2.xhtml"),
    ]


def test_create_and_reload_book(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path / "library")
    png = b"\x89PNG\r\n\x1a\n" + b"data"

    book = store.create_book(
        title="Title",
        author="Author",
        chapters=_chapters(),
        file_path="title.epub",
        cover_bytes=png,
    )
    loaded = store.get_book(book.id)

    assert loaded is not None
    assert loaded.title == "Title"
    assert loaded.author == "Author"
    assert loaded.file_path == "title.epub"
    assert [c.title for c in loaded.chapters] == ["One", "Two"]
    assert loaded.chapters[0].sentences == ["A.", "B."]
    assert loaded.chapters[1].href == "ch2.xhtml"
    assert loaded.cover_path is not None and loaded.cover_path.suffix == ".png"
    assert loaded.cover_bytes == png


def test_list_books_sorted_by_author_then_title(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    store.create_book(title="Zeta", author=None, chapters=[], file_path="z.epub")
    store.create_book(title="Beta", author="bob", chapters=[], file_path="b.epub")
    store.create_book(title="Alpha", author="Bob", chapters=[], file_path="a.epub")
    store.create_book(title="Gamma", author="Alice", chapters=[], file_path="g.epub")

    assert [book.title for book in store.list_books()] == ["Gamma", "Alpha", "Beta", "Zeta"]


def test_find_book(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    book = store.create_book(title="Title", author=None, chapters=[], file_path="t.epub")
    assert store.find_book("Title", None).id == book.id
    assert store.find_book("Title", "Someone") is None


def test_delete_book_removes_dependents(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    book = store.create_book(
        title="Doomed", author=None, chapters=_chapters(), file_path="d.epub", cover_bytes=b"GIF89a..."
    )
    store.save_position(book.id, 1, 0)
    store.add_bookmark(book.id, 0, 1, label="mark")

    assert store.delete_book(book.id) is True

    assert store.get_book(book.id) is None
    assert store.list_books() == []
    assert list(tmp_path.iterdir()) == []
    assert store.delete_book(book.id) is False


def test_positions_round_trip_and_validate(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    book = store.create_book(title="T", author=None, chapters=_chapters(), file_path="t.epub")

    assert store.load_position(book.id) is None
    saved = store.save_position(book.id, 1, 0)
    loaded = store.load_position(book.id)

    assert (loaded.chapter_index, loaded.sentence_index) == (1, 0)
    assert loaded.updated_at == saved.updated_at
    with pytest.raises(ValueError):
        store.save_position(book.id, -1, 0)
    with pytest.raises(FileNotFoundError):
        store.save_position("missing", 0, 0)


def test_bookmarks_crud(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = LibraryStore(tmp_path)
    book = store.create_book(title="T", author=None, chapters=_chapters(), file_path="t.epub")
    clock = iter([100.0, 200.0])
    monkeypatch.setattr(library, "time", SimpleNamespace(time=lambda: next(clock)))

    first = store.add_bookmark(book.id, 0, 1, label="first")
    second = store.add_bookmark(book.id, 1, 0)

    assert [b.id for b in store.list_bookmarks(book.id)] == [second.id, first.id]
    assert store.rename_bookmark(book.id, second.id, "renamed") is True
    assert store.list_bookmarks(book.id)[0].label == "renamed"
    assert store.delete_bookmark(book.id, first.id) is True
    assert store.delete_bookmark(book.id, first.id) is False
    assert [b.id for b in store.list_bookmarks(book.id)] == [second.id]


def test_corrupt_files_read_as_absent(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    book = store.create_book(title="T", author=None, chapters=[], file_path="t.epub")
    (tmp_path / book.id / "position.json").write_text("{not json", encoding="utf-8")
    (tmp_path / book.id / "bookmarks.json").write_text('{"bookmarks": [{"id": 3}]}', encoding="utf-8")
    (tmp_path / "broken").mkdir()
    (tmp_path / "broken" / "book.json").write_text("[]", encoding="utf-8")

    assert store.load_position(book.id) is None
    assert store.list_bookmarks(book.id) == []
    assert [b.id for b in store.list_books()] == [book.id]


def test_invalid_book_ids(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    assert store.get_book("../escape") is None
    with pytest.raises(ValueError):
        store.delete_book("..")
