from __future__ import annotations

import argparse
import sys
from importlib import metadata
from pathlib import Path

import tomllib
from rich.console import Console
from rich.table import Table

from .bookmarks import BookmarkService
from .config import ReaderConfig, load_config
from .core import parse_epub
from .engine import PlaybackState
from .errors import EPUBError
from .importer import BookImportError, BookImportService
from .library import Book, LibraryStore
from .logging_utils import configure_logging
from .playback import PlaybackCoordinator, PlaybackSnapshot
from .sleep_timer import SleepTimer
from .voicevox import VoiceVoxClient, VoiceVoxSpeechEngine

COMMANDS = ("text", "import", "books", "chapters", "listen", "bookmark", "delete")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("lector")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"lector {__version__}",
    )


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    _add_version_flag(parser)
    parser.add_argument(
        "--home",
        type=Path,
        help="Library directory (default: $LECTOR_HOME or ~/.lector).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose logging.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lector",
        description=(
            "Read EPUB books aloud. Commands: " + ", ".join(COMMANDS) + ". "
            "Run `lector <command> -h` for details."
        ),
    )
    _add_version_flag(ap)
    return ap


def build_text_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lector text",
        description="Print the chapters and sentences of an EPUB without importing it.",
    )
    _add_common_flags(ap)
    ap.add_argument("epub", type=Path, help="Path to the .epub file")
    ap.add_argument(
        "--language",
        help="Sentence segmentation language (default: the book's dc:language).",
    )
    return ap


def build_import_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lector import",
        description="Copy an EPUB into the library and parse it.",
    )
    _add_common_flags(ap)
    ap.add_argument("epub", type=Path, help="Path to the .epub file")
    ap.add_argument("--language", help="Sentence segmentation language override.")
    return ap


def build_books_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="lector books", description="List imported books.")
    _add_common_flags(ap)
    return ap


def build_chapters_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lector chapters",
        description="List a book's chapters and mark the saved reading position.",
    )
    _add_common_flags(ap)
    ap.add_argument("book", help="Book id (or a unique id prefix)")
    return ap


def build_listen_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lector listen",
        description="Read a book aloud through VoiceVox from the saved position.",
    )
    _add_common_flags(ap)
    ap.add_argument("book", help="Book id (or a unique id prefix)")
    ap.add_argument(
        "--chapter",
        type=int,
        help="Start at this chapter (1-based) instead of the saved position.",
    )
    ap.add_argument(
        "--rate",
        type=float,
        help="Speech rate between 0.0 and 1.0 (0.5 is normal speed).",
    )
    ap.add_argument("--engine-url", help="VoiceVox engine URL.")
    ap.add_argument("--speaker", type=int, help="VoiceVox speaker id.")
    sleep = ap.add_mutually_exclusive_group()
    sleep.add_argument(
        "--sleep",
        type=float,
        metavar="MINUTES",
        help="Stop playback after this many minutes.",
    )
    sleep.add_argument(
        "--end-of-chapter",
        action="store_true",
        help="Stop playback when the current chapter ends.",
    )
    return ap


def build_bookmark_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="lector bookmark", description="Manage bookmarks.")
    _add_common_flags(ap)
    sub = ap.add_subparsers(dest="action", required=True)

    add = sub.add_parser("add", help="Bookmark a position (default: the saved position).")
    add.add_argument("book", help="Book id (or a unique id prefix)")
    add.add_argument("--label", help="Bookmark label (default: the chapter title).")
    add.add_argument("--chapter", type=int, help="Chapter number (1-based).")
    add.add_argument("--sentence", type=int, help="Sentence number (1-based).")

    list_cmd = sub.add_parser("list", help="List bookmarks, newest first.")
    list_cmd.add_argument("book", help="Book id (or a unique id prefix)")

    remove = sub.add_parser("remove", help="Delete a bookmark.")
    remove.add_argument("book", help="Book id (or a unique id prefix)")
    remove.add_argument("bookmark", help="Bookmark id")
    return ap


def build_delete_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="lector delete",
        description="Remove a book with its position, bookmarks and cover.",
    )
    _add_common_flags(ap)
    ap.add_argument("book", help="Book id (or a unique id prefix)")
    return ap


def _config_for(args: argparse.Namespace) -> ReaderConfig:
    configure_logging(debug=getattr(args, "debug", False))
    config = load_config()
    if getattr(args, "home", None) is not None:
        config.home = args.home.expanduser()
    return config


def _resolve_book(store: LibraryStore, reference: str) -> Book:
    book = store.get_book(reference)
    if book is not None:
        return book
    matches = [book for book in store.list_books() if book.id.startswith(reference)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise SystemExit(f"No book matches '{reference}'.")
    raise SystemExit(f"'{reference}' matches {len(matches)} books; use a longer id.")


def _run_text(args: argparse.Namespace) -> int:
    config = _config_for(args)
    try:
        parsed = parse_epub(
            args.epub,
            language=args.language,
            default_language=config.language,
        )
    except EPUBError as exc:
        raise SystemExit(f"Failed to read {args.epub}: {exc}") from exc
    header = parsed.title
    if parsed.author:
        header = f"{header} ({parsed.author})"
    print(header)
    for number, chapter in enumerate(parsed.chapters, start=1):
        print()
        print(f"# {number}. {chapter.title}")
        for sentence in chapter.sentences:
            print(sentence)
    return 0


def _run_import(args: argparse.Namespace) -> int:
    config = _config_for(args)
    store = LibraryStore(config.library_dir)
    service = BookImportService(
        store,
        config.books_dir,
        language=args.language,
        default_language=config.language,
    )
    try:
        book = service.import_book(args.epub)
    except BookImportError as exc:
        raise SystemExit(str(exc)) from exc
    print(f"Imported {book.title} [{book.id}] ({len(book.chapters)} chapters)")
    return 0


def _run_books(args: argparse.Namespace) -> int:
    config = _config_for(args)
    store = LibraryStore(config.library_dir)
    books = store.list_books()
    console = Console()
    if not books:
        console.print("Library is empty. Import a book with `lector import BOOK.epub`.")
        return 0
    table = Table(title="Library")
    table.add_column("ID", no_wrap=True)
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Chapters", justify="right")
    table.add_column("Position", justify="right")
    for book in books:
        position = store.load_position(book.id)
        where = "-"
        if position is not None and book.chapters:
            where = f"ch. {position.chapter_index + 1}, s. {position.sentence_index + 1}"
        table.add_row(book.id[:8], book.title, book.author or "", str(len(book.chapters)), where)
    console.print(table)
    return 0


def _run_chapters(args: argparse.Namespace) -> int:
    config = _config_for(args)
    store = LibraryStore(config.library_dir)
    book = _resolve_book(store, args.book)
    position = store.load_position(book.id)
    saved_chapter = position.chapter_index if position is not None else None
    table = Table(title=book.title)
    table.add_column("", no_wrap=True)
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Sentences", justify="right")
    for index, chapter in enumerate(sorted(book.chapters, key=lambda c: c.spine_index)):
        marker = ">" if index == saved_chapter else ""
        table.add_row(marker, str(index + 1), chapter.title, str(len(chapter.sentences)))
    Console().print(table)
    return 0


def _run_listen(args: argparse.Namespace) -> int:
    config = _config_for(args)
    store = LibraryStore(config.library_dir)
    book = _resolve_book(store, args.book)
    if not book.chapters:
        raise SystemExit(f"{book.title} has no chapters to read.")

    try:
        client = VoiceVoxClient(
            args.engine_url or config.engine_url,
            speaker_id=args.speaker if args.speaker is not None else config.speaker,
            timeout=config.timeout,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    engine = VoiceVoxSpeechEngine(client, ffplay_path=config.ffplay_path)
    coordinator = PlaybackCoordinator(engine, store)
    coordinator.load(book)
    coordinator.set_rate(args.rate if args.rate is not None else config.rate)
    if args.chapter is not None:
        if not 1 <= args.chapter <= len(coordinator.chapters):
            raise SystemExit(
                f"Chapter must be between 1 and {len(coordinator.chapters)}."
            )
        coordinator.jump_to_chapter(args.chapter - 1)

    timer = SleepTimer(coordinator)
    if args.sleep is not None:
        timer.start_minutes(args.sleep)
    elif args.end_of_chapter:
        timer.start_end_of_chapter()

    console = Console()
    shown: list[tuple[int, int]] = []

    def _show(snapshot: PlaybackSnapshot) -> None:
        if snapshot.state is not PlaybackState.PLAYING:
            return
        key = (snapshot.chapter_index, snapshot.sentence_index)
        if shown and shown[-1] == key:
            return
        if not shown or shown[-1][0] != key[0]:
            chapter = coordinator.current_chapter
            if chapter is not None:
                console.rule(chapter.title)
        shown.append(key)
        sentence = coordinator.current_sentence
        if sentence:
            console.print(sentence, markup=False, highlight=False)

    unsubscribe = coordinator.subscribe(_show)
    coordinator.play()
    try:
        while coordinator.state is not PlaybackState.IDLE:
            engine.dispatch_pending(timeout=0.2)
            if timer.tick():
                console.print("Sleep timer expired.")
    except KeyboardInterrupt:
        console.print("Stopped.")
    finally:
        unsubscribe()
        coordinator.stop()
        engine.close()

    if coordinator.last_error is not None:
        raise SystemExit(f"Playback stopped: {coordinator.last_error}")
    return 0


def _run_bookmark(args: argparse.Namespace) -> int:
    config = _config_for(args)
    store = LibraryStore(config.library_dir)
    service = BookmarkService(store)
    book = _resolve_book(store, args.book)

    if args.action == "add":
        position = store.load_position(book.id)
        chapter_index = position.chapter_index if position is not None else 0
        sentence_index = position.sentence_index if position is not None else 0
        if args.chapter is not None:
            chapter_index = args.chapter - 1
            sentence_index = 0
        if args.sentence is not None:
            sentence_index = args.sentence - 1
        if chapter_index < 0 or sentence_index < 0:
            raise SystemExit("Chapter and sentence numbers start at 1.")
        label = args.label
        if label is None and 0 <= chapter_index < len(book.chapters):
            label = book.chapters[chapter_index].title
        bookmark = service.create(book.id, label, chapter_index, sentence_index)
        print(f"Added bookmark {bookmark.id}")
        return 0

    if args.action == "list":
        bookmarks = service.bookmarks(book.id)
        console = Console()
        if not bookmarks:
            console.print("No bookmarks.")
            return 0
        table = Table(title=f"Bookmarks: {book.title}")
        table.add_column("ID", no_wrap=True)
        table.add_column("Label")
        table.add_column("Chapter", justify="right")
        table.add_column("Sentence", justify="right")
        for bookmark in bookmarks:
            table.add_row(
                bookmark.id,
                bookmark.label or "",
                str(bookmark.chapter_index + 1),
                str(bookmark.sentence_index + 1),
            )
        console.print(table)
        return 0

    if not service.delete(book.id, args.bookmark):
        raise SystemExit(f"Bookmark not found: {args.bookmark}")
    print(f"Removed bookmark {args.bookmark}")
    return 0


def _run_delete(args: argparse.Namespace) -> int:
    config = _config_for(args)
    store = LibraryStore(config.library_dir)
    book = _resolve_book(store, args.book)
    store.delete_book(book.id)
    source = config.books_dir / book.file_path
    source.unlink(missing_ok=True)
    print(f"Deleted {book.title}")
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "text":
        return _run_text(build_text_parser().parse_args(argv[1:]))
    if argv and argv[0] == "import":
        return _run_import(build_import_parser().parse_args(argv[1:]))
    if argv and argv[0] == "books":
        return _run_books(build_books_parser().parse_args(argv[1:]))
    if argv and argv[0] == "chapters":
        return _run_chapters(build_chapters_parser().parse_args(argv[1:]))
    if argv and argv[0] == "listen":
        return _run_listen(build_listen_parser().parse_args(argv[1:]))
    if argv and argv[0] == "bookmark":
        return _run_bookmark(build_bookmark_parser().parse_args(argv[1:]))
    if argv and argv[0] == "delete":
        return _run_delete(build_delete_parser().parse_args(argv[1:]))

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.error(f"unknown command: {argv[0]}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
