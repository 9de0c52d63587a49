from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Protocol
from urllib.parse import unquote

from .container import CONTAINER_PATH, parse_container
from .errors import (
    ArchiveExtractionError,
    ArchiveNotFoundError,
    ContainerNotFoundError,
    ContainerParsingError,
    EPUBError,
    NoChaptersFoundError,
    PackageNotFoundError,
    PackageParsingError,
    TOCParsingError,
)
from .opf import ManifestItem, PackageResult, parse_package
from .text import SentenceSegmenter, extract_sentences
from .toc import TOCEntry, parse_nav, parse_ncx

logger = logging.getLogger(__name__)

TEXT_MEDIA_TYPES = ("application/xhtml+xml", "text/html")
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
NAV_PROPERTY = "nav"


@dataclass(frozen=True)
class ParsedChapter:
    title: str
    sentences: list[str]
    href: str


@dataclass(frozen=True)
class ParsedBook:
    title: str | None
    author: str | None
    cover_bytes: bytes | None
    chapters: list[ParsedChapter]
    language: str | None = None
    toc: list[TOCEntry] = field(default_factory=list)


class FileSystem(Protocol):
    """The file operations ingestion depends on."""

    def exists(self, path: Path) -> bool: ...

    def read_bytes(self, path: Path) -> bytes: ...

    def extract_archive(self, archive: Path, target: Path) -> None: ...

    def remove(self, path: Path) -> None: ...


class LocalFileSystem:
    def exists(self, path: Path) -> bool:
        return path.exists()

    def read_bytes(self, path: Path) -> bytes:
        return path.read_bytes()

    def extract_archive(self, archive: Path, target: Path) -> None:
        target.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive, "r") as zf:
            zf.extractall(target)

    def remove(self, path: Path) -> None:
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        else:
            path.unlink(missing_ok=True)


def _split_href_fragment(href: str) -> tuple[str, str | None]:
    if "#" in href:
        base, frag = href.split("#", 1)
        return base, unquote(frag)
    return href, None


def _resolve_relative_path(base_file: str, href: str) -> str:
    """Resolve ``href`` against the directory of ``base_file`` (archive-relative)."""
    base = str(PurePosixPath(base_file).parent)
    if base not in ("", ".", "/"):
        combined = PurePosixPath(base) / unquote(href)
    else:
        combined = PurePosixPath(unquote(href))
    parts: list[str] = []
    for part in combined.parts:
        if part == "..":
            if parts:
                parts.pop()
        elif part not in (".", "/"):
            parts.append(part)
    return "/".join(parts)


def _is_text_content(item: ManifestItem) -> bool:
    return item.media_type.strip().lower() in TEXT_MEDIA_TYPES


class _ExtractedBook:
    """Reads files from an extracted archive by archive-relative path."""

    def __init__(self, root: Path, fs: FileSystem) -> None:
        self.root = root
        self.fs = fs

    def path(self, relative: str) -> Path:
        return self.root.joinpath(*PurePosixPath(relative).parts)

    def exists(self, relative: str) -> bool:
        return self.fs.exists(self.path(relative))

    def read(self, relative: str) -> bytes:
        return self.fs.read_bytes(self.path(relative))


TOCParser = Callable[[bytes], list[TOCEntry]]


def _parse_toc_document(parser: TOCParser, data: bytes) -> list[TOCEntry]:
    try:
        return parser(data)
    except EPUBError as exc:
        raise TOCParsingError(exc) from exc


def _load_toc(
    book: _ExtractedBook,
    package: PackageResult,
    opf_path: str,
) -> tuple[list[TOCEntry], str | None]:
    """Return TOC entries and the archive path of the document they came from."""
    candidates: list[tuple[ManifestItem, TOCParser]] = []
    nav_item = next((it for it in package.manifest if it.has_property(NAV_PROPERTY)), None)
    if nav_item is not None:
        candidates.append((nav_item, parse_nav))
    ncx_item = next(
        (it for it in package.manifest if it.media_type.strip().lower() == NCX_MEDIA_TYPE),
        None,
    )
    if ncx_item is not None:
        candidates.append((ncx_item, parse_ncx))

    for item, parser in candidates:
        toc_path = _resolve_relative_path(opf_path, item.href)
        try:
            data = book.read(toc_path)
        except OSError as exc:
            logger.debug("Skipping unreadable TOC %s: %s", toc_path, exc)
            continue
        try:
            entries = _parse_toc_document(parser, data)
        except TOCParsingError as exc:
            logger.debug("Ignoring TOC %s: %s", toc_path, exc)
            continue
        if entries:
            return entries, toc_path
    return [], None


def _toc_titles_by_path(entries: list[TOCEntry], toc_path: str | None) -> dict[str, str]:
    titles: dict[str, str] = {}
    if toc_path is None:
        return titles
    for entry in entries:
        base_href, _fragment = _split_href_fragment(entry.href)
        if not base_href:
            continue
        titles.setdefault(_resolve_relative_path(toc_path, base_href), entry.title)
    return titles


def _load_cover(book: _ExtractedBook, package: PackageResult, opf_path: str) -> bytes | None:
    href = package.cover_image_href
    if not href:
        return None
    cover_path = _resolve_relative_path(opf_path, href)
    try:
        return book.read(cover_path)
    except OSError as exc:
        logger.debug("Cover image %s unavailable: %s", cover_path, exc)
        return None


def parse_extracted_epub(
    directory: Path,
    fs: FileSystem | None = None,
    language: str | None = None,
    default_language: str | None = None,
) -> ParsedBook:
    """
    Parse an EPUB that has already been extracted to ``directory``.

    ``language`` overrides the sentence segmentation language; otherwise the
    package document's ``dc:language`` is used, then ``default_language``.
    """
    fs = fs or LocalFileSystem()
    book = _ExtractedBook(Path(directory), fs)

    if not book.exists(CONTAINER_PATH):
        raise ContainerNotFoundError(f"{CONTAINER_PATH} not found in {directory}")
    try:
        container = parse_container(book.read(CONTAINER_PATH))
    except (EPUBError, OSError) as exc:
        raise ContainerParsingError(exc) from exc

    opf_path = _resolve_relative_path("", container.opf_path)
    if not book.exists(opf_path):
        raise PackageNotFoundError(f"Package document not found: {opf_path}")
    try:
        package = parse_package(book.read(opf_path))
    except (EPUBError, OSError) as exc:
        raise PackageParsingError(exc) from exc

    toc_entries, toc_path = _load_toc(book, package, opf_path)
    toc_titles = _toc_titles_by_path(toc_entries, toc_path)
    segmenter = SentenceSegmenter(language or package.metadata.language or default_language)
    manifest = package.manifest_by_id()

    chapters: list[ParsedChapter] = []
    for idref in package.spine_item_refs:
        item = manifest.get(idref)
        if item is None or not _is_text_content(item):
            continue
        chapter_path = _resolve_relative_path(opf_path, item.href)
        try:
            data = book.read(chapter_path)
        except OSError as exc:
            logger.debug("Skipping unreadable chapter %s: %s", chapter_path, exc)
            continue
        sentences = extract_sentences(data, segmenter)
        if not sentences:
            logger.debug("Skipping chapter without text: %s", chapter_path)
            continue
        title = toc_titles.get(chapter_path) or sentences[0] or item.href
        chapters.append(ParsedChapter(title=title, sentences=sentences, href=item.href))

    if not chapters:
        raise NoChaptersFoundError(f"No readable chapters found in {directory}")

    return ParsedBook(
        title=package.metadata.title,
        author=package.metadata.author,
        cover_bytes=_load_cover(book, package, opf_path),
        chapters=chapters,
        language=package.metadata.language,
        toc=toc_entries,
    )


def parse_epub(
    epub_path: str | Path,
    fs: FileSystem | None = None,
    language: str | None = None,
    default_language: str | None = None,
) -> ParsedBook:
    """Extract ``epub_path`` to a scratch directory and parse it."""
    fs = fs or LocalFileSystem()
    epub_path = Path(epub_path)
    if not fs.exists(epub_path):
        raise ArchiveNotFoundError(f"EPUB not found: {epub_path}")

    scratch = Path(tempfile.mkdtemp(prefix="lector-epub-"))
    try:
        try:
            fs.extract_archive(epub_path, scratch)
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            raise ArchiveExtractionError(str(exc)) from exc
        return parse_extracted_epub(
            scratch, fs=fs, language=language, default_language=default_language
        )
    finally:
        fs.remove(scratch)
