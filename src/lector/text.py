from __future__ import annotations

import logging
import re

from nltk.tokenize.punkt import PunktSentenceTokenizer, PunktTokenizer

from .errors import MalformedInputError
from .markup import END, START, TEXT, iter_markup_events, local_name, parse_markup

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "english"

# Elements whose character data is never spoken.
EXCLUDED_TAGS = {"head", "script", "style"}

# Elements that close the running text block on entry and on exit.
BLOCK_LEVEL_TAGS = {
    "article",
    "blockquote",
    "caption",
    "dd",
    "div",
    "dt",
    "figcaption",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "li",
    "p",
    "section",
    "tr",
}
LINE_BREAK_TAG = "br"

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&nbsp;", " "),
)

# ISO 639-1 codes for the languages NLTK ships Punkt models for.
_PUNKT_LANGUAGES = {
    "cs": "czech",
    "da": "danish",
    "de": "german",
    "el": "greek",
    "en": "english",
    "es": "spanish",
    "et": "estonian",
    "fi": "finnish",
    "fr": "french",
    "it": "italian",
    "ml": "malayalam",
    "nb": "norwegian",
    "nl": "dutch",
    "nn": "norwegian",
    "no": "norwegian",
    "pl": "polish",
    "pt": "portuguese",
    "ru": "russian",
    "sl": "slovene",
    "sv": "swedish",
    "tr": "turkish",
}


def punkt_language(value: str | None, default: str = DEFAULT_LANGUAGE) -> str:
    """Map a locale such as ``en-US`` or a Punkt language name to a Punkt name."""
    if not value:
        return default
    normalized = value.strip().lower().replace("_", "-")
    if normalized in _PUNKT_LANGUAGES.values():
        return normalized
    code = normalized.split("-", 1)[0]
    return _PUNKT_LANGUAGES.get(code, default)


class SentenceSegmenter:
    """
    Locale-aware sentence splitting backed by NLTK's Punkt tokenizer.

    Uses the pretrained model for ``language`` when its data is installed and
    an untrained Punkt tokenizer otherwise.
    """

    def __init__(self, language: str | None = DEFAULT_LANGUAGE) -> None:
        self.language = punkt_language(language)
        self._tokenizer: PunktSentenceTokenizer | None = None

    def _load(self) -> PunktSentenceTokenizer:
        if self._tokenizer is None:
            try:
                self._tokenizer = PunktTokenizer(self.language)
            except LookupError:
                logger.debug(
                    "Punkt model for %s is not installed; using untrained tokenizer",
                    self.language,
                )
                self._tokenizer = PunktSentenceTokenizer()
        return self._tokenizer

    def segment(self, text: str) -> list[str]:
        sentences: list[str] = []
        for sentence in self._load().tokenize(text):
            stripped = sentence.strip()
            if stripped:
                sentences.append(stripped)
        return sentences


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def _decode_text(data: bytes) -> str:
    for enc in ("utf-8", "utf-16"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="ignore")


def _text_blocks(data: bytes) -> list[str]:
    root = parse_markup(data)
    blocks: list[str] = []
    buffer: list[str] = []
    excluded_depth = 0
    in_body = False

    def flush() -> None:
        collapsed = collapse_whitespace("".join(buffer))
        if collapsed:
            blocks.append(collapsed)
        buffer.clear()

    for kind, node in iter_markup_events(root):
        if kind == TEXT:
            if in_body and excluded_depth == 0:
                buffer.append(node)
            continue
        name = local_name(node.tag).lower()
        if kind == START:
            if name == "body":
                in_body = True
            if name in EXCLUDED_TAGS:
                excluded_depth += 1
            if name in BLOCK_LEVEL_TAGS:
                flush()
        elif kind == END:
            if name in EXCLUDED_TAGS and excluded_depth > 0:
                excluded_depth -= 1
            if name == "body":
                flush()
                in_body = False
            elif name in BLOCK_LEVEL_TAGS or name == LINE_BREAK_TAG:
                flush()
    return blocks


def _fallback_block(data: bytes) -> str:
    html = _decode_text(data)
    cleaned = _SCRIPT_STYLE_RE.sub("", html)
    cleaned = _TAG_RE.sub(" ", cleaned)
    for entity, replacement in _ENTITIES:
        cleaned = cleaned.replace(entity, replacement)
    return collapse_whitespace(cleaned)


def split_into_sentences(blocks: list[str], segmenter: SentenceSegmenter) -> list[str]:
    sentences: list[str] = []
    for block in blocks:
        collapsed = collapse_whitespace(block)
        if not collapsed:
            continue
        block_sentences = segmenter.segment(collapsed)
        # Headings without terminal punctuation can come back empty.
        sentences.extend(block_sentences or [collapsed])
    return sentences


def extract_sentences(data: bytes, segmenter: SentenceSegmenter | None = None) -> list[str]:
    """
    Convert one XHTML content document into spoken sentences in reading order.

    Well-formed markup is walked element by element, collecting body text in
    block-level chunks. Markup that fails to parse is stripped with regular
    expressions instead. Never raises; empty input yields an empty list.
    """
    if not data:
        return []
    segmenter = segmenter or SentenceSegmenter()
    try:
        blocks = _text_blocks(data)
    except MalformedInputError as exc:
        logger.debug("Falling back to regex text extraction: %s", exc)
        fallback = _fallback_block(data)
        blocks = [fallback] if fallback else []
    return split_into_sentences(blocks, segmenter)
