from .core import LocalFileSystem, ParsedBook, ParsedChapter, parse_epub, parse_extracted_epub
from .engine import ManualSpeechEngine, PlaybackState, SpeechEngine, SpeechEngineError, Utterance
from .errors import EPUBError
from .library import Book, Bookmark, Chapter, LibraryStore, ReadingPosition
from .playback import PlaybackCoordinator, PlaybackSnapshot
from .voicevox import (
    PlayerProcessError,
    VoiceVoxClient,
    VoiceVoxError,
    VoiceVoxSpeechEngine,
    VoiceVoxUnavailableError,
)

__all__ = [
    "ParsedBook",
    "ParsedChapter",
    "parse_epub",
    "parse_extracted_epub",
    "LocalFileSystem",
    "EPUBError",
    "Book",
    "Chapter",
    "Bookmark",
    "ReadingPosition",
    "LibraryStore",
    "PlaybackCoordinator",
    "PlaybackSnapshot",
    "PlaybackState",
    "SpeechEngine",
    "SpeechEngineError",
    "ManualSpeechEngine",
    "Utterance",
    "VoiceVoxClient",
    "VoiceVoxSpeechEngine",
    "VoiceVoxError",
    "VoiceVoxUnavailableError",
    "PlayerProcessError",
]
