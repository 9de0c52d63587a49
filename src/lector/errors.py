from __future__ import annotations


class EPUBError(RuntimeError):
    """Base class for failures while ingesting an EPUB archive."""


class MalformedInputError(EPUBError):
    """Raised when a document's markup cannot be parsed."""


class RootfileNotFoundError(EPUBError):
    """Raised when container.xml names no rootfile with a full-path."""


class ArchiveNotFoundError(EPUBError):
    """Raised when the EPUB file does not exist."""


class ArchiveExtractionError(EPUBError):
    """Raised when the EPUB archive cannot be extracted."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Failed to extract EPUB archive: {detail}")
        self.detail = detail


class ContainerNotFoundError(EPUBError):
    """Raised when META-INF/container.xml is missing."""


class _WrappedError(EPUBError):
    stage = "document"

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"Failed to parse {self.stage}: {cause}")
        self.cause = cause


class ContainerParsingError(_WrappedError):
    """Raised when container.xml is unreadable or names no package document."""

    stage = "container.xml"


class PackageNotFoundError(EPUBError):
    """Raised when the package document named by container.xml is missing."""


class PackageParsingError(_WrappedError):
    """Raised when the package document (OPF) cannot be parsed."""

    stage = "package document"


class TOCParsingError(_WrappedError):
    """Raised when a navigation document cannot be parsed; always recovered."""

    stage = "table of contents"


class NoChaptersFoundError(EPUBError):
    """Raised when no spine item produced any readable sentences."""
