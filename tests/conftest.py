from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable

import pytest

COVER_BYTES = b"\x89PNG\r\n\x1a\n" + b"not-really-a-png"

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

OPF_XML = """<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>Sample Book</dc:title>
    <dc:creator>Sample Author</dc:creator>
    <dc:language>en</dc:language>
  </metadata>
  <manifest>
    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="css" href="style.css" media-type="text/css"/>
    <item id="cover" href="images/cover.png" media-type="image/png" properties="cover-image"/>
    <item id="ch1" href="text/ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch2" href="text/ch2.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="css"/>
    <itemref idref="ch1"/>
    <itemref idref="ch2"/>
  </spine>
</package>
"""

NAV_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <head><title>Contents</title></head>
  <body>
    <nav epub:type="toc">
      <ol>
        <li><a href="text/ch1.xhtml">Chapter One</a></li>
        <li><a href="text/ch2.xhtml#start">Chapter Two</a></li>
      </ol>
    </nav>
  </body>
</html>
"""

TOC_NCX = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <navMap>
    <navPoint id="p1" playOrder="1">
      <navLabel><text>Part One</text></navLabel>
      <content src="text/ch1.xhtml"/>
    </navPoint>
    <navPoint id="p2" playOrder="2">
      <navLabel><text>Part Two</text></navLabel>
      <content src="text/ch2.xhtml"/>
    </navPoint>
  </navMap>
</ncx>
"""

CH1_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>Ignored head title</title></head>
  <body>
    <h1>Chapter One</h1>
    <p>First sentence. Second sentence.</p>
  </body>
</html>
"""

CH2_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>Chapter Two</title></head>
  <body>
    <p id="start">Another sentence here.</p>
    <p>Final words!</p>
  </body>
</html>
"""


def sample_epub_files() -> dict[str, str | bytes]:
    return {
        "META-INF/container.xml": CONTAINER_XML,
        "OEBPS/content.opf": OPF_XML,
        "OEBPS/nav.xhtml": NAV_XHTML,
        "OEBPS/toc.ncx": TOC_NCX,
        "OEBPS/style.css": "body { margin: 0; }",
        "OEBPS/images/cover.png": COVER_BYTES,
        "OEBPS/text/ch1.xhtml": CH1_XHTML,
        "OEBPS/text/ch2.xhtml": CH2_XHTML,
    }


def write_epub(epub_path: Path, files: dict[str, str | bytes | None]) -> Path:
    """Write an EPUB zip; entries mapped to None are left out."""
    with zipfile.ZipFile(epub_path, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        for name, content in files.items():
            if content is None:
                continue
            zf.writestr(name, content, compress_type=zipfile.ZIP_DEFLATED)
    return epub_path


@pytest.fixture
def make_epub(tmp_path: Path) -> Callable[..., Path]:
    """Build the sample EPUB, replacing or dropping entries via ``overrides``."""

    def _make(
        overrides: dict[str, str | bytes | None] | None = None,
        name: str = "sample.epub",
    ) -> Path:
        files: dict[str, str | bytes | None] = dict(sample_epub_files())
        files.update(overrides or {})
        return write_epub(tmp_path / name, files)

    return _make
