from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .markup import END, START, TEXT, get_attr, iter_markup_events, local_name, parse_markup

COVER_IMAGE_PROPERTY = "cover-image"


@dataclass
class PackageMetadata:
    title: str | None = None
    author: str | None = None
    cover_image_id: str | None = None
    language: str | None = None


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: str | None = None

    def has_property(self, token: str) -> bool:
        return token in (self.properties or "").split()


@dataclass
class PackageResult:
    metadata: PackageMetadata
    manifest: list[ManifestItem] = field(default_factory=list)
    spine_item_refs: list[str] = field(default_factory=list)

    def manifest_by_id(self) -> dict[str, ManifestItem]:
        lookup: dict[str, ManifestItem] = {}
        for item in self.manifest:
            lookup.setdefault(item.id, item)
        return lookup

    @property
    def cover_image_href(self) -> str | None:
        cover_id = self.metadata.cover_image_id
        if not cover_id:
            return None
        item = self.manifest_by_id().get(cover_id)
        return item.href if item else None


class _Section(enum.Enum):
    OTHER = enum.auto()
    METADATA = enum.auto()
    MANIFEST = enum.auto()
    SPINE = enum.auto()


_SECTIONS = {
    "metadata": _Section.METADATA,
    "manifest": _Section.MANIFEST,
    "spine": _Section.SPINE,
}
_TEXT_FIELDS = {"title": "title", "creator": "author", "language": "language"}


def parse_package(data: bytes) -> PackageResult:
    """
    Parse an OPF package document into metadata, manifest and spine.

    Repeated title/creator/language elements are not merged: the last
    non-empty value wins. Spine itemrefs keep document order and duplicates.
    """
    root = parse_markup(data)
    metadata = PackageMetadata()
    manifest: list[ManifestItem] = []
    spine: list[str] = []
    section = _Section.OTHER
    text_field: str | None = None
    text_parts: list[str] = []

    for kind, node in iter_markup_events(root):
        if kind == TEXT:
            if text_field is not None:
                text_parts.append(node)
            continue
        name = local_name(node.tag)
        if kind == START:
            if name in _SECTIONS:
                section = _SECTIONS[name]
            elif section is _Section.METADATA:
                if name in _TEXT_FIELDS:
                    text_field = _TEXT_FIELDS[name]
                    text_parts = []
                elif name == "meta" and get_attr(node, "name") == "cover":
                    content = get_attr(node, "content")
                    if content:
                        metadata.cover_image_id = content
            elif section is _Section.MANIFEST and name == "item":
                item_id = get_attr(node, "id")
                href = get_attr(node, "href")
                media_type = get_attr(node, "media-type")
                if not (item_id and href and media_type):
                    continue
                item = ManifestItem(
                    id=item_id,
                    href=href,
                    media_type=media_type,
                    properties=get_attr(node, "properties"),
                )
                if item.has_property(COVER_IMAGE_PROPERTY):
                    metadata.cover_image_id = item_id
                manifest.append(item)
            elif section is _Section.SPINE and name == "itemref":
                idref = get_attr(node, "idref")
                if idref:
                    spine.append(idref)
        elif kind == END:
            if name in _SECTIONS:
                section = _Section.OTHER
            elif text_field is not None and name in _TEXT_FIELDS:
                value = "".join(text_parts).strip()
                if value:
                    setattr(metadata, text_field, value)
                text_field = None
                text_parts = []

    return PackageResult(metadata=metadata, manifest=manifest, spine_item_refs=spine)
