from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Iterator

from .errors import MalformedInputError

START = "start"
TEXT = "text"
END = "end"


def parse_markup(data: bytes) -> ET.Element:
    """Parse raw XML/XHTML bytes, raising MalformedInputError on failure."""
    try:
        return ET.fromstring(data)
    except ET.ParseError as exc:
        raise MalformedInputError(str(exc)) from exc


def local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.split("}", 1)[-1] if "}" in tag else tag


def get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if local_name(attr) == name:
            return value
    return None


def iter_markup_events(root: ET.Element) -> Iterator[tuple[str, ET.Element | str]]:
    """
    Walk ``root`` depth-first and yield start/text/end events in document order.

    An element's own text follows its start event; a child's tail text follows
    the child's end event, so character data arrives in reading order.
    """
    stack: list[tuple[ET.Element, bool]] = [(root, False)]
    while stack:
        elem, closing = stack.pop()
        if closing:
            yield END, elem
            if elem is not root and elem.tail:
                yield TEXT, elem.tail
            continue
        yield START, elem
        if elem.text:
            yield TEXT, elem.text
        stack.append((elem, True))
        for child in reversed(list(elem)):
            stack.append((child, False))
