from __future__ import annotations

from dataclasses import dataclass

from .markup import END, START, TEXT, get_attr, iter_markup_events, local_name, parse_markup


@dataclass(frozen=True)
class TOCEntry:
    title: str
    href: str
    play_order: int | None
    depth: int


@dataclass
class _NavPointState:
    depth: int
    play_order: int | None
    label: str = ""


def _parse_play_order(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def parse_ncx(data: bytes) -> list[TOCEntry]:
    """
    Flatten an EPUB 2 NCX navMap into depth-annotated entries.

    An entry is emitted when a navPoint's ``content`` element is reached, so a
    parent always precedes its children and entries follow declaration order.
    navPoints without a label are skipped.
    """
    root = parse_markup(data)
    entries: list[TOCEntry] = []
    stack: list[_NavPointState] = []
    in_label = False
    label_parts: list[str] | None = None

    for kind, node in iter_markup_events(root):
        if kind == TEXT:
            if label_parts is not None:
                label_parts.append(node)
            continue
        name = local_name(node.tag)
        if kind == START:
            if name == "navPoint":
                stack.append(
                    _NavPointState(
                        depth=len(stack),
                        play_order=_parse_play_order(get_attr(node, "playOrder")),
                    )
                )
            elif name == "navLabel":
                in_label = True
            elif name == "text" and in_label:
                label_parts = []
            elif name == "content" and stack:
                src = get_attr(node, "src")
                current = stack[-1]
                if src and current.label:
                    entries.append(
                        TOCEntry(
                            title=current.label,
                            href=src,
                            play_order=current.play_order,
                            depth=current.depth,
                        )
                    )
        elif kind == END:
            if name == "text" and label_parts is not None:
                if stack:
                    stack[-1].label = "".join(label_parts).strip()
                label_parts = None
            elif name == "navLabel":
                in_label = False
            elif name == "navPoint" and stack:
                stack.pop()
    return entries


def _is_toc_nav(node) -> bool:
    nav_type = get_attr(node, "type") or ""
    return "toc" in nav_type.split()


def parse_nav(data: bytes) -> list[TOCEntry]:
    """
    Flatten the ``epub:type="toc"`` nav of an EPUB 3 navigation document.

    Depth follows ``<ol>`` nesting inside the toc nav (the outermost list is
    depth 0). Play order is synthetic: 1, 2, 3... in document order.
    """
    root = parse_markup(data)
    entries: list[TOCEntry] = []
    nav_stack: list[bool] = []
    list_depth = -1
    anchor_href: str | None = None
    anchor_parts: list[str] = []

    for kind, node in iter_markup_events(root):
        in_toc = True in nav_stack
        if kind == TEXT:
            if anchor_href is not None:
                anchor_parts.append(node)
            continue
        name = local_name(node.tag)
        if kind == START:
            if name == "nav":
                nav_stack.append(_is_toc_nav(node))
            elif not in_toc:
                continue
            elif name == "ol":
                list_depth += 1
            elif name == "a":
                anchor_href = (get_attr(node, "href") or "").strip()
                anchor_parts = []
        elif kind == END:
            if name == "nav":
                if nav_stack:
                    nav_stack.pop()
            elif not in_toc:
                continue
            elif name == "ol":
                list_depth -= 1
            elif name == "a" and anchor_href is not None:
                title = " ".join("".join(anchor_parts).split())
                if title and anchor_href:
                    entries.append(
                        TOCEntry(
                            title=title,
                            href=anchor_href,
                            play_order=len(entries) + 1,
                            depth=max(list_depth, 0),
                        )
                    )
                anchor_href = None
                anchor_parts = []
    return entries
