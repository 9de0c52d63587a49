from __future__ import annotations

from dataclasses import dataclass

from .errors import RootfileNotFoundError
from .markup import START, get_attr, iter_markup_events, local_name, parse_markup

CONTAINER_PATH = "META-INF/container.xml"


@dataclass(frozen=True)
class ContainerResult:
    opf_path: str


def parse_container(data: bytes) -> ContainerResult:
    """
    Locate the package document path in META-INF/container.xml.

    The first ``rootfile`` carrying a ``full-path`` attribute wins.
    """
    root = parse_markup(data)
    for kind, node in iter_markup_events(root):
        if kind != START or local_name(node.tag) != "rootfile":
            continue
        full_path = get_attr(node, "full-path")
        if full_path:
            return ContainerResult(opf_path=full_path)
    raise RootfileNotFoundError("container.xml does not name a rootfile full-path")
