"""
Category Paths
==============

Hierarchical category paths such as ``it/bug-fixes/frontend``.

Each segment is lowercased, whitespace runs become ``-`` and the result is
percent-encoded, so a literal ``/`` or ``&`` inside a category name can never
be confused with the separator. ``split_category_path`` is the exact inverse
of ``build_category_path`` on the normalized segments.
"""

import re
from typing import Iterable, List
from urllib.parse import quote, unquote

PATH_SEPARATOR = "/"

_WHITESPACE = re.compile(r"\s+")


def normalize_segment(name: str) -> str:
    """Lowercase and hyphenate a single category name."""
    return _WHITESPACE.sub("-", name.strip().lower())


def encode_segment(name: str) -> str:
    return quote(normalize_segment(name), safe="-")


def build_category_path(names: Iterable[str]) -> str:
    """Build a path from category names ordered root first."""
    return PATH_SEPARATOR.join(encode_segment(n) for n in names)


def split_category_path(path: str) -> List[str]:
    """Return the normalized (decoded) segments of a path."""
    if not path:
        return []
    return [unquote(segment) for segment in path.split(PATH_SEPARATOR)]


def parent_path(path: str) -> str:
    if PATH_SEPARATOR not in path:
        return ""
    return path.rsplit(PATH_SEPARATOR, 1)[0]


def is_ancestor(ancestor: str, path: str) -> bool:
    return bool(ancestor) and path.startswith(ancestor + PATH_SEPARATOR)


def is_related_category(path_a: str, path_b: str) -> bool:
    """
    True when two distinct categories are close in the tree.

    Related means one is an ancestor of the other, or both share the same
    parent. Used to grade partial skill matches.
    """
    if not path_a or not path_b or path_a == path_b:
        return False
    if is_ancestor(path_a, path_b) or is_ancestor(path_b, path_a):
        return True
    parent = parent_path(path_a)
    return bool(parent) and parent == parent_path(path_b)
