"""Per-user path confinement.

Every remote path the engine touches is built here: UI-relative segments are
joined onto the user's root and normalized lexically. Anything that would
climb above the root is refused with PathEscapeError before any remote call.
"""

from __future__ import annotations

import posixpath
from typing import List, Sequence, Union

from services.errors import InvalidNameError, PathEscapeError


PathInput = Union[str, Sequence[str], None]


def split_segments(path: PathInput) -> List[str]:
    """Accept a ``"a/b"`` string or a list of segments; return raw segments."""
    if path is None:
        return []
    if isinstance(path, str):
        return path.split("/")
    parts: List[str] = []
    for seg in path:
        if not isinstance(seg, str):
            raise PathEscapeError("bad_segment", segment=repr(seg))
        parts.extend(seg.split("/"))
    return parts


def normalize_segments(path: PathInput) -> List[str]:
    """Collapse ``.``/``..``/empty segments. Raises when ``..`` leaves the root."""
    out: List[str] = []
    for seg in split_segments(path):
        if "\x00" in seg:
            raise PathEscapeError("bad_segment", segment=repr(seg))
        if seg in ("", "."):
            continue
        if seg == "..":
            if not out:
                raise PathEscapeError("path_escape")
            out.pop()
            continue
        out.append(seg)
    return out


def resolve(root: str, path: PathInput) -> str:
    """Absolute remote path for ``path`` below ``root``."""
    segments = normalize_segments(path)
    if not segments:
        return root
    return posixpath.join(root, *segments)


def relative_path(path: PathInput) -> str:
    """Canonical ``"a/b"`` form of a UI path (no leading slash)."""
    return "/".join(normalize_segments(path))


def validate_name(name: str) -> str:
    """A single entry name: non-empty, no separators, not ``.``/``..``."""
    if not isinstance(name, str):
        raise InvalidNameError("name_required")
    if not name or not name.strip():
        raise InvalidNameError("name_required")
    if "/" in name or "\\" in name or "\x00" in name:
        raise InvalidNameError("name_has_separator", name=name)
    if name in (".", ".."):
        raise InvalidNameError("name_reserved", name=name)
    return name


def resolve_child(root: str, parent: PathInput, name: str) -> str:
    """Path of entry ``name`` inside folder ``parent``."""
    return posixpath.join(resolve(root, parent), validate_name(name))
