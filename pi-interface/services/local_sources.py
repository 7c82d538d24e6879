"""Local upload sources.

Uploads read files from the host running the UI. Only paths inside the
allow-listed roots (``PIFACE_LOCAL_ROOTS``, colon-separated; the spool dir by
default) may be used. Symlinks are followed, then containment is re-checked
on the real path.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from services.errors import SourceUnavailableError


@dataclass(frozen=True)
class LocalSource:
    path: str
    name: str
    size: int


def allowed_roots(raw: Optional[str], *, default: Sequence[str] = ()) -> List[str]:
    raw = (raw or "").strip()
    roots = [r for r in raw.split(":") if r.strip()] if raw else list(default)
    out: List[str] = []
    for r in roots:
        rp = os.path.realpath(os.path.expanduser(r.strip())).rstrip("/")
        if rp:
            out.append(rp)
    return sorted(set(out))


def _is_allowed(real_path: str, roots: Sequence[str]) -> bool:
    for root in roots:
        try:
            if os.path.commonpath([real_path, root]) == root:
                return True
        except ValueError:
            continue
    return False


def _norm_abs(path: str, roots: Sequence[str]) -> str:
    """Lexically normalized absolute path; relative paths hang off the first root."""
    if not roots:
        raise SourceUnavailableError("no_local_roots", source=path)
    p = (path or "").strip()
    if not p:
        raise SourceUnavailableError("source_required", source=path)
    if not p.startswith("/"):
        p = os.path.join(roots[0], p)
    p = os.path.normpath(p)
    if not _is_allowed(p, roots):
        raise SourceUnavailableError("source_not_allowed", source=path)
    return p


def resolve_source(path: str, roots: Sequence[str]) -> LocalSource:
    """Validate one upload source and measure it."""
    ap = _norm_abs(path, roots)
    rp = os.path.realpath(ap)
    if not _is_allowed(rp, roots):
        raise SourceUnavailableError("source_not_allowed", source=path)
    try:
        st = os.stat(rp)
    except OSError as e:
        raise SourceUnavailableError("source_unreadable", source=path, reason=e.strerror or str(e)) from e
    if not os.path.isfile(rp):
        raise SourceUnavailableError("source_not_a_file", source=path)
    if not os.access(rp, os.R_OK):
        raise SourceUnavailableError("source_unreadable", source=path, reason="permission denied")
    return LocalSource(path=rp, name=os.path.basename(ap), size=int(st.st_size))


def resolve_sources(paths: Sequence[str], roots: Sequence[str]) -> List[LocalSource]:
    if not paths:
        raise SourceUnavailableError("sources_required")
    return [resolve_source(p, roots) for p in paths]


def source_sizes(paths: Sequence[str], roots: Sequence[str]) -> List[int]:
    return [resolve_source(p, roots).size for p in paths]
