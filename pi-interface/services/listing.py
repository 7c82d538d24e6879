"""Directory listing (immediate children only)."""

from __future__ import annotations

import errno
import posixpath
from dataclasses import dataclass
from typing import Any, Dict, List

import paramiko

from services import sandbox
from services.errors import NotFoundError
from services.remote import is_missing, remote_errors, stat_isdir, stat_islink
from services.sessions import Session


KIND_FILE = "File"
KIND_FOLDER = "Folder"


@dataclass(frozen=True)
class EntryInfo:
    name: str
    kind: str
    size_bytes: int
    last_modified: int
    # lower-case file extension without the dot ("" for folders / none)
    extension: str = ""

    @property
    def is_folder(self) -> bool:
        return self.kind == KIND_FOLDER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "size_bytes": self.size_bytes,
            "last_modified": self.last_modified,
            "extension": self.extension,
        }


def _extension(name: str) -> str:
    stem, ext = posixpath.splitext(name)
    if not stem or not ext:
        return ""
    return ext[1:].lower()


def entry_from_attr(attr: paramiko.SFTPAttributes, *, is_dir: bool = False) -> EntryInfo:
    name = attr.filename
    folder = is_dir or stat_isdir(attr)
    return EntryInfo(
        name=name,
        kind=KIND_FOLDER if folder else KIND_FILE,
        size_bytes=0 if folder else int(attr.st_size or 0),
        last_modified=int(attr.st_mtime or 0),
        extension="" if folder else _extension(name),
    )


def _is_dir_following_link(session: Session, path: str, attr: paramiko.SFTPAttributes) -> bool:
    if stat_isdir(attr):
        return True
    if not stat_islink(attr):
        return False
    try:
        return stat_isdir(session.sftp.stat(path))
    except OSError as e:
        # dangling or looping link
        if is_missing(e) or e.errno == errno.ELOOP:
            return False
        raise


def list_entries(session: Session, path: sandbox.PathInput) -> List[EntryInfo]:
    """Entries of folder ``path``. NotFoundError when absent or not a folder."""
    target = session.resolve(path)
    rel = sandbox.relative_path(path)
    with remote_errors(session.connection, missing="folder_not_found", path=rel):
        attr = session.sftp.stat(target)
        if not stat_isdir(attr):
            raise NotFoundError("not_a_folder", path=rel)

        entries: List[EntryInfo] = []
        for child in session.sftp.listdir_attr(target):
            if child.filename in (".", ".."):
                continue
            is_dir = _is_dir_following_link(session, posixpath.join(target, child.filename), child)
            entries.append(entry_from_attr(child, is_dir=is_dir))
    return entries
