"""Whole-file text read/write for the editor.

Writes go to a hidden temp file next to the target and are moved over it
with ``posix_rename``, so readers see either the old or the new content.
A transport failure mid-write may still leave the temp file behind.
"""

from __future__ import annotations

import posixpath
import uuid

import paramiko

from services import sandbox
from services.errors import NotFoundError, PermissionDeniedError, WriteError
from services.logging_setup import core_log
from services.remote import is_denied, is_transport_error, remote_errors, remote_lstat, stat_isdir
from services.sessions import Session


def _tmp_name(name: str) -> str:
    return f".{name}.piface-{uuid.uuid4().hex[:8]}.tmp"


def read_text(session: Session, path: sandbox.PathInput, name: str) -> str:
    target = session.resolve_child(path, name)
    with remote_errors(session.connection, missing="file_not_found", name=name):
        attr = session.sftp.stat(target)
        if stat_isdir(attr):
            raise NotFoundError("not_a_file", name=name)
        with session.sftp.open(target, "rb") as f:
            data = f.read()
    return data.decode("utf-8", errors="replace")


def write_text(session: Session, path: sandbox.PathInput, name: str, text: str) -> int:
    """Replace ``name`` with ``text`` (UTF-8). Returns the bytes written."""
    parent = session.resolve(path)
    target = session.resolve_child(path, name)
    with remote_errors(session.connection, name=name):
        parent_attr = remote_lstat(session.sftp, parent)
        if parent_attr is None or not stat_isdir(parent_attr):
            raise NotFoundError("folder_not_found", path=sandbox.relative_path(path))
        existing = remote_lstat(session.sftp, target)
    if existing is not None and stat_isdir(existing):
        raise WriteError("target_is_folder", name=name)

    data = (text or "").encode("utf-8")
    tmp = posixpath.join(parent, _tmp_name(name))
    session.invalidate_usage()
    try:
        with session.sftp.open(tmp, "wb") as f:
            f.write(data)
        session.sftp.posix_rename(tmp, target)
    except (OSError, EOFError, paramiko.SSHException) as e:
        if not is_transport_error(e, session.connection):
            _discard_tmp(session, tmp)
        core_log("warning", "content.write_failed", user=session.user, name=name, error=type(e).__name__)
        reason = getattr(e, "strerror", None) or str(e)
        if is_denied(e):
            raise PermissionDeniedError("permission_denied", name=name, reason=reason) from e
        raise WriteError("write_failed", name=name, reason=reason) from e
    core_log("info", "content.write", user=session.user, name=name, size=len(data))
    return len(data)


def _discard_tmp(session: Session, tmp: str) -> None:
    try:
        if remote_lstat(session.sftp, tmp) is not None:
            session.sftp.remove(tmp)
    except (OSError, EOFError) as e:
        core_log("warning", "content.tmp_cleanup_failed", user=session.user, error=type(e).__name__)
