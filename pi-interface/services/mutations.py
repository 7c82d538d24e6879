"""Create folder / rename / delete."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from services import sandbox
from services.errors import FileManagerError, NameConflictError, NotFoundError, PartialFailure
from services.logging_setup import core_log
from services.remote import (
    is_denied,
    is_missing,
    is_transport_error,
    remote_errors,
    remote_exists,
    remote_lstat,
    remove_tree,
    stat_isdir,
)
from services.sessions import Session


def _require_folder(session: Session, path: sandbox.PathInput) -> str:
    target = session.resolve(path)
    with remote_errors(session.connection, missing="folder_not_found", path=sandbox.relative_path(path)):
        attr = remote_lstat(session.sftp, target)
    if attr is None or not stat_isdir(attr):
        raise NotFoundError("folder_not_found", path=sandbox.relative_path(path))
    return target


def create_folder(session: Session, parent: sandbox.PathInput, name: str) -> str:
    sandbox.validate_name(name)
    _require_folder(session, parent)
    target = session.resolve_child(parent, name)
    with remote_errors(session.connection, missing="folder_not_found", name=name):
        if remote_exists(session.sftp, target):
            raise NameConflictError("name_exists", name=name)
        session.sftp.mkdir(target)
    core_log("info", "entries.mkdir", user=session.user, path=sandbox.relative_path(parent), name=name)
    return target


def rename_entry(session: Session, parent: sandbox.PathInput, old_name: str, new_name: str) -> str:
    sandbox.validate_name(old_name)
    sandbox.validate_name(new_name)
    src = session.resolve_child(parent, old_name)
    dst = session.resolve_child(parent, new_name)
    with remote_errors(session.connection, name=old_name):
        if not remote_exists(session.sftp, src):
            raise NotFoundError("entry_not_found", name=old_name)
        if old_name == new_name:
            return dst
        if remote_exists(session.sftp, dst):
            raise NameConflictError("name_exists", name=new_name)
        session.sftp.rename(src, dst)
    core_log("info", "entries.rename", user=session.user, path=sandbox.relative_path(parent), src=old_name, dst=new_name)
    return dst


@dataclass
class DeleteOutcome:
    succeeded: List[str] = field(default_factory=list)
    # name -> {"error": code, "message": text}
    failures: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        if self.failures:
            raise PartialFailure("some_entries_failed", succeeded=self.succeeded, failures=self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "succeeded": list(self.succeeded), "failed": dict(self.failures)}


def _delete_one(session: Session, parent: sandbox.PathInput, name: str) -> None:
    target = session.resolve_child(parent, name)
    try:
        remove_tree(session.sftp, target)
    except OSError as e:
        if is_missing(e):
            raise NotFoundError("entry_not_found", name=name)
        raise


def delete_entries(session: Session, parent: sandbox.PathInput, names: List[str]) -> DeleteOutcome:
    """Delete every name independently; folders go recursively.

    Per-name failures are collected instead of aborting the batch. A broken
    transport still aborts it.
    """
    _require_folder(session, parent)
    outcome = DeleteOutcome()
    seen = set()
    session.invalidate_usage()
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        try:
            _delete_one(session, parent, name)
        except FileManagerError as e:
            outcome.failures[name] = {"error": e.code, "message": e.message}
            continue
        except OSError as e:
            if is_transport_error(e, session.connection):
                raise
            code = "permission_denied" if is_denied(e) else "delete_failed"
            outcome.failures[name] = {"error": code, "message": e.strerror or str(e)}
            continue
        outcome.succeeded.append(name)
    core_log(
        "info",
        "entries.delete",
        user=session.user,
        path=sandbox.relative_path(parent),
        deleted=len(outcome.succeeded),
        failed=len(outcome.failures),
    )
    return outcome
