"""
Tests for create folder / rename / delete.
"""
import errno

import pytest

from services import quota
from services.errors import (
    InvalidNameError,
    NameConflictError,
    NotFoundError,
    PartialFailure,
    PathEscapeError,
    PermissionDeniedError,
    RemoteOperationError,
)
from services.listing import list_entries
from services.mutations import create_folder, delete_entries, rename_entry


def test_create_folder(alice, alice_dir):
    create_folder(alice, "", "docs")
    assert (alice_dir / "docs").is_dir()


def test_create_folder_twice_conflicts(alice, alice_dir):
    create_folder(alice, "", "docs")
    with pytest.raises(NameConflictError):
        create_folder(alice, "", "docs")
    names = [e.name for e in list_entries(alice, "")]
    assert names.count("docs") == 1


def test_create_folder_over_file_conflicts(alice, alice_dir):
    (alice_dir / "docs").write_bytes(b"")
    with pytest.raises(NameConflictError):
        create_folder(alice, "", "docs")


@pytest.mark.parametrize("name", ["", "a/b", "..", " "])
def test_create_folder_invalid_name(alice, name):
    with pytest.raises(InvalidNameError):
        create_folder(alice, "", name)


def test_create_folder_missing_parent(alice):
    with pytest.raises(NotFoundError):
        create_folder(alice, "nope", "docs")


def test_create_folder_cannot_escape(alice):
    with pytest.raises(PathEscapeError):
        create_folder(alice, "..", "docs")


def test_rename(alice, alice_dir):
    (alice_dir / "a.txt").write_bytes(b"A")
    rename_entry(alice, "", "a.txt", "c.txt")
    assert not (alice_dir / "a.txt").exists()
    assert (alice_dir / "c.txt").read_bytes() == b"A"


def test_rename_onto_existing_conflicts(alice, alice_dir):
    (alice_dir / "a.txt").write_bytes(b"A")
    (alice_dir / "b.txt").write_bytes(b"B")
    with pytest.raises(NameConflictError):
        rename_entry(alice, "", "a.txt", "b.txt")
    assert (alice_dir / "a.txt").read_bytes() == b"A"
    assert (alice_dir / "b.txt").read_bytes() == b"B"


def test_rename_missing(alice):
    with pytest.raises(NotFoundError) as exc:
        rename_entry(alice, "", "ghost.txt", "b.txt")
    assert exc.value.message == "entry_not_found"


def test_rename_to_empty_name(alice, alice_dir):
    (alice_dir / "a.txt").write_bytes(b"A")
    with pytest.raises(InvalidNameError):
        rename_entry(alice, "", "a.txt", "")


def test_rename_to_same_name_is_a_no_op(alice, alice_dir, connector):
    (alice_dir / "a.txt").write_bytes(b"A")
    rename_entry(alice, "", "a.txt", "a.txt")
    assert (alice_dir / "a.txt").read_bytes() == b"A"
    assert not any(c[0] == "rename" for c in connector.last.sftp.calls)


def test_rename_folder(alice, alice_dir):
    (alice_dir / "old" / "sub").mkdir(parents=True)
    rename_entry(alice, "", "old", "new")
    assert (alice_dir / "new" / "sub").is_dir()


def test_delete_files_and_folders(alice, alice_dir):
    (alice_dir / "tree" / "a" / "b").mkdir(parents=True)
    (alice_dir / "tree" / "a" / "b" / "f.txt").write_bytes(b"f")
    (alice_dir / "tree" / "g.txt").write_bytes(b"g")
    (alice_dir / "x.txt").write_bytes(b"x")
    outcome = delete_entries(alice, "", ["tree", "x.txt"])
    assert outcome.ok
    assert outcome.succeeded == ["tree", "x.txt"]
    assert list(alice_dir.iterdir()) == []


def test_delete_partial_failure(alice, alice_dir):
    (alice_dir / "one.txt").write_bytes(b"1")
    (alice_dir / "two.txt").write_bytes(b"2")
    outcome = delete_entries(alice, "", ["one.txt", "missing.txt", "two.txt"])
    assert not outcome.ok
    assert outcome.succeeded == ["one.txt", "two.txt"]
    assert list(outcome.failures) == ["missing.txt"]
    assert outcome.failures["missing.txt"]["error"] == "not_found"
    assert not (alice_dir / "one.txt").exists()
    assert not (alice_dir / "two.txt").exists()

    with pytest.raises(PartialFailure) as exc:
        outcome.raise_for_failures()
    body = exc.value.to_dict()
    assert exc.value.status == 207
    assert body["succeeded"] == ["one.txt", "two.txt"]
    assert set(body["failed"]) == {"missing.txt"}


def test_delete_invalid_name_is_a_per_name_failure(alice, alice_dir):
    (alice_dir / "ok.txt").write_bytes(b"")
    outcome = delete_entries(alice, "", ["..", "ok.txt"])
    assert outcome.succeeded == ["ok.txt"]
    assert outcome.failures[".."]["error"] == "invalid_name"


def test_delete_duplicates_once(alice, alice_dir):
    (alice_dir / "a.txt").write_bytes(b"")
    outcome = delete_entries(alice, "", ["a.txt", "a.txt"])
    assert outcome.ok
    assert outcome.succeeded == ["a.txt"]


def test_delete_invalidates_usage(alice, alice_dir):
    (alice_dir / "a.bin").write_bytes(b"x" * 8)
    assert quota.used_bytes(alice) == 8
    delete_entries(alice, "", ["a.bin"])
    assert quota.used_bytes(alice) == 0


def test_delete_missing_parent(alice):
    with pytest.raises(NotFoundError):
        delete_entries(alice, "nope", ["a"])


def test_facade_delete_by_user_name(fm, alice_dir):
    (alice_dir / "a").mkdir()
    assert fm.delete_entries("alice", "", ["a"]).succeeded == ["a"]


def test_refused_mkdir_and_rename(alice, alice_dir, connector, monkeypatch):
    (alice_dir / "a.txt").write_bytes(b"A")

    def denied(*args, **kwargs):
        raise PermissionError(errno.EACCES, "Permission denied")

    def failure(*args, **kwargs):
        raise OSError("Failure")

    monkeypatch.setattr(connector.last.sftp, "mkdir", denied)
    with pytest.raises(PermissionDeniedError) as exc:
        create_folder(alice, "", "docs")
    assert exc.value.extra["name"] == "docs"

    monkeypatch.setattr(connector.last.sftp, "rename", failure)
    with pytest.raises(RemoteOperationError) as exc:
        rename_entry(alice, "", "a.txt", "b.txt")
    assert exc.value.extra["reason"] == "Failure"
    assert (alice_dir / "a.txt").exists()


def test_delete_refused_by_device_is_a_per_name_failure(alice, alice_dir, connector, monkeypatch):
    (alice_dir / "keep.txt").write_bytes(b"k")

    def denied(path):
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(connector.last.sftp, "remove", denied)
    outcome = delete_entries(alice, "", ["keep.txt"])
    assert outcome.failures == {"keep.txt": {"error": "permission_denied", "message": "Permission denied"}}
    assert (alice_dir / "keep.txt").exists()
