"""
Tests for path confinement.
"""
import posixpath

import pytest

from services.errors import InvalidNameError, PathEscapeError
from services.sandbox import (
    normalize_segments,
    relative_path,
    resolve,
    resolve_child,
    split_segments,
    validate_name,
)


ROOT = "/home/pi/pi-interface/alice"


def test_resolve_joins_segments():
    assert resolve(ROOT, ["docs", "2024"]) == ROOT + "/docs/2024"
    assert resolve(ROOT, "docs/2024") == ROOT + "/docs/2024"


def test_resolve_empty_path_is_root():
    assert resolve(ROOT, None) == ROOT
    assert resolve(ROOT, "") == ROOT
    assert resolve(ROOT, []) == ROOT
    assert resolve(ROOT, "/") == ROOT


def test_leading_slash_stays_inside_root():
    assert resolve(ROOT, "/etc/passwd") == ROOT + "/etc/passwd"


def test_dot_segments_are_collapsed():
    assert resolve(ROOT, "a/./b/../c") == ROOT + "/a/c"
    assert normalize_segments(["a", ".", "", "b"]) == ["a", "b"]


def test_dotdot_back_to_root_is_allowed():
    assert resolve(ROOT, "a/..") == ROOT


@pytest.mark.parametrize("path", [
    "..",
    "../bob",
    "a/../..",
    "a/b/../../../x",
    ["..", "etc"],
    ["a", "../../b"],
    "/../../..",
])
def test_escape_is_refused(path):
    with pytest.raises(PathEscapeError):
        resolve(ROOT, path)


def test_never_leaves_root_at_any_depth():
    for depth in range(1, 8):
        inside = ["d"] * depth
        assert resolve(ROOT, inside + [".."] * depth) == ROOT
        with pytest.raises(PathEscapeError):
            resolve(ROOT, inside + [".."] * (depth + 1))
        p = resolve(ROOT, inside + [".."] * (depth - 1) + ["x"])
        assert posixpath.commonpath([p, ROOT]) == ROOT


def test_nul_byte_is_refused():
    with pytest.raises(PathEscapeError):
        resolve(ROOT, "a\x00b")


def test_non_string_segment_is_refused():
    with pytest.raises(PathEscapeError):
        split_segments(["a", 3])


def test_relative_path():
    assert relative_path(["a", "b"]) == "a/b"
    assert relative_path("/a//b/") == "a/b"
    assert relative_path(None) == ""


@pytest.mark.parametrize("name,code", [
    ("", "name_required"),
    ("   ", "name_required"),
    ("a/b", "name_has_separator"),
    ("a\\b", "name_has_separator"),
    (".", "name_reserved"),
    ("..", "name_reserved"),
])
def test_validate_name_rejects(name, code):
    with pytest.raises(InvalidNameError) as exc:
        validate_name(name)
    assert exc.value.message == code


def test_validate_name_accepts_plain_names():
    assert validate_name("report 2024.txt") == "report 2024.txt"
    assert validate_name(".bashrc") == ".bashrc"


def test_resolve_child():
    assert resolve_child(ROOT, "docs", "a.txt") == ROOT + "/docs/a.txt"
    with pytest.raises(InvalidNameError):
        resolve_child(ROOT, "docs", "../a.txt")
