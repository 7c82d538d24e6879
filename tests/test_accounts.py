"""
Tests for the static account table.
"""
import json

import pytest
from werkzeug.security import generate_password_hash

from services.accounts import BYTES_PER_GB, AccountTable
from services.errors import AuthenticationError


def test_lookup_is_case_insensitive(accounts):
    assert accounts.get("ALICE").name == "alice"
    assert accounts.get("bob").name == "Bob"
    assert accounts.get("bob").key == "bob"
    assert accounts.get("carol") is None


def test_storage_limit_in_bytes(accounts):
    assert accounts.require("alice").storage_limit_bytes == 1 * BYTES_PER_GB
    assert accounts.require("bob").storage_limit_bytes == 500_000_000


def test_authenticate_plain_password(accounts):
    assert accounts.authenticate("Alice", "wonderland").name == "alice"
    with pytest.raises(AuthenticationError) as exc:
        accounts.authenticate("alice", "nope")
    assert exc.value.message == "invalid_credentials"


def test_authenticate_password_hash(accounts):
    assert accounts.authenticate("bob", "builder").name == "Bob"
    with pytest.raises(AuthenticationError):
        accounts.authenticate("bob", "")


def test_unknown_user_looks_like_bad_password(accounts):
    with pytest.raises(AuthenticationError) as exc:
        accounts.authenticate("mallory", "wonderland")
    assert exc.value.message == "invalid_credentials"


def test_require_unknown_user(accounts):
    with pytest.raises(AuthenticationError) as exc:
        accounts.require("mallory")
    assert exc.value.message == "unknown_user"
    assert exc.value.status == 401


def test_from_env_json():
    env = {"PIFACE_USERS": json.dumps([{"name": "dave", "password": "x", "storage_limit": 2}])}
    table = AccountTable.from_env(env)
    assert table.names() == ["dave"]
    assert len(table) == 1


def test_from_env_file(tmp_path):
    path = tmp_path / "users.json"
    path.write_text(json.dumps([
        {"name": "erin", "password_hash": generate_password_hash("pw"), "storageLimit": "0.25"},
    ]))
    table = AccountTable.from_env({"PIFACE_USERS_FILE": str(path)})
    assert table.authenticate("erin", "pw").storage_limit == 0.25


def test_from_env_empty():
    assert len(AccountTable.from_env({})) == 0


@pytest.mark.parametrize("records", [
    [{"name": "", "password": "x", "storage_limit": 1}],
    [{"name": "a/b", "password": "x", "storage_limit": 1}],
    [{"name": "a", "storage_limit": 1}],
    [{"name": "a", "password": "x"}],
    [{"name": "a", "password": "x", "storage_limit": 0}],
    [{"name": "a", "password": "x", "storage_limit": 1}, {"name": "A", "password": "y", "storage_limit": 1}],
    {"name": "a"},
])
def test_invalid_tables_are_refused(records):
    with pytest.raises(ValueError):
        AccountTable.from_records(records)


def test_invalid_json_is_refused():
    with pytest.raises(ValueError):
        AccountTable.from_env({"PIFACE_USERS": "[{"})
