"""
Tests for the paramiko connection layer and the sftp helpers.
"""
import errno
import os
import socket
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from fixtures.fake_sftp import FakeConnection
from services.errors import (
    NotFoundError,
    PermissionDeniedError,
    RemoteConnectionError,
    RemoteOperationError,
)
from services.remote import (
    DeviceSettings,
    RemoteConnection,
    _classify_connect_error,
    _select_host_key_policy,
    is_denied,
    is_transport_error,
    remote_errors,
    remote_exists,
    remote_makedirs,
    remove_tree,
    translate_remote_errors,
    walk_files,
)


def test_settings_from_env(tmp_path):
    settings = DeviceSettings.from_env({
        "PIFACE_DEVICE_HOST": " nas.local ",
        "PIFACE_DEVICE_PORT": "2222",
        "PIFACE_DEVICE_USERNAME": "pi",
        "PIFACE_DEVICE_PASSWORD": "raspberry",
        "PIFACE_HOSTKEY_POLICY": "REJECT_NEW",
        "PIFACE_CONNECT_TIMEOUT": "3.5",
    }, state_dir=str(tmp_path))
    assert settings.host == "nas.local"
    assert settings.port == 2222
    assert settings.username == "pi"
    assert settings.hostkey_policy == "reject_new"
    assert settings.known_hosts_path == os.path.join(str(tmp_path), "known_hosts")
    assert settings.timeout == 3.5


def test_settings_defaults_on_garbage():
    settings = DeviceSettings.from_env({
        "PIFACE_DEVICE_PORT": "99999",
        "PIFACE_HOSTKEY_POLICY": "trust_me",
        "PIFACE_CONNECT_TIMEOUT": "soon",
    })
    assert settings.host == ""
    assert settings.port == 22
    assert settings.hostkey_policy == "accept_new"
    assert settings.timeout == 10.0


def test_host_key_policies():
    assert isinstance(_select_host_key_policy("accept_new"), paramiko.AutoAddPolicy)
    assert isinstance(_select_host_key_policy("reject_new"), paramiko.RejectPolicy)
    assert isinstance(_select_host_key_policy("accept_any"), paramiko.WarningPolicy)


def test_classify_connect_error():
    assert _classify_connect_error(paramiko.AuthenticationException("no"))["kind"] == "auth"
    assert _classify_connect_error(socket.timeout())["kind"] == "timeout"
    unknown = paramiko.SSHException("Server 'x' not found in known_hosts")
    assert _classify_connect_error(unknown)["kind"] == "hostkey_unknown"
    assert _classify_connect_error(OSError(errno.EHOSTUNREACH, "unreachable"))["kind"] == "connect_failed"


def test_open_without_host():
    with pytest.raises(RemoteConnectionError) as exc:
        RemoteConnection.open(DeviceSettings(host=""))
    assert exc.value.message == "device_not_configured"


def test_open_connects_with_bounded_timeouts(tmp_path):
    known_hosts = tmp_path / "state" / "known_hosts"
    settings = DeviceSettings(host="nas", username="pi", password="pw", known_hosts_path=str(known_hosts), timeout=4)
    with patch("services.remote.paramiko.SSHClient") as client_cls:
        client = client_cls.return_value
        conn = RemoteConnection.open(settings)

    assert conn.sftp is client.open_sftp.return_value
    client.load_host_keys.assert_called_once_with(str(known_hosts))
    assert known_hosts.exists()
    kwargs = client.connect.call_args.kwargs
    assert kwargs["hostname"] == "nas"
    assert kwargs["password"] == "pw"
    assert kwargs["timeout"] == kwargs["banner_timeout"] == kwargs["auth_timeout"] == 4
    assert kwargs["look_for_keys"] is False


def test_open_accept_any_skips_known_hosts(tmp_path):
    settings = DeviceSettings(host="nas", hostkey_policy="accept_any", known_hosts_path=str(tmp_path / "kh"))
    with patch("services.remote.paramiko.SSHClient") as client_cls:
        RemoteConnection.open(settings)
    client_cls.return_value.load_host_keys.assert_not_called()


def test_open_failure_is_classified():
    settings = DeviceSettings(host="nas", username="pi", password="bad")
    with patch("services.remote.paramiko.SSHClient") as client_cls:
        client = client_cls.return_value
        client.connect.side_effect = paramiko.AuthenticationException("denied")
        with pytest.raises(RemoteConnectionError) as exc:
            RemoteConnection.open(settings)
    assert exc.value.message == "connect_failed"
    assert exc.value.extra["kind"] == "auth"
    client.close.assert_called_once()


def test_connection_liveness_and_close():
    client = MagicMock()
    sftp = MagicMock()
    conn = RemoteConnection(client, sftp, label="x")
    client.get_transport.return_value.is_active.return_value = True
    assert conn.is_alive()
    client.get_transport.return_value = None
    assert not conn.is_alive()
    conn.close()
    sftp.close.assert_called_once()
    client.close.assert_called_once()


def test_is_transport_error():
    live = FakeConnection("/nonexistent")
    dead = FakeConnection("/nonexistent")
    dead.close()
    assert is_transport_error(paramiko.SSHException("boom"))
    assert is_transport_error(EOFError())
    assert is_transport_error(OSError(errno.ECONNRESET, "reset"))
    assert is_transport_error(OSError("Socket is closed"), dead)
    assert not is_transport_error(OSError(errno.ENOENT, "missing"), live)
    assert not is_transport_error(NotFoundError("x"))


def test_translate_remote_errors():
    with pytest.raises(RemoteConnectionError):
        with translate_remote_errors(user="alice"):
            raise EOFError()
    with pytest.raises(FileNotFoundError):
        with translate_remote_errors():
            raise FileNotFoundError(errno.ENOENT, "missing")


def test_remote_errors_maps_status_codes(tmp_path):
    live = FakeConnection(tmp_path)
    with pytest.raises(NotFoundError) as exc:
        with remote_errors(live, missing="folder_not_found", path="docs"):
            raise FileNotFoundError(errno.ENOENT, "No such file")
    assert exc.value.message == "folder_not_found"
    assert exc.value.extra == {"path": "docs"}

    with pytest.raises(PermissionDeniedError) as exc:
        with remote_errors(live, name="x"):
            raise PermissionError(errno.EACCES, "Permission denied")
    assert exc.value.status == 403
    assert exc.value.to_dict()["reason"] == "Permission denied"

    with pytest.raises(RemoteOperationError) as exc:
        with remote_errors(live):
            raise OSError("Failure")
    assert exc.value.to_dict()["error"] == "remote_error"

    live.break_transport()
    live.sftp.failed = True
    with pytest.raises(RemoteConnectionError):
        with remote_errors(live):
            raise OSError("Socket is closed")


def test_is_denied():
    assert is_denied(PermissionError(errno.EACCES, "denied"))
    assert is_denied(OSError(errno.EPERM, "not permitted"))
    assert not is_denied(OSError(errno.ENOENT, "missing"))


def test_makedirs_walk_and_remove(tmp_path):
    conn = FakeConnection(tmp_path)
    sftp = conn.sftp
    assert remote_makedirs(sftp, "/a/b/c") is True
    assert remote_makedirs(sftp, "/a/b/c") is False
    (tmp_path / "a" / "top.txt").write_bytes(b"12")
    (tmp_path / "a" / "b" / "c" / "deep.txt").write_bytes(b"345")
    os.symlink("top.txt", tmp_path / "a" / "link.txt")

    found = sorted((rel, attr.st_size) for _, rel, attr in walk_files(sftp, "/a"))
    assert found == [("b/c/deep.txt", 3), ("top.txt", 2)]

    remove_tree(sftp, "/a/b")
    assert not remote_exists(sftp, "/a/b")
    assert remote_exists(sftp, "/a/top.txt")


def test_makedirs_through_a_file(tmp_path):
    conn = FakeConnection(tmp_path)
    (tmp_path / "f").write_bytes(b"")
    with pytest.raises(NotADirectoryError):
        remote_makedirs(conn.sftp, "/f/sub")
