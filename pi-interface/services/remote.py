"""SSH/SFTP connection to the device (paramiko).

One ``RemoteConnection`` wraps an ``SSHClient`` and the ``SFTPClient`` opened
on it. The session manager keeps at most one per user; everything else only
talks to ``connection.sftp``.

Security notes
- Host keys are checked against a private known_hosts file. ``accept_new``
  records unknown keys there, ``reject_new`` only accepts keys already known,
  ``accept_any`` disables verification (MITM possible).
- Connect / banner / auth timeouts are bounded by ``PIFACE_CONNECT_TIMEOUT``.
"""

from __future__ import annotations

import errno
import os
import posixpath
import socket
import stat
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import paramiko

from services.errors import (
    FileManagerError,
    NotFoundError,
    PermissionDeniedError,
    RemoteConnectionError,
    RemoteOperationError,
)
from services.logging_setup import core_log


_HOSTKEY_POLICIES = ("accept_new", "reject_new", "accept_any")

# errno values that mean the transport itself is gone
_TRANSPORT_ERRNOS = {
    errno.EPIPE,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.ECONNREFUSED,
    errno.ENOTCONN,
    errno.ETIMEDOUT,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
}


def _read_float_env(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(str(env.get(name, "") or default).strip())
    except ValueError:
        return default


def _ensure_known_hosts_file(path: str) -> str:
    """Ensure known_hosts exists and is private (0600)."""
    d = os.path.dirname(path)
    if d:
        os.makedirs(d, exist_ok=True)
    if not os.path.exists(path):
        with open(path, "w", encoding="utf-8") as f:
            f.write("")
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass
    return path


@dataclass
class DeviceSettings:
    host: str
    port: int = 22
    username: str = ""
    password: str = ""
    key_path: str = ""
    hostkey_policy: str = "accept_new"
    known_hosts_path: str = ""
    timeout: float = 10.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, *, state_dir: str = "") -> "DeviceSettings":
        env = os.environ if environ is None else environ
        try:
            port = int(str(env.get("PIFACE_DEVICE_PORT", "") or "22").strip())
        except ValueError:
            port = 22
        if port <= 0 or port > 65535:
            port = 22
        policy = str(env.get("PIFACE_HOSTKEY_POLICY", "") or "accept_new").strip().lower()
        if policy not in _HOSTKEY_POLICIES:
            policy = "accept_new"
        known_hosts = str(env.get("PIFACE_KNOWN_HOSTS", "") or "").strip()
        if not known_hosts and state_dir:
            known_hosts = os.path.join(state_dir, "known_hosts")
        timeout = _read_float_env(env, "PIFACE_CONNECT_TIMEOUT", 10.0)
        return cls(
            host=str(env.get("PIFACE_DEVICE_HOST", "") or "").strip(),
            port=port,
            username=str(env.get("PIFACE_DEVICE_USERNAME", "") or "").strip(),
            password=str(env.get("PIFACE_DEVICE_PASSWORD", "") or ""),
            key_path=str(env.get("PIFACE_DEVICE_KEY_PATH", "") or "").strip(),
            hostkey_policy=policy,
            known_hosts_path=known_hosts,
            timeout=max(1.0, timeout),
        )


def _select_host_key_policy(policy: str) -> paramiko.MissingHostKeyPolicy:
    if policy == "reject_new":
        return paramiko.RejectPolicy()
    if policy == "accept_any":
        return paramiko.WarningPolicy()
    return paramiko.AutoAddPolicy()


def _classify_connect_error(exc: BaseException) -> Dict[str, str]:
    """Classify common SSH failures for the UI (kind + hint)."""
    if isinstance(exc, paramiko.BadHostKeyException):
        return {
            "kind": "hostkey_changed",
            "hint": "The device host key changed. If expected, remove the old entry from known_hosts.",
        }
    if isinstance(exc, paramiko.AuthenticationException):
        return {"kind": "auth", "hint": "The device rejected the configured SSH credentials."}
    low = str(exc).lower()
    if "not found in known_hosts" in low:
        return {
            "kind": "hostkey_unknown",
            "hint": "Unknown host key. Use PIFACE_HOSTKEY_POLICY=accept_new or add the key to known_hosts.",
        }
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return {"kind": "timeout", "hint": "The device did not answer in time."}
    return {"kind": "connect_failed", "hint": ""}


class RemoteConnection:
    """A live SSH transport plus its SFTP channel."""

    def __init__(self, client: paramiko.SSHClient, sftp: paramiko.SFTPClient, *, label: str = "") -> None:
        self.client = client
        self.sftp = sftp
        self.label = label

    @classmethod
    def open(cls, settings: DeviceSettings) -> "RemoteConnection":
        if not settings.host:
            raise RemoteConnectionError("device_not_configured", kind="config")

        client = paramiko.SSHClient()
        if settings.hostkey_policy != "accept_any" and settings.known_hosts_path:
            client.load_host_keys(_ensure_known_hosts_file(settings.known_hosts_path))
        client.set_missing_host_key_policy(_select_host_key_policy(settings.hostkey_policy))

        kwargs = {
            "hostname": settings.host,
            "port": settings.port,
            "username": settings.username or None,
            "timeout": settings.timeout,
            "banner_timeout": settings.timeout,
            "auth_timeout": settings.timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        if settings.key_path:
            kwargs["key_filename"] = settings.key_path
        if settings.password:
            kwargs["password"] = settings.password

        label = f"{settings.username}@{settings.host}:{settings.port}"
        try:
            client.connect(**kwargs)
            sftp = client.open_sftp()
        except (paramiko.SSHException, EOFError, OSError) as e:
            client.close()
            info = _classify_connect_error(e)
            core_log("warning", "remote.connect_failed", target=label, kind=info["kind"], error=type(e).__name__)
            raise RemoteConnectionError("connect_failed", **info) from e

        core_log("info", "remote.connect", target=label, policy=settings.hostkey_policy)
        return cls(client, sftp, label=label)

    def home_dir(self) -> str:
        with translate_remote_errors(self):
            return self.sftp.normalize(".")

    def is_alive(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()

    def close(self) -> None:
        try:
            self.sftp.close()
        finally:
            self.client.close()
        core_log("info", "remote.close", target=self.label)


def is_transport_error(exc: BaseException, connection: Optional[RemoteConnection] = None) -> bool:
    """True when ``exc`` means the SSH transport is unusable."""
    if isinstance(exc, RemoteConnectionError):
        return True
    if isinstance(exc, (paramiko.SSHException, EOFError, socket.timeout)):
        return True
    if isinstance(exc, OSError):
        if exc.errno in _TRANSPORT_ERRNOS:
            return True
        # paramiko raises bare OSError("Socket is closed") on a dead channel
        if connection is not None and not connection.is_alive():
            return True
    return False


@contextmanager
def translate_remote_errors(connection: Optional[RemoteConnection] = None, **context: str) -> Iterator[None]:
    """Re-raise transport failures as RemoteConnectionError; leave the rest alone."""
    try:
        yield
    except FileManagerError:
        raise
    except (paramiko.SSHException, EOFError, OSError) as e:
        if is_transport_error(e, connection):
            raise RemoteConnectionError("connection_lost", **context) from e
        raise


@contextmanager
def remote_errors(
    connection: Optional[RemoteConnection] = None,
    *,
    missing: str = "entry_not_found",
    **context: str,
) -> Iterator[None]:
    """Map every SFTP failure of the block onto a FileManagerError.

    Transport failures become RemoteConnectionError, ``ENOENT`` becomes
    NotFoundError(``missing``), ``EACCES``/``EPERM`` PermissionDeniedError and
    any other status RemoteOperationError.
    """
    try:
        yield
    except FileManagerError:
        raise
    except (paramiko.SSHException, EOFError, OSError) as e:
        if is_transport_error(e, connection):
            raise RemoteConnectionError("connection_lost", **context) from e
        reason = getattr(e, "strerror", None) or str(e)
        if is_missing(e):
            raise NotFoundError(missing, **context) from e
        if is_denied(e):
            raise PermissionDeniedError("permission_denied", reason=reason, **context) from e
        core_log("warning", "remote.sftp_error", errno=getattr(e, "errno", None), reason=reason, **context)
        raise RemoteOperationError("remote_error", reason=reason, **context) from e


def is_missing(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and exc.errno == errno.ENOENT


def is_denied(exc: BaseException) -> bool:
    return isinstance(exc, PermissionError) or (isinstance(exc, OSError) and exc.errno in (errno.EACCES, errno.EPERM))


def stat_isdir(attr: paramiko.SFTPAttributes) -> bool:
    return stat.S_ISDIR(attr.st_mode or 0)


def stat_islink(attr: paramiko.SFTPAttributes) -> bool:
    return stat.S_ISLNK(attr.st_mode or 0)


def stat_isfile(attr: paramiko.SFTPAttributes) -> bool:
    return stat.S_ISREG(attr.st_mode or 0)


def remote_lstat(sftp: paramiko.SFTPClient, path: str) -> Optional[paramiko.SFTPAttributes]:
    """lstat that answers None for a missing path."""
    try:
        return sftp.lstat(path)
    except OSError as e:
        if is_missing(e):
            return None
        raise


def remote_exists(sftp: paramiko.SFTPClient, path: str) -> bool:
    return remote_lstat(sftp, path) is not None


def remote_makedirs(sftp: paramiko.SFTPClient, path: str) -> bool:
    """Create ``path`` and missing parents. Returns True when anything was created."""
    missing: List[str] = []
    cur = posixpath.normpath(path)
    while cur not in ("", "/", "."):
        attr = remote_lstat(sftp, cur)
        if attr is not None:
            if not stat_isdir(attr):
                raise NotADirectoryError(errno.ENOTDIR, "not a directory", cur)
            break
        missing.append(cur)
        cur = posixpath.dirname(cur)
    for p in reversed(missing):
        sftp.mkdir(p)
    return bool(missing)


def walk_files(sftp: paramiko.SFTPClient, root: str) -> Iterator[Tuple[str, str, paramiko.SFTPAttributes]]:
    """Yield ``(abs_path, rel_path, attr)`` for regular files under ``root``.

    Symlinks are skipped, directories are descended depth-first.
    """
    stack: List[Tuple[str, str]] = [(root, "")]
    while stack:
        cur, rel = stack.pop()
        entries = sorted(sftp.listdir_attr(cur), key=lambda a: a.filename)
        subdirs: List[Tuple[str, str]] = []
        for attr in entries:
            child = posixpath.join(cur, attr.filename)
            child_rel = posixpath.join(rel, attr.filename) if rel else attr.filename
            if stat_islink(attr):
                continue
            if stat_isdir(attr):
                subdirs.append((child, child_rel))
            elif stat_isfile(attr):
                yield child, child_rel, attr
        stack.extend(reversed(subdirs))


def remove_tree(sftp: paramiko.SFTPClient, path: str) -> None:
    """Delete a file, a symlink or a whole directory tree."""
    attr = sftp.lstat(path)
    if not stat_isdir(attr):
        sftp.remove(path)
        return
    for child in sftp.listdir_attr(path):
        remove_tree(sftp, posixpath.join(path, child.filename))
    sftp.rmdir(path)
