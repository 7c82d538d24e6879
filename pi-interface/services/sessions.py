"""Per-user remote sessions.

The manager owns an explicit ``user key -> Session`` table. A session is
created on first use, reused by later operations and torn down on idle
timeout, logout, shutdown or the first transport failure. Each user has a
dedicated lock; ``session()`` holds it for the whole operation, so requests
of one user run one after another while different users run in parallel.
"""

from __future__ import annotations

import posixpath
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

from services import sandbox
from services.accounts import AccountTable, UserAccount
from services.errors import FileManagerError, RemoteConnectionError
from services.logging_setup import core_log
from services.remote import RemoteConnection, is_transport_error, remote_errors, remote_makedirs


Connector = Callable[[], RemoteConnection]


def _now() -> float:
    return time.time()


@dataclass
class Session:
    account: UserAccount
    connection: RemoteConnection
    root_path: str
    created_ts: float
    last_used_ts: float
    # bytes under root_path; None until walked, reset by size-changing mutations
    used_bytes_cache: Optional[int] = None

    @property
    def sftp(self):
        return self.connection.sftp

    @property
    def user(self) -> str:
        return self.account.name

    def resolve(self, path: sandbox.PathInput) -> str:
        return sandbox.resolve(self.root_path, path)

    def resolve_child(self, parent: sandbox.PathInput, name: str) -> str:
        return sandbox.resolve_child(self.root_path, parent, name)

    def invalidate_usage(self) -> None:
        self.used_bytes_cache = None


class SessionManager:
    def __init__(
        self,
        accounts: AccountTable,
        connector: Connector,
        *,
        base_dir: str = "pi-interface",
        ttl_seconds: int = 900,
    ) -> None:
        self.accounts = accounts
        self.connector = connector
        self.base_dir = (base_dir or "pi-interface").strip() or "pi-interface"
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        # kept across reconnects so a torn-down session never races its successor
        self._user_locks: Dict[str, threading.Lock] = {}

    def _user_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._user_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._user_locks[key] = lock
            return lock

    def _base_path(self, connection: RemoteConnection) -> str:
        base = self.base_dir
        if not base.startswith("/"):
            base = posixpath.join(connection.home_dir(), base)
        return posixpath.normpath(base)

    def _prepare_root(self, connection: RemoteConnection, account: UserAccount) -> str:
        base = self._base_path(connection)
        with remote_errors(connection, user=account.name):
            if remote_makedirs(connection.sftp, base):
                core_log("info", "session.base_created", path=base)
            root = posixpath.join(base, account.key)
            if remote_makedirs(connection.sftp, root):
                core_log("info", "session.root_created", user=account.name, path=root)
        return root

    def _acquire_locked(self, account: UserAccount) -> Session:
        with self._lock:
            s = self._sessions.get(account.key)
        if s is not None and not s.connection.is_alive():
            self._teardown(account.key, reason="transport_closed")
            s = None
        if s is not None:
            return s

        connection = self.connector()
        try:
            root = self._prepare_root(connection, account)
        except Exception:
            connection.close()
            raise
        now = _now()
        s = Session(account=account, connection=connection, root_path=root, created_ts=now, last_used_ts=now)
        with self._lock:
            self._sessions[account.key] = s
        core_log("info", "session.open", user=account.name, root=root)
        return s

    def _teardown(self, key: str, *, reason: str) -> bool:
        with self._lock:
            s = self._sessions.pop(key, None)
        if s is None:
            return False
        try:
            s.connection.close()
        except Exception as e:  # the transport may already be dead
            core_log("warning", "session.close_error", user=s.user, error=type(e).__name__)
        core_log("info", "session.close", user=s.user, reason=reason)
        return True

    @contextmanager
    def session(self, name: str) -> Iterator[Session]:
        """Hold ``name``'s session exclusively for the duration of the block."""
        account = self.accounts.require(name)
        self.cleanup()
        with self._user_lock(account.key):
            s = self._acquire_locked(account)
            s.last_used_ts = _now()
            try:
                yield s
            except Exception as e:
                cause = e.__cause__
                if is_transport_error(e, s.connection) or (
                    cause is not None and is_transport_error(cause, s.connection)
                ):
                    self._teardown(account.key, reason="connection_failed")
                    if not isinstance(e, FileManagerError):
                        raise RemoteConnectionError("connection_lost", user=account.name) from e
                raise
            finally:
                s.last_used_ts = _now()

    def acquire(self, name: str) -> Session:
        """Open (or reuse) ``name``'s session without holding it."""
        with self.session(name) as s:
            return s

    def login(self, name: str, password: str) -> UserAccount:
        account = self.accounts.authenticate(name, password)
        self.acquire(account.name)
        core_log("info", "session.login", user=account.name)
        return account

    def close(self, name: str) -> bool:
        account = self.accounts.get(name)
        if account is None:
            return False
        with self._user_lock(account.key):
            return self._teardown(account.key, reason="logout")

    def cleanup(self) -> None:
        """Tear down sessions idle longer than the TTL (busy ones are skipped)."""
        now = _now()
        with self._lock:
            idle = [k for k, s in self._sessions.items() if (now - s.last_used_ts) > self.ttl_seconds]
        for key in idle:
            lock = self._user_lock(key)
            if not lock.acquire(blocking=False):
                continue
            try:
                with self._lock:
                    s = self._sessions.get(key)
                if s is not None and (now - s.last_used_ts) > self.ttl_seconds:
                    self._teardown(key, reason="idle")
            finally:
                lock.release()

    def close_all(self) -> None:
        with self._lock:
            keys = list(self._sessions)
        for key in keys:
            self._teardown(key, reason="shutdown")

    def active_users(self) -> List[str]:
        with self._lock:
            return sorted(s.user for s in self._sessions.values())

    def get(self, name: str) -> Optional[Session]:
        account = self.accounts.get(name)
        if account is None:
            return None
        with self._lock:
            return self._sessions.get(account.key)
