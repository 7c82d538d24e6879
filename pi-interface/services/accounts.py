"""Static account table (name / password / storage limit).

Accounts are loaded once at startup from ``PIFACE_USERS`` (JSON array) or the
file named by ``PIFACE_USERS_FILE``. Names are matched case-insensitively.
A record may hold a plain ``password`` or a werkzeug ``password_hash``.
"""

from __future__ import annotations

import hmac
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from werkzeug.security import check_password_hash

from services.errors import AuthenticationError


BYTES_PER_GB = 10 ** 9


@dataclass(frozen=True)
class UserAccount:
    name: str
    storage_limit: float  # gigabytes
    password: str = ""
    password_hash: str = ""

    @property
    def key(self) -> str:
        """Canonical (lower-case) form used for lookups and the remote root."""
        return self.name.strip().lower()

    @property
    def storage_limit_bytes(self) -> int:
        return int(self.storage_limit * BYTES_PER_GB)

    def check_password(self, password: str) -> bool:
        if self.password_hash:
            return check_password_hash(self.password_hash, password or "")
        return hmac.compare_digest(self.password.encode("utf-8"), (password or "").encode("utf-8"))


def _account_from_record(rec: Dict[str, Any], idx: int) -> UserAccount:
    if not isinstance(rec, dict):
        raise ValueError(f"account #{idx}: expected an object")
    name = str(rec.get("name") or "").strip()
    if not name or "/" in name or name in (".", ".."):
        raise ValueError(f"account #{idx}: invalid name {name!r}")
    password = str(rec.get("password") or "")
    password_hash = str(rec.get("password_hash") or "")
    if not password and not password_hash:
        raise ValueError(f"account {name!r}: password or password_hash required")
    raw_limit = rec.get("storage_limit", rec.get("storageLimit"))
    try:
        limit = float(raw_limit)
    except (TypeError, ValueError):
        raise ValueError(f"account {name!r}: storage_limit must be a number of gigabytes")
    if limit <= 0:
        raise ValueError(f"account {name!r}: storage_limit must be positive")
    return UserAccount(name=name, storage_limit=limit, password=password, password_hash=password_hash)


class AccountTable:
    """Immutable lookup table of configured accounts."""

    def __init__(self, accounts: Iterable[UserAccount]) -> None:
        self._by_key: Dict[str, UserAccount] = {}
        for acc in accounts:
            if acc.key in self._by_key:
                raise ValueError(f"duplicate account name: {acc.name!r}")
            self._by_key[acc.key] = acc

    @classmethod
    def from_records(cls, records: List[Dict[str, Any]]) -> "AccountTable":
        if not isinstance(records, list):
            raise ValueError("account table must be a JSON array")
        return cls(_account_from_record(rec, i) for i, rec in enumerate(records))

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AccountTable":
        env = os.environ if environ is None else environ
        raw = (env.get("PIFACE_USERS") or "").strip()
        if not raw:
            path = (env.get("PIFACE_USERS_FILE") or "").strip()
            if path:
                with open(path, "r", encoding="utf-8") as f:
                    raw = f.read()
        if not raw:
            return cls([])
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"account table is not valid JSON: {e}")
        return cls.from_records(records)

    def __len__(self) -> int:
        return len(self._by_key)

    def names(self) -> List[str]:
        return [a.name for a in self._by_key.values()]

    def get(self, name: str) -> Optional[UserAccount]:
        return self._by_key.get((name or "").strip().lower())

    def require(self, name: str) -> UserAccount:
        acc = self.get(name)
        if acc is None:
            raise AuthenticationError("unknown_user", user=name)
        return acc

    def authenticate(self, name: str, password: str) -> UserAccount:
        acc = self.get(name)
        if acc is None or not acc.check_password(password):
            raise AuthenticationError("invalid_credentials")
        return acc
