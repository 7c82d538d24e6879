"""Storage accounting per user.

``used_bytes`` walks the whole user root and sums regular file sizes. The
result is cached on the session and dropped by every operation that changes
the total (upload, delete, content write), so the next query re-walks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from services.remote import remote_errors, walk_files
from services.sessions import Session


@dataclass(frozen=True)
class StorageSummary:
    used_bytes: int
    limit_bytes: int
    limit_gb: float

    @property
    def free_bytes(self) -> int:
        return max(0, self.limit_bytes - self.used_bytes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used_bytes": self.used_bytes,
            "limit_bytes": self.limit_bytes,
            "limit_gb": self.limit_gb,
            "free_bytes": self.free_bytes,
        }


def compute_used_bytes(session: Session) -> int:
    with remote_errors(session.connection, user=session.user):
        return sum(int(attr.st_size or 0) for _, _, attr in walk_files(session.sftp, session.root_path))


def used_bytes(session: Session) -> int:
    if session.used_bytes_cache is None:
        session.used_bytes_cache = compute_used_bytes(session)
    return session.used_bytes_cache


def check_upload(session: Session, incoming_bytes: int) -> bool:
    """Whether ``incoming_bytes`` more still fit in the user's limit."""
    return used_bytes(session) + max(0, int(incoming_bytes)) <= session.account.storage_limit_bytes


def storage_summary(session: Session) -> StorageSummary:
    return StorageSummary(
        used_bytes=used_bytes(session),
        limit_bytes=session.account.storage_limit_bytes,
        limit_gb=session.account.storage_limit,
    )
