"""Error taxonomy for the remote file manager.

Every failure surfaced to the presentation layer is a FileManagerError with a
stable machine-readable ``code`` and the HTTP status the blueprints answer
with. ``extra`` holds structured details that are merged into the JSON body.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class FileManagerError(Exception):
    code = "error"
    status = 400

    def __init__(self, message: str = "", **extra: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": False, "error": self.code, "message": self.message}
        payload.update(self.extra)
        return payload


class AuthenticationError(FileManagerError):
    code = "authentication_failed"
    status = 401


class RemoteConnectionError(FileManagerError):
    """Transport to the device is unreachable or broken. Never retried here."""

    code = "connection_failed"
    status = 502


class PathEscapeError(FileManagerError):
    code = "path_escape"
    status = 400


class NotFoundError(FileManagerError):
    code = "not_found"
    status = 404


class PermissionDeniedError(FileManagerError):
    code = "permission_denied"
    status = 403


class RemoteOperationError(FileManagerError):
    """The device refused an SFTP request for a reason not covered above."""

    code = "remote_error"
    status = 502


class NameConflictError(FileManagerError):
    code = "name_conflict"
    status = 409


class InvalidNameError(FileManagerError):
    code = "invalid_name"
    status = 400


class QuotaExceededError(FileManagerError):
    code = "quota_exceeded"
    status = 413


class SourceUnavailableError(FileManagerError):
    code = "source_unavailable"
    status = 400


class TransferError(FileManagerError):
    code = "transfer_failed"
    status = 502


class WriteError(FileManagerError):
    code = "write_failed"
    status = 502


class PartialFailure(FileManagerError):
    """Some names of a batch failed; ``failures`` maps name -> error code."""

    code = "partial_failure"
    status = 207

    def __init__(self, message: str = "", *, succeeded: Optional[List[str]] = None,
                 failures: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self.succeeded = list(succeeded or [])
        self.failures = dict(failures or {})
        super().__init__(message, succeeded=self.succeeded, failed=self.failures)
