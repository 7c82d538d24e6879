"""Boundary operations of the file manager, addressed by user name.

Every method takes the user's session for its whole duration (per-user
serialization) and returns plain values. Errors are FileManagerError
subclasses; the HTTP layer renders them unchanged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from services import content, listing, local_sources, mutations, quota
from services.accounts import AccountTable, UserAccount
from services.listing import EntryInfo
from services.mutations import DeleteOutcome
from services.quota import StorageSummary
from services.remote import DeviceSettings, RemoteConnection
from services.sandbox import PathInput
from services.sessions import Connector, SessionManager
from services.transfers import KIND_DOWNLOAD, KIND_UPLOAD, TransferEngine, TransferJob, TransferJobManager


def _env_int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    try:
        value = int(str(env.get(name, "") or default).strip())
    except ValueError:
        value = default
    return max(minimum, value)


@dataclass
class FileManagerConfig:
    base_dir: str = "pi-interface"
    session_ttl: int = 900
    spool_dir: str = ""
    local_roots: List[str] = field(default_factory=list)
    job_ttl: int = 900
    max_jobs: int = 100
    state_dir: str = ""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, *, tmp_dir: str = "/tmp") -> "FileManagerConfig":
        env = os.environ if environ is None else environ
        spool = str(env.get("PIFACE_SPOOL_DIR", "") or "").strip() or os.path.join(tmp_dir, "piface_spool")
        state = str(env.get("PIFACE_STATE_DIR", "") or "").strip() or os.path.join(
            os.path.expanduser("~"), ".config", "pi-interface"
        )
        roots = local_sources.allowed_roots(env.get("PIFACE_LOCAL_ROOTS"), default=[spool])
        return cls(
            base_dir=str(env.get("PIFACE_BASE_DIR", "") or "pi-interface").strip() or "pi-interface",
            session_ttl=_env_int(env, "PIFACE_SESSION_TTL", 900, minimum=30),
            spool_dir=spool,
            local_roots=roots,
            job_ttl=_env_int(env, "PIFACE_JOB_TTL", 900, minimum=60),
            max_jobs=_env_int(env, "PIFACE_MAX_JOBS", 100, minimum=1),
            state_dir=state,
        )


class FileManager:
    def __init__(self, accounts: AccountTable, connector: Connector, config: FileManagerConfig) -> None:
        self.accounts = accounts
        self.config = config
        self.sessions = SessionManager(
            accounts,
            connector,
            base_dir=config.base_dir,
            ttl_seconds=config.session_ttl,
        )
        # staged browser uploads live in the spool, so it is always a source root
        roots = local_sources.allowed_roots(":".join(list(config.local_roots) + [config.spool_dir]))
        self.engine = TransferEngine(local_roots=roots, spool_dir=config.spool_dir)
        self.jobs = TransferJobManager(
            self.engine,
            self.sessions,
            ttl_seconds=config.job_ttl,
            max_jobs=config.max_jobs,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, *, tmp_dir: str = "/tmp") -> "FileManager":
        config = FileManagerConfig.from_env(environ, tmp_dir=tmp_dir)
        settings = DeviceSettings.from_env(environ, state_dir=config.state_dir)
        accounts = AccountTable.from_env(environ)
        return cls(accounts, lambda: RemoteConnection.open(settings), config)

    # ---- session ----

    def login(self, name: str, password: str) -> UserAccount:
        return self.sessions.login(name, password)

    def logout(self, name: str) -> bool:
        return self.sessions.close(name)

    def shutdown(self) -> None:
        self.jobs.shutdown()
        self.sessions.close_all()

    # ---- reads ----

    def list_entries(self, user: str, path: PathInput) -> List[EntryInfo]:
        with self.sessions.session(user) as s:
            return listing.list_entries(s, path)

    def used_storage(self, user: str) -> int:
        with self.sessions.session(user) as s:
            return quota.used_bytes(s)

    def storage_summary(self, user: str) -> StorageSummary:
        with self.sessions.session(user) as s:
            return quota.storage_summary(s)

    def source_sizes(self, sources: Sequence[str]) -> List[int]:
        return local_sources.source_sizes(sources, self.engine.local_roots)

    def read_file(self, user: str, path: PathInput, name: str) -> str:
        with self.sessions.session(user) as s:
            return content.read_text(s, path, name)

    # ---- mutations ----

    def create_folder(self, user: str, parent: PathInput, name: str) -> None:
        with self.sessions.session(user) as s:
            mutations.create_folder(s, parent, name)

    def rename_entry(self, user: str, parent: PathInput, old_name: str, new_name: str) -> None:
        with self.sessions.session(user) as s:
            mutations.rename_entry(s, parent, old_name, new_name)

    def delete_entries(self, user: str, parent: PathInput, names: Sequence[str]) -> DeleteOutcome:
        """Per-name outcome; call ``raise_for_failures()`` for the PartialFailure form."""
        with self.sessions.session(user) as s:
            return mutations.delete_entries(s, parent, list(names))

    def write_file(self, user: str, path: PathInput, name: str, text: str) -> None:
        with self.sessions.session(user) as s:
            content.write_text(s, path, name, text)

    # ---- transfers ----

    def upload_files(self, user: str, destination: PathInput, sources: Sequence[str]) -> TransferJob:
        """Upload in the calling thread; returns the finished job."""
        with self.sessions.session(user) as s:
            job = self.jobs.create(KIND_UPLOAD, s.user)
            return self.engine.upload(s, destination, sources, job)

    def download_files(self, user: str, source: PathInput, names: Sequence[str]) -> TransferJob:
        """Download in the calling thread; ``job.result_path`` holds the bytes."""
        with self.sessions.session(user) as s:
            job = self.jobs.create(KIND_DOWNLOAD, s.user)
            return self.engine.download(s, source, names, job)

    def start_upload(
        self,
        user: str,
        destination: PathInput,
        sources: Sequence[str],
        *,
        cleanup_paths: Sequence[str] = (),
    ) -> TransferJob:
        return self.jobs.start_upload(user, destination, sources, cleanup_paths=cleanup_paths)

    def start_download(self, user: str, source: PathInput, names: Sequence[str]) -> TransferJob:
        return self.jobs.start_download(user, source, names)
