"""Transfer engine: uploads, downloads, archive bundling and progress.

Progress
- Every job owns a ``ProgressChannel``: an ordered, bounded log of
  ``ProgressEvent(seq, kind, value, ts)`` plus the latest value per kind.
- Values are absolute byte counts. ``total`` is announced once when the job
  starts, ``upload``/``download`` follow the bytes moved, ``archive`` carries
  the size of the finished zip, ``status`` marks the terminal state.
- A kind never goes backwards; publishing a smaller value is a bug and raises
  ValueError. Readers take ``job.snapshot()`` (consistent, immutable) or follow
  the log with ``channel.wait_for_events()``.

Jobs
- ``TransferJobManager`` runs each job on its own daemon thread (a greenlet
  once gevent has patched threading), keeps finished jobs for ``ttl_seconds``
  and deletes their spool directory on expiry.
- Download results live in ``<spool>/job_<id>/``. Browser uploads are staged in
  ``<spool>/upload_<hex>/`` and removed when the job ends.
- There is no cancellation: a job runs to completion, failure or shutdown.
"""

from __future__ import annotations

import os
import posixpath
import shutil
import stat
import threading
import time
import uuid
import zipfile
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Sequence

import paramiko

from services import quota, sandbox
from services.errors import (
    FileManagerError,
    NameConflictError,
    NotFoundError,
    QuotaExceededError,
    SourceUnavailableError,
    TransferError,
)
from services.local_sources import LocalSource, resolve_sources
from services.logging_setup import core_log, transfer_log
from services.remote import is_transport_error, remote_lstat, stat_isdir, stat_isfile, stat_islink
from services.sessions import Session, SessionManager


KIND_UPLOAD = "Upload"
KIND_DOWNLOAD = "Download"

STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "InProgress"
STATUS_COMPLETED = "Completed"
STATUS_FAILED = "Failed"
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

EVENT_KINDS = ("total", "upload", "download", "archive", "status")

CHUNK_SIZE = 64 * 1024
SPOOL_STALE_SECONDS = 6 * 3600
_ZIP64_THRESHOLD = (1 << 31) - 1
_TRANSFER_ERRORS = (OSError, EOFError, paramiko.SSHException)


def _now() -> float:
    return time.time()


def _gen_id(prefix: str = "tj") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# --------------------------- progress ---------------------------


@dataclass(frozen=True)
class ProgressEvent:
    seq: int
    kind: str
    value: Any
    ts: float

    def to_dict(self) -> Dict[str, Any]:
        return {"seq": self.seq, "kind": self.kind, "value": self.value, "ts": self.ts}


class ProgressChannel:
    def __init__(self, max_events: int = 256) -> None:
        self._cond = threading.Condition()
        self._events: Deque[ProgressEvent] = deque(maxlen=max_events)
        self._latest: Dict[str, Any] = {}
        self._seq = 0
        self._closed = False

    @property
    def seq(self) -> int:
        with self._cond:
            return self._seq

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def publish(self, kind: str, value: Any) -> ProgressEvent:
        if kind not in EVENT_KINDS:
            raise ValueError(f"unknown progress kind: {kind!r}")
        with self._cond:
            if self._closed:
                raise ValueError("progress channel is closed")
            if kind != "status":
                prev = self._latest.get(kind)
                if prev is not None and value < prev:
                    raise ValueError(f"{kind} progress went backwards: {prev} -> {value}")
            self._seq += 1
            ev = ProgressEvent(seq=self._seq, kind=kind, value=value, ts=_now())
            self._events.append(ev)
            self._latest[kind] = value
            self._cond.notify_all()
            return ev

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def latest(self, kind: str, default: Any = None) -> Any:
        with self._cond:
            return self._latest.get(kind, default)

    def events_after(self, after_seq: int) -> List[ProgressEvent]:
        with self._cond:
            return [e for e in self._events if e.seq > after_seq]

    def wait_for_events(self, after_seq: int, timeout: Optional[float] = None) -> List[ProgressEvent]:
        """Block until an event newer than ``after_seq`` exists (or close/timeout)."""
        with self._cond:
            self._cond.wait_for(lambda: self._seq > after_seq or self._closed, timeout)
            return [e for e in self._events if e.seq > after_seq]


@dataclass(frozen=True)
class JobSnapshot:
    job_id: str
    kind: str
    user: str
    status: str
    total_bytes: int
    transferred_bytes: int
    archive_bytes: Optional[int]
    error: Optional[str]
    message: Optional[str]
    result_name: Optional[str]
    created_ts: float
    started_ts: Optional[float]
    finished_ts: Optional[float]
    seq: int

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def percent(self) -> Optional[float]:
        # total 0 means "indeterminate"
        if self.total_bytes <= 0:
            return None
        return round(100.0 * self.transferred_bytes / self.total_bytes, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind,
            "status": self.status,
            "total_bytes": self.total_bytes,
            "transferred_bytes": self.transferred_bytes,
            "percent": self.percent,
            "archive_bytes": self.archive_bytes,
            "error": self.error,
            "message": self.message,
            "result_name": self.result_name,
            "created_ts": self.created_ts,
            "started_ts": self.started_ts,
            "finished_ts": self.finished_ts,
            "seq": self.seq,
        }


class TransferJob:
    """One upload or download. Fields change only through the methods below."""

    def __init__(self, job_id: str, kind: str, user: str) -> None:
        self.job_id = job_id
        self.kind = kind
        self.user = user
        self.status = STATUS_PENDING
        self.total_bytes = 0
        self.transferred_bytes = 0
        self.archive_bytes: Optional[int] = None
        self.error: Optional[str] = None
        self.message: Optional[str] = None
        self.error_extra: Dict[str, Any] = {}
        self.result_path: Optional[str] = None
        self.result_name: Optional[str] = None
        self.created_ts = _now()
        self.started_ts: Optional[float] = None
        self.finished_ts: Optional[float] = None
        self.cleanup_paths: List[str] = []
        self.channel = ProgressChannel()
        self._lock = threading.RLock()

    @property
    def progress_kind(self) -> str:
        return "upload" if self.kind == KIND_UPLOAD else "download"

    @property
    def finished(self) -> bool:
        with self._lock:
            return self.status in TERMINAL_STATUSES

    def start(self, total_bytes: int) -> None:
        with self._lock:
            self.total_bytes = max(0, int(total_bytes))
            self.status = STATUS_IN_PROGRESS
            self.started_ts = _now()
            self.channel.publish("total", self.total_bytes)
            self.channel.publish("status", self.status)

    def advance_to(self, transferred: int) -> None:
        """Set the absolute byte count; clamped to ``total_bytes``, never lowered."""
        with self._lock:
            value = min(int(transferred), self.total_bytes)
            if value <= self.transferred_bytes:
                return
            self.transferred_bytes = value
            self.channel.publish(self.progress_kind, value)

    def archive_done(self, size: int) -> None:
        with self._lock:
            self.archive_bytes = int(size)
            self.channel.publish("archive", self.archive_bytes)

    def complete(self, *, result_path: Optional[str] = None, result_name: Optional[str] = None) -> None:
        with self._lock:
            if self.status in TERMINAL_STATUSES:
                return
            self.result_path = result_path
            self.result_name = result_name
            self.status = STATUS_COMPLETED
            self.finished_ts = _now()
            self.channel.publish("status", self.status)
        self.channel.close()

    def fail(self, exc: FileManagerError) -> None:
        with self._lock:
            if self.status in TERMINAL_STATUSES:
                return
            self.status = STATUS_FAILED
            self.error = exc.code
            self.message = exc.message
            self.error_extra = dict(exc.extra)
            self.finished_ts = _now()
            self.channel.publish("status", self.status)
        self.channel.close()

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            return JobSnapshot(
                job_id=self.job_id,
                kind=self.kind,
                user=self.user,
                status=self.status,
                total_bytes=self.total_bytes,
                transferred_bytes=self.transferred_bytes,
                archive_bytes=self.archive_bytes,
                error=self.error,
                message=self.message,
                result_name=self.result_name,
                created_ts=self.created_ts,
                started_ts=self.started_ts,
                finished_ts=self.finished_ts,
                seq=self.channel.seq,
            )

    def to_dict(self) -> Dict[str, Any]:
        return self.snapshot().to_dict()


# --------------------------- plans ---------------------------


@dataclass
class UploadPlan:
    destination: str
    destination_rel: str
    sources: List[LocalSource]
    total_bytes: int


@dataclass
class DownloadItem:
    arcname: str
    remote_path: str
    size: int
    mtime: int


@dataclass
class DownloadPlan:
    source_rel: str
    items: List[DownloadItem] = field(default_factory=list)
    # archive names of folders without files
    empty_dirs: List[str] = field(default_factory=list)
    single: bool = False
    result_name: str = "download"

    @property
    def total_bytes(self) -> int:
        return sum(i.size for i in self.items)


def _safe_filename(name: str, *, default: str = "download") -> str:
    s = os.path.basename((name or "").strip()).replace("\r", "").replace("\n", "").replace('"', "")
    if s in ("", ".", ".."):
        s = default
    return s[:180]


@contextmanager
def _failing_job(job: TransferJob) -> Iterator[None]:
    """Mark ``job`` Failed when the block raises, then re-raise."""
    try:
        yield
    except Exception as e:
        err = e if isinstance(e, FileManagerError) else TransferError("transfer_failed", reason=type(e).__name__)
        job.fail(err)
        transfer_log("warning", "transfer.failed", job_id=job.job_id, kind=job.kind, user=job.user,
                     error=err.code, transferred=job.transferred_bytes)
        raise


def _zip_date_time(mtime: int) -> tuple:
    # zip cannot store dates before 1980
    return max(time.localtime(mtime or 0)[:6], (1980, 1, 1, 0, 0, 0))


class TransferEngine:
    def __init__(self, *, local_roots: Sequence[str], spool_dir: str, chunk_size: int = CHUNK_SIZE) -> None:
        self.local_roots = list(local_roots)
        self.spool_dir = spool_dir
        self.chunk_size = max(4096, int(chunk_size))

    def job_dir(self, job_id: str) -> str:
        return os.path.join(self.spool_dir, f"job_{job_id}")

    # ---- upload ----

    def prepare_upload(self, session: Session, destination: sandbox.PathInput, sources: Sequence[str]) -> UploadPlan:
        """Validate destination, sources and quota. Nothing is written."""
        dest = session.resolve(destination)
        dest_rel = sandbox.relative_path(destination)
        attr = remote_lstat(session.sftp, dest)
        if attr is None or not stat_isdir(attr):
            raise NotFoundError("folder_not_found", path=dest_rel)

        items = resolve_sources(sources, self.local_roots)
        seen = set()
        for item in items:
            sandbox.validate_name(item.name)
            if item.name in seen:
                raise NameConflictError("duplicate_source_name", name=item.name)
            seen.add(item.name)
            existing = remote_lstat(session.sftp, posixpath.join(dest, item.name))
            if existing is not None and stat_isdir(existing):
                raise NameConflictError("name_is_folder", name=item.name)

        total = sum(i.size for i in items)
        if not quota.check_upload(session, total):
            raise QuotaExceededError(
                "quota_exceeded",
                needed_bytes=total,
                used_bytes=quota.used_bytes(session),
                limit_bytes=session.account.storage_limit_bytes,
            )
        return UploadPlan(destination=dest, destination_rel=dest_rel, sources=items, total_bytes=total)

    def upload(
        self,
        session: Session,
        destination: sandbox.PathInput,
        sources: Sequence[str],
        job: Optional[TransferJob] = None,
    ) -> TransferJob:
        job = job or TransferJob(_gen_id(), KIND_UPLOAD, session.user)
        with _failing_job(job):
            plan = self.prepare_upload(session, destination, sources)
            self._run_upload(session, plan, job)
        return job

    def _run_upload(self, session: Session, plan: UploadPlan, job: TransferJob) -> None:
        job.start(plan.total_bytes)
        transfer_log("info", "transfer.start", job_id=job.job_id, kind=job.kind, user=job.user,
                     files=len(plan.sources), total=plan.total_bytes, dest=plan.destination_rel)
        session.invalidate_usage()
        done = 0
        for src in plan.sources:
            remote = posixpath.join(plan.destination, src.name)
            try:
                self._put_file(session, src, remote, job, done)
            except _TRANSFER_ERRORS as e:
                self._discard_partial(session, remote)
                raise TransferError("upload_failed", name=src.name, transferred_bytes=done) from e
            done += src.size
            job.advance_to(done)
        job.complete()
        transfer_log("info", "transfer.done", job_id=job.job_id, kind=job.kind, user=job.user, bytes=done)

    def _put_file(self, session: Session, src: LocalSource, remote: str, job: TransferJob, offset: int) -> None:
        written = 0
        with open(src.path, "rb") as lf, session.sftp.open(remote, "wb") as rf:
            rf.set_pipelined(True)
            while True:
                chunk = lf.read(min(self.chunk_size, src.size - written))
                if not chunk:
                    break
                rf.write(chunk)
                written += len(chunk)
                # the file's last chunk is reported by the caller once it is closed
                if written < src.size:
                    job.advance_to(offset + written)
            grew = bool(lf.read(1))
        if grew or written != src.size:
            raise OSError(f"source changed size during upload: {src.name}")

    def _discard_partial(self, session: Session, remote: str) -> None:
        if not session.connection.is_alive():
            return
        try:
            if remote_lstat(session.sftp, remote) is not None:
                session.sftp.remove(remote)
        except _TRANSFER_ERRORS as e:
            core_log("warning", "transfer.partial_cleanup_failed", path=remote, error=type(e).__name__)

    # ---- download ----

    def prepare_download(self, session: Session, source: sandbox.PathInput, names: Sequence[str]) -> DownloadPlan:
        """Stat every requested name (folders recursively) to size the job."""
        if not names:
            raise SourceUnavailableError("names_required")
        source_rel = sandbox.relative_path(source)
        plan = DownloadPlan(source_rel=source_rel)
        unique: List[str] = []
        for name in names:
            if name not in unique:
                unique.append(name)

        for name in unique:
            path = session.resolve_child(source, name)
            try:
                attr = session.sftp.stat(path)
            except _TRANSFER_ERRORS as e:
                if is_transport_error(e, session.connection):
                    raise
                raise SourceUnavailableError("source_missing", name=name) from e
            if stat_isdir(attr):
                self._collect_tree(session, path, name, plan)
            elif stat_isfile(attr):
                plan.items.append(DownloadItem(name, path, int(attr.st_size or 0), int(attr.st_mtime or 0)))
            else:
                raise SourceUnavailableError("source_not_regular", name=name)

        first = session.resolve_child(source, unique[0])
        plan.single = len(unique) == 1 and len(plan.items) == 1 and plan.items[0].remote_path == first
        if plan.single:
            plan.result_name = _safe_filename(unique[0])
        elif len(unique) == 1:
            plan.result_name = _safe_filename(unique[0], default="selection") + ".zip"
        else:
            folder = source_rel.split("/")[-1] if source_rel else "selection"
            plan.result_name = _safe_filename(folder, default="selection") + ".zip"
        return plan

    def _collect_tree(self, session: Session, path: str, arc_root: str, plan: DownloadPlan) -> None:
        try:
            children = sorted(session.sftp.listdir_attr(path), key=lambda a: a.filename)
        except _TRANSFER_ERRORS as e:
            if is_transport_error(e, session.connection):
                raise
            raise SourceUnavailableError("source_unreadable", name=arc_root) from e
        if not children:
            plan.empty_dirs.append(arc_root)
            return
        for attr in children:
            if stat_islink(attr):
                continue
            child = posixpath.join(path, attr.filename)
            arc = f"{arc_root}/{attr.filename}"
            if stat_isdir(attr):
                self._collect_tree(session, child, arc, plan)
            elif stat_isfile(attr):
                plan.items.append(DownloadItem(arc, child, int(attr.st_size or 0), int(attr.st_mtime or 0)))

    def download(
        self,
        session: Session,
        source: sandbox.PathInput,
        names: Sequence[str],
        job: Optional[TransferJob] = None,
    ) -> TransferJob:
        job = job or TransferJob(_gen_id(), KIND_DOWNLOAD, session.user)
        with _failing_job(job):
            plan = self.prepare_download(session, source, names)
            self._run_download(session, plan, job)
        return job

    def _run_download(self, session: Session, plan: DownloadPlan, job: TransferJob) -> None:
        job.start(plan.total_bytes)
        transfer_log("info", "transfer.start", job_id=job.job_id, kind=job.kind, user=job.user,
                     files=len(plan.items), total=plan.total_bytes, archive=not plan.single)
        out_dir = self.job_dir(job.job_id)
        os.makedirs(out_dir, exist_ok=True)
        out_path = os.path.join(out_dir, plan.result_name)
        try:
            if plan.single:
                with open(out_path, "wb") as lf:
                    self._get_file(session, plan.items[0], lf, job, 0)
            else:
                self._write_archive(session, plan, out_path, job)
        except _TRANSFER_ERRORS as e:
            raise TransferError("download_failed", transferred_bytes=job.transferred_bytes) from e
        job.complete(result_path=out_path, result_name=plan.result_name)
        transfer_log("info", "transfer.done", job_id=job.job_id, kind=job.kind, user=job.user,
                     bytes=job.transferred_bytes, result=plan.result_name)

    def _get_file(self, session: Session, item: DownloadItem, out: Any, job: TransferJob, offset: int) -> int:
        read = 0
        with session.sftp.open(item.remote_path, "rb") as rf:
            if item.size > 0:
                rf.prefetch(item.size)
            while True:
                chunk = rf.read(self.chunk_size)
                if not chunk:
                    break
                out.write(chunk)
                read += len(chunk)
                job.advance_to(offset + read)
        return read

    def _write_archive(self, session: Session, plan: DownloadPlan, out_path: str, job: TransferJob) -> None:
        done = 0
        with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED, allowZip64=True) as zf:
            for arc_dir in plan.empty_dirs:
                zf.writestr(arc_dir.rstrip("/") + "/", b"")
            for item in plan.items:
                info = zipfile.ZipInfo(item.arcname, date_time=_zip_date_time(item.mtime))
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = (stat.S_IFREG | 0o644) << 16
                with zf.open(info, "w", force_zip64=item.size > _ZIP64_THRESHOLD) as wf:
                    self._get_file(session, item, wf, job, done)
                done += item.size
                job.advance_to(done)
        job.archive_done(os.path.getsize(out_path))


# --------------------------- job registry ---------------------------


def cleanup_stale_spool(spool_dir: str, *, max_age_seconds: float = SPOOL_STALE_SECONDS) -> int:
    """Remove ``job_*`` / ``upload_*`` leftovers older than ``max_age_seconds``."""
    if not os.path.isdir(spool_dir):
        return 0
    cutoff = _now() - float(max_age_seconds)
    removed = 0
    with os.scandir(spool_dir) as it:
        for entry in it:
            if not (entry.name.startswith("job_") or entry.name.startswith("upload_")):
                continue
            try:
                if entry.stat(follow_symlinks=False).st_mtime > cutoff:
                    continue
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.remove(entry.path)
                removed += 1
            except OSError as e:
                core_log("warning", "spool.cleanup_failed", path=entry.path, error=e.strerror or str(e))
    return removed


def _remove_path(path: str) -> None:
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        elif os.path.lexists(path):
            os.remove(path)
    except OSError as e:
        core_log("warning", "spool.remove_failed", path=path, error=e.strerror or str(e))


class TransferJobManager:
    def __init__(
        self,
        engine: TransferEngine,
        sessions: SessionManager,
        *,
        ttl_seconds: int = 900,
        max_jobs: int = 100,
    ) -> None:
        self.engine = engine
        self.sessions = sessions
        self.ttl_seconds = ttl_seconds
        self.max_jobs = max(1, int(max_jobs))
        self._lock = threading.Lock()
        self._jobs: Dict[str, TransferJob] = {}
        os.makedirs(engine.spool_dir, exist_ok=True)
        cleanup_stale_spool(engine.spool_dir)

    def _drop(self, job: TransferJob) -> None:
        _remove_path(self.engine.job_dir(job.job_id))
        for p in job.cleanup_paths:
            _remove_path(p)

    def cleanup(self) -> None:
        now = _now()
        with self._lock:
            dead = [j for j in self._jobs.values() if j.finished_ts and (now - j.finished_ts) > self.ttl_seconds]
            for j in dead:
                self._jobs.pop(j.job_id, None)
        for j in dead:
            self._drop(j)

    def create(self, kind: str, user: str) -> TransferJob:
        self.cleanup()
        evicted: List[TransferJob] = []
        with self._lock:
            if len(self._jobs) >= self.max_jobs:
                finished = sorted((j for j in self._jobs.values() if j.finished_ts), key=lambda j: j.finished_ts or 0)
                for j in finished[: max(1, len(self._jobs) - self.max_jobs + 1)]:
                    self._jobs.pop(j.job_id, None)
                    evicted.append(j)
            job = TransferJob(_gen_id(), kind, user)
            self._jobs[job.job_id] = job
        for j in evicted:
            self._drop(j)
        return job

    def get(self, job_id: str, user: Optional[str] = None) -> Optional[TransferJob]:
        self.cleanup()
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            return None
        if user is not None and job.user.lower() != user.strip().lower():
            return None
        return job

    def list_jobs(self, user: Optional[str] = None) -> List[TransferJob]:
        self.cleanup()
        with self._lock:
            jobs = list(self._jobs.values())
        if user is not None:
            jobs = [j for j in jobs if j.user.lower() == user.strip().lower()]
        jobs.sort(key=lambda j: j.created_ts, reverse=True)
        return jobs

    def stage_dir(self) -> str:
        """Fresh directory for browser uploads, removed with its job."""
        p = os.path.join(self.engine.spool_dir, f"upload_{uuid.uuid4().hex[:12]}")
        os.makedirs(p, exist_ok=True)
        return p

    def discard(self, path: str) -> None:
        """Remove a staging directory that never became a job."""
        _remove_path(path)

    def _submit(self, job: TransferJob, work: Callable[[Session], None]) -> None:
        def runner() -> None:
            try:
                with self.sessions.session(job.user) as s:
                    work(s)
            except FileManagerError as e:
                job.fail(e)
            except Exception as e:  # keep the worker alive and the job terminal
                core_log("error", "transfer.worker_error", job_id=job.job_id, error=repr(e))
                job.fail(TransferError("worker_error"))
            finally:
                if job.kind == KIND_UPLOAD:
                    for p in job.cleanup_paths:
                        _remove_path(p)
                    job.cleanup_paths = []

        t = threading.Thread(target=runner, name=f"transfer-{job.job_id}", daemon=True)
        t.start()

    def start_upload(
        self,
        user: str,
        destination: sandbox.PathInput,
        sources: Sequence[str],
        *,
        cleanup_paths: Sequence[str] = (),
    ) -> TransferJob:
        """Validate synchronously (quota, sources), then upload in the background."""
        try:
            with self.sessions.session(user) as s:
                self.engine.prepare_upload(s, destination, sources)
        except Exception:
            for p in cleanup_paths:
                _remove_path(p)
            raise
        job = self.create(KIND_UPLOAD, user)
        job.cleanup_paths = list(cleanup_paths)
        self._submit(job, lambda s: self.engine.upload(s, destination, sources, job))
        return job

    def start_download(self, user: str, source: sandbox.PathInput, names: Sequence[str]) -> TransferJob:
        with self.sessions.session(user) as s:
            self.engine.prepare_download(s, source, names)
        job = self.create(KIND_DOWNLOAD, user)
        self._submit(job, lambda s: self.engine.download(s, source, names, job))
        return job

    def shutdown(self) -> None:
        with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for j in jobs:
            j.fail(TransferError("shutdown"))
            self._drop(j)
