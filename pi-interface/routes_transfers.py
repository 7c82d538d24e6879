"""Transfer API: uploads, downloads, job status and the progress WebSocket.

Transfers run as background jobs. The start endpoints validate the request
synchronously (sources, quota, names) and answer 202 with the job; progress is
polled from ``/api/transfers/jobs/<id>`` or followed over ``/ws/transfers``
with a one-time token.

WebSocket messages
  {type:'init',  job:{...}}
  {type:'event', events:[{seq, kind, value, ts}, ...], job:{...}}
  {type:'done',  job:{...}}
  {type:'error', message:'...'}
"""

from __future__ import annotations

import json
import os
import secrets
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, jsonify, request, send_file

from routes_files import (
    current_user,
    error_response,
    file_manager_error_response,
    json_body,
    path_arg,
    query_path,
    str_list,
)
from services.errors import FileManagerError, NameConflictError, QuotaExceededError
from services.file_manager import FileManager
from services.logging_setup import core_log
from services.sandbox import validate_name
from services.transfers import KIND_DOWNLOAD, STATUS_COMPLETED, TransferJob


WS_TOKEN_TTL = 60
WS_WAIT_SECONDS = 1.0


def _now() -> float:
    return time.time()


class WsTokenStore:
    """One-time tokens for the progress WebSocket, bound to a user."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: Dict[str, Tuple[str, float]] = {}

    def issue(self, user: str, ttl_seconds: int = WS_TOKEN_TTL) -> str:
        token = secrets.token_urlsafe(24)
        now = _now()
        with self._lock:
            for t, (_, exp) in list(self._tokens.items()):
                if exp < now:
                    self._tokens.pop(t, None)
            self._tokens[token] = (user, now + int(ttl_seconds))
        return token

    def consume(self, token: str) -> Optional[str]:
        """User bound to ``token`` if still valid; the token is spent either way."""
        token = (token or "").strip()
        if not token:
            return None
        with self._lock:
            entry = self._tokens.pop(token, None)
        if entry is None:
            return None
        user, exp = entry
        if _now() > exp:
            return None
        return user


def _job_payload(job: TransferJob) -> Dict[str, Any]:
    return job.to_dict()


def create_transfers_blueprint(fm: FileManager, *, tokens: Optional[WsTokenStore] = None) -> Blueprint:
    bp = Blueprint("transfers", __name__)
    ws_tokens = tokens or WsTokenStore()

    @bp.errorhandler(FileManagerError)
    def _on_file_manager_error(e: FileManagerError) -> Any:
        return file_manager_error_response(e)

    @bp.errorhandler(ValueError)
    def _on_bad_request(e: ValueError) -> Any:
        return error_response(str(e) or "bad_request", 400, ok=False)

    def _job_or_404(job_id: str) -> Tuple[Optional[TransferJob], Optional[Any]]:
        job = fm.jobs.get(job_id, user=current_user())
        if job is None:
            return None, error_response("job_not_found", 404, ok=False)
        return job, None

    @bp.post("/api/transfers/sizes")
    def api_transfers_sizes() -> Any:
        current_user()
        sources = str_list(json_body().get("sources"))
        sizes = fm.source_sizes(sources)
        return jsonify({"ok": True, "sizes": sizes, "total_bytes": sum(sizes)})

    @bp.post("/api/transfers/upload")
    def api_transfers_upload() -> Any:
        user = current_user()
        data = json_body()
        path = path_arg(data.get("path"))
        sources = str_list(data.get("sources"))
        job = fm.start_upload(user, path, sources)
        core_log("info", "transfers.upload_start", job_id=job.job_id, user=user, files=len(sources))
        return jsonify({"ok": True, "job_id": job.job_id, "job": _job_payload(job)}), 202

    @bp.post("/api/transfers/upload-files")
    def api_transfers_upload_files() -> Any:
        """Multipart browser upload: files are staged in the spool, then uploaded."""
        user = current_user()
        path = query_path()
        # Content-Length bounds the file payload from above
        incoming = request.content_length or 0
        if incoming:
            summary = fm.storage_summary(user)
            if incoming > summary.free_bytes:
                raise QuotaExceededError(
                    "quota_exceeded",
                    needed_bytes=incoming,
                    used_bytes=summary.used_bytes,
                    limit_bytes=summary.limit_bytes,
                )
        files = request.files.getlist("files") or request.files.getlist("file")
        if not files:
            return error_response("files_required", 400, ok=False)

        stage = fm.jobs.stage_dir()
        staged: List[str] = []
        try:
            for fs in files:
                name = validate_name(os.path.basename((fs.filename or "").replace("\\", "/")))
                dst = os.path.join(stage, name)
                if dst in staged:
                    raise NameConflictError("duplicate_file_name", name=name)
                fs.save(dst)
                staged.append(dst)
        except Exception:
            fm.jobs.discard(stage)
            raise

        job = fm.start_upload(user, path, staged, cleanup_paths=[stage])
        core_log("info", "transfers.upload_start", job_id=job.job_id, user=user, files=len(staged), staged=True)
        return jsonify({"ok": True, "job_id": job.job_id, "job": _job_payload(job)}), 202

    @bp.post("/api/transfers/download")
    def api_transfers_download() -> Any:
        user = current_user()
        data = json_body()
        path = path_arg(data.get("path"))
        names = str_list(data.get("names"))
        job = fm.start_download(user, path, names)
        core_log("info", "transfers.download_start", job_id=job.job_id, user=user, names=len(names))
        return jsonify({"ok": True, "job_id": job.job_id, "job": _job_payload(job)}), 202

    @bp.get("/api/transfers/jobs")
    def api_transfers_jobs() -> Any:
        user = current_user()
        try:
            limit = int(request.args.get("limit", "20") or "20")
        except ValueError:
            limit = 20
        limit = max(1, min(100, limit))
        jobs = fm.jobs.list_jobs(user)[:limit]
        return jsonify({"ok": True, "jobs": [_job_payload(j) for j in jobs]})

    @bp.get("/api/transfers/jobs/<job_id>")
    def api_transfers_job(job_id: str) -> Any:
        job, resp = _job_or_404(job_id)
        if resp is not None:
            return resp
        return jsonify({"ok": True, "job": _job_payload(job)})

    @bp.get("/api/transfers/jobs/<job_id>/content")
    def api_transfers_job_content(job_id: str) -> Any:
        job, resp = _job_or_404(job_id)
        if resp is not None:
            return resp
        if job.kind != KIND_DOWNLOAD:
            return error_response("not_a_download", 400, ok=False)
        snap = job.snapshot()
        if snap.status != STATUS_COMPLETED or not job.result_path:
            return error_response("job_not_completed", 409, ok=False, job_status=snap.status)
        if not os.path.isfile(job.result_path):
            return error_response("result_expired", 410, ok=False)
        return send_file(
            job.result_path,
            as_attachment=True,
            download_name=job.result_name or os.path.basename(job.result_path),
            conditional=False,
            max_age=0,
        )

    @bp.post("/api/transfers/ws-token")
    def api_transfers_ws_token() -> Any:
        user = current_user()
        ttl = WS_TOKEN_TTL
        data = json_body()
        if data.get("ttl"):
            try:
                ttl = max(10, min(300, int(data.get("ttl"))))
            except (TypeError, ValueError):
                ttl = WS_TOKEN_TTL
        token = ws_tokens.issue(user, ttl_seconds=ttl)
        return jsonify({"ok": True, "token": token, "ttl": ttl})

    @bp.route("/ws/transfers")
    def ws_transfers() -> Any:
        """WebSocket progress stream. query: token=<one-time token>, job_id=<job_id>"""
        ws = request.environ.get("wsgi.websocket")
        if ws is None:
            return "Expected WebSocket", 400

        def _send(payload: Dict[str, Any]) -> None:
            ws.send(json.dumps(payload, ensure_ascii=False))

        token = (request.args.get("token") or "").strip()
        job_id = (request.args.get("job_id") or "").strip()
        user = ws_tokens.consume(token)
        job = fm.jobs.get(job_id, user=user) if (user and job_id) else None
        try:
            if user is None:
                _send({"type": "error", "message": "bad_token"})
                return ""
            if job is None:
                _send({"type": "error", "message": "job_not_found"})
                return ""

            snap = job.snapshot()
            last_seq = snap.seq
            _send({"type": "init", "job": snap.to_dict()})
            while not snap.finished:
                events = job.channel.wait_for_events(last_seq, timeout=WS_WAIT_SECONDS)
                snap = job.snapshot()
                if events:
                    last_seq = events[-1].seq
                    _send({"type": "event", "events": [e.to_dict() for e in events], "job": snap.to_dict()})
            _send({"type": "done", "job": snap.to_dict()})
        except Exception as e:  # client went away
            core_log("info", "transfers.ws_closed", job_id=job_id, error=type(e).__name__)
        finally:
            ws.close()
        return ""

    return bp
