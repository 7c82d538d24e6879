"""pi-interface web application.

Builds the Flask app around a single FileManager: session (login) API, the
files and transfers blueprints, the auth/CSRF guard and the access log.
Configuration comes from ``PIFACE_*`` environment variables.
"""

from __future__ import annotations

import os
import tempfile
import time
import uuid
from typing import Any, Dict, Mapping, Optional

from flask import Flask, g, jsonify, request, session

from routes_files import create_files_blueprint, current_user, file_manager_error_response, json_body
from routes_transfers import create_transfers_blueprint
from services.errors import FileManagerError
from services.file_manager import FileManager
from services.logging_setup import access_enabled, access_logger, core_log, setup_logging


# Routes reachable without a logged-in session.
_PUBLIC_ENDPOINTS = {"api_session_login", "api_session_info", "static"}
_SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


def _atomic_write(path: str, data: str, *, mode: int = 0o600) -> None:
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)
    tmp = f"{path}.tmp.{uuid.uuid4().hex}"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.chmod(tmp, mode)
    os.replace(tmp, path)


def _load_or_create_secret_key(path: str) -> str:
    """Load the session secret from ``path`` or create one (0600)."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            key = (f.read() or "").strip()
            if key:
                return key
    except FileNotFoundError:
        pass
    key = os.urandom(32).hex()
    try:
        _atomic_write(path, key + "\n", mode=0o600)
    except OSError as e:
        # keep the key in memory; sessions just won't survive a restart
        core_log("warning", "app.secret_key_not_saved", path=path, error=e.strerror or str(e))
    return key


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(str(env.get(name, "") or default).strip())
    except ValueError:
        return default


def _ensure_csrf_token() -> str:
    tok = session.get("csrf")
    if not tok:
        tok = uuid.uuid4().hex
        session["csrf"] = tok
    return tok


def _check_csrf() -> bool:
    expected = session.get("csrf")
    if not expected:
        return False
    hdr = (request.headers.get("X-CSRF-Token") or "").strip()
    return bool(hdr) and hdr == expected


def create_app(file_manager: Optional[FileManager] = None, *, environ: Optional[Mapping[str, str]] = None) -> Flask:
    env = os.environ if environ is None else environ
    setup_logging()

    app = Flask(__name__)
    fm = file_manager or FileManager.from_env(env, tmp_dir=tempfile.gettempdir())
    app.extensions["file_manager"] = fm

    app.secret_key = env.get("PIFACE_SECRET_KEY") or _load_or_create_secret_key(
        os.path.join(fm.config.state_dir, "secret.key")
    )
    app.config.setdefault("SESSION_COOKIE_HTTPONLY", True)
    app.config.setdefault("SESSION_COOKIE_SAMESITE", "Lax")
    app.config["MAX_CONTENT_LENGTH"] = max(1, _env_int(env, "PIFACE_MAX_UPLOAD_MB", 2048)) * 1024 * 1024

    @app.errorhandler(FileManagerError)
    def _on_file_manager_error(e: FileManagerError) -> Any:
        return file_manager_error_response(e)

    @app.before_request
    def _access_log_before_request() -> None:
        g._piface_t0 = time.time()

    @app.before_request
    def _auth_guard() -> Any:
        """Every API call needs a login; state-changing calls also need the CSRF header."""
        if request.endpoint in _PUBLIC_ENDPOINTS:
            return None
        path = request.path or ""
        if path.startswith("/ws/"):
            # WebSocket routes authenticate with one-time tokens
            return None
        if not session.get("user"):
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        if request.method not in _SAFE_METHODS and not _check_csrf():
            return jsonify({"ok": False, "error": "csrf_failed"}), 403
        return None

    @app.after_request
    def _access_log_after_request(response: Any) -> Any:
        if not access_enabled():
            return response
        path = request.path or ""
        if path.startswith("/static/") or path.startswith("/ws/"):
            return response
        client = request.headers.get("X-Forwarded-For") or request.remote_addr or ""
        status = getattr(response, "status_code", 0) or 0
        t0 = getattr(g, "_piface_t0", None)
        if t0:
            dt_ms = int((time.time() - float(t0)) * 1000.0)
            line = f"{client} {request.method} {path} -> {status} ({dt_ms}ms)"
        else:
            line = f"{client} {request.method} {path} -> {status}"
        access_logger().info(line)
        return response

    # --------------------------- session API ---------------------------

    def _session_payload(user: str) -> Dict[str, Any]:
        account = fm.accounts.require(user)
        return {
            "ok": True,
            "user": account.name,
            "storage_limit_gb": account.storage_limit,
            "storage_limit_bytes": account.storage_limit_bytes,
            "csrf_token": _ensure_csrf_token(),
        }

    @app.post("/api/session")
    def api_session_login() -> Any:
        data = json_body()
        name = str(data.get("name") or "").strip()
        password = str(data.get("password") or "")
        if not name or not password:
            return jsonify({"ok": False, "error": "name_password_required"}), 400
        try:
            account = fm.login(name, password)
        except FileManagerError as e:
            core_log("warning", "auth.login_failed", user=name, error=e.code, client=request.remote_addr)
            raise
        session.clear()
        session["user"] = account.name
        return jsonify(_session_payload(account.name))

    @app.get("/api/session")
    def api_session_info() -> Any:
        user = session.get("user")
        if not user:
            return jsonify({"ok": True, "user": None})
        payload = _session_payload(user)
        payload["used_bytes"] = fm.used_storage(user)
        return jsonify(payload)

    @app.delete("/api/session")
    def api_session_logout() -> Any:
        user = current_user()
        closed = fm.logout(user)
        session.clear()
        core_log("info", "auth.logout", user=user, closed=closed)
        return jsonify({"ok": True, "closed": closed})

    app.register_blueprint(create_files_blueprint(fm))
    app.register_blueprint(create_transfers_blueprint(fm))
    core_log("info", "app.start", accounts=len(fm.accounts), spool=fm.config.spool_dir, base_dir=fm.config.base_dir)
    return app
