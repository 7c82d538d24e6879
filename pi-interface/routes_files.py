"""Browsing and editing API (list, storage, folders, rename, delete, content).

All routes act on the logged-in user's tree (``session["user"]``). Paths are
relative to that user's root and may be sent as ``"a/b"`` or ``["a", "b"]``.
Errors raised by the engine are FileManagerError subclasses; they are
rendered by ``file_manager_error_response`` with their own status.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from flask import Blueprint, jsonify, request, session

from services.errors import AuthenticationError, FileManagerError
from services.file_manager import FileManager
from services.logging_setup import core_log
from services.sandbox import PathInput, relative_path


# --------------------------- Helpers ---------------------------

def error_response(message: str, status: int = 400, *, ok: bool | None = None, **extra: Any) -> Any:
    payload: Dict[str, Any] = {"error": message}
    if ok is not None:
        payload["ok"] = ok
    payload.update(extra)
    return jsonify(payload), status


def file_manager_error_response(e: FileManagerError) -> Tuple[Any, int]:
    if e.status >= 500:
        core_log("warning", "api.error", path=request.path, error=e.code, message=e.message)
    return jsonify(e.to_dict()), e.status


def current_user() -> str:
    user = session.get("user")
    if not user:
        raise AuthenticationError("login_required")
    return str(user)


def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def path_arg(value: Any) -> PathInput:
    """Path from a query/body value: ``"a/b"``, ``["a", "b"]`` or nothing."""
    if value is None:
        return []
    if isinstance(value, str):
        return value
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    raise ValueError("bad_path")


def query_path() -> PathInput:
    values = request.args.getlist("path")
    if len(values) > 1:
        return values
    return values[0] if values else ""


def str_list(value: Any) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError("expected_list_of_strings")
    return value


def create_files_blueprint(fm: FileManager) -> Blueprint:
    bp = Blueprint("files", __name__)

    @bp.errorhandler(FileManagerError)
    def _on_file_manager_error(e: FileManagerError) -> Any:
        return file_manager_error_response(e)

    @bp.errorhandler(ValueError)
    def _on_bad_request(e: ValueError) -> Any:
        return error_response(str(e) or "bad_request", 400, ok=False)

    @bp.get("/api/files/list")
    def api_files_list() -> Any:
        user = current_user()
        path = query_path()
        entries = fm.list_entries(user, path)
        return jsonify({"ok": True, "path": relative_path(path), "items": [e.to_dict() for e in entries]})

    @bp.get("/api/files/storage")
    def api_files_storage() -> Any:
        summary = fm.storage_summary(current_user())
        return jsonify({"ok": True, **summary.to_dict()})

    @bp.post("/api/files/folders")
    def api_files_create_folder() -> Any:
        user = current_user()
        data = json_body()
        path = path_arg(data.get("path"))
        name = data.get("name")
        fm.create_folder(user, path, name if isinstance(name, str) else "")
        return jsonify({"ok": True, "path": relative_path(path), "name": name}), 201

    @bp.post("/api/files/rename")
    def api_files_rename() -> Any:
        user = current_user()
        data = json_body()
        path = path_arg(data.get("path"))
        old_name = data.get("old_name")
        new_name = data.get("new_name")
        if not isinstance(old_name, str) or not isinstance(new_name, str):
            return error_response("old_name_new_name_required", 400, ok=False)
        fm.rename_entry(user, path, old_name, new_name)
        return jsonify({"ok": True, "old_name": old_name, "new_name": new_name})

    @bp.post("/api/files/delete")
    def api_files_delete() -> Any:
        user = current_user()
        data = json_body()
        path = path_arg(data.get("path"))
        names = str_list(data.get("names"))
        if not names:
            return error_response("names_required", 400, ok=False)
        outcome = fm.delete_entries(user, path, names)
        outcome.raise_for_failures()
        return jsonify({"ok": True, "succeeded": outcome.succeeded, "failed": {}})

    @bp.get("/api/files/content")
    def api_files_read() -> Any:
        user = current_user()
        name = request.args.get("name", "")
        text = fm.read_file(user, query_path(), name)
        return jsonify({"ok": True, "name": name, "text": text})

    @bp.put("/api/files/content")
    def api_files_write() -> Any:
        user = current_user()
        data = json_body()
        path = path_arg(data.get("path"))
        name = data.get("name")
        text = data.get("text")
        if not isinstance(name, str) or not isinstance(text, str):
            return error_response("name_text_required", 400, ok=False)
        fm.write_file(user, path, name, text)
        return jsonify({"ok": True, "name": name})

    return bp
