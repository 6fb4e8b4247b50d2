from __future__ import annotations

from flask import Blueprint, jsonify, request, current_app, send_file
from werkzeug.utils import secure_filename
import tempfile

from .changes import accept, get_change, pending_changes, reject
from .db import get_session, transaction
from .exceptions import (
    GedTreeError,
    GedcomExportError,
    GedcomImportError,
    InvalidRecordError,
    RecordNotFoundError,
    TreeExistsError,
    TreeNotFoundError,
    XrefContentionError,
)
from .models import User
from .settings import find_user
from .tree import create_tree, find_tree

api_bp = Blueprint("api", __name__, url_prefix="/api")

USER_HEADER = "X-Gedtree-User"

ERROR_STATUS = (
    (InvalidRecordError, 400),
    (GedcomImportError, 400),
    (RecordNotFoundError, 404),
    (TreeNotFoundError, 404),
    (TreeExistsError, 409),
    (XrefContentionError, 503),
    (GedcomExportError, 500),
)

CREATE_METHODS = {
    "record": "create_record",
    "individual": "create_individual",
    "family": "create_family",
    "media": "create_media_object",
}


@api_bp.errorhandler(GedTreeError)
def handle_tree_error(exc: GedTreeError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    current_app.logger.warning("%s: %s", exc.error_code, exc.message)
    return jsonify(exc.to_dict()), status


def _acting_user(session) -> User | None:
    name = request.headers.get(USER_HEADER)
    return find_user(session, name) if name else None


def _json_object() -> dict | None:
    payload = request.get_json(force=True, silent=True)
    return payload if isinstance(payload, dict) else None


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _change_to_dict(change) -> dict:
    return {
        "id": change.id,
        "xref": change.xref,
        "status": change.status,
        "old_gedcom": change.old_gedcom,
        "new_gedcom": change.new_gedcom,
        "user_id": change.user_id,
        "user_name": change.user.user_name if change.user is not None else None,
        "change_time": change.change_time.isoformat() if change.change_time else None,
    }


@api_bp.get("/health")
def health():
    return jsonify({"ok": True})


@api_bp.post("/trees")
def create_tree_endpoint():
    session = get_session()
    payload = _json_object()
    if payload is None:
        return jsonify({"error": "request body must be a JSON object"}), 400
    name = _text(payload, "name")
    if not name:
        return jsonify({"error": "name is required"}), 400
    tree = create_tree(session, name, _text(payload, "title") or name)
    return jsonify({"id": tree.id, "name": tree.name, "title": tree.title}), 201


@api_bp.delete("/trees/<int:tree_id>")
def delete_tree(tree_id: int):
    find_tree(get_session(), tree_id).delete()
    return jsonify({"deleted": tree_id})


@api_bp.post("/trees/<int:tree_id>/import")
def import_gedcom(tree_id: int):
    session = get_session()
    tree = find_tree(session, tree_id)

    f = request.files.get("file")
    if not f:
        return jsonify({"error": "file is required"}), 400
    filename = secure_filename(f.filename or "") or f"{tree.name}.ged"

    chunks = tree.import_gedcom_file(f.stream, filename, block_size=current_app.config["GEDCOM_BLOCK_SIZE"])
    records = tree.import_chunks()
    return jsonify({"imported": {"chunks": chunks, "records": records, "filename": filename}})


@api_bp.get("/trees/<int:tree_id>/export")
def export_gedcom(tree_id: int):
    tree = find_tree(get_session(), tree_id)

    spool = tempfile.SpooledTemporaryFile(max_size=8 * 1024 * 1024)
    try:
        tree.export_gedcom(
            spool,
            batch_size=current_app.config["EXPORT_BATCH_SIZE"],
            buffer_size=current_app.config["EXPORT_BUFFER_SIZE"],
        )
    except GedcomExportError:
        spool.close()
        raise
    spool.seek(0)
    download_name = tree.get_preference("gedcom_filename") or f"{tree.name}.ged"
    return send_file(spool, mimetype="text/x-gedcom", as_attachment=True, download_name=download_name)


@api_bp.post("/trees/<int:tree_id>/records")
def create_record(tree_id: int):
    session = get_session()
    tree = find_tree(session, tree_id)
    user = _acting_user(session)
    if user is None:
        return jsonify({"error": f"{USER_HEADER} header must name a user"}), 401

    payload = _json_object()
    if payload is None:
        return jsonify({"error": "request body must be a JSON object"}), 400
    method = CREATE_METHODS.get(_text(payload, "kind") or "record")
    if method is None:
        return jsonify({"error": f"kind must be one of {sorted(CREATE_METHODS)}"}), 400

    record = getattr(tree, method)(user, payload["gedcom"] if isinstance(payload.get("gedcom"), str) else "")
    return jsonify({
        "xref": record.xref,
        "kind": record.kind.name,
        "gedcom": record.gedcom,
        "pending": record.pending,
    }), 201


@api_bp.get("/trees/<int:tree_id>/changes")
def list_changes(tree_id: int):
    session = get_session()
    tree = find_tree(session, tree_id)
    return jsonify([_change_to_dict(c) for c in pending_changes(session, tree.id)])


def _resolve_change(change_id: int, action):
    session = get_session()
    change = get_change(session, change_id)
    if change is None:
        return jsonify({"error": "change not found"}), 404
    tree = find_tree(session, change.tree_id)
    if not tree.can_accept_changes(_acting_user(session)):
        return jsonify({"error": "not a moderator of this tree"}), 403

    with transaction(session):
        applied = action(session, change)
    return jsonify({"change": _change_to_dict(change), "applied": applied})


@api_bp.post("/changes/<int:change_id>/accept")
def accept_change(change_id: int):
    return _resolve_change(change_id, accept)


@api_bp.post("/changes/<int:change_id>/reject")
def reject_change(change_id: int):
    return _resolve_change(change_id, reject)
