from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, redirect, request, send_file

from app.tracker.backend import BackendError, Query
from app.tracker.extensions import caller_scope, get_backend, get_ids
from app.tracker.feedback import (
    Attachment,
    AttachmentRejected,
    attachment_view_url,
    can_view,
    get_feedback,
    list_feedback,
    list_projects,
    readable_items,
    submit_feedback,
    update_status,
    validate_submission,
)
from app.tracker.domain import FeedbackItem
from app.tracker.rbac import require_developer, require_identity
from app.tracker.storage import LocalStorage

bp = Blueprint("api", __name__)

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def _sniff_image_type(head: bytes) -> str:
    for signature, mimetype in _IMAGE_SIGNATURES:
        if head.startswith(signature):
            return mimetype
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if b"<svg" in head[:256]:
        return "image/svg+xml"
    return "application/octet-stream"


def _backend_failure(action: str, e: BackendError):
    current_app.logger.warning("%s failed (request_id=%s): %s", action, getattr(g, "request_id", None), e)
    if e.status == 404:
        return jsonify(error="Not found."), 404
    if e.status in (401, 403):
        return jsonify(error="Not allowed."), 403
    return jsonify(error=f"{action} failed. Please try again."), 502


def _visible_item(item_id: str) -> FeedbackItem:
    try:
        item = get_feedback(caller_scope(), get_ids(), item_id)
    except BackendError as e:
        if e.status in (401, 403, 404):
            abort(404)
        raise
    if not can_view(g.identity, item):
        abort(404)
    return item


@bp.get("/projects")
@require_identity
def projects():
    try:
        result = list_projects(caller_scope(), get_ids())
    except BackendError as e:
        return _backend_failure("Loading projects", e)
    return {"projects": [p.to_dict() for p in result]}


@bp.get("/feedback")
@require_identity
def feedback_list():
    try:
        items = list_feedback(caller_scope(), get_ids(), g.identity)
    except BackendError as e:
        return _backend_failure("Loading feedback", e)
    return {"items": [item.to_dict() for item in items]}


@bp.post("/feedback")
@require_identity
def feedback_submit():
    payload = (request.get_json(silent=True) or {}) if request.is_json else request.form.to_dict()
    errors = validate_submission(payload)
    if errors:
        return jsonify(errors=errors), 400

    attachment = None
    upload = request.files.get("screenshot")
    if upload is not None and upload.filename:
        attachment = Attachment(
            filename=upload.filename,
            content_type=upload.mimetype or "",
            data=upload.read(),
        )

    try:
        item = submit_feedback(
            caller_scope(),
            get_ids(),
            g.identity,
            payload,
            attachment,
            max_bytes=int(current_app.config.get("MAX_ATTACHMENT_BYTES") or 5 * 1024 * 1024),
        )
    except AttachmentRejected as e:
        return jsonify(errors=[str(e)]), 400
    except BackendError as e:
        return _backend_failure("Submission", e)
    return {"item": item.to_dict()}, 201


@bp.get("/feedback/<item_id>")
@require_identity
def feedback_detail(item_id: str):
    try:
        item = _visible_item(item_id)
    except BackendError as e:
        return _backend_failure("Loading feedback", e)
    return {"item": item.to_dict()}


@bp.route("/feedback/<item_id>/status", methods=["PATCH", "POST"])
@require_developer
def feedback_status(item_id: str):
    payload = (request.get_json(silent=True) or {}) if request.is_json else request.form.to_dict()
    try:
        item = update_status(caller_scope(), get_ids(), item_id, payload.get("status"))
    except ValueError as e:
        return jsonify(errors=[str(e)]), 400
    except BackendError as e:
        return _backend_failure("Status update", e)
    current_app.logger.info("Status of %s set to %s by %s", item_id, item.status.value, g.identity.id)
    return {"item": item.to_dict()}


@bp.get("/feedback/<item_id>/attachment")
@require_identity
def feedback_attachment(item_id: str):
    try:
        item = _visible_item(item_id)
        url = attachment_view_url(caller_scope(), get_ids(), item)
    except BackendError as e:
        return _backend_failure("Loading attachment", e)
    if not url:
        abort(404)
    return redirect(url)


@bp.get("/files/<bucket_id>/<file_id>/view")
@require_identity
def file_view(bucket_id: str, file_id: str):
    """Serves attachments kept in self-hosted local storage."""
    files = getattr(get_backend(), "files", None)
    ids = get_ids()
    if not isinstance(files, LocalStorage) or bucket_id != ids.storage_bucket_id:
        abort(404)
    try:
        docs = caller_scope().databases.list_documents(
            ids.database_id, ids.tasks_collection_id, [Query.equal("screenshotId", file_id)]
        )
    except BackendError as e:
        return _backend_failure("Loading attachment", e)
    owners = readable_items(docs)
    if not any(can_view(g.identity, item) for item in owners):
        abort(404)
    if not files.exists(bucket_id, file_id):
        abort(404)
    fh = files.open(bucket_id, file_id)
    head = fh.read(512)
    fh.seek(0)
    return send_file(fh, mimetype=_sniff_image_type(head), download_name=file_id)
