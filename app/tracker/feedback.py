from __future__ import annotations

import logging
from dataclasses import dataclass

from werkzeug.utils import secure_filename

from app.tracker.backend import BackendScope, CollectionIds, Query, unique_id
from app.tracker.domain import (
    FeedbackCategory,
    FeedbackItem,
    FeedbackStatus,
    Identity,
    Project,
    category_to_wire,
    parse_category,
    parse_status,
    status_to_wire,
)

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 5 * 1024 * 1024


class AttachmentRejected(ValueError):
    pass


@dataclass(frozen=True)
class Attachment:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def validate_attachment(attachment: Attachment, *, max_bytes: int = MAX_ATTACHMENT_BYTES) -> None:
    """Reject oversized or non-image files before anything is uploaded."""
    if attachment.size > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise AttachmentRejected(f"File too large. Please select an image smaller than {limit_mb:g}MB.")
    if not (attachment.content_type or "").lower().startswith("image/"):
        raise AttachmentRejected("Invalid file type. Please select an image file.")
    if attachment.size == 0:
        raise AttachmentRejected("The selected file is empty.")


def validate_submission(payload: dict) -> list[str]:
    """Validate a feedback submission payload. Returns list of errors."""
    errors = []
    if not (payload.get("title") or "").strip():
        errors.append("Title is required.")
    if not (payload.get("description") or "").strip():
        errors.append("Description is required.")
    if not (payload.get("project_id") or "").strip():
        errors.append("Project is required.")
    try:
        parse_category(payload.get("category") or FeedbackCategory.DEFECT)
    except ValueError as e:
        errors.append(str(e))
    return errors


def submit_feedback(
    scope: BackendScope,
    ids: CollectionIds,
    identity: Identity,
    payload: dict,
    attachment: Attachment | None = None,
    *,
    max_bytes: int = MAX_ATTACHMENT_BYTES,
) -> FeedbackItem:
    """Upload the optional screenshot, then create the item as open."""
    if attachment is not None:
        validate_attachment(attachment, max_bytes=max_bytes)

    attachment_id = None
    if attachment is not None:
        uploaded = scope.storage.create_file(
            ids.storage_bucket_id,
            unique_id(),
            attachment.data,
            filename=secure_filename(attachment.filename) or "screenshot",
            content_type=attachment.content_type,
        )
        attachment_id = str(uploaded["$id"])

    doc = scope.databases.create_document(
        ids.database_id,
        ids.tasks_collection_id,
        unique_id(),
        {
            "title": (payload.get("title") or "").strip(),
            "description": (payload.get("description") or "").strip(),
            "type": category_to_wire(parse_category(payload.get("category") or FeedbackCategory.DEFECT)),
            "status": status_to_wire(FeedbackStatus.OPEN),
            "projectId": (payload.get("project_id") or "").strip(),
            "submittedBy": identity.id,
            "submittedByName": identity.display_name,
            "screenshotId": attachment_id,
        },
    )
    item = FeedbackItem.from_document(doc)
    logger.info("Feedback %s submitted by %s (attachment=%s)", item.id, identity.id, attachment_id)
    return item


def readable_items(docs: list[dict]) -> list[FeedbackItem]:
    items = []
    for doc in docs:
        try:
            items.append(FeedbackItem.from_document(doc))
        except ValueError as e:
            logger.warning("Skipping unreadable feedback document %s: %s", doc.get("$id"), e)
    return items


def list_feedback(scope: BackendScope, ids: CollectionIds, identity: Identity) -> list[FeedbackItem]:
    """Developers see everything; everyone else sees what they submitted. Newest first."""
    queries = [Query.order_desc("$createdAt")]
    if not identity.is_developer:
        queries.insert(0, Query.equal("submittedBy", identity.id))
    return readable_items(scope.databases.list_documents(ids.database_id, ids.tasks_collection_id, queries))


def get_feedback(scope: BackendScope, ids: CollectionIds, item_id: str) -> FeedbackItem:
    return FeedbackItem.from_document(scope.databases.get_document(ids.database_id, ids.tasks_collection_id, item_id))


def can_view(identity: Identity, item: FeedbackItem) -> bool:
    return identity.is_developer or item.submitter_id == identity.id


def update_status(
    scope: BackendScope, ids: CollectionIds, item_id: str, status: FeedbackStatus | str
) -> FeedbackItem:
    new_status = parse_status(status)
    doc = scope.databases.update_document(
        ids.database_id,
        ids.tasks_collection_id,
        item_id,
        {"status": status_to_wire(new_status)},
    )
    logger.info("Feedback %s status -> %s", item_id, new_status.value)
    return FeedbackItem.from_document(doc)


def attachment_view_url(scope: BackendScope, ids: CollectionIds, item: FeedbackItem) -> str | None:
    if not item.attachment_id:
        return None
    return scope.storage.get_file_view(ids.storage_bucket_id, item.attachment_id)


def list_projects(scope: BackendScope, ids: CollectionIds) -> list[Project]:
    docs = scope.databases.list_documents(ids.database_id, ids.projects_collection_id, [Query.order_asc("name")])
    return [Project.from_document(d) for d in docs]
