"""
Domain records shared by the server and the dashboard client.

Backend documents use their own field names and enum spellings; the
`from_document` / `to_document` pairs are the only place that mapping lives.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class FeedbackCategory(str, Enum):
    DEFECT = "defect"
    IMPROVEMENT = "improvement"
    FEATURE = "feature"


class FeedbackStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


# domain value -> document value
_CATEGORY_WIRE = {
    FeedbackCategory.DEFECT: "bug",
    FeedbackCategory.IMPROVEMENT: "improvement",
    FeedbackCategory.FEATURE: "feature",
}
_STATUS_WIRE = {
    FeedbackStatus.OPEN: "open",
    FeedbackStatus.IN_PROGRESS: "in-progress",
    FeedbackStatus.CLOSED: "closed",
}
_CATEGORY_FROM_WIRE = {v: k for k, v in _CATEGORY_WIRE.items()}
_STATUS_FROM_WIRE = {v: k for k, v in _STATUS_WIRE.items()}


def parse_category(value: Any) -> FeedbackCategory:
    """Accepts a FeedbackCategory, its value, or the document spelling ("bug")."""
    if isinstance(value, FeedbackCategory):
        return value
    raw = str(value or "").strip().lower()
    if raw in _CATEGORY_FROM_WIRE:
        return _CATEGORY_FROM_WIRE[raw]
    try:
        return FeedbackCategory(raw)
    except ValueError:
        allowed = ", ".join(c.value for c in FeedbackCategory)
        raise ValueError(f"Invalid category {value!r}. Must be one of: {allowed}") from None


def parse_status(value: Any) -> FeedbackStatus:
    """Accepts a FeedbackStatus, its value, or the document spelling ("in-progress")."""
    if isinstance(value, FeedbackStatus):
        return value
    raw = str(value or "").strip().lower()
    if raw in _STATUS_FROM_WIRE:
        return _STATUS_FROM_WIRE[raw]
    try:
        return FeedbackStatus(raw)
    except ValueError:
        allowed = ", ".join(s.value for s in FeedbackStatus)
        raise ValueError(f"Invalid status {value!r}. Must be one of: {allowed}") from None


def category_to_wire(category: FeedbackCategory) -> str:
    return _CATEGORY_WIRE[category]


def status_to_wire(status: FeedbackStatus) -> str:
    return _STATUS_WIRE[status]


def _parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw)


def _format_ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    display_name: str
    is_developer: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "is_developer": self.is_developer,
        }


@dataclass(frozen=True)
class SessionGrant:
    secret: str
    expires_at: datetime


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Project":
        return cls(
            id=str(doc["$id"]),
            name=str(doc.get("name") or ""),
            description=str(doc.get("description") or ""),
            created_at=_parse_ts(doc.get("$createdAt")),
            updated_at=_parse_ts(doc.get("$updatedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
        }


@dataclass(frozen=True)
class FeedbackItem:
    id: str
    title: str
    description: str
    category: FeedbackCategory
    status: FeedbackStatus
    project_id: str
    submitter_id: str
    submitter_name: str
    attachment_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        # Closed sets: coerce strings, reject anything else.
        object.__setattr__(self, "category", parse_category(self.category))
        object.__setattr__(self, "status", parse_status(self.status))

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in dataclasses.fields(cls))

    def merged(self, fields: dict[str, Any]) -> "FeedbackItem":
        """Return a copy with `fields` applied; the id never changes."""
        unknown = set(fields) - self.field_names()
        if unknown:
            raise ValueError(f"Unknown feedback fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in fields.items() if k != "id"}
        for key in ("created_at", "updated_at"):
            if key in changes:
                changes[key] = _parse_ts(changes[key])
        return dataclasses.replace(self, **changes)

    def as_fields(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "FeedbackItem":
        try:
            return cls(
                id=str(doc["$id"]),
                title=str(doc.get("title") or ""),
                description=str(doc.get("description") or ""),
                category=parse_category(doc.get("type")),
                status=parse_status(doc.get("status")),
                project_id=str(doc.get("projectId") or ""),
                submitter_id=str(doc.get("submittedBy") or ""),
                submitter_name=str(doc.get("submittedByName") or ""),
                attachment_id=doc.get("screenshotId") or None,
                created_at=_parse_ts(doc.get("$createdAt")),
                updated_at=_parse_ts(doc.get("$updatedAt")),
            )
        except KeyError as e:
            raise ValueError(f"Feedback document missing field {e}") from e

    def to_document(self) -> dict[str, Any]:
        """Writable document attributes (system fields excluded)."""
        return {
            "title": self.title,
            "description": self.description,
            "type": category_to_wire(self.category),
            "status": status_to_wire(self.status),
            "projectId": self.project_id,
            "submittedBy": self.submitter_id,
            "submittedByName": self.submitter_name,
            "screenshotId": self.attachment_id,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "project_id": self.project_id,
            "submitter_id": self.submitter_id,
            "submitter_name": self.submitter_name,
            "attachment_id": self.attachment_id,
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
        }


@dataclass(frozen=True)
class ChannelMessage:
    """One delivery from a realtime channel."""

    events: tuple[str, ...]
    payload: dict[str, Any]
