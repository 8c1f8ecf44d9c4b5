"""
Service handles for the backend that owns accounts, documents, files and the
realtime feed.

Every handle is scoped: `Backend.for_session(credential)` acts as the caller,
`Backend.privileged()` acts with the server API key. Nothing in the app holds
a module-level client; handles are built from config in `create_app` or
passed in directly (tests pass fakes).
"""
from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from app.tracker.domain import ChannelMessage, SessionGrant


class BackendError(RuntimeError):
    """A backend call failed (transport, HTTP status, or validation)."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def unique_id() -> str:
    return uuid.uuid4().hex[:20]


@dataclass(frozen=True)
class Query:
    method: str
    attribute: str
    values: tuple[Any, ...] = ()

    @classmethod
    def equal(cls, attribute: str, value: Any) -> "Query":
        return cls("equal", attribute, (value,))

    @classmethod
    def order_desc(cls, attribute: str) -> "Query":
        return cls("orderDesc", attribute)

    @classmethod
    def order_asc(cls, attribute: str) -> "Query":
        return cls("orderAsc", attribute)


@dataclass(frozen=True)
class CollectionIds:
    database_id: str = "feedback-platform-db"
    projects_collection_id: str = "projects"
    tasks_collection_id: str = "tasks"
    storage_bucket_id: str = "task-screenshots"
    developers_team_id: str = "developers-team"

    @property
    def feedback_topic(self) -> str:
        return f"databases.{self.database_id}.collections.{self.tasks_collection_id}.documents"

    @classmethod
    def from_config(cls, config: dict) -> "CollectionIds":
        return cls(
            database_id=config.get("DATABASE_ID") or cls.database_id,
            projects_collection_id=config.get("PROJECTS_COLLECTION_ID") or cls.projects_collection_id,
            tasks_collection_id=config.get("TASKS_COLLECTION_ID") or cls.tasks_collection_id,
            storage_bucket_id=config.get("STORAGE_BUCKET_ID") or cls.storage_bucket_id,
            developers_team_id=config.get("DEVELOPERS_TEAM_ID") or cls.developers_team_id,
        )


class Account:
    def get(self) -> dict[str, Any]:
        raise NotImplementedError

    def create(self, *, email: str, password: str, name: str) -> dict[str, Any]:
        raise NotImplementedError

    def create_email_password_session(self, email: str, password: str) -> SessionGrant:
        raise NotImplementedError

    def delete_session(self, session_id: str = "current") -> None:
        raise NotImplementedError


class Teams:
    def list_memberships(self, team_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError


class Databases:
    def list_documents(
        self, database_id: str, collection_id: str, queries: Sequence[Query] = ()
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_document(self, database_id: str, collection_id: str, document_id: str) -> dict[str, Any]:
        raise NotImplementedError

    def create_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        raise NotImplementedError

    def update_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        raise NotImplementedError


class Files:
    def create_file(
        self, bucket_id: str, file_id: str, data: bytes, *, filename: str, content_type: str
    ) -> dict[str, Any]:
        raise NotImplementedError

    def get_file_view(self, bucket_id: str, file_id: str) -> str:
        raise NotImplementedError


MessageHandler = Callable[[ChannelMessage], None]
Unsubscribe = Callable[[], None]


class RealtimeChannel:
    def subscribe(self, topic: str, handler: MessageHandler) -> Unsubscribe:
        raise NotImplementedError


class BackendScope:
    """The four services as seen by one caller."""

    account: Account
    teams: Teams
    databases: Databases
    storage: Files


class Backend:
    ids: CollectionIds

    def for_session(self, credential: str) -> BackendScope:
        raise NotImplementedError

    def privileged(self) -> BackendScope:
        raise NotImplementedError

    def realtime(self, credential: str | None = None) -> RealtimeChannel:
        raise NotImplementedError


def backend_from_config(config: dict, *, sessionmaker: Any = None) -> Backend:
    kind = (config.get("BACKEND") or "local").strip().lower()
    ids = CollectionIds.from_config(config)
    if kind == "appwrite":
        from app.tracker.backend.appwrite import AppwriteBackend

        return AppwriteBackend(
            endpoint=(config.get("APPWRITE_ENDPOINT") or "").strip(),
            project_id=(config.get("APPWRITE_PROJECT_ID") or "").strip(),
            api_key=(config.get("APPWRITE_API_KEY") or "").strip(),
            ids=ids,
        )
    if kind == "local":
        from datetime import timedelta

        from app.tracker.backend.local import LocalBackend
        from app.tracker.storage import storage_from_config

        if sessionmaker is None:
            raise BackendError("The local backend needs a database sessionmaker.")
        return LocalBackend(
            sessionmaker,
            storage_from_config(config),
            ids,
            session_ttl=timedelta(hours=int(config.get("SESSION_TTL_HOURS") or 8)),
        )
    raise BackendError(f"Unknown BACKEND {kind!r} (expected 'appwrite' or 'local').")
