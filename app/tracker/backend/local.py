"""
Self-hosted backend: accounts, team memberships, sessions and documents in
SQL; files in `app.tracker.storage`; change events on an in-process
`LocalChannel`.

Mirrors the hosted backend's behaviour where the app depends on it:
session-scoped calls fail with 401 on an unknown or expired secret, team
memberships are only visible to members, and documents use the same
attribute names.
"""
from __future__ import annotations

import logging
import secrets
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import check_password_hash, generate_password_hash

from app.tracker.backend import (
    Account,
    Backend,
    BackendError,
    BackendScope,
    CollectionIds,
    Databases,
    Files,
    Query,
    RealtimeChannel,
    Teams,
    unique_id,
)
from app.tracker.backend.models import AuthSession, FeedbackRecord, ProjectRecord, Team, UserAccount
from app.tracker.db import session_scope
from app.tracker.domain import ChannelMessage, SessionGrant
from app.tracker.realtime import LocalChannel, document_events
from app.tracker.storage import Storage, StorageError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    # naive UTC, matching the DateTime(timezone=False) columns
    return datetime.utcnow()


class _Context:
    """What every service in one scope shares."""

    def __init__(self, backend: "LocalBackend", credential: str | None, privileged: bool) -> None:
        self.backend = backend
        self.credential = credential
        self.privileged = privileged

    def session(self):
        return session_scope(self.backend.sessionmaker)

    def current_account(self, s: Session) -> UserAccount:
        if not self.credential:
            raise BackendError("No session.", status=401)
        row = s.execute(select(AuthSession).where(AuthSession.secret == self.credential)).scalar_one_or_none()
        if row is None or row.expires_at <= _utcnow():
            raise BackendError("Invalid or expired session.", status=401)
        account = s.get(UserAccount, row.user_id)
        if account is None:
            raise BackendError("Session user no longer exists.", status=401)
        return account

    def require_caller(self, s: Session) -> UserAccount | None:
        """Privileged scopes act without an account; session scopes must have one."""
        if self.privileged:
            return None
        return self.current_account(s)


class LocalAccount(Account):
    def __init__(self, ctx: _Context) -> None:
        self.ctx = ctx

    def get(self) -> dict[str, Any]:
        with self.ctx.session() as s:
            return self.ctx.current_account(s).to_document()

    def create(self, *, email: str, password: str, name: str) -> dict[str, Any]:
        email = (email or "").strip().lower()
        if not email or not password:
            raise BackendError("Email and password are required.", status=400)
        if len(password) < 8:
            raise BackendError("Password must be at least 8 characters.", status=400)
        with self.ctx.session() as s:
            exists = s.execute(select(UserAccount).where(UserAccount.email == email)).scalar_one_or_none()
            if exists is not None:
                raise BackendError("An account with this email already exists.", status=409)
            account = UserAccount(
                id=unique_id(),
                email=email,
                name=(name or "").strip(),
                password_hash=generate_password_hash(password),
            )
            s.add(account)
            s.flush()
            return account.to_document()

    def create_email_password_session(self, email: str, password: str) -> SessionGrant:
        email = (email or "").strip().lower()
        with self.ctx.session() as s:
            account = s.execute(select(UserAccount).where(UserAccount.email == email)).scalar_one_or_none()
            if account is None or not check_password_hash(account.password_hash, password or ""):
                raise BackendError("Invalid credentials.", status=401)
            expires_at = _utcnow() + self.ctx.backend.session_ttl
            row = AuthSession(
                id=unique_id(),
                user_id=account.id,
                secret=secrets.token_urlsafe(32),
                expires_at=expires_at,
            )
            s.add(row)
            return SessionGrant(secret=row.secret, expires_at=expires_at.replace(tzinfo=timezone.utc))

    def delete_session(self, session_id: str = "current") -> None:
        with self.ctx.session() as s:
            account = self.ctx.current_account(s)
            if session_id == "current":
                stmt = select(AuthSession).where(AuthSession.secret == self.ctx.credential)
            else:
                stmt = select(AuthSession).where(AuthSession.id == session_id, AuthSession.user_id == account.id)
            row = s.execute(stmt).scalar_one_or_none()
            if row is None:
                raise BackendError("Session not found.", status=404)
            s.delete(row)


class LocalTeams(Teams):
    def __init__(self, ctx: _Context) -> None:
        self.ctx = ctx

    def list_memberships(self, team_id: str) -> list[dict[str, Any]]:
        with self.ctx.session() as s:
            caller = self.ctx.require_caller(s)
            team = s.get(Team, team_id)
            if team is None:
                raise BackendError(f"Team {team_id!r} not found.", status=404)
            member_ids = [m.id for m in team.members]
            if caller is not None and caller.id not in member_ids:
                raise BackendError("The current user is not a member of this team.", status=401)
            return [{"teamId": team.id, "userId": uid} for uid in member_ids]


class LocalDatabases(Databases):
    def __init__(self, ctx: _Context) -> None:
        self.ctx = ctx

    def _model(self, database_id: str, collection_id: str) -> type[FeedbackRecord] | type[ProjectRecord]:
        ids = self.ctx.backend.ids
        if database_id != ids.database_id:
            raise BackendError(f"Database {database_id!r} not found.", status=404)
        if collection_id == ids.tasks_collection_id:
            return FeedbackRecord
        if collection_id == ids.projects_collection_id:
            return ProjectRecord
        raise BackendError(f"Collection {collection_id!r} not found.", status=404)

    @staticmethod
    def _column(model: Any, attribute: str) -> Any:
        name = model.ATTRIBUTES.get(attribute)
        if name is None:
            raise BackendError(f"Unknown attribute {attribute!r}.", status=400)
        return getattr(model, name)

    @staticmethod
    def _assign(row: Any, data: dict[str, Any]) -> None:
        unknown = set(data) - row.WRITABLE
        if unknown:
            raise BackendError(f"Unknown attributes: {', '.join(sorted(unknown))}", status=400)
        for attribute, value in data.items():
            setattr(row, row.ATTRIBUTES[attribute], value)

    def list_documents(
        self, database_id: str, collection_id: str, queries: Sequence[Query] = ()
    ) -> list[dict[str, Any]]:
        model = self._model(database_id, collection_id)
        stmt = select(model)
        for q in queries:
            column = self._column(model, q.attribute)
            if q.method == "equal":
                stmt = stmt.where(column.in_(list(q.values)))
            elif q.method == "orderDesc":
                stmt = stmt.order_by(column.desc())
            elif q.method == "orderAsc":
                stmt = stmt.order_by(column.asc())
            else:
                raise BackendError(f"Unsupported query method {q.method!r}.", status=400)
        with self.ctx.session() as s:
            self.ctx.require_caller(s)
            return [row.to_document() for row in s.execute(stmt).scalars().all()]

    def get_document(self, database_id: str, collection_id: str, document_id: str) -> dict[str, Any]:
        model = self._model(database_id, collection_id)
        with self.ctx.session() as s:
            self.ctx.require_caller(s)
            row = s.get(model, document_id)
            if row is None:
                raise BackendError(f"Document {document_id!r} not found.", status=404)
            return row.to_document()

    def create_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        model = self._model(database_id, collection_id)
        if model is ProjectRecord and not self.ctx.privileged:
            raise BackendError("Projects are read-only for users.", status=401)
        now = _utcnow()
        with self.ctx.session() as s:
            self.ctx.require_caller(s)
            if s.get(model, document_id) is not None:
                raise BackendError(f"Document {document_id!r} already exists.", status=409)
            row = model(id=document_id, created_at=now, updated_at=now)
            self._assign(row, data)
            s.add(row)
            s.flush()
            doc = row.to_document()
        if model is FeedbackRecord:
            self.ctx.backend.publish_feedback(doc, "create")
        return doc

    def update_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        model = self._model(database_id, collection_id)
        if model is ProjectRecord and not self.ctx.privileged:
            raise BackendError("Projects are read-only for users.", status=401)
        with self.ctx.session() as s:
            self.ctx.require_caller(s)
            row = s.get(model, document_id)
            if row is None:
                raise BackendError(f"Document {document_id!r} not found.", status=404)
            self._assign(row, data)
            row.updated_at = _utcnow()
            s.flush()
            doc = row.to_document()
        if model is FeedbackRecord:
            self.ctx.backend.publish_feedback(doc, "update")
        return doc


class LocalFiles(Files):
    def __init__(self, ctx: _Context) -> None:
        self.ctx = ctx

    def create_file(
        self, bucket_id: str, file_id: str, data: bytes, *, filename: str, content_type: str
    ) -> dict[str, Any]:
        with self.ctx.session() as s:
            self.ctx.require_caller(s)
        if bucket_id != self.ctx.backend.ids.storage_bucket_id:
            raise BackendError(f"Bucket {bucket_id!r} not found.", status=404)
        try:
            self.ctx.backend.files.put(bucket_id, file_id, data, content_type=content_type)
        except StorageError as e:
            raise BackendError(str(e), status=400) from e
        return {
            "$id": file_id,
            "bucketId": bucket_id,
            "name": filename,
            "mimeType": content_type,
            "sizeOriginal": len(data),
        }

    def get_file_view(self, bucket_id: str, file_id: str) -> str:
        return self.ctx.backend.files.view_url(bucket_id, file_id)


class LocalScope(BackendScope):
    def __init__(self, ctx: _Context) -> None:
        self.account = LocalAccount(ctx)
        self.teams = LocalTeams(ctx)
        self.databases = LocalDatabases(ctx)
        self.storage = LocalFiles(ctx)


class LocalBackend(Backend):
    def __init__(
        self,
        sm: sessionmaker,
        files: Storage,
        ids: CollectionIds | None = None,
        *,
        channel: LocalChannel | None = None,
        session_ttl: timedelta = timedelta(hours=8),
    ) -> None:
        self.sessionmaker = sm
        self.files = files
        self.ids = ids or CollectionIds()
        self.channel = channel or LocalChannel()
        self.session_ttl = session_ttl

    def for_session(self, credential: str) -> BackendScope:
        return LocalScope(_Context(self, credential, privileged=False))

    def privileged(self) -> BackendScope:
        return LocalScope(_Context(self, None, privileged=True))

    def realtime(self, credential: str | None = None) -> RealtimeChannel:
        return self.channel

    def publish_feedback(self, doc: dict[str, Any], kind: str) -> None:
        delivered = self.channel.publish(
            self.ids.feedback_topic,
            ChannelMessage(events=document_events(self.ids, doc["$id"], kind), payload=doc),
        )
        logger.debug("Published feedback %s for %s to %d subscriber(s)", kind, doc["$id"], delivered)
