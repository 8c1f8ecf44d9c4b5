from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from werkzeug.security import generate_password_hash

from app.tracker import auth as auth_module
from app.tracker import create_app
from app.tracker.backend import (
    Account,
    Backend,
    BackendError,
    BackendScope,
    CollectionIds,
    Databases,
    Files,
    Teams,
)
from app.tracker.backend.models import Base, ProjectRecord, Team, UserAccount
from app.tracker.db import session_scope
from app.tracker.domain import SessionGrant
from app.tracker.realtime import LocalChannel


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


# --- Flask app on the self-hosted backend (sqlite) ---


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("BACKEND", "local")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("COOKIE_SECURE", "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "STORAGE_ROOT", "MAX_ATTACHMENT_BYTES"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app.extensions["sqlalchemy_sessionmaker"]) as s:
        team = Team(id="developers-team", name="Developers")
        dev = UserAccount(id="dev1", email="dev@example.com", name="Dana Dev", password_hash=generate_password_hash("dev-password"))
        user = UserAccount(id="user1", email="user@example.com", name="Uma User", password_hash=generate_password_hash("user-password"))
        other = UserAccount(id="user2", email="other@example.com", name="Otto Other", password_hash=generate_password_hash("other-password"))
        team.members.append(dev)
        s.add_all([team, dev, user, other, ProjectRecord(id="proj1", name="Website", description="Public site")])

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, email: str, password: str):
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)


@pytest.fixture()
def login_as():
    return login


# --- In-memory backend fake ---


class FakeAccount(Account):
    def __init__(self, backend: "FakeBackend", credential: str | None) -> None:
        self.backend = backend
        self.credential = credential

    def get(self):
        self.backend.calls.append("account.get")
        if self.backend.fail_account:
            raise BackendError("backend unreachable")
        user_id = self.backend.sessions.get(self.credential or "")
        if user_id is None:
            raise BackendError("Invalid session", status=401)
        return dict(self.backend.users[user_id])

    def create(self, *, email, password, name):
        raise BackendError("not supported", status=400)

    def create_email_password_session(self, email, password):
        for user_id, user in self.backend.users.items():
            if user["email"] == email and password == "pw":
                secret = f"secret-{user_id}"
                self.backend.sessions[secret] = user_id
                return SessionGrant(secret=secret, expires_at=datetime.now(timezone.utc) + timedelta(hours=1))
        raise BackendError("Invalid credentials", status=401)

    def delete_session(self, session_id="current"):
        self.backend.calls.append("account.delete_session")
        if self.backend.sessions.pop(self.credential or "", None) is None:
            raise BackendError("Session not found", status=404)


class FakeTeams(Teams):
    def __init__(self, backend: "FakeBackend") -> None:
        self.backend = backend

    def list_memberships(self, team_id):
        self.backend.calls.append("teams.list_memberships")
        if self.backend.fail_memberships:
            raise BackendError("permission denied", status=401)
        members = self.backend.teams.get(team_id)
        if members is None:
            raise BackendError("Team not found", status=404)
        return [{"teamId": team_id, "userId": uid} for uid in members]


class FakeDatabases(Databases):
    def __init__(self, backend: "FakeBackend") -> None:
        self.backend = backend

    def _collection(self, collection_id):
        return self.backend.documents.setdefault(collection_id, {})

    def list_documents(self, database_id, collection_id, queries=()):
        self.backend.calls.append("databases.list_documents")
        self.backend.queries.append(list(queries))
        if self.backend.fail_list:
            raise BackendError("timeout")
        docs = list(self._collection(collection_id).values())
        for q in queries:
            if q.method == "equal":
                docs = [d for d in docs if d.get(q.attribute) in q.values]
            elif q.method == "orderDesc":
                docs.sort(key=lambda d: d.get(q.attribute) or "", reverse=True)
            elif q.method == "orderAsc":
                docs.sort(key=lambda d: d.get(q.attribute) or "")
        return [dict(d) for d in docs]

    def get_document(self, database_id, collection_id, document_id):
        doc = self._collection(collection_id).get(document_id)
        if doc is None:
            raise BackendError("Document not found", status=404)
        return dict(doc)

    def create_document(self, database_id, collection_id, document_id, data):
        self.backend.calls.append("databases.create_document")
        if self.backend.fail_write:
            raise BackendError("write rejected", status=500)
        doc = {"$id": document_id, "$createdAt": "2026-01-01T00:00:00+00:00", "$updatedAt": "2026-01-01T00:00:00+00:00", **data}
        self._collection(collection_id)[document_id] = doc
        return dict(doc)

    def update_document(self, database_id, collection_id, document_id, data):
        self.backend.calls.append("databases.update_document")
        if self.backend.fail_write:
            raise BackendError("write rejected", status=500)
        doc = self._collection(collection_id).get(document_id)
        if doc is None:
            raise BackendError("Document not found", status=404)
        doc.update(data)
        return dict(doc)


class FakeFiles(Files):
    def __init__(self, backend: "FakeBackend") -> None:
        self.backend = backend

    def create_file(self, bucket_id, file_id, data, *, filename, content_type):
        self.backend.calls.append("storage.create_file")
        self.backend.files[file_id] = (bucket_id, filename, content_type, data)
        return {"$id": file_id, "bucketId": bucket_id, "name": filename}

    def get_file_view(self, bucket_id, file_id):
        return f"https://files.example.test/{bucket_id}/{file_id}/view"


class FakeScope(BackendScope):
    def __init__(self, backend: "FakeBackend", credential: str | None) -> None:
        self.account = FakeAccount(backend, credential)
        self.teams = FakeTeams(backend)
        self.databases = FakeDatabases(backend)
        self.storage = FakeFiles(backend)


class FakeBackend(Backend):
    def __init__(self) -> None:
        self.ids = CollectionIds()
        self.channel = LocalChannel()
        self.users: dict[str, dict] = {}
        self.sessions: dict[str, str] = {}
        self.teams: dict[str, list[str]] = {self.ids.developers_team_id: []}
        self.documents: dict[str, dict[str, dict]] = {}
        self.files: dict[str, tuple] = {}
        self.calls: list[str] = []
        self.queries: list[list] = []
        self.fail_account = False
        self.fail_memberships = False
        self.fail_list = False
        self.fail_write = False

    def add_user(self, user_id: str, email: str, name: str, *, developer: bool = False) -> str:
        self.users[user_id] = {"$id": user_id, "email": email, "name": name}
        if developer:
            self.teams[self.ids.developers_team_id].append(user_id)
        secret = f"secret-{user_id}"
        self.sessions[secret] = user_id
        return secret

    def add_feedback(self, doc_id: str, *, submitted_by: str, created_at: str, status: str = "open", title: str = "Item") -> dict:
        doc = {
            "$id": doc_id,
            "title": title,
            "description": "details",
            "type": "bug",
            "status": status,
            "projectId": "proj1",
            "submittedBy": submitted_by,
            "submittedByName": submitted_by,
            "screenshotId": None,
            "$createdAt": created_at,
            "$updatedAt": created_at,
        }
        self.documents.setdefault(self.ids.tasks_collection_id, {})[doc_id] = doc
        return doc

    def for_session(self, credential):
        return FakeScope(self, credential)

    def privileged(self):
        return FakeScope(self, None)

    def realtime(self, credential=None):
        return self.channel


@pytest.fixture()
def fake_backend():
    return FakeBackend()


def feedback_document(doc_id: str = "t1", **overrides) -> dict:
    doc = {
        "$id": doc_id,
        "title": "Bug",
        "description": "Something broke",
        "type": "bug",
        "status": "open",
        "projectId": "proj1",
        "submittedBy": "user1",
        "submittedByName": "Uma User",
        "screenshotId": None,
        "$createdAt": "2026-01-02T10:00:00+00:00",
        "$updatedAt": "2026-01-02T10:00:00+00:00",
    }
    doc.update(overrides)
    return doc


@pytest.fixture()
def make_doc():
    return feedback_document
