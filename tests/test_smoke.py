import io

import pytest

from app.tracker import create_app
from app.tracker.backend.models import FeedbackRecord
from app.tracker.db import session_scope
from app.tracker.realtime import RealtimeBridge

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def test_health_endpoints_are_public(client):
    assert client.get("/health").get_json() == {"ok": True}
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.data == b"ok"


def test_anonymous_pages_redirect_to_login(client):
    for path in ("/", "/dashboard", "/dashboard/developer"):
        resp = client.get(path)
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/login")
    assert client.get("/login").status_code == 200
    assert client.get("/register").status_code == 200


def test_paths_that_only_start_with_health_are_guarded(client, login_as):
    resp = client.get("/healthcheck")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")

    login_as(client, "user@example.com", "user-password")
    assert client.get("/healthcheck").status_code == 404
    assert client.get("/health").get_json() == {"ok": True}


def test_login_sets_strict_http_only_cookie(client, login_as):
    resp = login_as(client, "user@example.com", "user-password")

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/dashboard")
    cookie = next(h for h in resp.headers.getlist("Set-Cookie") if h.startswith("session="))
    assert "HttpOnly" in cookie
    assert "SameSite=Strict" in cookie
    assert "Path=/" in cookie
    assert "Expires=" in cookie


def test_bad_password_is_rejected(client, login_as):
    resp = login_as(client, "user@example.com", "wrong-password")
    assert resp.status_code == 401
    assert client.get("/dashboard").status_code == 302


def test_login_is_rate_limited(client, login_as):
    for _ in range(5):
        login_as(client, "user@example.com", "wrong-password")
    assert login_as(client, "user@example.com", "user-password").status_code == 429


def test_signed_in_user_is_sent_away_from_public_pages(client, login_as):
    login_as(client, "user@example.com", "user-password")
    resp = client.get("/login")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/dashboard")


def test_dashboard_branches_on_role(client, login_as):
    login_as(client, "user@example.com", "user-password")
    body = client.get("/dashboard").get_json()
    assert body["view"] == "user"
    assert body["user"]["is_developer"] is False
    assert [p["name"] for p in body["projects"]] == ["Website"]

    resp = client.get("/dashboard/developer")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/dashboard")


def test_developer_reaches_developer_dashboard(client, login_as):
    login_as(client, "dev@example.com", "dev-password")
    assert client.get("/dashboard").get_json()["view"] == "developer"
    resp = client.get("/dashboard/developer")
    assert resp.status_code == 200
    assert resp.get_json()["user"]["id"] == "dev1"


def test_api_answers_401_and_403_instead_of_redirecting(client, login_as):
    assert client.get("/api/feedback").status_code == 401

    login_as(client, "user@example.com", "user-password")
    resp = client.patch("/api/feedback/whatever/status", json={"status": "closed"})
    assert resp.status_code == 403
    assert resp.get_json()["missing_role"] == "developer"


def _submit(client, **extra):
    data = {"title": "Crash on save", "description": "Steps...", "project_id": "proj1", "category": "defect"}
    data.update(extra)
    return client.post("/api/feedback", data=data, content_type="multipart/form-data")


def test_submit_list_and_status_flow(app, client, login_as):
    login_as(client, "user@example.com", "user-password")
    resp = _submit(client, screenshot=(io.BytesIO(PNG), "shot.png", "image/png"))
    assert resp.status_code == 201
    item = resp.get_json()["item"]
    assert item["status"] == "open"
    assert item["submitter_id"] == "user1"
    assert item["attachment_id"]

    assert [i["id"] for i in client.get("/api/feedback").get_json()["items"]] == [item["id"]]

    # The attachment is served to its submitter.
    resp = client.get(f"/api/feedback/{item['id']}/attachment")
    assert resp.status_code == 302
    view = client.get(resp.headers["Location"])
    assert view.status_code == 200
    assert view.mimetype == "image/png"
    assert view.data == PNG

    # Other users cannot see it.
    client.get("/logout")
    login_as(client, "other@example.com", "other-password")
    assert client.get("/api/feedback").get_json()["items"] == []
    assert client.get(f"/api/feedback/{item['id']}").status_code == 404

    # Developers see everything and can move it along.
    client.get("/logout")
    login_as(client, "dev@example.com", "dev-password")
    assert [i["id"] for i in client.get("/api/feedback").get_json()["items"]] == [item["id"]]
    resp = client.patch(f"/api/feedback/{item['id']}/status", json={"status": "in_progress"})
    assert resp.status_code == 200
    assert resp.get_json()["item"]["status"] == "in_progress"

    resp = client.patch(f"/api/feedback/{item['id']}/status", json={"status": "done"})
    assert resp.status_code == 400


def test_status_change_reaches_realtime_subscribers(app, client, login_as):
    backend = app.extensions["tracker_backend"]
    created, updated = [], []
    handle = RealtimeBridge.for_feedback(backend.realtime(), backend.ids).attach(
        created.append, lambda item_id, item: updated.append((item_id, item.status.value))
    )

    login_as(client, "user@example.com", "user-password")
    item_id = _submit(client).get_json()["item"]["id"]
    client.get("/logout")
    login_as(client, "dev@example.com", "dev-password")
    client.patch(f"/api/feedback/{item_id}/status", json={"status": "closed"})
    handle.detach()

    assert [i.id for i in created] == [item_id]
    assert updated == [(item_id, "closed")]


def test_attachment_survives_an_unreadable_document_sharing_it(app, client, login_as):
    login_as(client, "user@example.com", "user-password")
    item = _submit(client, screenshot=(io.BytesIO(PNG), "shot.png", "image/png")).get_json()["item"]
    view_url = client.get(f"/api/feedback/{item['id']}/attachment").headers["Location"]

    with session_scope(app.extensions["sqlalchemy_sessionmaker"]) as s:
        s.add(
            FeedbackRecord(
                id="broken1",
                title="Legacy",
                type="question",
                project_id="proj1",
                submitted_by="user1",
                screenshot_id=item["attachment_id"],
            )
        )

    assert client.get(view_url).status_code == 200

    with session_scope(app.extensions["sqlalchemy_sessionmaker"]) as s:
        s.get(FeedbackRecord, item["id"]).type = "question"

    assert client.get(view_url).status_code == 404


def test_non_image_screenshot_is_rejected(client, login_as):
    login_as(client, "user@example.com", "user-password")
    resp = _submit(client, screenshot=(io.BytesIO(b"plain text"), "notes.txt", "text/plain"))
    assert resp.status_code == 400
    assert "Invalid file type" in resp.get_json()["errors"][0]
    assert client.get("/api/feedback").get_json()["items"] == []


def test_missing_fields_are_reported(client, login_as):
    login_as(client, "user@example.com", "user-password")
    resp = client.post("/api/feedback", json={"title": ""})
    assert resp.status_code == 400
    assert "Title is required." in resp.get_json()["errors"]


def test_logout_clears_cookie_and_session(client, login_as):
    login_as(client, "user@example.com", "user-password")
    assert client.get("/dashboard").status_code == 200

    resp = client.get("/logout")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/login")
    assert client.get("/dashboard").status_code == 302


def test_register_creates_account_and_signs_in(client):
    resp = client.post("/register", data={"email": "new@example.com", "password": "long-enough", "name": "Nia New"})
    assert resp.status_code == 302
    body = client.get("/dashboard").get_json()
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["display_name"] == "Nia New"
    assert body["view"] == "user"


def test_register_rejects_duplicates_and_short_passwords(client):
    resp = client.post("/register", data={"email": "user@example.com", "password": "long-enough", "name": "Dup"})
    assert resp.status_code == 409
    resp = client.post("/register", data={"email": "x@example.com", "password": "short", "name": "X"})
    assert resp.status_code == 400


def test_production_requires_real_secret_key(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("BACKEND", "local")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app()
