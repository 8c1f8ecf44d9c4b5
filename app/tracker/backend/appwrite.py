from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

import websockets
from websockets.exceptions import WebSocketException

from app.tracker.backend import (
    Account,
    Backend,
    BackendError,
    BackendScope,
    CollectionIds,
    Databases,
    Files,
    MessageHandler,
    Query,
    RealtimeChannel,
    Teams,
    Unsubscribe,
)
from app.tracker.domain import ChannelMessage, SessionGrant

logger = logging.getLogger(__name__)

_HEARTBEAT_SECONDS = 20


def _encode_query(q: Query) -> str:
    body: dict[str, Any] = {"method": q.method, "attribute": q.attribute}
    if q.values:
        body["values"] = list(q.values)
    return json.dumps(body, separators=(",", ":"))


def _parse_expiry(raw: Any) -> datetime:
    if not raw:
        raise BackendError("Session response has no expiry.")
    text = str(raw)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _multipart(fields: dict[str, str], file_field: str, filename: str, content_type: str, data: bytes) -> tuple[bytes, str]:
    boundary = uuid.uuid4().hex
    parts: list[bytes] = []
    for name, value in fields.items():
        parts.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n{value}\r\n'.encode("utf-8")
        )
    parts.append(
        (
            f'--{boundary}\r\nContent-Disposition: form-data; name="{file_field}"; filename="{filename}"\r\n'
            f"Content-Type: {content_type}\r\n\r\n"
        ).encode("utf-8")
    )
    parts.append(data)
    parts.append(f"\r\n--{boundary}--\r\n".encode("utf-8"))
    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


@dataclass(frozen=True)
class AppwriteClient:
    """
    Minimal REST client. A client carries either a user session secret or the
    server API key, never both; `with_session` derives a caller-scoped copy.
    """

    endpoint: str
    project_id: str
    api_key: str = ""
    session: str = ""
    timeout_seconds: int = 30

    def with_session(self, secret: str) -> "AppwriteClient":
        return replace(self, session=secret, api_key="")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "X-Appwrite-Project": self.project_id,
        }
        if self.api_key:
            headers["X-Appwrite-Key"] = self.api_key
        if self.session:
            headers["X-Appwrite-Session"] = self.session
        return headers

    def url(self, path: str, params: Sequence[tuple[str, str]] | None = None) -> str:
        url = self.endpoint.rstrip("/") + path
        if params:
            url += "?" + urllib.parse.urlencode(list(params))
        return url

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Sequence[tuple[str, str]] | None = None,
        body: dict[str, Any] | None = None,
        raw_body: bytes | None = None,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """Single attempt; failures surface as BackendError with the HTTP status when there is one."""
        if not self.endpoint:
            raise BackendError("APPWRITE_ENDPOINT is not configured.")
        data: bytes | None = None
        req = urllib.request.Request(self.url(path, params), method=method)
        for k, v in self._headers().items():
            req.add_header(k, v)
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            req.add_header("Content-Type", "application/json")
        elif raw_body is not None:
            data = raw_body
            req.add_header("Content-Type", content_type or "application/octet-stream")
        try:
            with urllib.request.urlopen(req, data=data, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                detail = json.loads(e.read().decode("utf-8", errors="ignore")).get("message") or ""
            except Exception:
                detail = ""
            raise BackendError(f"HTTP {e.code} from backend ({method} {path}): {detail[:300]}", status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise BackendError(f"Backend unreachable ({method} {path}): {e}") from e
        if not raw:
            return {}
        try:
            j = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise BackendError(f"Invalid JSON from backend ({method} {path})") from e
        return j if isinstance(j, dict) else {}


class AppwriteAccount(Account):
    def __init__(self, client: AppwriteClient) -> None:
        self.client = client

    def get(self) -> dict[str, Any]:
        return self.client.request_json("GET", "/account")

    def create(self, *, email: str, password: str, name: str) -> dict[str, Any]:
        return self.client.request_json(
            "POST",
            "/account",
            body={"userId": "unique()", "email": email, "password": password, "name": name},
        )

    def create_email_password_session(self, email: str, password: str) -> SessionGrant:
        j = self.client.request_json("POST", "/account/sessions/email", body={"email": email, "password": password})
        secret = j.get("secret") or ""
        if not secret:
            # Only API-key clients get the secret back.
            raise BackendError("Session created without a secret; is APPWRITE_API_KEY set?")
        return SessionGrant(secret=secret, expires_at=_parse_expiry(j.get("expire")))

    def delete_session(self, session_id: str = "current") -> None:
        self.client.request_json("DELETE", f"/account/sessions/{urllib.parse.quote(session_id)}")


class AppwriteTeams(Teams):
    def __init__(self, client: AppwriteClient) -> None:
        self.client = client

    def list_memberships(self, team_id: str) -> list[dict[str, Any]]:
        j = self.client.request_json("GET", f"/teams/{urllib.parse.quote(team_id)}/memberships")
        memberships = j.get("memberships") or []
        return memberships if isinstance(memberships, list) else []


class AppwriteDatabases(Databases):
    def __init__(self, client: AppwriteClient) -> None:
        self.client = client

    @staticmethod
    def _path(database_id: str, collection_id: str) -> str:
        return (
            f"/databases/{urllib.parse.quote(database_id)}"
            f"/collections/{urllib.parse.quote(collection_id)}/documents"
        )

    def list_documents(
        self, database_id: str, collection_id: str, queries: Sequence[Query] = ()
    ) -> list[dict[str, Any]]:
        params = [("queries[]", _encode_query(q)) for q in queries]
        j = self.client.request_json("GET", self._path(database_id, collection_id), params=params)
        documents = j.get("documents") or []
        return documents if isinstance(documents, list) else []

    def get_document(self, database_id: str, collection_id: str, document_id: str) -> dict[str, Any]:
        return self.client.request_json(
            "GET", f"{self._path(database_id, collection_id)}/{urllib.parse.quote(document_id)}"
        )

    def create_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        return self.client.request_json(
            "POST",
            self._path(database_id, collection_id),
            body={"documentId": document_id, "data": data},
        )

    def update_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        return self.client.request_json(
            "PATCH",
            f"{self._path(database_id, collection_id)}/{urllib.parse.quote(document_id)}",
            body={"data": data},
        )


class AppwriteFiles(Files):
    def __init__(self, client: AppwriteClient) -> None:
        self.client = client

    def create_file(
        self, bucket_id: str, file_id: str, data: bytes, *, filename: str, content_type: str
    ) -> dict[str, Any]:
        raw, ctype = _multipart({"fileId": file_id}, "file", filename, content_type, data)
        return self.client.request_json(
            "POST",
            f"/storage/buckets/{urllib.parse.quote(bucket_id)}/files",
            raw_body=raw,
            content_type=ctype,
        )

    def get_file_view(self, bucket_id: str, file_id: str) -> str:
        return self.client.url(
            f"/storage/buckets/{urllib.parse.quote(bucket_id)}/files/{urllib.parse.quote(file_id)}/view",
            [("project", self.client.project_id)],
        )


class AppwriteScope(BackendScope):
    def __init__(self, client: AppwriteClient) -> None:
        self.client = client
        self.account = AppwriteAccount(client)
        self.teams = AppwriteTeams(client)
        self.databases = AppwriteDatabases(client)
        self.storage = AppwriteFiles(client)


class AppwriteRealtimeChannel(RealtimeChannel):
    """
    Websocket subscription on the running asyncio loop. A dropped connection
    is logged and ends delivery; there is no reconnect.
    """

    def __init__(self, endpoint: str, project_id: str, session: str = "") -> None:
        self.endpoint = endpoint
        self.project_id = project_id
        self.session = session

    def realtime_url(self, topic: str) -> str:
        base = self.endpoint.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        query = urllib.parse.urlencode([("project", self.project_id), ("channels[]", topic)])
        return f"{base}/realtime?{query}"

    def subscribe(self, topic: str, handler: MessageHandler) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._listen(self.realtime_url(topic), handler))

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()

        return unsubscribe

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(_HEARTBEAT_SECONDS)
            await ws.send(json.dumps({"type": "ping"}))

    async def _listen(self, url: str, handler: MessageHandler) -> None:
        try:
            async with websockets.connect(url) as ws:
                if self.session:
                    await ws.send(json.dumps({"type": "authentication", "data": {"session": self.session}}))
                heartbeat = asyncio.ensure_future(self._heartbeat(ws))
                try:
                    async for raw in ws:
                        dispatch(raw, handler)
                finally:
                    heartbeat.cancel()
        except (OSError, WebSocketException) as e:
            logger.warning("Realtime channel closed (%s): %s", url.split("?")[0], e)


def dispatch(raw: str | bytes, handler: MessageHandler) -> None:
    """Decode one realtime frame and hand event frames to `handler`."""
    try:
        msg = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring non-JSON realtime frame")
        return
    if not isinstance(msg, dict):
        return
    kind = msg.get("type")
    data = msg.get("data") or {}
    if kind == "error":
        logger.warning("Realtime channel error: %s", data.get("message") if isinstance(data, dict) else data)
        return
    if kind != "event" or not isinstance(data, dict):
        return
    payload = data.get("payload")
    handler(
        ChannelMessage(
            events=tuple(str(e) for e in (data.get("events") or ())),
            payload=payload if isinstance(payload, dict) else {},
        )
    )


class AppwriteBackend(Backend):
    def __init__(self, *, endpoint: str, project_id: str, api_key: str, ids: CollectionIds) -> None:
        self.client = AppwriteClient(endpoint=endpoint, project_id=project_id, api_key=api_key)
        self.ids = ids

    def for_session(self, credential: str) -> BackendScope:
        return AppwriteScope(self.client.with_session(credential))

    def privileged(self) -> BackendScope:
        return AppwriteScope(self.client)

    def realtime(self, credential: str | None = None) -> RealtimeChannel:
        return AppwriteRealtimeChannel(self.client.endpoint, self.client.project_id, credential or "")
