"""
Dashboard session: the client-side composition root.

Owns nothing global. It is handed a backend, a credential and a store, and
wires them together for one mounted dashboard: identity fetch, initial list,
realtime updates, and the user actions that write back.

Runs on an asyncio loop. Blocking backend calls go through `run_blocking`
(a worker thread by default); their results are applied on the loop thread,
and only if the mount that started them is still alive.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from app.tracker.backend import Backend, BackendError
from app.tracker.domain import FeedbackItem, FeedbackStatus, Identity
from app.tracker.feedback import (
    MAX_ATTACHMENT_BYTES,
    Attachment,
    AttachmentRejected,
    list_feedback,
    submit_feedback,
    update_status,
    validate_attachment,
    validate_submission,
)
from app.tracker.realtime import DetachHandle, RealtimeBridge
from app.tracker.sessions import SessionResolver
from app.tracker.store import SyncStore

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]
Runner = Callable[..., Awaitable[Any]]


def _log_notice(title: str, message: str) -> None:
    logger.warning("%s: %s", title, message)


class Liveness:
    """Cancelled when the mount that created it goes away."""

    def __init__(self) -> None:
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def cancel(self) -> None:
        self._alive = False


class DashboardSession:
    def __init__(
        self,
        backend: Backend,
        credential: str,
        store: SyncStore,
        *,
        notify: Notifier | None = None,
        run_blocking: Runner = asyncio.to_thread,
        max_attachment_bytes: int = MAX_ATTACHMENT_BYTES,
    ) -> None:
        self.backend = backend
        self.credential = credential
        self.store = store
        self.scope = backend.for_session(credential)
        self.ids = backend.ids
        self.resolver = SessionResolver(backend)
        self.bridge = RealtimeBridge.for_feedback(backend.realtime(credential), backend.ids)
        self.notify = notify or _log_notice
        self.max_attachment_bytes = max_attachment_bytes
        self._run = run_blocking
        self._liveness: Liveness | None = None
        self._handle: DetachHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def mounted(self) -> bool:
        return self._liveness is not None and self._liveness.alive

    async def mount(self) -> Identity | None:
        self.unmount()
        self._loop = asyncio.get_running_loop()
        token = self._liveness = Liveness()

        identity = await self._run(self.resolver.resolve, self.credential)
        if not token.alive:
            return None
        if identity is None:
            self.store.clear()
            self.notify("Signed out", "Your session has expired. Please log in again.")
            return None
        self.store.set_identity(identity)

        try:
            items = await self._run(list_feedback, self.scope, self.ids, identity)
        except BackendError as e:
            logger.warning("Initial feedback fetch failed: %s", e)
            if token.alive:
                self.notify("Error", "Failed to load feedback. Please try again.")
            items = None
        if not token.alive:
            return None
        if items is not None:
            self.store.set_items(items)

        self._handle = self.bridge.attach(
            lambda item: self._deliver(self._on_create, item),
            lambda item_id, item: self._deliver(self._on_update, item_id, item),
        )
        return identity

    def unmount(self) -> None:
        if self._liveness is not None:
            self._liveness.cancel()
            self._liveness = None
        RealtimeBridge.detach(self._handle)
        self._handle = None

    def _deliver(self, fn: Callable[..., None], *args: Any) -> None:
        """Apply realtime events on the loop thread; in-process channels may call from elsewhere."""
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is None or running is loop:
            fn(*args)
        elif not loop.is_closed():
            loop.call_soon_threadsafe(fn, *args)

    def _visible(self, item: FeedbackItem) -> bool:
        identity = self.store.identity
        if identity is None:
            return False
        return identity.is_developer or item.submitter_id == identity.id

    def _on_create(self, item: FeedbackItem) -> None:
        if not self.mounted or not self._visible(item):
            return
        # A repeated create for an id already on screen is applied as an update.
        if self.store.find(item.id) is not None:
            self.store.update_item(item.id, item.as_fields())
        else:
            self.store.add_item(item)

    def _on_update(self, item_id: str, item: FeedbackItem) -> None:
        if not self.mounted or not self._visible(item):
            return
        self.store.update_item(item_id, item.as_fields())

    async def submit(self, payload: dict, attachment: Attachment | None = None) -> FeedbackItem | None:
        identity = self.store.identity
        if identity is None:
            self.notify("Submission failed", "You are not signed in.")
            return None
        errors = validate_submission(payload)
        if errors:
            self.notify("Submission failed", " ".join(errors))
            return None
        if attachment is not None:
            try:
                validate_attachment(attachment, max_bytes=self.max_attachment_bytes)
            except AttachmentRejected as e:
                self.notify("Invalid attachment", str(e))
                return None

        token = self._liveness
        try:
            item = await self._run(
                submit_feedback,
                self.scope,
                self.ids,
                identity,
                payload,
                attachment,
                max_bytes=self.max_attachment_bytes,
            )
        except BackendError as e:
            self.notify("Submission failed", str(e) or "Please try again.")
            return None
        if token is not None and token.alive:
            self._on_create(item)
        self.notify("Feedback submitted successfully", "Thank you for your feedback! We'll review it soon.")
        return item

    async def set_status(self, item_id: str, status: FeedbackStatus | str) -> FeedbackItem | None:
        identity = self.store.identity
        if identity is None or not identity.is_developer:
            self.notify("Update failed", "Only developers can change feedback status.")
            return None
        token = self._liveness
        try:
            updated = await self._run(update_status, self.scope, self.ids, item_id, status)
        except (BackendError, ValueError) as e:
            self.notify("Update failed", str(e) or "Failed to update feedback status.")
            return None
        if token is not None and token.alive:
            self.store.update_item(item_id, {"status": updated.status})
        self.notify("Status updated", f"Feedback status changed to {updated.status.value.replace('_', ' ')}.")
        return updated

    async def logout(self) -> None:
        self.unmount()
        try:
            await self._run(self.scope.account.delete_session, "current")
        except BackendError as e:
            logger.warning("Logout failed on the backend: %s", e)
        self.store.clear()
        self.notify("Logged out successfully", "See you next time!")
