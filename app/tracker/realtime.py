"""
Realtime bridge: turns change-feed messages for the feedback collection into
create/update callbacks.

`LocalChannel` is the in-process feed used by the self-hosted backend; the
hosted backend's websocket channel lives in `app.tracker.backend.appwrite`.
Both hand the bridge `ChannelMessage`s.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable

from app.tracker.backend import CollectionIds, MessageHandler, RealtimeChannel, Unsubscribe
from app.tracker.domain import ChannelMessage, FeedbackItem

logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"

OnCreate = Callable[[FeedbackItem], None]
OnUpdate = Callable[[str, FeedbackItem], None]


def event_kind(events: Iterable[str]) -> str | None:
    """
    Classify a delivery by its event names, e.g.
    "databases.db.collections.tasks.documents.<id>.create" -> "create".
    """
    kinds = set()
    for name in events:
        parts = name.split(".")
        if len(parts) >= 3 and parts[-3] == "documents" and parts[-1] in (CREATE, UPDATE):
            kinds.add(parts[-1])
    if CREATE in kinds:
        return CREATE
    if UPDATE in kinds:
        return UPDATE
    return None


def document_events(ids: CollectionIds, document_id: str, kind: str) -> tuple[str, ...]:
    prefix = f"databases.{ids.database_id}.collections.{ids.tasks_collection_id}.documents"
    return (
        f"{prefix}.{document_id}.{kind}",
        f"{prefix}.{document_id}",
        f"{prefix}.*.{kind}",
        f"databases.*.collections.*.documents.*.{kind}",
    )


class DetachHandle:
    """Releases one channel subscription, once."""

    def __init__(self, unsubscribe: Unsubscribe) -> None:
        self._unsubscribe = unsubscribe
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def detach(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._unsubscribe()
        except Exception:
            # The channel may already be gone; the subscription is released either way.
            logger.warning("Realtime unsubscribe raised; treating subscription as released", exc_info=True)


class RealtimeBridge:
    def __init__(self, channel: RealtimeChannel, topic: str) -> None:
        self.channel = channel
        self.topic = topic

    @classmethod
    def for_feedback(cls, channel: RealtimeChannel, ids: CollectionIds) -> "RealtimeBridge":
        return cls(channel, ids.feedback_topic)

    def attach(self, on_create: OnCreate, on_update: OnUpdate) -> DetachHandle:
        def _on_message(message: ChannelMessage) -> None:
            kind = event_kind(message.events)
            if kind is None:
                return
            try:
                item = FeedbackItem.from_document(message.payload)
            except ValueError as e:
                logger.warning("Dropping realtime %s event with unreadable payload: %s", kind, e)
                return
            if kind == CREATE:
                on_create(item)
            else:
                on_update(item.id, item)

        return DetachHandle(self.channel.subscribe(self.topic, _on_message))

    @staticmethod
    def detach(handle: DetachHandle | None) -> None:
        if handle is not None:
            handle.detach()


class LocalChannel(RealtimeChannel):
    """In-process publish/subscribe feed. Handlers run on the publisher's thread."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[tuple[object, MessageHandler]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, handler: MessageHandler) -> Unsubscribe:
        token = object()
        with self._lock:
            self._subscribers[topic].append((token, handler))

        def unsubscribe() -> None:
            with self._lock:
                subs = self._subscribers.get(topic) or []
                self._subscribers[topic] = [(t, h) for t, h in subs if t is not token]

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic) or [])

    def publish(self, topic: str, message: ChannelMessage) -> int:
        with self._lock:
            handlers = [h for _, h in self._subscribers.get(topic) or []]
        for handler in handlers:
            try:
                handler(message)
            except Exception:
                logger.exception("Realtime subscriber failed on topic %s", topic)
        return len(handlers)
