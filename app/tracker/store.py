"""
Client state: who is signed in and which feedback items are on screen.

State is an immutable `Snapshot`. Each store action computes the next
snapshot with a pure transition function, swaps it in, then notifies
subscribers with the new snapshot, so observers only ever see whole states.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from app.tracker.domain import FeedbackItem, Identity


@dataclass(frozen=True)
class Snapshot:
    identity: Identity | None = None
    items: tuple[FeedbackItem, ...] = ()


EMPTY = Snapshot()

Listener = Callable[[Snapshot], None]


def with_identity(snapshot: Snapshot, identity: Identity | None) -> Snapshot:
    return replace(snapshot, identity=identity)


def with_items(snapshot: Snapshot, items: Iterable[FeedbackItem]) -> Snapshot:
    return replace(snapshot, items=tuple(items))


def with_item_prepended(snapshot: Snapshot, item: FeedbackItem) -> Snapshot:
    return replace(snapshot, items=(item,) + snapshot.items)


def with_item_merged(snapshot: Snapshot, item_id: str, fields: dict[str, Any]) -> Snapshot:
    """Merge into the first item with `item_id`; returns `snapshot` itself when there is none."""
    for index, item in enumerate(snapshot.items):
        if item.id == item_id:
            updated = item.merged(fields)
            items = snapshot.items[:index] + (updated,) + snapshot.items[index + 1:]
            return replace(snapshot, items=items)
    return snapshot


class SyncStore:
    def __init__(self, initial: Snapshot = EMPTY) -> None:
        self._snapshot = initial
        self._listeners: list[Listener] = []

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def identity(self) -> Identity | None:
        return self._snapshot.identity

    @property
    def items(self) -> tuple[FeedbackItem, ...]:
        return self._snapshot.items

    def find(self, item_id: str) -> FeedbackItem | None:
        for item in self._snapshot.items:
            if item.id == item_id:
                return item
        return None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, nxt: Snapshot) -> None:
        if nxt is self._snapshot:
            return
        self._snapshot = nxt
        for listener in list(self._listeners):
            listener(nxt)

    def set_identity(self, identity: Identity | None) -> None:
        self._commit(with_identity(self._snapshot, identity))

    def set_items(self, items: Iterable[FeedbackItem]) -> None:
        self._commit(with_items(self._snapshot, items))

    def add_item(self, item: FeedbackItem) -> None:
        # No de-duplication here; callers decide what a repeated id means.
        self._commit(with_item_prepended(self._snapshot, item))

    def update_item(self, item_id: str, fields: dict[str, Any]) -> None:
        self._commit(with_item_merged(self._snapshot, item_id, fields))

    def clear(self) -> None:
        self._commit(EMPTY)
