from app.tracker.backend import CollectionIds
from app.tracker.domain import ChannelMessage, FeedbackStatus
from app.tracker.realtime import LocalChannel, RealtimeBridge, document_events, event_kind
from app.tracker.store import SyncStore

IDS = CollectionIds()
TOPIC = IDS.feedback_topic


def _message(kind: str, doc: dict) -> ChannelMessage:
    return ChannelMessage(events=document_events(IDS, doc["$id"], kind), payload=doc)


def test_event_kind():
    assert event_kind(["databases.db.collections.tasks.documents.t1.create"]) == "create"
    assert event_kind(["databases.*.collections.*.documents.*.update"]) == "update"
    assert event_kind(["databases.db.collections.tasks.documents.t1.delete"]) is None
    assert event_kind(["databases.db.collections.tasks.documents.t1"]) is None
    assert event_kind([]) is None


def test_create_message_invokes_on_create_once_and_store_grows(make_doc):
    channel = LocalChannel()
    store = SyncStore()
    created = []
    bridge = RealtimeBridge.for_feedback(channel, IDS)

    def on_create(item):
        created.append(item)
        store.add_item(item)

    bridge.attach(on_create, lambda item_id, item: store.update_item(item_id, item.as_fields()))

    channel.publish(TOPIC, _message("create", make_doc("t1", title="Bug")))

    assert len(created) == 1
    assert created[0].id == "t1"
    assert created[0].title == "Bug"
    assert len(store.items) == 1


def test_create_with_partial_payload_is_dropped_without_detaching(make_doc):
    channel = LocalChannel()
    store = SyncStore()
    created = []
    bridge = RealtimeBridge.for_feedback(channel, IDS)

    def on_create(item):
        created.append(item)
        store.add_item(item)

    bridge.attach(on_create, lambda item_id, item: store.update_item(item_id, item.as_fields()))

    channel.publish(TOPIC, _message("create", {"$id": "t1", "title": "Bug"}))

    assert created == []
    assert store.items == ()

    channel.publish(TOPIC, _message("create", make_doc("t1", title="Bug")))
    assert [i.id for i in created] == ["t1"]


def test_update_message_invokes_on_update_with_id(make_doc):
    channel = LocalChannel()
    updates = []
    RealtimeBridge(channel, TOPIC).attach(lambda item: None, lambda item_id, item: updates.append((item_id, item)))

    channel.publish(TOPIC, _message("update", make_doc("t1", status="in-progress")))

    assert len(updates) == 1
    item_id, item = updates[0]
    assert item_id == "t1"
    assert item.status is FeedbackStatus.IN_PROGRESS


def test_other_tags_and_bad_payloads_are_ignored(make_doc):
    channel = LocalChannel()
    calls = []
    RealtimeBridge(channel, TOPIC).attach(calls.append, lambda item_id, item: calls.append(item_id))

    channel.publish(TOPIC, _message("delete", make_doc("t1")))
    channel.publish(TOPIC, _message("create", make_doc("t2", type="question")))
    channel.publish(TOPIC, ChannelMessage(events=("databases.*.collections.*.documents.*.create",), payload={}))

    assert calls == []


def test_messages_apply_in_arrival_order(make_doc):
    channel = LocalChannel()
    store = SyncStore()
    store.set_items([])
    RealtimeBridge(channel, TOPIC).attach(store.add_item, lambda item_id, item: store.update_item(item_id, item.as_fields()))

    channel.publish(TOPIC, _message("create", make_doc("t1")))
    channel.publish(TOPIC, _message("update", make_doc("t1", status="in-progress")))
    channel.publish(TOPIC, _message("update", make_doc("t1", status="closed")))

    assert store.find("t1").status is FeedbackStatus.CLOSED


def test_detach_is_idempotent_and_stops_delivery(make_doc):
    channel = LocalChannel()
    calls = []
    bridge = RealtimeBridge(channel, TOPIC)
    handle = bridge.attach(calls.append, lambda item_id, item: None)
    assert channel.subscriber_count(TOPIC) == 1

    bridge.detach(handle)
    bridge.detach(handle)
    handle.detach()
    RealtimeBridge.detach(None)

    assert handle.closed
    assert channel.subscriber_count(TOPIC) == 0
    channel.publish(TOPIC, _message("create", make_doc("t1")))
    assert calls == []


def test_detach_releases_exactly_once_even_if_channel_already_closed():
    released = []

    class ClosedChannel(LocalChannel):
        def subscribe(self, topic, handler):
            def unsubscribe():
                released.append(topic)
                raise RuntimeError("channel already closed")

            return unsubscribe

    bridge = RealtimeBridge(ClosedChannel(), TOPIC)
    handle = bridge.attach(lambda item: None, lambda item_id, item: None)

    handle.detach()
    handle.detach()

    assert released == [TOPIC]
    assert handle.closed


def test_detaching_one_subscription_leaves_others(make_doc):
    channel = LocalChannel()
    first, second = [], []
    bridge = RealtimeBridge(channel, TOPIC)
    h1 = bridge.attach(first.append, lambda item_id, item: None)
    bridge.attach(second.append, lambda item_id, item: None)

    h1.detach()
    channel.publish(TOPIC, _message("create", make_doc("t1")))

    assert first == []
    assert [i.id for i in second] == ["t1"]
