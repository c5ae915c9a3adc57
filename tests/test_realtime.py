import json

import pytest

from keke.consumer import relay_change
from keke.models.ride_model import ChangeEvent


def event(event_type="insert", **record):
    record.setdefault("id", "r-1")
    return ChangeEvent(event_type=event_type, new_record=record)


class Collector:
    def __init__(self):
        self.events = []

    async def __call__(self, change):
        self.events.append(change)


class TestRideChangeHub:
    async def test_delivers_matching_event_types(self, hub):
        inserts, updates = Collector(), Collector()
        hub.subscribe("rides", ["insert"], None, inserts)
        hub.subscribe("rides", ["update"], None, updates)

        await hub.dispatch(event("insert"))

        assert len(inserts.events) == 1
        assert updates.events == []

    async def test_equality_filters(self, hub):
        pending = Collector()
        hub.subscribe("rides", ["insert", "update"], {"status": "pending"}, pending)

        await hub.dispatch(event("insert", status="pending"))
        await hub.dispatch(event("update", status="accepted"))

        assert [change.new_record["status"] for change in pending.events] == ["pending"]

    async def test_filters_are_anded(self, hub):
        collector = Collector()
        hub.subscribe("rides", ["update"], {"passenger_id": "p-1", "status": "accepted"}, collector)

        await hub.dispatch(event("update", passenger_id="p-1", status="pending"))
        await hub.dispatch(event("update", passenger_id="p-2", status="accepted"))
        await hub.dispatch(event("update", passenger_id="p-1", status="accepted"))

        assert len(collector.events) == 1

    async def test_other_tables_are_ignored(self, hub):
        collector = Collector()
        hub.subscribe("users", ["insert"], None, collector)

        assert await hub.dispatch(event("insert")) == 0
        assert collector.events == []

    async def test_unsubscribe_stops_delivery(self, hub):
        collector = Collector()
        subscription = hub.subscribe("rides", ["insert"], None, collector)

        hub.unsubscribe(subscription)
        await hub.dispatch(event("insert"))

        assert collector.events == []
        assert hub.subscriptions == []

    async def test_failing_handler_does_not_block_others(self, hub):
        async def broken(change):
            raise RuntimeError("render failed")

        collector = Collector()
        hub.subscribe("rides", ["insert"], None, broken)
        hub.subscribe("rides", ["insert"], None, collector)

        delivered = await hub.dispatch(event("insert"))

        assert delivered == 1
        assert len(collector.events) == 1

    async def test_publish_delivers_in_the_background(self, hub):
        collector = Collector()
        hub.subscribe("rides", ["insert"], None, collector)

        await hub.publish(event("insert"))

        assert collector.events == []
        await hub.drain()
        assert len(collector.events) == 1

    def test_rejects_unknown_event_type(self, hub):
        with pytest.raises(ValueError):
            hub.subscribe("rides", ["delete"], None, Collector())


class TestRelayChange:
    async def test_relays_json_payload(self, hub):
        collector = Collector()
        hub.subscribe("rides", ["update"], {"status": "accepted"}, collector)
        payload = event(
            "update", status="accepted", driver_id="d-1", created_at="2025-11-16T10:30:00+00:00"
        ).model_dump_json()

        delivered = await relay_change(payload, hub)

        assert delivered == 1
        record = collector.events[0].new_record
        assert record["driver_id"] == "d-1"
        assert record["created_at"] == "2025-11-16T10:30:00+00:00"

    async def test_accepts_bytes(self, hub):
        collector = Collector()
        hub.subscribe("rides", ["insert"], None, collector)

        await relay_change(json.dumps({"event_type": "insert", "new_record": {"id": "r-7"}}).encode(), hub)

        assert collector.events[0].new_record["id"] == "r-7"

    @pytest.mark.parametrize("message", [
        "not json",
        json.dumps({"event_type": "delete", "new_record": {"id": "r-1"}}),
        json.dumps({"event_type": "insert", "new_record": {}}),
    ])
    async def test_drops_malformed_messages(self, hub, message):
        collector = Collector()
        hub.subscribe("rides", ["insert", "update"], None, collector)

        assert await relay_change(message, hub) == 0
        assert collector.events == []
