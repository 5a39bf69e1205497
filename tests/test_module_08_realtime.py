"""
Tests for Module 08 — Realtime event bus and Publisher.
"""

import asyncio
from datetime import timedelta

import pytest

from pipeline.aggregation.models import Snapshot, Summary
from pipeline.alerts.alert_engine import AlertEngine
from pipeline.classification.hotspot_detector import detect_hotspots
from pipeline.realtime.bus import Event, EventBus
from pipeline.realtime.publisher import CRITICAL_ALERT, SNAPSHOT_UPDATE, Publisher

from conftest import NOW, make_reading


def run_results(avg_pm25, generated_at=NOW):
    snapshot = Snapshot(
        generated_at=generated_at,
        area="nairobi",
        sources_used=("waqi",),
        measurements=(make_reading(avg_pm25),),
        summary=Summary(avg_pm25=avg_pm25),
    )
    hotspots = detect_hotspots(snapshot.measurements, generated_at)
    return snapshot, AlertEngine().evaluate(snapshot, hotspots), hotspots


def drain(sub):
    events = []
    while not sub.queue.empty():
        events.append(sub.queue.get_nowait())
    return events


class TestEventBus:
    @pytest.mark.asyncio
    async def test_publish_reaches_channel_subscribers_only(self):
        bus = EventBus()
        nairobi = await bus.subscribe("nairobi")
        mombasa = await bus.subscribe("mombasa")

        delivered = await bus.publish("nairobi", Event("snapshot_update", {"x": 1}))

        assert delivered == 1
        assert (await asyncio.wait_for(nairobi.get(), 1)).data == {"x": 1}
        assert mombasa.queue.empty()

    @pytest.mark.asyncio
    async def test_event_type_filter(self):
        bus = EventBus()
        everything = await bus.subscribe("nairobi")
        emergencies = await bus.subscribe("nairobi", event_types=[CRITICAL_ALERT])

        await bus.publish("nairobi", Event(SNAPSHOT_UPDATE, {}))
        await bus.publish("nairobi", Event(CRITICAL_ALERT, {}))

        assert [e.type for e in drain(everything)] == [SNAPSHOT_UPDATE, CRITICAL_ALERT]
        assert [e.type for e in drain(emergencies)] == [CRITICAL_ALERT]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        sub = await bus.subscribe("nairobi")
        assert bus.subscriber_count("nairobi") == 1

        await bus.unsubscribe(sub)

        assert bus.subscriber_count("nairobi") == 0
        assert await bus.publish("nairobi", Event("x", {})) == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        bus = EventBus(queue_maxsize=2)
        sub = await bus.subscribe("nairobi")

        for i in range(3):
            await bus.publish("nairobi", Event("tick", {"n": i}))

        assert [e.data["n"] for e in drain(sub)] == [1, 2]

    @pytest.mark.asyncio
    async def test_no_subscribers(self):
        assert await EventBus().publish("nowhere", Event("x", {})) == 0


class TestPublisher:
    @pytest.mark.asyncio
    async def test_snapshot_update_carries_everything(self):
        bus = EventBus()
        sub = await bus.subscribe("nairobi")
        snapshot, alerts, hotspots = run_results(40.0)

        fresh = await Publisher(bus).broadcast(snapshot, alerts, hotspots)

        (event,) = drain(sub)
        assert event.type == SNAPSHOT_UPDATE
        assert event.data["snapshot"]["area"] == "nairobi"
        assert len(event.data["alerts"]) == 1
        assert len(event.data["hotspots"]) == 1
        assert fresh == []

    @pytest.mark.asyncio
    async def test_critical_alert_event(self):
        bus = EventBus()
        sub = await bus.subscribe("nairobi", event_types=[CRITICAL_ALERT])
        snapshot, alerts, hotspots = run_results(60.0)

        fresh = await Publisher(bus).broadcast(snapshot, alerts, hotspots)

        (event,) = drain(sub)
        assert event.type == CRITICAL_ALERT
        assert event.data["area"] == "nairobi"
        assert event.data["generated_at"] == "2024-06-01T12:00:00Z"
        assert [a["type"] for a in event.data["alerts"]] == ["health_emergency"]
        assert [a.id for a in fresh] == [event.data["alerts"][0]["id"]]

    @pytest.mark.asyncio
    async def test_same_critical_alert_published_once(self):
        bus = EventBus()
        sub = await bus.subscribe("nairobi", event_types=[CRITICAL_ALERT])
        publisher = Publisher(bus)
        snapshot, alerts, hotspots = run_results(60.0)

        await publisher.broadcast(snapshot, alerts, hotspots)
        second = await publisher.broadcast(snapshot, alerts, hotspots)

        assert second == []
        assert len(drain(sub)) == 1

    @pytest.mark.asyncio
    async def test_new_run_publishes_again(self):
        bus = EventBus()
        sub = await bus.subscribe("nairobi", event_types=[CRITICAL_ALERT])
        publisher = Publisher(bus)

        await publisher.broadcast(*run_results(60.0))
        await publisher.broadcast(*run_results(60.0, NOW + timedelta(minutes=10)))

        assert len(drain(sub)) == 2
