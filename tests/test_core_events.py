"""Tests for the lifecycle event bus (subscribers + JSONL export)."""

from __future__ import annotations

import json
import logging

from lifegit.core.events import EventBus, EventType, LifecycleEvent


class TestEmit:
    def test_returns_event(self):
        bus = EventBus()
        event = bus.emit(EventType.BRANCH_CREATED, branch_id="b1", name="Learn Go")
        assert isinstance(event, LifecycleEvent)
        assert event.event_type is EventType.BRANCH_CREATED
        assert event.payload == {"branch_id": "b1", "name": "Learn Go"}

    def test_counts_per_type(self):
        bus = EventBus()
        bus.emit(EventType.COMMIT_APPENDED)
        bus.emit(EventType.COMMIT_APPENDED)
        bus.emit(EventType.BRANCH_MERGED)
        assert bus.counters == {"commit_appended": 2, "branch_merged": 1}

    def test_writes_jsonl(self, tmp_path):
        jsonl = tmp_path / "deep" / "events.jsonl"
        bus = EventBus(jsonl_path=jsonl)

        bus.emit(EventType.BRANCH_CREATED, branch_id="b1")
        bus.emit(EventType.BRANCH_COMPLETED, branch_id="b1")

        lines = jsonl.read_text(encoding="utf-8").strip().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["event_type"] == "branch_created"
        assert first["payload"] == {"branch_id": "b1"}
        assert "timestamp" in first
        assert json.loads(lines[1])["event_type"] == "branch_completed"


class TestSubscribers:
    def test_subscriber_receives_events(self):
        bus = EventBus()
        seen: list[LifecycleEvent] = []
        bus.subscribe(seen.append)

        bus.emit(EventType.BRANCH_ABANDONED, branch_id="b2")

        assert [e.event_type for e in seen] == [EventType.BRANCH_ABANDONED]
        assert seen[0].payload["branch_id"] == "b2"

    def test_unsubscribe(self):
        bus = EventBus()
        seen: list[LifecycleEvent] = []
        unsubscribe = bus.subscribe(seen.append)

        bus.emit(EventType.BRANCH_CREATED)
        unsubscribe()
        bus.emit(EventType.BRANCH_CREATED)
        unsubscribe()

        assert len(seen) == 1

    def test_failing_subscriber_is_logged_and_others_still_run(self, caplog):
        bus = EventBus()
        seen: list[LifecycleEvent] = []

        def broken(event: LifecycleEvent) -> None:
            raise RuntimeError("render failed")

        bus.subscribe(broken)
        bus.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="lifegit.events"):
            bus.emit(EventType.BRANCH_MERGED)

        assert len(seen) == 1
        assert "branch_merged" in caplog.text


class TestLifecycleEvent:
    def test_to_dict(self):
        event = LifecycleEvent(event_type=EventType.PLAN_FALLBACK, payload={"attempts": 4})
        data = event.to_dict()
        assert data["event_type"] == "plan_fallback"
        assert data["payload"] == {"attempts": 4}
        assert data["timestamp"].endswith("+00:00")
