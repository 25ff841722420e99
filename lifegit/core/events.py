"""Lifecycle event channel.

Presentation code subscribes callbacks instead of observing manager state.
Events can also be appended to a JSONL file for auditing.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger("lifegit.events")


class EventType(str, enum.Enum):
    BRANCH_CREATED = "branch_created"
    PLAN_GENERATED = "plan_generated"
    PLAN_FALLBACK = "plan_fallback"
    PLAN_REGENERATED = "plan_regenerated"
    PLAN_EDITED = "plan_edited"
    BRANCH_COMPLETED = "branch_completed"
    BRANCH_ABANDONED = "branch_abandoned"
    BRANCH_REACTIVATED = "branch_reactivated"
    BRANCH_MERGED = "branch_merged"
    BRANCH_DELETED = "branch_deleted"
    VERSION_UPGRADED = "version_upgraded"
    COMMIT_APPENDED = "commit_appended"


@dataclass(frozen=True)
class LifecycleEvent:
    event_type: EventType
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "payload": self.payload,
        }


Subscriber = Callable[[LifecycleEvent], None]


@dataclass
class EventBus:
    """Fans events out to subscribers and an optional JSONL file."""

    jsonl_path: Optional[Path] = None
    counters: dict[str, int] = field(default_factory=dict)
    _subscribers: list[Subscriber] = field(default_factory=list)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event_type: EventType, **payload: Any) -> LifecycleEvent:
        event = LifecycleEvent(event_type=event_type, payload=payload)
        self.counters[event_type.value] = self.counters.get(event_type.value, 0) + 1

        if self.jsonl_path is not None:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n")

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                # Subscriber failures never reach the emitter.
                logger.exception("Event subscriber failed for %s", event_type.value)
        return event
