"""Ordered log of write events with a confirmed (applied) watermark."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any

from .models import Event, OpType

_PAYLOAD_FIELDS: dict[OpType, str] = {
    OpType.POST: "post_message",
    OpType.UPDATE: "update_message",
    OpType.DELETE: "delete_message",
    OpType.LIKE: "like_message",
    OpType.CREATE_USER: "create_user",
    OpType.CREATE_TOPIC: "create_topic",
}


class OutOfOrderEventError(RuntimeError):
    """An event was added or acknowledged out of sequence."""


class EventBuffer:
    """Events indexed by sequence number, plus the last confirmed number."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[Event] = []
        self._last_confirmed = -1
        self._next_event_seq = 0

    def create_event(self, op: OpType, request: Any) -> Event:
        """Create the next event carrying ``request`` and append it."""
        try:
            payload_field = _PAYLOAD_FIELDS[op]
        except KeyError:
            raise ValueError(f"unknown event operation: {op!r}") from None
        with self._lock:
            event = Event(
                op=op,
                sequence_number=self._next_event_seq,
                event_at=datetime.now(timezone.utc),
                **{payload_field: request},
            )
            self._events.append(event)
            self._next_event_seq += 1
            return event

    def add_event(self, event: Event) -> None:
        """Append an event received from upstream; duplicates are ignored."""
        with self._lock:
            if event.sequence_number < self._next_event_seq:
                return
            if event.sequence_number != self._next_event_seq:
                raise OutOfOrderEventError(
                    f"out-of-order event addition: got {event.sequence_number}, "
                    f"expected {self._next_event_seq}"
                )
            self._events.append(event)
            self._next_event_seq += 1

    def acknowledge_event(self, sequence_number: int) -> Event | None:
        """Mark the event confirmed; return it, or None if already confirmed."""
        with self._lock:
            if sequence_number <= self._last_confirmed:
                return None
            expected = self._last_confirmed + 1
            if sequence_number != expected or sequence_number >= len(self._events):
                raise OutOfOrderEventError(
                    f"out-of-order event acknowledgment: got {sequence_number}, "
                    f"expected {expected}"
                )
            self._last_confirmed = sequence_number
            return self._events[sequence_number]

    def get_event(self, sequence_number: int) -> Event | None:
        with self._lock:
            if 0 <= sequence_number < len(self._events):
                return self._events[sequence_number]
            return None

    def last_received_and_applied(self) -> tuple[int, int]:
        with self._lock:
            return self._next_event_seq - 1, self._last_confirmed

    def last_applied(self) -> int:
        with self._lock:
            return self._last_confirmed

    def last_received(self) -> int:
        with self._lock:
            return self._next_event_seq - 1

    def next_event_seq(self) -> int:
        with self._lock:
            return self._next_event_seq