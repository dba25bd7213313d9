"""Realtime complaint synchronization: change events, fan-out feed, and the merge routine.

The repository publishes a ``ChangeEvent`` after every committed insert or
update. Each dashboard connection subscribes to the ``ChangeFeed`` and gets its
own ``queue.Queue`` channel; a ``ComplaintBoard`` drains that channel and folds
every event into its ordered list through ``apply_change``.

Delivery is best-effort and may repeat an event, so ``apply_change`` is
idempotent: replaying an identical insert or update leaves the list unchanged.
"""
from __future__ import annotations

import json
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from utils.dashboard_analytics import summarize_complaints

INSERT = "INSERT"
UPDATE = "UPDATE"
EVENT_KINDS = (INSERT, UPDATE)


@dataclass(frozen=True)
class ChangeEvent:
    kind: str
    record: Mapping = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown change event kind: {self.kind}")
        if not self.record.get("id"):
            raise ValueError("Change event record has no id")


def _created_at(record: Mapping) -> datetime:
    value = record.get("created_at")
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            pass
    return datetime.min


def sort_newest_first(records: List[Mapping]) -> List[Mapping]:
    return sorted(records, key=_created_at, reverse=True)


def apply_change(records: List[Mapping], event: ChangeEvent) -> List[Mapping]:
    """Return a new list with ``event`` folded in.

    Inserts merge and re-sort by ``created_at`` descending. Updates replace the
    matching record where it sits and never reorder; updates for unknown ids
    are dropped.
    """
    record_id = str(event.record["id"])
    record = dict(event.record)

    if event.kind == INSERT:
        merged = [r for r in records if str(r.get("id")) != record_id]
        merged.append(record)
        return sort_newest_first(merged)

    return [record if str(r.get("id")) == record_id else r for r in records]


class ChangeFeed:
    """In-process fan-out of change events to every subscribed channel."""

    def __init__(self, max_queue_size: int = 1000):
        self._subscribers: List[queue.Queue] = []
        self._lock = threading.Lock()
        self.max_queue_size = max_queue_size

    def subscribe(self) -> queue.Queue:
        channel: queue.Queue = queue.Queue(maxsize=self.max_queue_size)
        with self._lock:
            self._subscribers.append(channel)
        return channel

    def unsubscribe(self, channel: queue.Queue) -> None:
        with self._lock:
            if channel in self._subscribers:
                self._subscribers.remove(channel)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every channel; returns how many received it."""
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for channel in subscribers:
            try:
                channel.put_nowait(event)
                delivered += 1
            except queue.Full:
                # A stalled reader loses events rather than blocking writers.
                continue
        return delivered


class ComplaintBoard:
    """Ordered complaint list kept in step with a change channel."""

    def __init__(self, records: Optional[List[Mapping]] = None):
        self.records: List[Mapping] = sort_newest_first([dict(r) for r in records or []])

    def apply(self, event: ChangeEvent) -> bool:
        updated = apply_change(self.records, event)
        changed = updated != self.records
        self.records = updated
        return changed

    def drain(self, channel: queue.Queue, timeout: float | None = None) -> int:
        """Apply every queued event, waiting up to ``timeout`` for the first one."""
        applied = 0
        try:
            event = channel.get(timeout=timeout) if timeout else channel.get_nowait()
        except queue.Empty:
            return applied
        while True:
            if self.apply(event):
                applied += 1
            try:
                event = channel.get_nowait()
            except queue.Empty:
                return applied

    def snapshot(self) -> Dict:
        return {"complaints": list(self.records), "stats": summarize_complaints(self.records)}


def format_sse(data: Mapping, event: str | None = None) -> str:
    message = f"data: {json.dumps(data, default=str)}\n\n"
    if event:
        message = f"event: {event}\n{message}"
    return message
