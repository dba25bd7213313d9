"""
Realtime synchronization tests: the merge routine, the fan-out feed and the board.
"""

import queue

import pytest

from utils.realtime import (
    INSERT,
    UPDATE,
    ChangeEvent,
    ChangeFeed,
    ComplaintBoard,
    apply_change,
    format_sse,
)


def _record(record_id, created_at, status="New", category="Pothole"):
    return {"id": record_id, "created_at": created_at, "status": status, "category": category}


T1 = "2024-03-01T09:00:00"
T2 = "2024-03-01T10:00:00"
T3 = "2024-03-02T08:00:00"


class TestApplyChange:
    def test_out_of_order_inserts_end_newest_first(self):
        records = apply_change([], ChangeEvent(INSERT, _record("b", T2)))
        records = apply_change(records, ChangeEvent(INSERT, _record("a", T1)))
        assert [r["id"] for r in records] == ["b", "a"]

        reversed_delivery = apply_change([], ChangeEvent(INSERT, _record("a", T1)))
        reversed_delivery = apply_change(reversed_delivery, ChangeEvent(INSERT, _record("b", T2)))
        assert [r["id"] for r in reversed_delivery] == ["b", "a"]

    def test_duplicate_insert_is_harmless(self):
        event = ChangeEvent(INSERT, _record("a", T1))
        once = apply_change([], event)
        twice = apply_change(once, event)
        assert twice == once

    def test_update_replaces_in_place_without_reordering(self):
        records = [_record("c", T3), _record("b", T2), _record("a", T1)]
        updated = apply_change(records, ChangeEvent(UPDATE, _record("a", T1, status="Resolved")))
        assert [r["id"] for r in updated] == ["c", "b", "a"]
        assert updated[2]["status"] == "Resolved"

    def test_update_for_unknown_id_is_dropped(self):
        records = [_record("a", T1)]
        assert apply_change(records, ChangeEvent(UPDATE, _record("zzz", T2))) == records

    def test_reapplying_update_is_noop(self):
        event = ChangeEvent(UPDATE, _record("a", T1, status="Denied"))
        once = apply_change([_record("a", T1)], event)
        assert apply_change(once, event) == once

    def test_input_list_is_not_mutated(self):
        records = [_record("a", T1)]
        apply_change(records, ChangeEvent(INSERT, _record("b", T2)))
        assert records == [_record("a", T1)]

    @pytest.mark.parametrize("kind,record", [("DELETE", {"id": "a"}), (INSERT, {})])
    def test_malformed_events_rejected(self, kind, record):
        with pytest.raises(ValueError):
            ChangeEvent(kind, record)


class TestChangeFeed:
    def test_publish_reaches_every_subscriber(self):
        feed = ChangeFeed()
        first, second = feed.subscribe(), feed.subscribe()
        event = ChangeEvent(INSERT, _record("a", T1))

        assert feed.publish(event) == 2
        assert first.get_nowait() is event
        assert second.get_nowait() is event

    def test_unsubscribed_channel_stops_receiving(self):
        feed = ChangeFeed()
        channel = feed.subscribe()
        feed.unsubscribe(channel)
        assert feed.subscriber_count == 0
        feed.publish(ChangeEvent(INSERT, _record("a", T1)))
        with pytest.raises(queue.Empty):
            channel.get_nowait()

    def test_full_channel_drops_instead_of_blocking(self):
        feed = ChangeFeed(max_queue_size=1)
        channel = feed.subscribe()
        feed.publish(ChangeEvent(INSERT, _record("a", T1)))
        assert feed.publish(ChangeEvent(INSERT, _record("b", T2))) == 0
        assert channel.qsize() == 1


class TestComplaintBoard:
    def test_drain_applies_queued_events_and_recomputes_stats(self):
        feed = ChangeFeed()
        channel = feed.subscribe()
        board = ComplaintBoard([_record("a", T1)])

        feed.publish(ChangeEvent(INSERT, _record("b", T2, category=None)))
        feed.publish(ChangeEvent(UPDATE, _record("a", T1, status="Resolved")))

        assert board.drain(channel) == 2
        snapshot = board.snapshot()
        assert [r["id"] for r in snapshot["complaints"]] == ["b", "a"]
        assert snapshot["stats"]["total"] == 2
        assert snapshot["stats"]["resolved_count"] == 1
        assert snapshot["stats"]["category_counts"]["Other"] == 1

    def test_drain_on_empty_channel_returns_zero(self):
        board = ComplaintBoard()
        assert board.drain(queue.Queue()) == 0
        assert board.drain(queue.Queue(), timeout=0.01) == 0

    def test_initial_records_are_sorted(self):
        board = ComplaintBoard([_record("a", T1), _record("c", T3), _record("b", T2)])
        assert [r["id"] for r in board.records] == ["c", "b", "a"]


def test_format_sse():
    assert format_sse({"x": 1}) == 'data: {"x": 1}\n\n'
    assert format_sse({"x": 1}, event="snapshot") == 'event: snapshot\ndata: {"x": 1}\n\n'
