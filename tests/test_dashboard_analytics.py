"""
Dashboard aggregation tests.
"""

from models import COMPLAINT_STATUSES
from utils.dashboard_analytics import partition_public_board, summarize_complaints


def _records(*pairs):
    return [{"id": str(i), "status": status, "category": category} for i, (status, category) in enumerate(pairs)]


class TestSummarize:
    def test_missing_category_counts_as_other(self):
        stats = summarize_complaints(_records(("New", None), ("New", "Other"), ("New", "Trash")))
        assert stats["category_counts"] == {"Other": 2, "Trash": 1}

    def test_headline_counts(self):
        stats = summarize_complaints(_records(
            ("New", "Pothole"), ("New", "Trash"), ("Resolved", "Pothole"), ("Denied", "Graffiti"),
        ))
        assert stats["total"] == 4
        assert stats["new_count"] == 2
        assert stats["resolved_count"] == 1
        assert set(stats["status_counts"]) == set(COMPLAINT_STATUSES)
        assert stats["status_counts"]["In Progress"] == 0
        assert sum(stats["status_counts"].values()) == stats["total"]

    def test_category_chart_sorted_with_stable_ties(self):
        stats = summarize_complaints(_records(
            ("New", "Trash"), ("New", "Graffiti"), ("New", "Pothole"), ("New", "Pothole"),
        ))
        assert stats["category_chart"] == [
            {"name": "Pothole", "complaints": 2},
            {"name": "Trash", "complaints": 1},
            {"name": "Graffiti", "complaints": 1},
        ]

    def test_status_chart_omits_empty_buckets_in_canonical_order(self):
        stats = summarize_complaints(_records(("Denied", "Trash"), ("New", "Trash"), ("In Review", "Trash")))
        assert [row["status"] for row in stats["status_chart"]] == ["New", "In Review", "Denied"]

    def test_empty_input(self):
        stats = summarize_complaints([])
        assert stats["total"] == 0
        assert stats["category_chart"] == []
        assert stats["status_chart"] == []


class TestPublicBoard:
    def test_partition_covers_every_record_once(self):
        records = _records(
            ("New", "Trash"), ("In Progress", "Trash"), ("In Review", "Pothole"),
            ("Resolved", "Pothole"), ("Denied", None),
        )
        board = partition_public_board(records)
        assert [r["status"] for r in board["ongoing"]] == ["New", "In Progress", "In Review"]
        assert len(board["resolved"]) == 1
        assert len(board["denied"]) == 1
        assert sum(len(v) for v in board.values()) == len(records)
