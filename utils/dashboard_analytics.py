"""Dashboard aggregation over the current set of serialized complaints."""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping

from models import (
    COMPLAINT_STATUSES,
    STATUS_DENIED,
    STATUS_IN_PROGRESS,
    STATUS_IN_REVIEW,
    STATUS_NEW,
    STATUS_RESOLVED,
)

UNCATEGORIZED = "Other"

ONGOING_STATUSES = {STATUS_NEW, STATUS_IN_PROGRESS, STATUS_IN_REVIEW}


def _category_key(record: Mapping) -> str:
    return record.get("category") or UNCATEGORIZED


def summarize_complaints(records: Iterable[Mapping]) -> Dict:
    """Headline counts plus chart series; recomputed from scratch on every change."""
    records = list(records)
    status_counts: Dict[str, int] = {status: 0 for status in COMPLAINT_STATUSES}
    category_counts: Dict[str, int] = {}

    for record in records:
        status = record.get("status")
        if status in status_counts:
            status_counts[status] += 1
        key = _category_key(record)
        category_counts[key] = category_counts.get(key, 0) + 1

    # sorted() is stable, so ties keep first-seen order
    category_chart: List[Dict] = sorted(
        ({"name": name, "complaints": total} for name, total in category_counts.items()),
        key=lambda item: item["complaints"],
        reverse=True,
    )
    status_chart: List[Dict] = [
        {"status": status, "count": status_counts[status]}
        for status in COMPLAINT_STATUSES
        if status_counts[status] > 0
    ]

    return {
        "total": len(records),
        "new_count": status_counts[STATUS_NEW],
        "resolved_count": status_counts[STATUS_RESOLVED],
        "status_counts": status_counts,
        "category_counts": category_counts,
        "category_chart": category_chart,
        "status_chart": status_chart,
    }


def partition_public_board(records: Iterable[Mapping]) -> Dict[str, List[Mapping]]:
    """Split complaints into the public board's ongoing, resolved, and denied tabs."""
    board: Dict[str, List[Mapping]] = {"ongoing": [], "resolved": [], "denied": []}
    for record in records:
        status = record.get("status")
        if status in ONGOING_STATUSES:
            board["ongoing"].append(record)
        elif status == STATUS_RESOLVED:
            board["resolved"].append(record)
        elif status == STATUS_DENIED:
            board["denied"].append(record)
    return board
