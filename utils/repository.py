"""Persistence for complaint records, publishing change events after each commit."""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from models import Complaint, ComplaintStatusHistory
from utils.realtime import INSERT, UPDATE, ChangeEvent, ChangeFeed


class ComplaintRepository:
    def __init__(self, session, feed: Optional[ChangeFeed] = None):
        self.session = session
        self.feed = feed

    def list_recent(self) -> List[Complaint]:
        return self.session.query(Complaint).order_by(Complaint.created_at.desc()).all()

    def get(self, complaint_id: str) -> Optional[Complaint]:
        if not complaint_id:
            return None
        return self.session.get(Complaint, str(complaint_id))

    def next_complaint_number(self) -> int:
        current = self.session.query(func.max(Complaint.complaint_number)).scalar()
        return (current or 0) + 1

    def create(self, **fields) -> Complaint:
        """Insert a complaint with the next sequential number and commit."""
        try:
            complaint = Complaint(complaint_number=self.next_complaint_number(), **fields)
            self.session.add(complaint)
            self.session.flush()
            self.session.add(
                ComplaintStatusHistory(
                    complaint=complaint,
                    previous_status=None,
                    new_status=complaint.status,
                    remarks="Complaint submitted by citizen",
                )
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self._publish(INSERT, complaint)
        return complaint

    def update(
        self,
        complaint: Complaint,
        *,
        changed_by: Optional[str] = None,
        remarks: Optional[str] = None,
        **fields,
    ) -> Complaint:
        """Apply ``fields`` in one commit; status changes are written to history."""
        locked = set(fields) & complaint.immutable_fields
        if locked:
            raise ValueError(f"Immutable complaint fields: {', '.join(sorted(locked))}")
        previous_status = complaint.status
        try:
            for name, value in fields.items():
                setattr(complaint, name, value)
            if "status" in fields:
                self.session.add(
                    ComplaintStatusHistory(
                        complaint=complaint,
                        previous_status=previous_status,
                        new_status=fields["status"],
                        remarks=remarks,
                        changed_by=changed_by,
                    )
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self._publish(UPDATE, complaint)
        return complaint

    def _publish(self, kind: str, complaint: Complaint) -> None:
        if self.feed is not None:
            self.feed.publish(ChangeEvent(kind, complaint.to_dict()))
