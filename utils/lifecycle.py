"""Complaint lifecycle: legal status transitions and the submit, resolve, and deny workflows.

Collaborators are passed in explicitly:

* ``repository`` offers ``create(**fields)`` and ``update(complaint, **fields)``
  (see ``utils.repository.ComplaintRepository``).
* ``blobs`` offers ``upload(data, extension, prefix)``, ``read(url)`` and
  ``delete(url)`` (see ``utils.storage.LocalBlobStore``).
* ``verifier`` offers ``verify_resolution(...)`` returning
  ``{"is_resolved_correctly": bool, "reasoning": str}``
  (see ``utils.ai_vision.ComplaintAssistant``).

The resolve workflow always asks the verifier before it uploads anything or
writes ``Resolved``; the upload and the write succeed together or the upload
is removed again.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from models import (
    COMPLAINT_CATEGORIES,
    COMPLAINT_STATUSES,
    STATUS_DENIED,
    STATUS_IN_PROGRESS,
    STATUS_IN_REVIEW,
    STATUS_NEW,
    STATUS_RESOLVED,
    utcnow,
)
from utils.ai_vision import department_for_category
from utils.ai_markdown_formatter import clean_user_text
from utils.image_utils import mime_type_for_path

MAX_ISSUE_LENGTH = 3000
MAX_LOCATION_LENGTH = 500
RESOLUTION_BLOB_PREFIX = "resolution-"

# No transition leads into In Progress; it is only reachable by direct edits to the store.
ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    STATUS_NEW: frozenset({STATUS_IN_REVIEW, STATUS_RESOLVED, STATUS_DENIED}),
    STATUS_IN_PROGRESS: frozenset({STATUS_DENIED}),
    STATUS_IN_REVIEW: frozenset({STATUS_IN_REVIEW, STATUS_RESOLVED, STATUS_DENIED}),
    STATUS_RESOLVED: frozenset(),
    STATUS_DENIED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

STATUS_BADGE_VARIANTS: Dict[str, str] = {
    STATUS_NEW: "secondary",
    STATUS_IN_PROGRESS: "outline",
    STATUS_IN_REVIEW: "outline",
    STATUS_RESOLVED: "default",
    STATUS_DENIED: "destructive",
}

for _mapping_name, _mapping in (("ALLOWED_TRANSITIONS", ALLOWED_TRANSITIONS), ("STATUS_BADGE_VARIANTS", STATUS_BADGE_VARIANTS)):
    _missing = set(COMPLAINT_STATUSES) - set(_mapping)
    if _missing:
        raise RuntimeError(f"{_mapping_name} is missing statuses: {', '.join(sorted(_missing))}")


class LifecycleError(Exception):
    """Base class for complaint workflow failures."""


class ComplaintValidationError(LifecycleError, ValueError):
    """Input rejected before any external call was made."""


class InvalidTransitionError(LifecycleError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move a complaint from '{current}' to '{target}'")
        self.current = current
        self.target = target


@dataclass
class ResolutionOutcome:
    complaint: Any
    resolved: bool
    reasoning: str


def status_variant(status: str) -> str:
    return STATUS_BADGE_VARIANTS[status]


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def can_resolve(status: str) -> bool:
    return can_transition(status, STATUS_RESOLVED)


def can_deny(status: str) -> bool:
    return can_transition(status, STATUS_DENIED)


def _parse_coordinate(value: Any, name: str, limit: float) -> float:
    if value is None or value == "":
        raise ComplaintValidationError(f"{name.title()} is required")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ComplaintValidationError(f"{name.title()} must be a number")
    if number != number or not -limit <= number <= limit:
        raise ComplaintValidationError(f"{name.title()} is out of range")
    return number


def validate_submission(
    *,
    issue: Optional[str],
    location_description: Optional[str],
    latitude: Any,
    longitude: Any,
    category: Optional[str] = None,
) -> Dict[str, Any]:
    """Normalize citizen input into complaint fields, or raise ``ComplaintValidationError``."""
    issue_text = clean_user_text(issue, MAX_ISSUE_LENGTH)
    if not issue_text:
        raise ComplaintValidationError("Describe the issue before submitting")
    location_text = clean_user_text(location_description, MAX_LOCATION_LENGTH)
    if not location_text:
        raise ComplaintValidationError("A location description is required")
    lat = _parse_coordinate(latitude, "latitude", 90.0)
    lng = _parse_coordinate(longitude, "longitude", 180.0)

    category_value = (category or "").strip() or None
    if category_value is not None and category_value not in COMPLAINT_CATEGORIES:
        raise ComplaintValidationError("Unknown complaint category")

    return {
        "issue": issue_text,
        "location_description": location_text,
        "latitude": lat,
        "longitude": lng,
        "category": category_value,
        "department": department_for_category(category_value) if category_value else None,
    }


def submit_complaint(repository, blobs, image: Mapping, **submission) -> Any:
    """Store the citizen's photo and create the complaint in ``New``."""
    if not image or not image.get("bytes"):
        raise ComplaintValidationError("A photo of the issue is required")
    fields = validate_submission(**submission)

    image_url = blobs.upload(image["bytes"], image["extension"])
    try:
        return repository.create(status=STATUS_NEW, image_url=image_url, **fields)
    except Exception:
        blobs.delete(image_url)
        raise


def resolve_complaint(
    repository,
    blobs,
    verifier,
    complaint,
    resolution_image: Mapping,
    *,
    changed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ResolutionOutcome:
    """Verify a resolution photo, then persist ``Resolved`` or ``In Review``."""
    if not resolution_image or not resolution_image.get("bytes"):
        raise ComplaintValidationError("Upload a photo of the resolved issue")
    ensure_transition(complaint.status, STATUS_RESOLVED)

    original_bytes = blobs.read(complaint.image_url)
    verdict = verifier.verify_resolution(
        original_bytes,
        mime_type_for_path(complaint.image_url),
        resolution_image["bytes"],
        resolution_image["mime_type"],
        complaint.issue,
    )
    reasoning = str(verdict.get("reasoning") or "")

    if verdict.get("is_resolved_correctly") is not True:
        ensure_transition(complaint.status, STATUS_IN_REVIEW)
        updated = repository.update(
            complaint,
            status=STATUS_IN_REVIEW,
            changed_by=changed_by,
            remarks=f"Resolution rejected by AI verification: {reasoning}",
        )
        return ResolutionOutcome(updated, False, reasoning)

    resolution_url = blobs.upload(
        resolution_image["bytes"],
        resolution_image["extension"],
        prefix=RESOLUTION_BLOB_PREFIX,
    )
    try:
        updated = repository.update(
            complaint,
            status=STATUS_RESOLVED,
            resolution_image_url=resolution_url,
            resolved_at=now or utcnow(),
            changed_by=changed_by,
            remarks="Resolution verified by AI",
        )
    except Exception:
        blobs.delete(resolution_url)
        raise
    return ResolutionOutcome(updated, True, reasoning)


def deny_complaint(repository, complaint, *, changed_by: Optional[str] = None):
    """Deny an open complaint. Denial is final."""
    ensure_transition(complaint.status, STATUS_DENIED)
    return repository.update(
        complaint,
        status=STATUS_DENIED,
        changed_by=changed_by,
        remarks="Complaint denied by employee",
    )
