"""
Shared pytest fixtures for the IssueSnap test suite.

Builds a fresh app per test on in-memory SQLite with a temporary photo folder,
and provides fake collaborators for the model-backed and storage-backed steps.
"""

import io
import os
import tempfile

# app.py builds a module-level app on import; keep it off real paths.
_SCRATCH = tempfile.mkdtemp(prefix="issuesnap-tests-")
os.environ["FLASK_CONFIG"] = "testing"
os.environ.setdefault("LOG_DIR", os.path.join(_SCRATCH, "logs"))
os.environ.setdefault("COMPLAINT_UPLOAD_FOLDER", os.path.join(_SCRATCH, "uploads"))
os.environ.setdefault("SQLITE_URL", "sqlite://")

import pytest
from PIL import Image

from app import create_app
from extensions import db
from models import Complaint, User
from utils.security import reset_attempts

EMPLOYEE_EMAIL = "clerk@city.gov"
EMPLOYEE_PASSWORD = "Str0ng!Passw0rd"


def make_image_bytes(fmt: str = "PNG", color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeAssistant:
    """Stands in for ComplaintAssistant; records every call it receives."""

    def __init__(self, draft=None, verdict=None, error=None):
        self.draft = draft or {
            "complaint_draft": "A deep pothole is damaging cars near the bus stop.",
            "category": "Pothole",
            "department": "Public Works",
        }
        self.verdict = verdict or {"is_resolved_correctly": True, "reasoning": "The road is patched."}
        self.error = error
        self.calls = []

    def draft_complaint(self, image_bytes, mime_type, location_description):
        self.calls.append(("draft", mime_type, location_description))
        if self.error:
            raise self.error
        return dict(self.draft)

    def verify_resolution(self, original_bytes, original_mime, resolution_bytes, resolution_mime, issue_description):
        self.calls.append(("verify", original_mime, resolution_mime, issue_description))
        if self.error:
            raise self.error
        return dict(self.verdict)


class FakeRecord:
    def __init__(self, **fields):
        self.__dict__.update(fields)


class FakeRepository:
    """In-memory repository honoring the create/update contract."""

    def __init__(self, fail_on_update=False, fail_on_create=False):
        self.records = []
        self.updates = []
        self.fail_on_update = fail_on_update
        self.fail_on_create = fail_on_create

    def create(self, **fields):
        if self.fail_on_create:
            raise RuntimeError("create failed")
        record = FakeRecord(id=str(len(self.records) + 1), resolution_image_url=None, resolved_at=None, **fields)
        self.records.append(record)
        return record

    def update(self, complaint, *, changed_by=None, remarks=None, **fields):
        if self.fail_on_update:
            raise RuntimeError("update failed")
        self.updates.append((fields, remarks))
        complaint.__dict__.update(fields)
        return complaint


class FakeBlobStore:
    def __init__(self, original=b"original-bytes"):
        self.blobs = {}
        self.original = original
        self.deleted = []

    def upload(self, data, extension, prefix=""):
        url = f"/blobs/{prefix}{len(self.blobs) + 1}.{extension}"
        self.blobs[url] = data
        return url

    def read(self, url):
        return self.blobs.get(url, self.original)

    def delete(self, url):
        self.deleted.append(url)
        self.blobs.pop(url, None)


@pytest.fixture
def png_bytes():
    return make_image_bytes("PNG")


@pytest.fixture
def app(tmp_path):
    reset_attempts()
    app = create_app(
        "testing",
        test_config={
            "COMPLAINT_UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "LOG_DIR": str(tmp_path / "logs"),
        },
    )
    app.extensions["complaint_ai"] = FakeAssistant()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def employee(app):
    user = User(full_name="City Clerk", email=EMPLOYEE_EMAIL, is_email_verified=True, is_active=True)
    user.set_password(EMPLOYEE_PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def employee_client(client, employee):
    resp = client.post("/auth/login", data={"email": EMPLOYEE_EMAIL, "password": EMPLOYEE_PASSWORD})
    assert resp.status_code == 302, resp.get_data(as_text=True)
    return client


@pytest.fixture
def stored_complaint(app, png_bytes):
    """A committed New complaint whose photo exists in the app's blob store."""
    from routes.complaints import complaint_repository

    image_url = app.extensions["blob_store"].upload(png_bytes, "png")
    return complaint_repository().create(
        status="New",
        image_url=image_url,
        issue="Overflowing trash bins on the corner",
        location_description="5th Ave and Main St",
        latitude=40.0,
        longitude=-73.0,
        category="Trash",
        department="Sanitation",
    )


def get_complaint(complaint_id):
    return db.session.get(Complaint, complaint_id)
