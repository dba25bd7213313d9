"""Core data models: municipal employees, audit trails, and civic complaints."""
import uuid
from datetime import datetime, timedelta, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def utcnow() -> datetime:
	"""Naive UTC timestamp, matching the DateTime columns below."""
	return datetime.now(timezone.utc).replace(tzinfo=None)


COMPLAINT_CATEGORIES: tuple[str, ...] = (
	"Pothole",
	"Graffiti",
	"Trash",
	"Broken Streetlight",
	"Other",
)

DEPARTMENTS: tuple[str, ...] = (
	"Public Works",
	"Sanitation",
	"Community Services",
	"General Administration",
)

STATUS_NEW = "New"
STATUS_IN_PROGRESS = "In Progress"
STATUS_IN_REVIEW = "In Review"
STATUS_RESOLVED = "Resolved"
STATUS_DENIED = "Denied"

COMPLAINT_STATUSES: tuple[str, ...] = (
	STATUS_NEW,
	STATUS_IN_PROGRESS,
	STATUS_IN_REVIEW,
	STATUS_RESOLVED,
	STATUS_DENIED,
)


def _in_clause(values: tuple[str, ...]) -> str:
	return ",".join(f"'{v}'" for v in values)


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	full_name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	password_hash = db.Column(db.String(255), nullable=False)
	is_email_verified = db.Column(db.Boolean, default=False, nullable=False)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	audit_logs = db.relationship("AuditLog", back_populates="user", lazy="dynamic")
	verification_tokens = db.relationship("EmailVerificationToken", back_populates="user", lazy="dynamic")

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	action_type = db.Column(db.String(50), nullable=False)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	context_entity = db.Column(db.String(120), nullable=True)
	timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	user = db.relationship("User", back_populates="audit_logs")


class EmailVerificationToken(db.Model):
	__tablename__ = "email_verification_tokens"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
	token_hash = db.Column(db.String(128), nullable=False, unique=True, index=True)
	expires_at = db.Column(db.DateTime, nullable=False)
	consumed_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	user = db.relationship("User", back_populates="verification_tokens")

	@property
	def is_expired(self) -> bool:
		return utcnow() > self.expires_at

	@property
	def is_used(self) -> bool:
		return self.consumed_at is not None

	@staticmethod
	def expiry_from_now(minutes: int) -> datetime:
		return utcnow() + timedelta(minutes=minutes)


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_number = db.Column(db.Integer, unique=True, nullable=False, index=True)
	issue = db.Column(db.Text, nullable=False)
	location_description = db.Column(db.String(500), nullable=False)
	latitude = db.Column(db.Float, nullable=False)
	longitude = db.Column(db.Float, nullable=False)
	category = db.Column(db.String(40), nullable=True, index=True)
	department = db.Column(db.String(60), nullable=True, index=True)
	status = db.Column(db.String(20), nullable=False, default=STATUS_NEW, index=True)
	image_url = db.Column(db.String(1024), nullable=False)
	resolution_image_url = db.Column(db.String(1024), nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
	resolved_at = db.Column(db.DateTime, nullable=True)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(
			f"category IS NULL OR category IN ({_in_clause(COMPLAINT_CATEGORIES)})",
			name="ck_complaint_category_valid",
		),
		db.CheckConstraint(
			f"department IS NULL OR department IN ({_in_clause(DEPARTMENTS)})",
			name="ck_complaint_department_valid",
		),
		db.CheckConstraint(
			f"status IN ({_in_clause(COMPLAINT_STATUSES)})",
			name="ck_complaint_status_valid",
		),
		db.CheckConstraint(
			"(resolution_image_url IS NULL) = (resolved_at IS NULL)",
			name="ck_complaint_resolution_pair",
		),
	)

	status_history = db.relationship(
		"ComplaintStatusHistory",
		back_populates="complaint",
		order_by="ComplaintStatusHistory.changed_at",
		cascade="all, delete-orphan",
	)

	@property
	def immutable_fields(self) -> set[str]:
		return {"id", "complaint_number", "image_url", "created_at"}

	def to_dict(self) -> dict:
		return {
			"id": str(self.id),
			"complaint_number": self.complaint_number,
			"issue": self.issue,
			"location_description": self.location_description,
			"latitude": self.latitude,
			"longitude": self.longitude,
			"category": self.category,
			"department": self.department,
			"status": self.status,
			"image_url": self.image_url,
			"resolution_image_url": self.resolution_image_url,
			"created_at": self.created_at.isoformat() if self.created_at else None,
			"resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
		}


class ComplaintStatusHistory(db.Model):
	__tablename__ = "complaint_status_history"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	previous_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=False)
	remarks = db.Column(db.Text, nullable=True)
	changed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	changed_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	complaint = db.relationship("Complaint", back_populates="status_history")

	def to_dict(self) -> dict:
		return {
			"previous_status": self.previous_status,
			"new_status": self.new_status,
			"remarks": self.remarks,
			"changed_by": self.changed_by,
			"changed_at": self.changed_at.isoformat() if self.changed_at else None,
		}
