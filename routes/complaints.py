"""Complaint intake, AI drafting, photo serving, and employee resolution blueprint."""
import os

from flask import (
    Blueprint,
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    url_for,
)
from flask_login import current_user, login_required
from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed, FileField, FileRequired
from sqlalchemy.exc import SQLAlchemyError
from wtforms import HiddenField, StringField, SubmitField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional

from extensions import db
from models import COMPLAINT_CATEGORIES, AuditLog
from utils.ai_vision import AIVisionError
from utils.image_utils import ALLOWED_IMAGE_EXTENSIONS, mime_type_for_path, read_image_upload
from utils.lifecycle import (
    InvalidTransitionError,
    LifecycleError,
    MAX_ISSUE_LENGTH,
    MAX_LOCATION_LENGTH,
    deny_complaint,
    resolve_complaint,
    status_variant,
    submit_complaint,
)
from utils.repository import ComplaintRepository
from utils.security import track_attempt
from utils.storage import BlobStoreError

complaints_bp = Blueprint("complaints", __name__, url_prefix="/complaints")


class ComplaintReportForm(FlaskForm):
    image = FileField(
        "Photo of the issue (jpg, png, webp)",
        validators=[FileRequired(), FileAllowed(list(ALLOWED_IMAGE_EXTENSIONS), "Images only")],
    )
    location_description = StringField(
        "Where is it?", validators=[DataRequired(), Length(max=MAX_LOCATION_LENGTH)]
    )
    latitude = HiddenField(validators=[DataRequired()])
    longitude = HiddenField(validators=[DataRequired()])
    issue = TextAreaField("Describe the issue", validators=[DataRequired(), Length(max=MAX_ISSUE_LENGTH)])
    category = HiddenField(validators=[Optional()])
    submit = SubmitField("Submit Complaint")


def complaint_repository() -> ComplaintRepository:
    return ComplaintRepository(db.session, current_app.extensions["change_feed"])


def blob_store():
    return current_app.extensions["blob_store"]


def complaint_ai():
    return current_app.extensions["complaint_ai"]


def _max_image_bytes() -> int:
    return int(current_app.config.get("MAX_IMAGE_UPLOAD_BYTES", 4 * 1024 * 1024))


def _client_key(prefix: str) -> str:
    return f"{prefix}:{request.remote_addr or 'unknown'}"


def _audit(action: str, complaint_id: str | None = None) -> None:
    """Stage an audit entry; the caller's commit (or the repository's) persists it."""
    db.session.add(
        AuditLog(
            user_id=current_user.id if current_user.is_authenticated else None,
            action_type=action,
            ip_address=request.remote_addr,
            user_agent=(request.headers.get("User-Agent", "unknown") or "unknown")[:255],
            context_entity=f"complaint:{complaint_id}" if complaint_id else None,
        )
    )


def _load_complaint_or_404(complaint_id: str):
    complaint = complaint_repository().get(complaint_id)
    if complaint is None:
        abort(404)
    return complaint


def _json_error(message: str, status: int):
    return jsonify({"error": message}), status


@complaints_bp.app_template_filter("status_variant")
def status_variant_filter(status: str) -> str:
    return status_variant(status)


@complaints_bp.route("/report", methods=["GET"])
def report():
    form = ComplaintReportForm()
    return render_template(
        "complaints/report.html",
        form=form,
        categories=COMPLAINT_CATEGORIES,
        page_title="Report an Issue",
    )


@complaints_bp.route("/draft", methods=["POST"])
def draft():
    """Ask the model for a complaint draft from the photo and location text."""
    limit = int(current_app.config.get("DRAFT_ATTEMPT_LIMIT", 20))
    window = int(current_app.config.get("DRAFT_ATTEMPT_WINDOW_SECONDS", 600))
    if not track_attempt(_client_key("draft"), limit=limit, window_seconds=window):
        current_app.logger.warning("Draft rate limit reached", extra={"ip": request.remote_addr})
        return _json_error("Too many drafting requests. Please wait and try again.", 429)

    location = (request.form.get("location_description") or "").strip()
    if not location:
        return _json_error("Describe where the issue is before drafting", 400)
    try:
        image = read_image_upload(request.files.get("image"), max_bytes=_max_image_bytes())
    except ValueError as exc:
        return _json_error(str(exc), 400)

    try:
        result = complaint_ai().draft_complaint(image["bytes"], image["mime_type"], location)
    except AIVisionError as exc:
        current_app.logger.warning("Complaint drafting failed", extra={"error": str(exc)})
        return _json_error("We could not draft a complaint from this photo. Please describe it yourself.", 502)

    current_app.logger.info(
        "Complaint draft generated",
        extra={"category": result["category"], "department": result["department"], "image_hash": image["image_hash"]},
    )
    return jsonify(result)


@complaints_bp.route("/", methods=["POST"])
def submit():
    form = ComplaintReportForm()
    if not form.validate_on_submit():
        flash("Please complete every field and attach a photo.", "danger")
        return render_template(
            "complaints/report.html", form=form, categories=COMPLAINT_CATEGORIES, page_title="Report an Issue"
        ), 400

    try:
        image = read_image_upload(form.image.data, max_bytes=_max_image_bytes())
        complaint = submit_complaint(
            complaint_repository(),
            blob_store(),
            image,
            issue=form.issue.data,
            location_description=form.location_description.data,
            latitude=form.latitude.data,
            longitude=form.longitude.data,
            category=form.category.data,
        )
    except ValueError as exc:
        flash(str(exc), "danger")
        return render_template(
            "complaints/report.html", form=form, categories=COMPLAINT_CATEGORIES, page_title="Report an Issue"
        ), 400
    except (BlobStoreError, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Could not save complaint")
        flash("We could not save your complaint right now. Please try again.", "danger")
        return render_template(
            "complaints/report.html", form=form, categories=COMPLAINT_CATEGORIES, page_title="Report an Issue"
        ), 502

    _audit("COMPLAINT_SUBMITTED", complaint.id)
    db.session.commit()
    current_app.logger.info(
        "Complaint submitted",
        extra={"complaint_id": complaint.id, "complaint_number": complaint.complaint_number, "category": complaint.category},
    )
    flash(f"Complaint #{complaint.complaint_number} submitted. Thank you for reporting it.", "success")
    return redirect(url_for("main.index"))


@complaints_bp.route("/images/<string:filename>", methods=["GET"])
def image(filename):
    try:
        path = blob_store().path_for(filename)
    except BlobStoreError:
        abort(404)
    if not os.path.exists(path):
        abort(404)
    return send_file(path, mimetype=mime_type_for_path(filename), max_age=3600)


@complaints_bp.route("/<string:complaint_id>", methods=["GET"])
@login_required
def detail(complaint_id):
    complaint = _load_complaint_or_404(complaint_id)
    payload = complaint.to_dict()
    payload["status_variant"] = status_variant(complaint.status)
    payload["history"] = [entry.to_dict() for entry in complaint.status_history]
    return jsonify(payload)


@complaints_bp.route("/<string:complaint_id>/resolve", methods=["POST"])
@login_required
def resolve(complaint_id):
    """Verify a resolution photo with the model and persist the outcome."""
    complaint = _load_complaint_or_404(complaint_id)
    try:
        resolution_image = read_image_upload(request.files.get("image"), max_bytes=_max_image_bytes())
        outcome = resolve_complaint(
            complaint_repository(),
            blob_store(),
            complaint_ai(),
            complaint,
            resolution_image,
            changed_by=current_user.id,
        )
    except InvalidTransitionError as exc:
        return _json_error(str(exc), 409)
    except ValueError as exc:
        return _json_error(str(exc), 400)
    except (AIVisionError, BlobStoreError) as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Resolution could not be processed", extra={"complaint_id": complaint_id, "error": str(exc)}
        )
        return _json_error("The resolution could not be verified right now. Please try again.", 502)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while resolving complaint", extra={"complaint_id": complaint_id})
        return _json_error("The resolution could not be saved. Please try again.", 502)

    _audit("COMPLAINT_RESOLVED" if outcome.resolved else "RESOLUTION_REJECTED", complaint_id)
    db.session.commit()
    current_app.logger.info(
        "Resolution verified" if outcome.resolved else "Resolution rejected",
        extra={"complaint_id": complaint_id, "status": outcome.complaint.status, "user_id": current_user.id},
    )
    return jsonify(
        {
            "resolved": outcome.resolved,
            "reasoning": outcome.reasoning,
            "complaint": outcome.complaint.to_dict(),
        }
    )


@complaints_bp.route("/<string:complaint_id>/deny", methods=["POST"])
@login_required
def deny(complaint_id):
    complaint = _load_complaint_or_404(complaint_id)
    if (request.form.get("confirm") or "").lower() != "true":
        return _json_error("Denial must be confirmed", 400)
    try:
        updated = deny_complaint(complaint_repository(), complaint, changed_by=current_user.id)
    except LifecycleError as exc:
        return _json_error(str(exc), 409)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while denying complaint", extra={"complaint_id": complaint_id})
        return _json_error("The complaint could not be updated. Please try again.", 502)

    _audit("COMPLAINT_DENIED", complaint_id)
    db.session.commit()
    current_app.logger.info("Complaint denied", extra={"complaint_id": complaint_id, "user_id": current_user.id})
    return jsonify({"complaint": updated.to_dict()})
