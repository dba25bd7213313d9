"""Blueprint registration, the public board, and the employee dashboard."""
from flask import Blueprint, Response, current_app, jsonify, render_template, stream_with_context
from flask_login import login_required

from utils.dashboard_analytics import partition_public_board, summarize_complaints
from utils.realtime import ComplaintBoard, format_sse
from .auth import auth_bp
from .complaints import complaints_bp, complaint_repository

main_bp = Blueprint("main", __name__)

MIN_KEEPALIVE_SECONDS = 1.0


def _complaint_records() -> list[dict]:
    return [c.to_dict() for c in complaint_repository().list_recent()]


def _keepalive_seconds() -> float:
    # a zero or negative wait would turn the stream loop into a busy poll
    configured = float(current_app.config.get("REALTIME_KEEPALIVE_SECONDS", 15))
    return max(configured, MIN_KEEPALIVE_SECONDS)


@main_bp.route("/")
def index():
    records = _complaint_records()
    board = partition_public_board(records)
    stats = summarize_complaints(records)
    current_app.logger.info(
        "public_board_compiled",
        extra={
            "ongoing": len(board["ongoing"]),
            "resolved": len(board["resolved"]),
            "denied": len(board["denied"]),
        },
    )
    return render_template("home/index.html", page_title="Community Issues", board=board, stats=stats)


@main_bp.route("/dashboard")
@login_required
def dashboard():
    records = _complaint_records()
    return render_template(
        "dashboard/employee.html",
        page_title="Employee Dashboard",
        complaints=records,
        stats=summarize_complaints(records),
    )


@main_bp.route("/dashboard/stats", methods=["GET"])
@login_required
def dashboard_stats():
    return jsonify(summarize_complaints(_complaint_records()))


@main_bp.route("/dashboard/stream", methods=["GET"])
@login_required
def dashboard_stream():
    """Server-Sent Events: an initial snapshot, then one per applied change."""
    feed = current_app.extensions["change_feed"]
    keepalive = _keepalive_seconds()
    logger = current_app.logger
    # Subscribe before loading so nothing committed in between is missed.
    channel = feed.subscribe()
    try:
        board = ComplaintBoard(_complaint_records())
    except Exception:
        feed.unsubscribe(channel)
        raise

    def events():
        try:
            yield format_sse(board.snapshot(), event="snapshot")
            while True:
                if board.drain(channel, timeout=keepalive):
                    yield format_sse(board.snapshot(), event="snapshot")
                else:
                    yield ": keep-alive\n\n"
        finally:
            feed.unsubscribe(channel)
            logger.info("Dashboard stream closed", extra={"subscribers": feed.subscriber_count})

    logger.info("Dashboard stream opened", extra={"subscribers": feed.subscriber_count})
    response = Response(stream_with_context(events()), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


__all__ = ["main_bp", "auth_bp", "complaints_bp"]
