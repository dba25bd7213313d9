"""Flask application factory for the IssueSnap complaint reporting service."""
import os
from typing import Optional
from flask import Flask, jsonify, render_template, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from dotenv import load_dotenv
from utils.logger import init_logging
from utils.security import apply_security_headers
from utils.ai_vision import ComplaintAssistant
from utils.realtime import ChangeFeed
from utils.storage import LocalBlobStore
from extensions import csrf, db, migrate, login_manager


JSON_ENDPOINT_SUFFIXES = ("/stats", "/resolve", "/deny", "/draft")


def _wants_json() -> bool:
    if request.path.endswith(JSON_ENDPOINT_SUFFIXES):
        return True
    return "application/json" in request.headers.get("Accept", "")


def _error_response(status: int, message: str):
    if _wants_json():
        return jsonify({"error": message}), status
    return render_template(f"errors/{status}.html"), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("Forbidden", extra={"path": request.path, "method": request.method})
        return _error_response(403, "Forbidden")

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("Not found", extra={"path": request.path, "method": request.method})
        return _error_response(404, "Not found")

    @app.errorhandler(413)
    def payload_too_large(error):
        app.logger.warning("Request body too large", extra={"path": request.path})
        return jsonify({"error": "Upload is too large"}), 413

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("Unhandled server error", extra={"path": request.path})
        db.session.rollback()
        return _error_response(500, "Internal server error")


def ensure_default_employee(app: Flask) -> None:
    """Seed a verified employee account so the dashboard is reachable on first run."""
    from models import User  # Local import to avoid circular dependency

    admin_email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    admin_password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not admin_email or not admin_password:
        return

    employee = User.query.filter_by(email=admin_email).first()
    if employee:
        if not employee.is_active or not employee.is_email_verified:
            employee.is_active = True
            employee.is_email_verified = True
            db.session.commit()
        return

    employee = User(
        full_name=app.config.get("DEFAULT_ADMIN_NAME") or "Municipal Administrator",
        email=admin_email,
        is_email_verified=True,
        is_active=True,
    )
    employee.set_password(admin_password)
    db.session.add(employee)
    db.session.commit()
    app.logger.info("Default employee account created", extra={"email": admin_email})


def _create_postgres_database(url) -> None:
    admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
    engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        with engine.connect() as conn:
            found = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": url.database}
            ).scalar()
            if not found:
                conn.execute(text(f'CREATE DATABASE "{url.database}"'))
    except OperationalError:
        # Unreachable server: db.create_all() reports it with a clearer error.
        pass
    finally:
        engine.dispose()


def ensure_database_exists(database_uri: str) -> None:
    """Make sure the configured database can be opened: SQLite folder or PostgreSQL database."""
    url = make_url(database_uri)
    if url.drivername.startswith("postgres"):
        _create_postgres_database(url)
    elif url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)


def register_services(app: Flask) -> None:
    """Attach the change feed, AI assistant and blob store used by the complaint routes."""
    app.extensions["change_feed"] = ChangeFeed()
    app.extensions["complaint_ai"] = ComplaintAssistant.from_config(app.config)
    app.extensions["blob_store"] = LocalBlobStore.from_config(app.config)


def create_app(config_name: Optional[str] = None, test_config: Optional[dict] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)
    if test_config:
        app.config.update(test_config)

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])
    os.makedirs(app.instance_path, exist_ok=True)
    os.makedirs(app.config["COMPLAINT_UPLOAD_FOLDER"], exist_ok=True)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger

    # Initialize extensions
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.login_view = "auth.login"
    login_manager.session_protection = "strong"
    login_manager.login_message_category = "warning"

    @login_manager.user_loader
    def load_user(user_id):
        from models import User  # Local import to avoid circular dependency

        if not user_id:
            return None
        return db.session.get(User, str(user_id))

    register_services(app)

    # Blueprints
    from routes import main_bp, auth_bp, complaints_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(complaints_bp)

    @app.route("/favicon.ico")
    def favicon():
        """Serve a favicon if present; otherwise return an empty response to avoid 404 noise."""
        static_ico = os.path.join(app.static_folder or "static", "favicon.ico")
        if os.path.exists(static_ico):
            return app.send_static_file("favicon.ico")
        return "", 204

    # Error handlers
    register_error_handlers(app)

    # Request lifecycle hooks
    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        db.create_all()
        ensure_default_employee(app)

    return app


# Expose the Flask application for WSGI servers (e.g., gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, use_reloader=False, threaded=True)
