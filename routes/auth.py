"""Employee sign-up, sign-in and email confirmation."""
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf import FlaskForm
from sqlalchemy.exc import IntegrityError
from wtforms import BooleanField, PasswordField, StringField, SubmitField
from wtforms.validators import DataRequired, Email, EqualTo, Length, ValidationError

from extensions import db
from models import AuditLog, EmailVerificationToken, User, utcnow
from utils.security import generate_token, hash_value, is_safe_redirect_url, password_meets_policy
from utils.email_service import EmailDeliveryError, send_verification_email

auth_bp = Blueprint("auth", __name__)

VERIFICATION_VALIDITY_MINUTES = 60
REMEMBER_FOR = timedelta(days=30)


def _normalized_email(value: str | None) -> str:
    return (value or "").strip().lower()


class RegistrationForm(FlaskForm):
    full_name = StringField("Full Name", validators=[DataRequired(), Length(max=150)])
    email = StringField("Work Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired(), Length(min=12)])
    confirm_password = PasswordField(
        "Repeat Password", validators=[DataRequired(), EqualTo("password", message="The passwords differ.")]
    )
    submit = SubmitField("Create Employee Account")

    def validate_email(self, field):
        if User.query.filter_by(email=_normalized_email(field.data)).first():
            raise ValidationError("That work email is already registered.")


class LoginForm(FlaskForm):
    email = StringField("Work Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired()])
    remember_me = BooleanField("Keep me signed in")
    submit = SubmitField("Sign In")


class ResendVerificationForm(FlaskForm):
    email = StringField("Work Email", validators=[DataRequired(), Email(), Length(max=255)])
    submit = SubmitField("Send a New Link")


def _verification_required() -> bool:
    return bool(current_app.config.get("REQUIRE_EMAIL_VERIFICATION", True))


def _send_verification(user: User) -> bool:
    """Issue a fresh token and email it; False when the mail server refused."""
    token, expires_at = create_email_verification_token(user)
    db.session.commit()
    link = url_for("auth.verify_email", token=token, _external=True)
    try:
        send_verification_email(user.email, user.full_name, link, expires_at.strftime("%Y-%m-%d %H:%M"))
    except EmailDeliveryError as exc:
        current_app.logger.error("Verification email failed", extra={"user_id": user.id, "error": str(exc)})
        return False
    return True


@auth_bp.route("/register", methods=["GET", "POST"])
def register():
    if current_user.is_authenticated:
        return redirect(url_for("main.dashboard"))

    form = RegistrationForm()
    if not form.validate_on_submit():
        return render_template("auth/register.html", form=form, page_title="Register")

    acceptable, problem = password_meets_policy(form.password.data)
    if not acceptable:
        form.password.errors.append(problem)
        return render_template("auth/register.html", form=form, page_title="Register")

    employee = User(
        full_name=form.full_name.data.strip(),
        email=_normalized_email(form.email.data),
        is_email_verified=not _verification_required(),
        is_active=True,
    )
    employee.set_password(form.password.data)
    try:
        db.session.add(employee)
        db.session.flush()
        log_action("REGISTER", employee)
        db.session.commit()
    except IntegrityError:
        # Lost a race with another sign-up for the same address.
        db.session.rollback()
        flash("That work email is already registered.", "danger")
        return render_template("auth/register.html", form=form, page_title="Register")

    current_app.logger.info("Employee registered", extra={"user_id": employee.id})
    if employee.is_email_verified:
        flash("Account created. Sign in to open the dashboard.", "success")
    elif _send_verification(employee):
        flash("Account created. Check your inbox for the confirmation link.", "success")
    else:
        flash("Account created, but the confirmation email could not be sent. Request a new link below.", "warning")
        return redirect(url_for("auth.resend_verification"))
    return redirect(url_for("auth.login"))


@auth_bp.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(url_for("main.dashboard"))

    form = LoginForm()
    if not form.validate_on_submit():
        return render_template("auth/login.html", form=form, page_title="Login")

    email = _normalized_email(form.email.data)
    employee = User.query.filter_by(email=email).first()
    if employee is None or not employee.check_password(form.password.data):
        log_action("LOGIN_FAILED", employee, context=email[:120])
        db.session.commit()
        current_app.logger.warning("Failed employee login", extra={"ip": request.remote_addr})
        flash("Email or password is incorrect.", "danger")
        return render_template("auth/login.html", form=form, page_title="Login"), 401

    if not employee.is_active:
        flash("This account has been deactivated. Contact an administrator.", "warning")
        return render_template("auth/login.html", form=form, page_title="Login"), 403

    if _verification_required() and not employee.is_email_verified:
        flash("Confirm your email address before signing in.", "warning")
        return redirect(url_for("auth.resend_verification"))

    remember = bool(form.remember_me.data)
    login_user(employee, remember=remember, duration=REMEMBER_FOR if remember else None)
    session.permanent = remember
    employee.last_login_at = utcnow()
    log_action("LOGIN", employee)
    db.session.commit()

    target = request.args.get("next")
    if target and is_safe_redirect_url(target):
        return redirect(target)
    return redirect(url_for("main.dashboard"))


@auth_bp.route("/logout")
@login_required
def logout():
    employee = current_user._get_current_object()
    logout_user()
    session.clear()
    log_action("LOGOUT", employee)
    db.session.commit()
    flash("Signed out.", "success")
    return redirect(url_for("auth.login"))


@auth_bp.route("/verify/<token>")
def verify_email(token):
    record = EmailVerificationToken.query.filter_by(token_hash=hash_value(token)).first()
    if record is None or record.is_used:
        flash("This confirmation link is invalid or was already used.", "info")
        return redirect(url_for("auth.login"))
    if record.is_expired:
        flash("This confirmation link has expired. Request a new one.", "warning")
        return redirect(url_for("auth.resend_verification"))

    record.consumed_at = utcnow()
    record.user.is_email_verified = True
    log_action("VERIFY_EMAIL", record.user)
    db.session.commit()
    flash("Email confirmed. You can sign in now.", "success")
    return redirect(url_for("auth.login"))


@auth_bp.route("/resend-verification", methods=["GET", "POST"])
def resend_verification():
    form = ResendVerificationForm()
    if not form.validate_on_submit():
        return render_template("auth/resend_verification.html", form=form, page_title="Verify Email")

    employee = User.query.filter_by(email=_normalized_email(form.email.data)).first()
    # Same response whether or not the address is registered.
    if employee is not None and not employee.is_email_verified:
        log_action("RESEND_VERIFICATION", employee)
        if not _send_verification(employee):
            flash("The confirmation email could not be sent. Try again later.", "danger")
            return render_template("auth/resend_verification.html", form=form, page_title="Verify Email"), 502
    flash("If that account is waiting for confirmation, a new link is on its way.", "info")
    return redirect(url_for("auth.login"))


def create_email_verification_token(user: User, validity_minutes: int = VERIFICATION_VALIDITY_MINUTES) -> tuple[str, datetime]:
    """Replace any outstanding tokens for ``user``; only the hash is stored."""
    EmailVerificationToken.query.filter_by(user_id=user.id, consumed_at=None).delete()
    token = generate_token(24)
    expires_at = EmailVerificationToken.expiry_from_now(validity_minutes)
    db.session.add(EmailVerificationToken(user=user, token_hash=hash_value(token), expires_at=expires_at))
    return token, expires_at


def log_action(action: str, user: User | None, context: str | None = None):
    db.session.add(
        AuditLog(
            user_id=user.id if user else None,
            action_type=action,
            ip_address=request.remote_addr,
            user_agent=(request.headers.get("User-Agent") or "unknown")[:255],
            context_entity=context,
        )
    )
