"""
Employee registration, login, logout and email verification.
"""

import pytest

from conftest import EMPLOYEE_EMAIL, EMPLOYEE_PASSWORD
from extensions import db
from models import AuditLog, EmailVerificationToken, User, utcnow
from routes import auth as auth_routes
from utils.security import hash_value, password_meets_policy

NEW_PASSWORD = "An0ther!Secret"


def _register(client, email="new.hire@city.gov", password=NEW_PASSWORD, confirm=None):
    return client.post(
        "/auth/register",
        data={
            "full_name": "New Hire",
            "email": email,
            "password": password,
            "confirm_password": confirm or password,
        },
    )


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(recipient, user_name, link, expires_at):
        sent.append({"recipient": recipient, "link": link})

    monkeypatch.setattr(auth_routes, "send_verification_email", fake_send)
    return sent


class TestLogin:
    def test_login_and_logout(self, client, employee):
        resp = client.post("/auth/login", data={"email": EMPLOYEE_EMAIL, "password": EMPLOYEE_PASSWORD})
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/dashboard")
        assert client.get("/dashboard").status_code == 200

        assert client.get("/auth/logout").status_code == 302
        assert client.get("/dashboard").status_code == 302
        actions = [a.action_type for a in AuditLog.query.order_by(AuditLog.id).all()]
        assert actions == ["LOGIN", "LOGOUT"]

    def test_wrong_password(self, client, employee):
        resp = client.post("/auth/login", data={"email": EMPLOYEE_EMAIL, "password": "wrong"})
        assert resp.status_code == 401
        assert AuditLog.query.filter_by(action_type="LOGIN_FAILED").count() == 1

    def test_safe_next_redirect(self, client, employee):
        resp = client.post(
            "/auth/login?next=/dashboard/stats",
            data={"email": EMPLOYEE_EMAIL, "password": EMPLOYEE_PASSWORD},
        )
        assert resp.headers["Location"].endswith("/dashboard/stats")

    def test_external_next_ignored(self, client, employee):
        resp = client.post(
            "/auth/login?next=https://evil.example/",
            data={"email": EMPLOYEE_EMAIL, "password": EMPLOYEE_PASSWORD},
        )
        assert "evil.example" not in resp.headers["Location"]

    def test_unverified_blocked_when_required(self, app, client, employee):
        app.config["REQUIRE_EMAIL_VERIFICATION"] = True
        employee.is_email_verified = False
        db.session.commit()
        resp = client.post("/auth/login", data={"email": EMPLOYEE_EMAIL, "password": EMPLOYEE_PASSWORD})
        assert resp.headers["Location"].endswith("/auth/resend-verification")


class TestRegistration:
    def test_register_without_verification(self, client):
        resp = _register(client)
        assert resp.status_code == 302
        user = User.query.filter_by(email="new.hire@city.gov").one()
        assert user.is_email_verified is True
        assert user.check_password(NEW_PASSWORD)

    def test_weak_password_rejected(self, client):
        resp = _register(client, password="alllowercase-no-digits")
        assert resp.status_code == 200
        assert User.query.count() == 0

    def test_duplicate_email_rejected(self, client, employee):
        _register(client, email=EMPLOYEE_EMAIL)
        assert User.query.count() == 1

    def test_verification_round_trip(self, app, client, sent_emails):
        app.config["REQUIRE_EMAIL_VERIFICATION"] = True
        _register(client)
        user = User.query.filter_by(email="new.hire@city.gov").one()
        assert user.is_email_verified is False
        assert sent_emails[0]["recipient"] == "new.hire@city.gov"

        token = sent_emails[0]["link"].rsplit("/", 1)[-1]
        resp = client.get(f"/auth/verify/{token}")
        assert resp.headers["Location"].endswith("/auth/login")
        assert db.session.get(User, user.id).is_email_verified is True

        again = client.get(f"/auth/verify/{token}")
        assert again.status_code == 302
        record = EmailVerificationToken.query.filter_by(token_hash=hash_value(token)).one()
        assert record.is_used

    def test_expired_token(self, app, client, sent_emails):
        app.config["REQUIRE_EMAIL_VERIFICATION"] = True
        _register(client)
        token = sent_emails[0]["link"].rsplit("/", 1)[-1]
        record = EmailVerificationToken.query.filter_by(token_hash=hash_value(token)).one()
        record.expires_at = utcnow().replace(year=2000)
        db.session.commit()

        resp = client.get(f"/auth/verify/{token}")
        assert resp.headers["Location"].endswith("/auth/resend-verification")

    def test_resend_issues_new_token(self, app, client, sent_emails):
        app.config["REQUIRE_EMAIL_VERIFICATION"] = True
        _register(client)
        resp = client.post("/auth/resend-verification", data={"email": "new.hire@city.gov"})
        assert resp.status_code == 302
        assert len(sent_emails) == 2
        assert EmailVerificationToken.query.filter_by(consumed_at=None).count() == 1

    def test_resend_for_unknown_address_sends_nothing(self, client, sent_emails):
        resp = client.post("/auth/resend-verification", data={"email": "nobody@city.gov"})
        assert resp.status_code == 302
        assert sent_emails == []


@pytest.mark.parametrize("password,ok", [
    ("Str0ng!Passw0rd", True),
    ("short!A1", False),
    ("nouppercase!123", False),
    ("NoDigitsHere!!", False),
    ("NoSymbols12345", False),
])
def test_password_policy(password, ok):
    assert password_meets_policy(password)[0] is ok


def test_registration_survives_mail_failure(app, client):
    app.config["REQUIRE_EMAIL_VERIFICATION"] = True
    app.config["MAIL_SERVER"] = ""
    resp = _register(client)
    assert resp.headers["Location"].endswith("/auth/resend-verification")
    assert User.query.filter_by(email="new.hire@city.gov").one().is_email_verified is False
