"""SMTP-backed email dispatcher for employee account verification."""
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import List

from flask import current_app, render_template

from utils.ai_markdown_formatter import markdown_to_plaintext


class EmailDeliveryError(Exception):
    """Raised when email dispatch fails."""


def _build_message(subject: str, text_body: str, html_body: str, sender: str, recipients: List[str]) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=sender.rpartition("@")[2] or None)
    msg.set_content(text_body)
    msg.add_alternative(html_body, subtype="html")
    return msg


def _dispatch_email(subject: str, text_body: str, html_body: str, sender: str, recipients: List[str]) -> None:
    if not recipients:
        raise EmailDeliveryError("No recipients resolved for email dispatch")
    cfg = current_app.config
    host = cfg.get("MAIL_SERVER")
    if not host:
        raise EmailDeliveryError("MAIL_SERVER is not configured")

    msg = _build_message(subject, text_body, html_body, sender, recipients)
    port = int(cfg.get("MAIL_PORT", 25))
    context = ssl.create_default_context()
    try:
        if cfg.get("MAIL_USE_SSL"):
            server = smtplib.SMTP_SSL(host, port, context=context)
        else:
            server = smtplib.SMTP(host, port)
        with server:
            if not cfg.get("MAIL_USE_SSL") and cfg.get("MAIL_USE_TLS"):
                server.starttls(context=context)
            if cfg.get("MAIL_USERNAME") and cfg.get("MAIL_PASSWORD"):
                server.login(cfg["MAIL_USERNAME"], cfg["MAIL_PASSWORD"])
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:  # pragma: no cover - external I/O
        raise EmailDeliveryError(str(exc)) from exc
    current_app.logger.info("Email dispatched", extra={"subject": subject, "recipients": len(recipients)})


def send_verification_email(recipient: str, user_name: str, verification_link: str, expires_at: str) -> None:
    subject = "Confirm your IssueSnap employee account"
    html_body = render_template(
        "email/verify_email.html",
        subject=subject,
        user_name=user_name,
        verification_link=verification_link,
        expires_at=expires_at,
    )
    text_body = markdown_to_plaintext(
        f"Hello {user_name},\n\n"
        "Confirm your email to activate your IssueSnap employee account:\n\n"
        f"<{verification_link}>\n\n"
        f"The link expires at {expires_at} UTC. If you did not sign up, ignore this message."
    )
    sender = current_app.config.get("MAIL_DEFAULT_SENDER") or current_app.config.get("MAIL_USERNAME") or recipient
    _dispatch_email(subject, text_body, html_body, sender, [recipient])
