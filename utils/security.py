"""Response headers, redirect checks, tokens, password policy and attempt throttling."""
import hashlib
import secrets
import threading
import time
from urllib.parse import urlparse, urljoin

from flask import request


def apply_security_headers(response, force_https: bool = False):
    """Apply security headers while keeping camera capture and geolocation for reporters."""
    csp = (
        "default-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; "
        "img-src 'self' data: blob: https:; "
        "connect-src 'self'; "
        "frame-ancestors 'self';"
    )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(self), camera=(self), microphone=()")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def is_safe_redirect_url(target: str) -> bool:
    """Validate redirect targets to prevent open redirect attacks."""
    if not target:
        return False
    ref_url = urlparse(request.host_url)
    test_url = urlparse(urljoin(request.host_url, target))
    return test_url.scheme in ("http", "https") and ref_url.netloc == test_url.netloc


def generate_token(length: int = 32) -> str:
    return secrets.token_urlsafe(length)


def hash_value(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def password_meets_policy(password: str) -> tuple[bool, str | None]:
    """Enforce a sane password baseline for employee accounts."""
    if len(password) < 12:
        return False, "Password must be at least 12 characters long."
    if password.lower() == password or password.upper() == password:
        return False, "Use a mix of upper and lower case characters."
    if not any(c.isdigit() for c in password):
        return False, "Include at least one digit."
    if not any(c in "!@#$%^&*()-_=+[]{}|;:,.<>?/" for c in password):
        return False, "Include at least one symbol."
    return True, None


# key -> (window start, attempts in window); per-process only
_attempts: dict[str, tuple[float, int]] = {}
_attempts_lock = threading.Lock()


def track_attempt(key: str, limit: int = 10, window_seconds: int = 600) -> bool:
    """Count an attempt for ``key``; False once ``limit`` is exceeded inside the window."""
    now = time.monotonic()
    with _attempts_lock:
        started, count = _attempts.get(key, (now, 0))
        if now - started >= window_seconds:
            started, count = now, 0
        count += 1
        _attempts[key] = (started, count)
    return count <= limit


def reset_attempts() -> None:
    with _attempts_lock:
        _attempts.clear()
