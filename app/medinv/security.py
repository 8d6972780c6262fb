import hmac
import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if token:
        return token
    # PATCH/JSON callers may put the token in the body instead of the header.
    if req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            return body.get(CSRF_SESSION_KEY)
    return None


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form, header, or JSON body."""
    expected = session.get(CSRF_SESSION_KEY)
    token = _submitted_token(req)
    if not expected or not token:
        return False
    return hmac.compare_digest(str(token), str(expected))
