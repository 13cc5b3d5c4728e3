"""
Identity context middleware — parses a Bearer JWT and sets ``g.current_user_id``.

Token issuance lives with the upstream identity provider; this module only
verifies the signature (HS256, ``JWT_SECRET_KEY`` or ``SECRET_KEY``) and
exposes the subject to the blueprints. Requests without a valid token simply
carry no identity; routes that need an actor answer 401.

Token payload:
{
    "sub": "<user_id>",
    "exp": <expires_at>      # optional
}
"""

import functools
import logging

import jwt as pyjwt
from flask import current_app, g, request

from welfare_workflow.models import db
from welfare_workflow.models.auth import User
from welfare_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def decode_identity_token(token: str) -> dict:
    """Verify and decode an identity token. Raises ``jwt.InvalidTokenError``."""
    return pyjwt.decode(token, _get_secret(), algorithms=[ALGORITHM])


def init_identity(app):
    """Register the identity parser as a before_request hook."""

    @app.before_request
    def _identity():
        g.current_user_id = None

        if not request.path.startswith("/api/v1/"):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_identity_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired identity token on %s", request.path)
            return
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid identity token on %s", request.path)
            return

        try:
            g.current_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            logger.warning("Identity token carries a non-numeric subject")


# ── Route decorators ─────────────────────────────────────────────────────────

def require_identity(f):
    """
    Decorator: require an authenticated, active user.

    Sets g.current_user to the loaded User.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user_id = getattr(g, "current_user_id", None)
        if user_id is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required. Provide a Bearer token.")

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            logger.warning("Token subject %s is unknown or inactive", user_id)
            return api_error(E.UNAUTHENTICATED, "User not found or inactive")

        g.current_user = user
        return f(*args, **kwargs)

    return decorated


def require_privileged(f):
    """
    Decorator: require one of PRIVILEGED_ROLES (catalog administration).

    Usage:
        @require_identity
        @require_privileged
        def create_stage(): ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        if not set(user.role_names) & current_app.config["PRIVILEGED_ROLES"]:
            logger.warning("Access denied: user %s tried admin endpoint %s", user.id, request.path)
            return api_error(E.FORBIDDEN, "Administrator role required")
        return f(*args, **kwargs)

    return decorated
