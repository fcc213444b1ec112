"""
Department Workflow Portal
Caller identity resolution.

Authentication (sessions, SSO, tokens) is handled by the gateway in front
of this service, which forwards the authenticated user id in the
``X-User-Id`` header.  This module turns that header into ``g.current_user``.

Provides:
    - init_auth(app): before_request hook populating g.current_user
    - login_required: decorator rejecting anonymous callers with 401
    - current_user(): the resolved User, raising UnauthorizedError if absent
"""

import functools
import logging

from flask import g, request

from portal.core.exceptions import UnauthorizedError
from portal.models import db
from portal.models.user import User

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

# Paths reachable without identity
_PUBLIC_PREFIXES = ("/api/v1/health",)


def init_auth(app):
    """Register the identity hook on ``app``."""

    @app.before_request
    def _resolve_user():
        g.current_user = None
        if request.path.startswith(_PUBLIC_PREFIXES):
            return None
        user_id = (request.headers.get(USER_HEADER) or "").strip()
        if not user_id:
            return None
        user = db.session.get(User, user_id)
        if user is None:
            logger.warning("Unknown user id in %s header: %s", USER_HEADER, user_id)
        g.current_user = user
        return None


def current_user() -> User:
    user = getattr(g, "current_user", None)
    if user is None:
        raise UnauthorizedError()
    return user


def login_required(f):
    """Decorator: reject requests without a resolvable caller."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        current_user()
        return f(*args, **kwargs)
    return decorated
