"""
Project Access Middleware — membership and role checks on project routes.

Provides the ``@require_project_role`` decorator.  Administrators bypass
it; other callers must be members of the project named by the route
parameter, holding one of the listed roles.

Usage:
    @bp.route("/projects/<project_id>/promote", methods=["POST"])
    @require_project_role("owner", "editor")
    def promote(project_id):
        ...

Non-members get 404 so a hidden project is indistinguishable from a missing
one; members without the required role get 403.
"""

import functools
import logging

from flask import request

from portal.auth import current_user
from portal.core.exceptions import ForbiddenError, NotFoundError
from portal.services.permission_service import get_member_role, is_admin

logger = logging.getLogger(__name__)


def require_project_role(*roles, param_name: str = "project_id"):
    """
    Decorator: require the caller to hold one of ``roles`` on the project.

    With no roles given, any membership is enough.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if is_admin(user):
                return f(*args, **kwargs)

            project_id = kwargs.get(param_name) or (request.view_args or {}).get(param_name)
            if project_id is None:
                return f(*args, **kwargs)

            role = get_member_role(user.id, project_id)
            if role is None:
                raise NotFoundError(resource="Project", resource_id=project_id)
            if roles and role not in roles:
                logger.warning(
                    "User %s (role=%s) denied on project %s, requires %s",
                    user.id, role, project_id, "/".join(roles),
                )
                raise ForbiddenError(f"Requires project role: {' or '.join(roles)}")
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_admin(f):
    """Decorator: administrators only."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not is_admin(current_user()):
            raise ForbiddenError("Administrator access required")
        return f(*args, **kwargs)
    return decorated
