"""Session authentication middleware for Flask.

A before_request hook resolves the logged-in user (or None) into
``g.user``. Route decorators then enforce a login or moderator rights;
admin pages answer 404 to everyone else so their existence is not leaked.
"""

import functools
import logging

from flask import g, session

from error_handler import UnauthorizedError
from extensions import get_services
from services.accounts import AccountCore
from services.sessions import get_session_user

logger = logging.getLogger(__name__)


def login_required(f):
    """Decorator: the route needs a valid session (redirects to login)."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        # Raises UnauthorizedError, which the error handler turns into a redirect
        g.user = get_session_user(get_services().data, session)
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """Decorator: moderator or admin only; others get a 404."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        AccountCore.check_admin_rights(g.get("user"))
        return f(*args, **kwargs)
    return decorated


def init_auth(app):
    """Register the hook that loads ``g.user`` for every request.

    A stale session (marker no longer matching) is cleared so the visitor
    continues as anonymous.
    """
    logger.info("Session authentication hook registered")

    @app.before_request
    def load_user():
        g.user = None
        if not session:
            return None
        try:
            g.user = get_session_user(get_services().data, session)
        except UnauthorizedError as e:
            logger.debug("Dropping session: %s", e)
            session.clear()
        return None
