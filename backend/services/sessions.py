"""Encrypted session cookie and login/logout bookkeeping.

The cookie payload is JSON sealed with Fernet (AES-128-CBC plus
HMAC-SHA256). The Fernet key is derived from the two session secrets kept
in site config: ``SessionAuth`` feeds the signing half, ``SessionEncrypt``
the encryption half.

A logged-in session holds ``UserId`` and exactly one ``Date_{type}``
marker. The marker is a digest of the binary packing of the bound auth
method's ``date``; bumping that date (password reset, token refresh)
invalidates every session issued before.
"""

import base64
import hashlib
import json
import logging
import struct
from datetime import datetime, timezone
from typing import MutableMapping, Optional

from cryptography.fernet import Fernet, InvalidToken
from flask.sessions import SecureCookieSession, SessionInterface

from db.connector import DataConnector
from entities import AUTH_TYPE_PREFERENCE, AuthMethod, AuthType, User
from error_handler import ConflictError, NotFoundError, UnauthorizedError

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "moviepoll-session"
USER_ID_KEY = "UserId"
MARKER_PREFIX = "Date_"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def derive_fernet_key(auth_key: str, encrypt_key: str) -> bytes:
    """Build a Fernet key: 16 signing bytes followed by 16 encryption bytes."""
    signing = hashlib.sha256(auth_key.encode("utf-8")).digest()[:16]
    encryption = hashlib.sha256(encrypt_key.encode("utf-8")).digest()[:16]
    return base64.urlsafe_b64encode(signing + encryption)


def session_marker(date: Optional[datetime]) -> str:
    """Upper-case hex SHA-256 of ``(epoch seconds, microseconds)`` packed big-endian."""
    if date is None:
        seconds, micros = 0, 0
    else:
        if date.tzinfo is None:
            date = date.replace(tzinfo=timezone.utc)
        delta = date - _EPOCH
        seconds = delta.days * 86400 + delta.seconds
        micros = delta.microseconds
    packed = struct.pack(">qi", seconds, micros)
    return hashlib.sha256(packed).hexdigest().upper()


def marker_key(auth_type: AuthType) -> str:
    return MARKER_PREFIX + auth_type.value


class FernetSessionInterface(SessionInterface):
    """Flask session interface storing the session in a Fernet token cookie.

    ``key_source`` is called lazily so the secrets are read from the data
    layer after the app is configured.
    """

    session_class = SecureCookieSession

    def __init__(self, key_source):
        self._key_source = key_source
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._key_source())
        return self._fernet

    def open_session(self, app, request):
        token = request.cookies.get(self.get_cookie_name(app))
        if not token:
            return self.session_class()
        try:
            payload = self._get_fernet().decrypt(token.encode("ascii"))
            data = json.loads(payload)
        except (InvalidToken, ValueError, UnicodeEncodeError):
            logger.debug("Discarding unreadable session cookie")
            return self.session_class()
        if not isinstance(data, dict):
            return self.session_class()
        return self.session_class(data)

    def save_session(self, app, session, response) -> None:
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        if not session:
            if session.modified:
                response.delete_cookie(name, domain=domain, path=path)
            return
        if not self.should_set_cookie(app, session):
            return
        token = self._get_fernet().encrypt(json.dumps(dict(session)).encode("utf-8"))
        response.set_cookie(
            name,
            token.decode("ascii"),
            expires=self.get_expiration_time(app, session),
            httponly=self.get_cookie_httponly(app),
            domain=domain,
            path=path,
            secure=self.get_cookie_secure(app),
            samesite=self.get_cookie_samesite(app),
        )


# ─── Login state ─────────────────────────────────────────────────────────────


def login(session: MutableMapping, user: User, method: AuthMethod) -> None:
    """Replace the session contents with a login through ``method``."""
    session.clear()
    session[USER_ID_KEY] = user.id
    session[marker_key(method.type)] = session_marker(method.date)
    logger.debug("User %d logged in via %s", user.id, method.type.value)


def login_preferred(session: MutableMapping, user: User) -> AuthMethod:
    """Log in through the first remaining method in preference order.

    Raises:
        ConflictError: The user has no auth method left.
    """
    for auth_type in AUTH_TYPE_PREFERENCE:
        method = user.get_auth_method(auth_type)
        if method is not None:
            login(session, user, method)
            return method
    raise ConflictError("User has no authentication method left")


def logout(session: MutableMapping) -> None:
    session.clear()


def get_session_user(data: DataConnector, session: MutableMapping) -> User:
    """Resolve and verify the logged-in user.

    Raises:
        UnauthorizedError: No session, unknown user or a stale marker.
    """
    user_id = session.get(USER_ID_KEY)
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise UnauthorizedError("Not logged in")
    try:
        user = data.get_user(user_id)
    except NotFoundError:
        raise UnauthorizedError("Not logged in") from None

    for auth_type in AUTH_TYPE_PREFERENCE:
        key = marker_key(auth_type)
        if key not in session:
            continue
        method = user.get_auth_method(auth_type)
        if method is None or session[key] != session_marker(method.date):
            logger.info("Stale %s session for user %d", auth_type.value, user_id)
            raise UnauthorizedError("Session expired, please log in again")
        return user
    raise UnauthorizedError("Not logged in")


def try_session_user(data: DataConnector, session: MutableMapping) -> Optional[User]:
    """Like get_session_user but returns None for anonymous visitors."""
    try:
        return get_session_user(data, session)
    except UnauthorizedError:
        return None
