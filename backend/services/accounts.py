"""Account core: signup, login, auth bindings, admin actions and url keys."""

import logging
from datetime import timedelta
from typing import MutableMapping, Optional

from auth_state import AuthStateStore
from db.connector import DataConnector
from entities import (
    DELETED_USER_NAME,
    AuthMethod,
    AuthType,
    PrivilegeLevel,
    UrlKey,
    UrlKeyType,
    User,
    string_length,
    utc_now,
)
from error_handler import (
    ConflictError,
    FormError,
    InvalidInputError,
    NotFoundError,
    PolicyDisabledError,
    UnauthorizedError,
)
from security_utils import hash_password
from services import sessions
from services.oauth import PROVIDERS, OAuthClient
from services.site_config import (
    LOCAL_SIGNUP_ENABLED,
    MAX_NAME_LENGTH,
    MIN_NAME_LENGTH,
    PASS_SALT,
    SiteConfig,
    oauth_client_id_key,
    oauth_client_secret_key,
    oauth_enabled_key,
    oauth_signup_enabled_key,
)

logger = logging.getLogger(__name__)

OAUTH_ACTIONS = {"signup": "signup_", "login": "login_", "add": "add_"}

_USER_PAGE = 500


def _next_date(previous):
    """A fresh auth date strictly after ``previous`` so old session markers go stale."""
    now = utc_now()
    if previous is not None and now <= previous:
        return previous + timedelta(seconds=1)
    return now


class AccountCore:
    """User-facing account operations on top of the data layer."""

    def __init__(
        self,
        data: DataConnector,
        site_config: SiteConfig,
        auth_state: AuthStateStore,
        timeout: int = 15,
    ):
        self.data = data
        self.site_config = site_config
        self.auth_state = auth_state
        self.timeout = timeout

    # ─── Passwords ───────────────────────────────────────────────────────

    def hash_password(self, password: str) -> str:
        return hash_password(password, self.site_config.get_secret(PASS_SALT))

    # ─── Local accounts ──────────────────────────────────────────────────

    def _name_errors(self, name: str) -> Optional[str]:
        min_len = self.site_config.get_int(MIN_NAME_LENGTH)
        max_len = self.site_config.get_int(MAX_NAME_LENGTH)
        length = string_length(name)
        if length < min_len or length > max_len:
            return f"Username must be between {min_len} and {max_len} characters"
        if name.strip() == DELETED_USER_NAME:
            return "This username is reserved"
        if self.data.check_user_exists(name.strip()):
            return "Username is already taken"
        return None

    def signup_local(
        self,
        session: MutableMapping,
        name: str,
        password: str,
        password_repeat: str,
        email: str = "",
    ) -> User:
        """Create a local account and log it in.

        Raises:
            PolicyDisabledError: Local signup is switched off.
            FormError: Per-field validation failures.
        """
        if not self.site_config.get_bool(LOCAL_SIGNUP_ENABLED):
            raise PolicyDisabledError("Local signup is not enabled")

        errors = {}
        name_error = self._name_errors(name)
        if name_error:
            errors["Username"] = name_error
        if not password:
            errors["Password"] = "A password is required"
        elif password != password_repeat:
            errors["PasswordRepeat"] = "Passwords do not match"
        if errors:
            raise FormError(errors)

        method = AuthMethod(type=AuthType.LOCAL, password=self.hash_password(password), date=utc_now())
        user = User(name=name.strip(), email=email.strip(), auth_methods=[method])
        self.data.add_user(user)
        sessions.login(session, user, method)
        logger.info("New local user %d (%s)", user.id, user.name)
        return user

    def login_local(self, session: MutableMapping, name: str, password: str) -> User:
        """Raises UnauthorizedError on unknown name or wrong password."""
        user = self.data.user_local_login(name.strip(), self.hash_password(password))
        sessions.login(session, user, user.get_auth_method(AuthType.LOCAL))
        return user

    def add_local_login(self, session: MutableMapping, user: User, password: str) -> None:
        """Bind a password to an account that only has OAuth logins."""
        if not password:
            raise FormError({"Password": "A password is required"})
        method = AuthMethod(type=AuthType.LOCAL, password=self.hash_password(password), date=utc_now())
        self.add_auth_method_to_user(user, method)
        sessions.login(session, user, user.get_auth_method(AuthType.LOCAL))

    def update_profile(self, user: User, email: str, notify_cycle_end: bool, notify_vote_selection: bool) -> None:
        user.email = email.strip()
        user.notify_cycle_end = notify_cycle_end
        user.notify_vote_selection = notify_vote_selection
        self.data.update_user(user)

    # ─── Bindings ────────────────────────────────────────────────────────

    def add_auth_method_to_user(self, user: User, method: AuthMethod) -> None:
        """Raises ConflictError when the user already has a binding of this type."""
        if user.has_auth_method(method.type):
            raise ConflictError(f"A {method.type.value} login is already bound to this account")
        user.auth_methods.append(method)
        self.data.update_user(user)

    def remove_auth_method_from_user(self, session: MutableMapping, user: User, auth_type: AuthType) -> User:
        """Drop one binding and re-establish the session with what is left.

        Raises:
            NotFoundError: The user has no such binding.
            ConflictError: It is the user's last binding.
        """
        method = user.get_auth_method(auth_type)
        if method is None:
            raise NotFoundError(f"No {auth_type.value} login bound to this account")
        if len(user.auth_methods) <= 1:
            raise ConflictError("Cannot remove the last login method of an account")
        user.auth_methods = [m for m in user.auth_methods if m.type != auth_type]
        self.data.update_user(user)
        self.data.delete_auth_method(method.id)
        user = self.data.get_user(user.id)
        sessions.login_preferred(session, user)
        logger.info("User %d removed %s login", user.id, auth_type.value)
        return user

    # ─── OAuth ───────────────────────────────────────────────────────────

    def oauth_enabled(self, auth_type: AuthType) -> bool:
        return self.site_config.get_bool(oauth_enabled_key(auth_type.value))

    def oauth_signup_enabled(self, auth_type: AuthType) -> bool:
        return self.oauth_enabled(auth_type) and self.site_config.get_bool(
            oauth_signup_enabled_key(auth_type.value)
        )

    def oauth_client(self, auth_type: AuthType) -> OAuthClient:
        if not self.oauth_enabled(auth_type):
            raise PolicyDisabledError(f"{auth_type.value} login is not enabled")
        provider = PROVIDERS[auth_type]
        return OAuthClient(
            provider,
            self.site_config.get_string(oauth_client_id_key(auth_type.value)),
            self.site_config.get_string(oauth_client_secret_key(auth_type.value)),
            f"{self.site_config.host_url()}/oauth/{provider.slug}/callback",
            timeout=self.timeout,
        )

    def oauth_begin(self, auth_type: AuthType, action: str) -> str:
        """Issue a state nonce for ``action`` and return the provider's authorize URL."""
        prefix = OAUTH_ACTIONS.get(action)
        if prefix is None:
            raise InvalidInputError(f"Unknown OAuth action {action!r}")
        if action == "signup" and not self.oauth_signup_enabled(auth_type):
            raise PolicyDisabledError(f"Signup via {auth_type.value} is not enabled")
        client = self.oauth_client(auth_type)
        return client.authorize_url(self.auth_state.add_oauth_state(prefix))

    def oauth_callback(
        self,
        session: MutableMapping,
        auth_type: AuthType,
        state: str,
        code: str,
        current_user: Optional[User] = None,
    ) -> tuple[str, User]:
        """Finish an OAuth round trip.

        The state prefix picks the flow: signup creates an account, login
        looks the account up, add binds the provider to ``current_user``.

        Returns:
            (action, user) where action is "signup", "login" or "add".
        """
        prefix = self.auth_state.consume_oauth_state(state)
        action = next(name for name, p in OAUTH_ACTIONS.items() if p == prefix)
        client = self.oauth_client(auth_type)
        tokens = client.exchange_code(code)
        account = client.fetch_user(tokens.access_token)

        if action == "login":
            user = self.data.user_login(auth_type, account.ext_id)
            method = user.get_auth_method(auth_type)
            method.access_token = tokens.access_token
            method.refresh_token = tokens.refresh_token
            # date stays: bumping it would end the user's other sessions
            self.data.update_auth_method(method)
            sessions.login(session, user, method)
            return action, user

        if self.data.check_oauth_usage(account.ext_id, auth_type):
            raise ConflictError(f"This {auth_type.value} account is already bound to a user")
        method = AuthMethod(
            type=auth_type,
            ext_id=account.ext_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            date=utc_now(),
        )

        if action == "add":
            if current_user is None:
                raise UnauthorizedError("Log in before adding a login method")
            self.add_auth_method_to_user(current_user, method)
            logger.info("User %d added %s login", current_user.id, auth_type.value)
            return action, current_user

        if not self.oauth_signup_enabled(auth_type):
            raise PolicyDisabledError(f"Signup via {auth_type.value} is not enabled")
        user = User(name=account.name.strip(), email=account.email, auth_methods=[method])
        self.data.add_user(user)
        sessions.login(session, user, method)
        logger.info("New %s user %d (%s)", auth_type.value, user.id, user.name)
        return action, user

    # ─── Admin ───────────────────────────────────────────────────────────

    @staticmethod
    def check_admin_rights(user: Optional[User]) -> User:
        """Admin pages pretend not to exist for everyone below moderator."""
        if user is None or not user.is_mod:
            raise NotFoundError("Page not found")
        return user

    def _target(self, actor: User, user_id: int) -> User:
        self.check_admin_rights(actor)
        target = self.data.get_user(user_id)
        if target.id == actor.id:
            raise ConflictError("Use the user page to change your own account")
        if target.privilege >= actor.privilege:
            raise ConflictError("Cannot modify a user with the same or a higher privilege level")
        return target

    def purge_user(self, actor: User, user_id: int) -> None:
        """Remove the user together with their votes and bindings."""
        self._target(actor, user_id)
        self.data.purge_user(user_id)
        logger.info("User %d purged by %d", user_id, actor.id)

    def delete_user(self, actor: User, user_id: int) -> None:
        """Anonymise the account but keep its votes."""
        target = self._target(actor, user_id)
        dropped = [m.id for m in target.auth_methods]
        target.name = DELETED_USER_NAME
        target.email = ""
        target.notify_cycle_end = False
        target.notify_vote_selection = False
        target.privilege = PrivilegeLevel.USER
        target.auth_methods = []
        self.data.update_user(target)
        for auth_id in dropped:
            self.data.delete_auth_method(auth_id)
        logger.info("User %d deleted by %d", user_id, actor.id)

    def ban_user(self, actor: User, user_id: int) -> None:
        self._target(actor, user_id)
        raise PolicyDisabledError("Banning users is not supported")

    def set_privilege(self, actor: User, user_id: int, level: PrivilegeLevel) -> None:
        if not actor.is_admin:
            raise NotFoundError("Page not found")
        target = self._target(actor, user_id)
        target.privilege = PrivilegeLevel(level)
        self.data.update_user(target)

    def issue_password_reset(self, actor: User, user_id: int) -> UrlKey:
        target = self._target(actor, user_id)
        if not target.has_auth_method(AuthType.LOCAL):
            raise ConflictError("User has no local login to reset")
        return self.auth_state.add_url_key(UrlKeyType.PASSWORD_RESET, user_id=target.id)

    # ─── URL keys ────────────────────────────────────────────────────────

    def admin_exists(self) -> bool:
        offset = 0
        while True:
            page = self.data.get_users(offset, _USER_PAGE)
            if any(u.is_admin for u in page):
                return True
            if len(page) < _USER_PAGE:
                return False
            offset += _USER_PAGE

    def bootstrap_admin(self) -> Optional[UrlKey]:
        """Print a one-time admin claim link when the site has no admin yet."""
        if self.admin_exists() or self.auth_state.has_url_key(UrlKeyType.ADMIN_AUTH):
            return None
        url_key = self.auth_state.add_url_key(UrlKeyType.ADMIN_AUTH)
        print(f"Claim admin: {self.site_config.host_url()}/auth/{url_key.url} Password: {url_key.key}", flush=True)
        return url_key

    def claim_url_key(
        self,
        session: MutableMapping,
        url: str,
        key: str,
        current_user: Optional[User] = None,
        new_password: str = "",
    ) -> tuple[UrlKeyType, User]:
        """Redeem an admin claim or password reset key.

        Raises:
            NotFoundError: Unknown url.
            UnauthorizedError: Wrong key, or an admin claim while logged out.
            FormError: Password reset without a new password.
        """
        url_key = self.auth_state.get_url_key(url)
        if url_key.type == UrlKeyType.ADMIN_AUTH:
            if current_user is None:
                raise UnauthorizedError("Log in before claiming admin rights")
            self.auth_state.consume_url_key(url, key)
            current_user.privilege = PrivilegeLevel.ADMIN
            self.data.update_user(current_user)
            logger.info("User %d claimed admin rights", current_user.id)
            return url_key.type, current_user

        if not new_password:
            raise FormError({"Password": "A new password is required"})
        self.auth_state.consume_url_key(url, key)
        user = self.data.get_user(url_key.user_id)
        local = user.get_auth_method(AuthType.LOCAL)
        if local is None:
            raise NotFoundError("User has no local login")
        local.password = self.hash_password(new_password)
        local.date = _next_date(local.date)
        self.data.update_auth_method(local)
        sessions.login(session, user, local)
        logger.info("Password reset completed for user %d", user.id)
        return url_key.type, user
