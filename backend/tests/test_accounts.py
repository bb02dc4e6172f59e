"""Tests for services/accounts.py and services/sessions.py."""

from urllib.parse import parse_qs, urlparse

import pytest

from conftest import MockResponse
from entities import DELETED_USER_NAME, AuthMethod, AuthType, Movie, PrivilegeLevel, UrlKeyType, User, utc_now
from error_handler import (
    ConflictError,
    FormError,
    InvalidInputError,
    NotFoundError,
    PolicyDisabledError,
    UnauthorizedError,
)
from services import sessions
from services.accounts import AccountCore
from services.site_config import (
    HOST_ADDRESS,
    LOCAL_SIGNUP_ENABLED,
    MIN_NAME_LENGTH,
    PASS_SALT,
    oauth_client_id_key,
    oauth_client_secret_key,
    oauth_enabled_key,
    oauth_signup_enabled_key,
)


@pytest.fixture
def accounts(data, site_config, auth_state):
    return AccountCore(data, site_config, auth_state)


class TestLocalAccounts:
    def test_signup_logs_in(self, accounts, data):
        session = {}
        user = accounts.signup_local(session, " alice ", "secret", "secret", "a@example.org")
        assert user.name == "alice"
        assert session[sessions.USER_ID_KEY] == user.id
        assert "Date_Local" in session
        assert sessions.get_session_user(data, session).id == user.id

    def test_signup_field_errors(self, accounts):
        with pytest.raises(FormError) as exc:
            accounts.signup_local({}, "ab", "secret", "other")
        assert set(exc.value.field_errors) == {"Username", "PasswordRepeat"}

    def test_signup_duplicate_name(self, accounts, make_user):
        make_user("alice")
        with pytest.raises(FormError) as exc:
            accounts.signup_local({}, "ALICE", "pw", "pw")
        assert "Username" in exc.value.field_errors

    def test_signup_reserved_name(self, accounts, site_config):
        site_config.set_int(MIN_NAME_LENGTH, 1)
        with pytest.raises(FormError):
            accounts.signup_local({}, DELETED_USER_NAME, "pw", "pw")

    def test_signup_disabled(self, accounts, site_config):
        site_config.set_bool(LOCAL_SIGNUP_ENABLED, False)
        with pytest.raises(PolicyDisabledError):
            accounts.signup_local({}, "alice", "pw", "pw")

    def test_login(self, accounts, make_user):
        make_user("alice", "secret")
        session = {}
        assert accounts.login_local(session, "Alice", "secret").name == "alice"
        with pytest.raises(UnauthorizedError):
            accounts.login_local({}, "alice", "wrong")

    def test_hash_depends_on_stored_salt(self, accounts, site_config):
        before = accounts.hash_password("pw")
        assert accounts.hash_password("pw") == before
        site_config.set_string(PASS_SALT, "rotated")
        assert accounts.hash_password("pw") != before

    def test_update_profile(self, accounts, make_user, data):
        user = make_user("alice")
        accounts.update_profile(user, " new@example.org ", True, False)
        stored = data.get_user(user.id)
        assert stored.email == "new@example.org"
        assert stored.notify_cycle_end and not stored.notify_vote_selection


class TestSessions:
    def test_logout_clears(self, accounts, make_user, data):
        make_user("alice", "secret")
        session = {}
        accounts.login_local(session, "alice", "secret")
        sessions.logout(session)
        assert sessions.try_session_user(data, session) is None

    def test_unknown_user(self, data):
        with pytest.raises(UnauthorizedError):
            sessions.get_session_user(data, {sessions.USER_ID_KEY: 404, "Date_Local": "X"})

    def test_missing_marker(self, make_user, data):
        user = make_user("alice")
        with pytest.raises(UnauthorizedError):
            sessions.get_session_user(data, {sessions.USER_ID_KEY: user.id})

    def test_marker_for_unbound_method(self, make_user, data):
        user = make_user("alice")
        with pytest.raises(UnauthorizedError):
            sessions.get_session_user(data, {sessions.USER_ID_KEY: user.id, "Date_Twitch": "X"})


class TestBindings:
    def test_last_method_cannot_be_removed(self, accounts, make_user, data):
        make_user("alice", "secret")
        session = {}
        user = accounts.login_local(session, "alice", "secret")
        with pytest.raises(ConflictError):
            accounts.remove_auth_method_from_user(session, user, AuthType.LOCAL)
        stored = data.get_user(user.id)
        assert stored.has_auth_method(AuthType.LOCAL)
        assert sessions.get_session_user(data, session).id == user.id

    def test_removing_current_method_moves_session(self, accounts, make_user, data):
        make_user("alice", "secret")
        session = {}
        user = accounts.login_local(session, "alice", "secret")
        accounts.add_auth_method_to_user(user, AuthMethod(type=AuthType.DISCORD, ext_id="d-1", date=utc_now()))

        user = accounts.remove_auth_method_from_user(session, data.get_user(user.id), AuthType.LOCAL)
        assert [m.type for m in user.auth_methods] == [AuthType.DISCORD]
        assert "Date_Local" not in session
        assert "Date_Discord" in session
        assert sessions.get_session_user(data, session).id == user.id

    def test_remove_unbound_method(self, accounts, make_user):
        user = make_user("alice")
        with pytest.raises(NotFoundError):
            accounts.remove_auth_method_from_user({}, user, AuthType.PATREON)

    def test_duplicate_binding(self, accounts, make_user):
        user = make_user("alice")
        with pytest.raises(ConflictError):
            accounts.add_auth_method_to_user(user, AuthMethod(type=AuthType.LOCAL, password="x"))

    def test_add_local_login(self, accounts, data):
        user = User(name="oauthonly", auth_methods=[AuthMethod(type=AuthType.TWITCH, ext_id="t-1")])
        data.add_user(user)
        session = {}
        accounts.add_local_login(session, user, "pw")
        assert accounts.login_local({}, "oauthonly", "pw").id == user.id
        assert "Date_Local" in session


class TestAdmin:
    def test_rights_below_mod_look_like_404(self, make_user):
        with pytest.raises(NotFoundError):
            AccountCore.check_admin_rights(None)
        with pytest.raises(NotFoundError):
            AccountCore.check_admin_rights(make_user("plain"))
        mod = make_user("moddy", privilege=PrivilegeLevel.MOD)
        assert AccountCore.check_admin_rights(mod) is mod

    def test_cannot_act_on_self_or_peer(self, accounts, make_user):
        mod = make_user("moddy", privilege=PrivilegeLevel.MOD)
        peer = make_user("other", privilege=PrivilegeLevel.MOD)
        with pytest.raises(ConflictError):
            accounts.delete_user(mod, mod.id)
        with pytest.raises(ConflictError):
            accounts.purge_user(mod, peer.id)

    def test_delete_user_anonymises_but_keeps_votes(self, accounts, make_user, data):
        admin = make_user("admin", privilege=PrivilegeLevel.ADMIN)
        target = make_user("victim", email="v@example.org")
        data.add_cycle()
        movie_id = data.add_movie(Movie(name="Kept", approved=True))
        data.add_vote(target.id, movie_id)

        accounts.delete_user(admin, target.id)
        stored = data.get_user(target.id)
        assert stored.name == DELETED_USER_NAME
        assert stored.email == ""
        assert stored.auth_methods == []
        assert data.user_voted_for_movie(target.id, movie_id)
        # the freed name can be taken again
        make_user("victim")

    def test_purge_user(self, accounts, make_user, data):
        admin = make_user("admin", privilege=PrivilegeLevel.ADMIN)
        target = make_user("victim")
        accounts.purge_user(admin, target.id)
        with pytest.raises(NotFoundError):
            data.get_user(target.id)

    def test_ban_not_supported(self, accounts, make_user):
        admin = make_user("admin", privilege=PrivilegeLevel.ADMIN)
        target = make_user("victim")
        with pytest.raises(PolicyDisabledError):
            accounts.ban_user(admin, target.id)

    def test_set_privilege_is_admin_only(self, accounts, make_user, data):
        admin = make_user("admin", privilege=PrivilegeLevel.ADMIN)
        mod = make_user("moddy", privilege=PrivilegeLevel.MOD)
        target = make_user("user")
        with pytest.raises(NotFoundError):
            accounts.set_privilege(mod, target.id, PrivilegeLevel.MOD)
        accounts.set_privilege(admin, target.id, PrivilegeLevel.MOD)
        assert data.get_user(target.id).privilege == PrivilegeLevel.MOD


class TestUrlKeys:
    def test_password_reset_invalidates_old_session(self, accounts, make_user, data):
        admin = make_user("admin", privilege=PrivilegeLevel.ADMIN)
        make_user("alice", "old")
        old_session = {}
        user = accounts.login_local(old_session, "alice", "old")
        old_marker = old_session["Date_Local"]

        url_key = accounts.issue_password_reset(admin, user.id)
        new_session = {}
        key_type, _ = accounts.claim_url_key(new_session, url_key.url, url_key.key, new_password="new")

        assert key_type == UrlKeyType.PASSWORD_RESET
        assert new_session["Date_Local"] != old_marker
        with pytest.raises(UnauthorizedError):
            sessions.get_session_user(data, old_session)
        assert sessions.get_session_user(data, new_session).id == user.id
        assert accounts.login_local({}, "alice", "new").id == user.id
        with pytest.raises(UnauthorizedError):
            accounts.login_local({}, "alice", "old")

    def test_reset_requires_password(self, accounts, make_user):
        admin = make_user("admin", privilege=PrivilegeLevel.ADMIN)
        user = make_user("alice")
        url_key = accounts.issue_password_reset(admin, user.id)
        with pytest.raises(FormError):
            accounts.claim_url_key({}, url_key.url, url_key.key)
        # key was not consumed
        accounts.claim_url_key({}, url_key.url, url_key.key, new_password="pw")

    def test_reset_needs_local_login(self, accounts, make_user, data):
        admin = make_user("admin", privilege=PrivilegeLevel.ADMIN)
        user = User(name="oauthonly", auth_methods=[AuthMethod(type=AuthType.TWITCH, ext_id="t-1")])
        data.add_user(user)
        with pytest.raises(ConflictError):
            accounts.issue_password_reset(admin, user.id)

    def test_bootstrap_prints_claim_link_once(self, accounts, site_config, capsys):
        site_config.set_string(HOST_ADDRESS, "polls.example.org")
        url_key = accounts.bootstrap_admin()
        out = capsys.readouterr().out
        assert f"http://polls.example.org/auth/{url_key.url}" in out
        assert url_key.key in out
        assert accounts.bootstrap_admin() is None

    def test_bootstrap_skipped_when_admin_exists(self, accounts, make_user):
        make_user("admin", privilege=PrivilegeLevel.ADMIN)
        assert accounts.bootstrap_admin() is None

    def test_claim_admin(self, accounts, make_user, data):
        url_key = accounts.bootstrap_admin()
        user = make_user("alice")
        with pytest.raises(UnauthorizedError):
            accounts.claim_url_key({}, url_key.url, url_key.key)
        with pytest.raises(UnauthorizedError):
            accounts.claim_url_key({}, url_key.url, "WRONG", current_user=user)
        key_type, claimed = accounts.claim_url_key({}, url_key.url, url_key.key, current_user=user)
        assert key_type == UrlKeyType.ADMIN_AUTH
        assert data.get_user(user.id).privilege == PrivilegeLevel.ADMIN
        with pytest.raises(NotFoundError):
            accounts.claim_url_key({}, url_key.url, url_key.key, current_user=user)


def _enable_oauth(site_config, provider, signup=True):
    site_config.set_bool(oauth_enabled_key(provider), True)
    site_config.set_bool(oauth_signup_enabled_key(provider), signup)
    site_config.set_string(oauth_client_id_key(provider), "client-id")
    site_config.set_string(oauth_client_secret_key(provider), "client-secret")


def _state(url):
    return parse_qs(urlparse(url).query)["state"][0]


DISCORD_TOKEN = "https://discord.com/api/oauth2/token"
DISCORD_USER = "https://discord.com/api/users/@me"


class TestOAuth:
    def test_disabled_provider(self, accounts):
        with pytest.raises(PolicyDisabledError):
            accounts.oauth_begin(AuthType.DISCORD, "login")

    def test_unknown_action(self, accounts, site_config):
        _enable_oauth(site_config, "Discord")
        with pytest.raises(InvalidInputError):
            accounts.oauth_begin(AuthType.DISCORD, "steal")

    def test_signup_needs_signup_switch(self, accounts, site_config):
        _enable_oauth(site_config, "Discord", signup=False)
        with pytest.raises(PolicyDisabledError):
            accounts.oauth_begin(AuthType.DISCORD, "signup")

    def test_authorize_url(self, accounts, site_config):
        _enable_oauth(site_config, "Discord")
        site_config.set_string(HOST_ADDRESS, "https://polls.example.org/")
        url = accounts.oauth_begin(AuthType.DISCORD, "login")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://discord.com/api/oauth2/authorize?")
        assert query["client_id"] == ["client-id"]
        assert query["redirect_uri"] == ["https://polls.example.org/oauth/discord/callback"]
        assert query["scope"] == ["email identify"]
        assert query["state"][0].startswith("login_")

    def test_signup_then_login(self, accounts, site_config, data, mock_requests):
        _enable_oauth(site_config, "Discord")
        mock_requests["post"][DISCORD_TOKEN] = MockResponse({"access_token": "AT1", "refresh_token": "RT1"})
        mock_requests["get"][DISCORD_USER] = MockResponse({"id": "d-42", "username": "dora", "email": "d@x.org"})

        session = {}
        state = _state(accounts.oauth_begin(AuthType.DISCORD, "signup"))
        action, user = accounts.oauth_callback(session, AuthType.DISCORD, state, "code-1")
        assert action == "signup"
        assert user.name == "dora"
        assert sessions.get_session_user(data, session).id == user.id

        bound_since = data.get_user(user.id).get_auth_method(AuthType.DISCORD).date
        mock_requests["post"][DISCORD_TOKEN] = MockResponse({"access_token": "AT2", "refresh_token": "RT2"})
        login_session = {}
        state = _state(accounts.oauth_begin(AuthType.DISCORD, "login"))
        action, again = accounts.oauth_callback(login_session, AuthType.DISCORD, state, "code-2")
        assert action == "login"
        assert again.id == user.id
        assert data.get_user(user.id).get_auth_method(AuthType.DISCORD).access_token == "AT2"
        assert sessions.get_session_user(data, login_session).id == user.id
        # A provider login refreshes tokens only; the signup session stays valid
        assert data.get_user(user.id).get_auth_method(AuthType.DISCORD).date == bound_since
        assert sessions.get_session_user(data, session).id == user.id

        method, url, kwargs = [c for c in mock_requests["calls"] if c[0] == "post"][0]
        assert kwargs["data"]["grant_type"] == "authorization_code"
        assert kwargs["data"]["redirect_uri"].endswith("/oauth/discord/callback")

    def test_signup_with_bound_account_conflicts(self, accounts, site_config, data, mock_requests):
        _enable_oauth(site_config, "Discord")
        data.add_user(User(name="first", auth_methods=[AuthMethod(type=AuthType.DISCORD, ext_id="d-42")]))
        mock_requests["post"][DISCORD_TOKEN] = MockResponse({"access_token": "AT"})
        mock_requests["get"][DISCORD_USER] = MockResponse({"id": "d-42", "username": "dora"})
        state = _state(accounts.oauth_begin(AuthType.DISCORD, "signup"))
        with pytest.raises(ConflictError):
            accounts.oauth_callback({}, AuthType.DISCORD, state, "code")

    def test_login_for_unknown_account(self, accounts, site_config, mock_requests):
        _enable_oauth(site_config, "Discord")
        mock_requests["post"][DISCORD_TOKEN] = MockResponse({"access_token": "AT"})
        mock_requests["get"][DISCORD_USER] = MockResponse({"id": "d-77", "username": "nobody"})
        state = _state(accounts.oauth_begin(AuthType.DISCORD, "login"))
        with pytest.raises(NotFoundError):
            accounts.oauth_callback({}, AuthType.DISCORD, state, "code")

    def test_add_twitch_to_local_user(self, accounts, site_config, make_user, data, mock_requests):
        _enable_oauth(site_config, "Twitch", signup=False)
        user = make_user("alice")
        mock_requests["post"]["https://id.twitch.tv/oauth2/token"] = MockResponse({"access_token": "TT"})
        mock_requests["get"]["https://api.twitch.tv/helix/users"] = MockResponse(
            {"data": [{"id": "t-5", "display_name": "Alice", "email": "a@x.org"}]}
        )
        state = _state(accounts.oauth_begin(AuthType.TWITCH, "add"))
        action, _ = accounts.oauth_callback({}, AuthType.TWITCH, state, "code", current_user=user)
        assert action == "add"
        stored = data.get_user(user.id)
        assert {m.type for m in stored.auth_methods} == {AuthType.LOCAL, AuthType.TWITCH}
        assert stored.get_auth_method(AuthType.TWITCH).ext_id == "t-5"

        _, _, kwargs = [c for c in mock_requests["calls"] if c[0] == "get"][0]
        assert kwargs["headers"]["Client-Id"] == "client-id"
        assert kwargs["headers"]["Authorization"] == "Bearer TT"

    def test_replayed_state_is_rejected(self, accounts, site_config, mock_requests):
        _enable_oauth(site_config, "Discord")
        mock_requests["post"][DISCORD_TOKEN] = MockResponse({"access_token": "AT"})
        mock_requests["get"][DISCORD_USER] = MockResponse({"id": "d-1", "username": "dora"})
        state = _state(accounts.oauth_begin(AuthType.DISCORD, "signup"))
        accounts.oauth_callback({}, AuthType.DISCORD, state, "code")
        with pytest.raises(UnauthorizedError):
            accounts.oauth_callback({}, AuthType.DISCORD, state, "code")

    def test_provider_failure(self, accounts, site_config, mock_requests):
        _enable_oauth(site_config, "Discord")
        mock_requests["post"][DISCORD_TOKEN] = MockResponse({"error": "invalid_grant"}, status_code=400)
        state = _state(accounts.oauth_begin(AuthType.DISCORD, "login"))
        with pytest.raises(UnauthorizedError):
            accounts.oauth_callback({}, AuthType.DISCORD, state, "bad-code")
