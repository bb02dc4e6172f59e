"""Account routes -- /user, /user/login, /user/logout, /user/new, /user/remove/*, /auth/<url>."""

import logging

from flask import Blueprint, g, jsonify, request, session

from auth import login_required
from entities import AuthType, OAUTH_TYPES
from error_handler import NotFoundError
from extensions import get_services
from routes.serializers import form_data, movie_to_dict, user_to_dict
from services import sessions
from services.site_config import LOCAL_SIGNUP_ENABLED

bp = Blueprint("users", __name__)
logger = logging.getLogger(__name__)


def _login_options() -> dict:
    svc = get_services()
    return {
        "local_signup": svc.site_config.get_bool(LOCAL_SIGNUP_ENABLED),
        "oauth_login": [t.value for t in OAUTH_TYPES if svc.accounts.oauth_enabled(t)],
        "oauth_signup": [t.value for t in OAUTH_TYPES if svc.accounts.oauth_signup_enabled(t)],
    }


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("on", "true", "1", "yes")


@bp.route("/user", methods=["GET"])
@login_required
def user_page():
    """The caller's profile, votes and nominations."""
    svc = get_services()
    active, watched = svc.votes.user_votes(g.user.id)
    return jsonify({
        "user": user_to_dict(g.user, private=True),
        "available_votes": svc.votes.available_votes(g.user.id),
        "active_votes": [movie_to_dict(m) for m in active],
        "watched_votes": [movie_to_dict(m) for m in watched],
        "movies": [movie_to_dict(m) for m in svc.data.get_user_movies(g.user.id)],
        "oauth_available": [t.value for t in OAUTH_TYPES if svc.accounts.oauth_enabled(t)],
    })


@bp.route("/user", methods=["POST"])
@login_required
def user_update():
    """Update email and notification flags, or set a local password."""
    svc = get_services()
    form = form_data()
    if form.get("Password"):
        svc.accounts.add_local_login(session, g.user, form["Password"])
    else:
        svc.accounts.update_profile(
            g.user,
            form.get("Email", g.user.email),
            _truthy(form.get("NotifyEnd", False)),
            _truthy(form.get("NotifySelected", False)),
        )
    return jsonify({"user": user_to_dict(g.user, private=True)})


@bp.route("/user/login", methods=["GET"])
def login_page():
    return jsonify({"user": user_to_dict(g.get("user")), **_login_options()})


@bp.route("/user/login", methods=["POST"])
def login():
    form = form_data()
    user = get_services().accounts.login_local(session, form.get("Username", ""), form.get("Password", ""))
    logger.info("User %d logged in", user.id)
    return jsonify({"user": user_to_dict(user)})


@bp.route("/user/logout", methods=["GET", "POST"])
def logout():
    sessions.logout(session)
    return jsonify({"status": "logged out"})


@bp.route("/user/new", methods=["GET"])
def signup_page():
    return jsonify(_login_options())


@bp.route("/user/new", methods=["POST"])
def signup():
    form = form_data()
    user = get_services().accounts.signup_local(
        session,
        form.get("Username", ""),
        form.get("Password", ""),
        form.get("PasswordRepeat", ""),
        form.get("Email", ""),
    )
    return jsonify({"user": user_to_dict(user)}), 201


@bp.route("/user/remove/<method>", methods=["GET", "POST"])
@login_required
def remove_auth(method):
    """Remove a login binding; refused for the last one."""
    auth_type = next((t for t in AuthType if t.value.lower() == method.lower()), None)
    if auth_type is None:
        raise NotFoundError(f"Unknown login method {method!r}")
    user = get_services().accounts.remove_auth_method_from_user(session, g.user, auth_type)
    return jsonify({"user": user_to_dict(user, private=True)})


@bp.route("/auth/<url>", methods=["GET"])
def url_key_page(url):
    """What redeeming this key does; the key itself is not revealed."""
    url_key = get_services().auth_state.get_url_key(url)
    return jsonify({"type": url_key.type.value})


@bp.route("/auth/<url>", methods=["POST"])
def url_key_claim(url):
    form = form_data()
    key_type, user = get_services().accounts.claim_url_key(
        session,
        url,
        form.get("Key") or request.args.get("key", ""),
        current_user=g.get("user"),
        new_password=form.get("Password", ""),
    )
    return jsonify({"type": key_type.value, "user": user_to_dict(user)})
