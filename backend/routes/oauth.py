"""OAuth routes -- /oauth/<provider> and /oauth/<provider>/callback."""

import logging

from flask import Blueprint, g, redirect, request, session

from error_handler import InvalidInputError, NotFoundError
from extensions import get_services
from services.oauth import provider_by_slug

bp = Blueprint("oauth", __name__, url_prefix="/oauth")
logger = logging.getLogger(__name__)


def _provider(slug: str):
    try:
        return provider_by_slug(slug)
    except KeyError:
        raise NotFoundError(f"Unknown OAuth provider {slug!r}") from None


@bp.route("/<provider>", methods=["GET"])
def begin(provider):
    """Redirect to the provider; ``?action=login|signup|add`` picks the flow."""
    action = request.args.get("action", "login")
    if action == "add" and g.get("user") is None:
        return redirect("/user/login", code=302)
    url = get_services().accounts.oauth_begin(_provider(provider).auth_type, action)
    return redirect(url, code=302)


@bp.route("/<provider>/callback", methods=["GET"])
def callback(provider):
    auth_type = _provider(provider).auth_type
    if request.args.get("error"):
        logger.info("%s authorization declined: %s", auth_type.value, request.args.get("error"))
        return redirect("/user/login", code=302)
    state = request.args.get("state", "")
    code = request.args.get("code", "")
    if not state or not code:
        raise InvalidInputError("Missing OAuth state or code")
    action, _ = get_services().accounts.oauth_callback(
        session, auth_type, state, code, current_user=g.get("user")
    )
    return redirect("/user" if action == "add" else "/", code=302)
