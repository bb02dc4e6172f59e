"""Admin routes -- /admin, /admin/config, /admin/cycles, /admin/cyclepost, /admin/users, /admin/user/<id>, /admin/movies, /admin/movie/<id>.

Everything here requires moderator rights; other visitors get a 404.
"""

import logging

from flask import Blueprint, g, jsonify, request

from auth import admin_required
from entities import PrivilegeLevel, sort_movies_by_name
from error_handler import InvalidInputError
from extensions import get_services
from routes.serializers import cycle_to_dict, form_data, int_arg, movie_to_dict, user_to_dict
from services.cycles import parse_end_date
from services.nominations import list_movies
from services.site_config import CONFIG_KEYS

bp = Blueprint("admin", __name__, url_prefix="/admin")
logger = logging.getLogger(__name__)

EDITABLE_MOVIE_FIELDS = ("Title", "Description", "Remarks", "Links")


def _int_field(form: dict, name: str) -> int:
    try:
        return int(str(form.get(name, "")).strip())
    except ValueError:
        raise InvalidInputError(f"{name} must be a number") from None


@bp.route("", methods=["GET"])
@admin_required
def overview():
    svc = get_services()
    return jsonify({
        "user": user_to_dict(g.user),
        "cycle": cycle_to_dict(svc.cycles.current_cycle()),
        "closing": svc.cycles.is_closing(),
        "voting_enabled": svc.votes.voting_enabled(),
    })


@bp.route("/config", methods=["GET"])
@admin_required
def get_config():
    """Editable site config; secrets are blanked."""
    return jsonify({"config": get_services().site_config.public_values()})


@bp.route("/config", methods=["POST"])
@admin_required
def save_config():
    """Update config keys. Blank values for secrets leave them unchanged."""
    cfg = get_services().site_config
    updated = []
    for name, value in form_data().items():
        key = CONFIG_KEYS.get(name)
        if key is None:
            continue
        if key.private and value == "":
            continue
        cfg.set(name, value)
        updated.append(name)
    logger.info("Config updated by user %d: %s", g.user.id, ", ".join(updated) or "nothing")
    return jsonify({"updated": updated, "config": cfg.public_values()})


@bp.route("/cycles", methods=["GET"])
@admin_required
def cycles():
    svc = get_services()
    return jsonify({
        "current": cycle_to_dict(svc.cycles.current_cycle()),
        "closing": svc.cycles.is_closing(),
        "past": [
            cycle_to_dict(c, with_watched=True)
            for c in svc.cycles.past_cycles(int_arg("start", 0), int_arg("count", 100))
        ],
    })


@bp.route("/cycles", methods=["POST"])
@admin_required
def cycles_action():
    """Cycle actions.

    ``start`` opens a cycle (optional PlannedEnd), ``update`` moves the
    PlannedEnd of the open cycle and ``decay`` drops old votes (Age).
    """
    svc = get_services()
    form = form_data()
    action = form.get("action", "")
    if action == "start":
        cycle_id = svc.cycles.start_cycle(parse_end_date(form.get("PlannedEnd", "")))
        return jsonify({"started": cycle_id}), 201
    if action == "update":
        planned_end = parse_end_date(form.get("PlannedEnd", ""))
        if planned_end is None:
            raise InvalidInputError("PlannedEnd is required")
        return jsonify({"cycle": cycle_to_dict(svc.cycles.set_planned_end(planned_end))})
    if action == "decay":
        age = _int_field(form, "Age")
        svc.cycles.decay_votes(age)
        return jsonify({"decayed": age})
    raise InvalidInputError(f"Unknown cycle action {action!r}")


@bp.route("/cyclepost", methods=["GET"])
@admin_required
def cycle_close_begin():
    """Close stage one: disable voting and list the candidates."""
    candidates = get_services().cycles.begin_close()
    return jsonify({"candidates": [movie_to_dict(m) for m in candidates]})


@bp.route("/cyclepost", methods=["POST"])
@admin_required
def cycle_close_finish():
    """Close stage two (``action=finish``, ``watched`` ids, ``EndDate``) or cancel."""
    svc = get_services()
    if request.form:
        action = request.form.get("action", "finish")
        winners = request.form.getlist("watched")
        end_date = request.form.get("EndDate", "")
    else:
        body = form_data()
        action = body.get("action", "finish")
        winners = body.get("watched", [])
        end_date = body.get("EndDate", "")

    if action == "cancel":
        svc.cycles.cancel_close()
        return jsonify({"cancelled": True})
    if action != "finish":
        raise InvalidInputError(f"Unknown cycle action {action!r}")
    try:
        winner_ids = [int(w) for w in winners]
    except (TypeError, ValueError):
        raise InvalidInputError("Watched movie ids must be numbers") from None
    cycle = svc.cycles.finish_close(winner_ids, parse_end_date(end_date))
    return jsonify({"cycle": cycle_to_dict(cycle, with_watched=True)})


@bp.route("/users", methods=["GET"])
@admin_required
def users():
    start = max(int_arg("start", 0), 0)
    count = int_arg("count", 100)
    page = get_services().data.get_users(start, count)
    return jsonify({"start": start, "count": count, "users": [user_to_dict(u, private=True) for u in page]})


@bp.route("/user/<int:user_id>", methods=["GET"])
@admin_required
def user_details(user_id):
    svc = get_services()
    user = svc.data.get_user(user_id)
    active, watched = svc.votes.user_votes(user_id)
    return jsonify({
        "user": user_to_dict(user, private=True),
        "active_votes": [movie_to_dict(m) for m in active],
        "watched_votes": [movie_to_dict(m) for m in watched],
        "movies": [movie_to_dict(m) for m in svc.data.get_user_movies(user_id)],
    })


@bp.route("/user/<int:user_id>", methods=["POST"])
@admin_required
def user_action(user_id):
    """``action`` is one of purge, delete, ban, privilege or password."""
    accounts = get_services().accounts
    form = form_data()
    action = form.get("action", "")
    if action == "purge":
        accounts.purge_user(g.user, user_id)
    elif action == "delete":
        accounts.delete_user(g.user, user_id)
    elif action == "ban":
        accounts.ban_user(g.user, user_id)
    elif action == "privilege":
        level = _int_field(form, "Privilege")
        if level not in {int(p) for p in PrivilegeLevel}:
            raise InvalidInputError(f"Unknown privilege level {level}")
        accounts.set_privilege(g.user, user_id, PrivilegeLevel(level))
    elif action == "password":
        url_key = accounts.issue_password_reset(g.user, user_id)
        return jsonify({"url": f"/auth/{url_key.url}", "key": url_key.key})
    else:
        raise InvalidInputError(f"Unknown user action {action!r}")
    return jsonify({"user_id": user_id, "action": action})


@bp.route("/movies", methods=["GET"])
@admin_required
def movies():
    """All active movies, unapproved ones included."""
    found = list_movies(get_services().data, request.args.get("search", ""), include_unapproved=True)
    return jsonify({"movies": [movie_to_dict(m) for m in sort_movies_by_name(found)]})


@bp.route("/movie/<int:movie_id>", methods=["GET"])
@admin_required
def movie_details(movie_id):
    return jsonify({"movie": movie_to_dict(get_services().data.get_movie(movie_id))})


@bp.route("/movie/<int:movie_id>", methods=["POST"])
@admin_required
def movie_action(movie_id):
    """``action`` is approve, remove or edit (Title, Description, Remarks, Links, PosterFile)."""
    svc = get_services()
    data = svc.data
    form = form_data()
    action = form.get("action", "")
    if action == "edit":
        fields = {k: v for k, v in form.items() if k in EDITABLE_MOVIE_FIELDS}
        poster = request.files.get("PosterFile")
        poster_file = poster.stream if poster and poster.filename else None
        svc.nominations.edit_movie(movie_id, fields, poster_file=poster_file)
    elif action == "approve":
        movie = data.get_movie(movie_id)
        movie.approved = True
        data.update_movie(movie)
    elif action == "remove":
        data.remove_movie(movie_id)
    else:
        raise InvalidInputError(f"Unknown movie action {action!r}")
    logger.info("Movie %d: %s by user %d", movie_id, action, g.user.id)
    return jsonify({"movie": movie_to_dict(data.get_movie(movie_id))})
