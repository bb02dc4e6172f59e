"""Public movie routes -- /, /movie/<id>, /vote/<id>, /add, /history."""

import logging

from flask import Blueprint, g, jsonify, request

from auth import login_required
from error_handler import NotFoundError
from extensions import get_services
from routes.serializers import cycle_to_dict, form_data, int_arg, movie_to_dict
from services.nominations import list_movies
from services.site_config import (
    FORMFILL_ENABLED,
    JIKAN_ENABLED,
    MAX_DESCRIPTION_LENGTH,
    MAX_LINK_LENGTH,
    MAX_REMARKS_LENGTH,
    MAX_TITLE_LENGTH,
    NOTICE_BANNER,
    TMDB_ENABLED,
)

bp = Blueprint("movies", __name__)
logger = logging.getLogger(__name__)


@bp.route("/", methods=["GET"])
def index():
    """Active movies of the open cycle, filtered by ``?search=``."""
    svc = get_services()
    user = g.get("user")
    query = request.args.get("search", "")
    movies = list_movies(svc.data, query, include_unapproved=bool(user and user.is_mod))
    result = {
        "cycle": cycle_to_dict(svc.cycles.current_cycle()),
        "notice": svc.site_config.get_string(NOTICE_BANNER),
        "voting_enabled": svc.votes.voting_enabled(),
        "search": query,
        "movies": [movie_to_dict(m) for m in movies],
    }
    if user is not None:
        active, _ = svc.votes.user_votes(user.id)
        result["available_votes"] = svc.votes.available_votes(user.id)
        result["voted"] = [m.id for m in active]
    return jsonify(result)


@bp.route("/movie/<int:movie_id>", methods=["GET"])
def movie_info(movie_id):
    svc = get_services()
    user = g.get("user")
    movie = svc.data.get_movie(movie_id)
    if (movie.removed or not movie.approved) and not (user and user.is_mod):
        raise NotFoundError(f"Movie with ID {movie_id} not found")
    result = {"movie": movie_to_dict(movie)}
    if user is not None:
        result["voted"] = svc.data.user_voted_for_movie(user.id, movie_id)
    return jsonify(result)


@bp.route("/vote/<int:movie_id>", methods=["GET", "POST"])
@login_required
def vote(movie_id):
    """Toggle the caller's vote for a movie."""
    svc = get_services()
    added = svc.votes.toggle_vote(g.user.id, movie_id)
    return jsonify({
        "movie_id": movie_id,
        "voted": added,
        "available_votes": svc.votes.available_votes(g.user.id),
    })


@bp.route("/add", methods=["GET"])
@login_required
def add_form():
    """Limits and switches the nomination form needs to render."""
    cfg = get_services().site_config
    return jsonify({
        "formfill_enabled": cfg.get_bool(FORMFILL_ENABLED),
        "autofill_enabled": cfg.get_bool(JIKAN_ENABLED) or cfg.get_bool(TMDB_ENABLED),
        "max_title_length": cfg.get_int(MAX_TITLE_LENGTH),
        "max_description_length": cfg.get_int(MAX_DESCRIPTION_LENGTH),
        "max_link_length": cfg.get_int(MAX_LINK_LENGTH),
        "max_remarks_length": cfg.get_int(MAX_REMARKS_LENGTH),
    })


@bp.route("/add", methods=["POST"])
@login_required
def add_movie():
    """Nominate a movie. Field errors come back as FORM_INVALID."""
    svc = get_services()
    poster = request.files.get("PosterFile")
    movie_id = svc.nominations.add_movie(
        form_data(),
        g.user,
        poster_file=poster.stream if poster and poster.filename else None,
    )
    return jsonify({"id": movie_id, "location": f"/movie/{movie_id}"}), 201


@bp.route("/history", methods=["GET"])
def history():
    """Finished cycles with their watched movies, newest first."""
    svc = get_services()
    start = int_arg("start", 0)
    count = int_arg("count", 100)
    cycles = svc.cycles.past_cycles(start, count)
    return jsonify({
        "start": max(start, 0),
        "count": count,
        "cycles": [cycle_to_dict(c, with_watched=True) for c in cycles],
    })
