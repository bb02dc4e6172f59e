"""JSON shapes of the domain entities served by the blueprints."""

from typing import Optional

from flask import request

from entities import Cycle, Link, Movie, Tag, User


def _time(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def link_to_dict(link: Link) -> dict:
    return {"id": link.id, "url": link.url, "type": link.type.value, "is_source": link.is_source}


def tag_to_dict(tag: Tag) -> dict:
    return {"id": tag.id, "name": tag.name}


def cycle_to_dict(cycle: Optional[Cycle], with_watched: bool = False) -> Optional[dict]:
    if cycle is None:
        return None
    out = {
        "id": cycle.id,
        "planned_end": _time(cycle.planned_end),
        "ended": _time(cycle.ended),
    }
    if with_watched:
        out["watched"] = [movie_to_dict(m) for m in cycle.watched]
    return out


def user_to_dict(user: Optional[User], private: bool = False) -> Optional[dict]:
    if user is None:
        return None
    out = {"id": user.id, "name": user.name, "privilege": int(user.privilege)}
    if private:
        out.update({
            "email": user.email,
            "notify_cycle_end": user.notify_cycle_end,
            "notify_vote_selection": user.notify_vote_selection,
            "auth_methods": [m.type.value for m in user.auth_methods],
        })
    return out


def movie_to_dict(movie: Movie) -> dict:
    return {
        "id": movie.id,
        "name": movie.name,
        "description": movie.description,
        "remarks": movie.remarks,
        "duration": movie.duration,
        "rating": movie.rating,
        "poster": movie.poster,
        "links": [link_to_dict(link) for link in movie.links],
        "tags": [tag_to_dict(tag) for tag in movie.tags],
        "added_by": user_to_dict(movie.added_by),
        "cycle_added": movie.cycle_added.id if movie.cycle_added else None,
        "cycle_watched": movie.cycle_watched.id if movie.cycle_watched else None,
        "removed": movie.removed,
        "approved": movie.approved,
        "votes": movie.vote_count,
    }


def form_data() -> dict:
    """Submitted form values, from a form post or a JSON body."""
    if request.form:
        return request.form.to_dict()
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_arg(name: str, default: int) -> int:
    """Integer query parameter with a fallback for missing or junk values."""
    value = request.args.get(name, type=int)
    return default if value is None else value
