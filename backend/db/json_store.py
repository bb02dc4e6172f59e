"""Document backend: the whole data set in one JSON file.

Layout on disk (all references are ids)::

    {
      "Cycles":      {"1": {"Id", "PlannedEnd", "Ended"}},
      "Movies":      {"1": {"Id", "Name", "Links": [ids], "Tags": [ids],
                            "CycleAddedId", "CycleWatchedId", "AddedBy", ...}},
      "Users":       {"1": {"Id", "Name", "AuthMethods": [ids], "Privilege", ...}},
      "Tags":        {"1": {"Id", "Name"}},
      "Links":       {"1": {"Id", "Url", "Type", "IsSource"}},
      "AuthMethods": {"1": {"Id", "Type", "ExtId", "Password", "Date", ...}},
      "Votes":       [{"UserId", "MovieId", "CycleId"}],
      "Settings":    {"Key": {"Type": 0|1|2, "Value": ...}}
    }

One readers-writer lock covers every operation. Mutations rewrite the
file through a temp file and ``os.replace``; when that fails the in-memory
state is reloaded from disk so memory and file never diverge.
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from db import register_backend
from db.connector import DataConnector
from db.rwlock import RWLock
from entities import (
    DELETED_USER_NAME,
    AuthMethod,
    AuthType,
    ConfigValue,
    Cycle,
    Link,
    LinkType,
    Movie,
    PrivilegeLevel,
    Tag,
    User,
    Vote,
    filter_movies_by_tags,
    normalize_movie_name,
    parse_search_query,
    round_time,
)
from error_handler import (
    ConflictError,
    DatabaseError,
    NoValueError,
    NotFoundError,
    PolicyDisabledError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _dump_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return round_time(value).strftime(_TIME_FORMAT)


def _load_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return round_time(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _empty_document() -> dict:
    return {
        "Cycles": {},
        "Movies": {},
        "Users": {},
        "Tags": {},
        "Links": {},
        "AuthMethods": {},
        "Votes": [],
        "Settings": {},
    }


@register_backend("json")
class JsonConnector(DataConnector):
    """DataConnector over a single JSON document."""

    def __init__(self, filename: str):
        self.filename = filename
        self._lock = RWLock()
        self._cycles: dict[int, dict] = {}
        self._movies: dict[int, dict] = {}
        self._users: dict[int, dict] = {}
        self._tags: dict[int, dict] = {}
        self._links: dict[int, dict] = {}
        self._auth_methods: dict[int, dict] = {}
        self._votes: list[dict] = []
        self._settings: dict[str, ConfigValue] = {}

        with self._lock.write():
            if os.path.exists(filename):
                self._load()
                logger.info("Loaded JSON data from %s", filename)
            else:
                logger.info("Creating new JSON data file %s", filename)
                self._commit()

    @contextmanager
    def _transaction(self):
        """Exclusive section for a mutation; memory is restored from disk on error."""
        with self._lock.write():
            try:
                yield
            except Exception:
                if os.path.exists(self.filename):
                    self._load()
                raise

    # ─── Persistence ─────────────────────────────────────────────────────

    def _load(self) -> None:
        try:
            with open(self.filename, encoding="utf-8") as f:
                raw = f.read()
        except OSError as exc:
            raise DatabaseError(f"Unable to read {self.filename}: {exc}") from exc

        doc = _empty_document()
        if raw.strip():
            try:
                doc.update(json.loads(raw))
            except json.JSONDecodeError as exc:
                raise DatabaseError(f"Corrupt data file {self.filename}: {exc}") from exc

        def _by_id(section: str) -> dict[int, dict]:
            return {int(k): v for k, v in (doc.get(section) or {}).items()}

        self._cycles = _by_id("Cycles")
        self._movies = _by_id("Movies")
        self._users = _by_id("Users")
        self._tags = _by_id("Tags")
        self._links = _by_id("Links")
        self._auth_methods = _by_id("AuthMethods")
        self._votes = list(doc.get("Votes") or [])
        self._settings = {
            key: ConfigValue.from_json(val) for key, val in (doc.get("Settings") or {}).items()
        }

    def _document(self) -> dict:
        return {
            "Cycles": {str(k): v for k, v in sorted(self._cycles.items())},
            "Movies": {str(k): v for k, v in sorted(self._movies.items())},
            "Users": {str(k): v for k, v in sorted(self._users.items())},
            "Tags": {str(k): v for k, v in sorted(self._tags.items())},
            "Links": {str(k): v for k, v in sorted(self._links.items())},
            "AuthMethods": {str(k): v for k, v in sorted(self._auth_methods.items())},
            "Votes": self._votes,
            "Settings": {k: v.to_json() for k, v in sorted(self._settings.items())},
        }

    def _save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.filename))
        os.makedirs(directory, exist_ok=True)
        data = json.dumps(self._document(), indent=4, sort_keys=False)
        fd, tmp_path = tempfile.mkstemp(prefix=".data-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.filename)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _commit(self) -> None:
        """Write the document; on failure restore memory from the last good file."""
        try:
            self._save()
        except OSError as exc:
            logger.error("Unable to save %s: %s", self.filename, exc)
            if os.path.exists(self.filename):
                self._load()
            raise DatabaseError(f"Unable to save data file: {exc}") from exc

    # ─── Record helpers (lock must be held) ──────────────────────────────

    @staticmethod
    def _next_id(records: dict[int, dict]) -> int:
        return max(records, default=0) + 1

    def _current_cycle_record(self) -> Optional[dict]:
        for rec in self._cycles.values():
            if not rec.get("Ended"):
                return rec
        return None

    def _cycle(self, cycle_id: int, with_watched: bool = False) -> Optional[Cycle]:
        rec = self._cycles.get(cycle_id)
        if rec is None:
            return None
        cycle = Cycle(
            id=rec["Id"],
            planned_end=_load_time(rec.get("PlannedEnd")),
            ended=_load_time(rec.get("Ended")),
        )
        if with_watched:
            cycle.watched = [
                self._movie(mid, cycle_watched=cycle)
                for mid, m in sorted(self._movies.items())
                if m.get("CycleWatchedId") == cycle_id
            ]
        return cycle

    def _tag(self, tag_id: int) -> Optional[Tag]:
        rec = self._tags.get(tag_id)
        return Tag(id=rec["Id"], name=rec["Name"]) if rec else None

    def _link(self, link_id: int) -> Optional[Link]:
        rec = self._links.get(link_id)
        if rec is None:
            return None
        return Link(id=rec["Id"], url=rec["Url"], type=LinkType(rec["Type"]), is_source=rec.get("IsSource", False))

    def _auth(self, auth_id: int) -> Optional[AuthMethod]:
        rec = self._auth_methods.get(auth_id)
        if rec is None:
            return None
        return AuthMethod(
            id=rec["Id"],
            type=AuthType(rec["Type"]),
            ext_id=rec.get("ExtId", ""),
            password=rec.get("Password", ""),
            access_token=rec.get("AccessToken", ""),
            refresh_token=rec.get("RefreshToken", ""),
            date=_load_time(rec.get("Date")),
        )

    def _user(self, user_id: int) -> Optional[User]:
        rec = self._users.get(user_id)
        if rec is None:
            return None
        methods = [self._auth(aid) for aid in rec.get("AuthMethods", [])]
        return User(
            id=rec["Id"],
            name=rec["Name"],
            email=rec.get("Email", ""),
            notify_cycle_end=rec.get("NotifyCycleEnd", False),
            notify_vote_selection=rec.get("NotifyVoteSelection", False),
            privilege=PrivilegeLevel(rec.get("Privilege", 0)),
            auth_methods=[m for m in methods if m is not None],
        )

    def _movie(self, movie_id: int, cycle_watched: Optional[Cycle] = None) -> Optional[Movie]:
        rec = self._movies.get(movie_id)
        if rec is None:
            return None
        watched_id = rec.get("CycleWatchedId", 0)
        if cycle_watched is None and watched_id:
            cycle_watched = self._cycle(watched_id)
        links = [self._link(lid) for lid in rec.get("Links", [])]
        tags = [self._tag(tid) for tid in rec.get("Tags", [])]
        return Movie(
            id=rec["Id"],
            name=rec["Name"],
            description=rec.get("Description", ""),
            remarks=rec.get("Remarks", ""),
            duration=rec.get("Duration", ""),
            rating=rec.get("Rating", 0.0),
            poster=rec.get("Poster", ""),
            links=[link for link in links if link is not None],
            tags=[tag for tag in tags if tag is not None],
            added_by=self._user(rec.get("AddedBy", 0)),
            cycle_added=self._cycle(rec.get("CycleAddedId", 0)),
            cycle_watched=cycle_watched if watched_id else None,
            removed=rec.get("Removed", False),
            approved=rec.get("Approved", False),
            votes=[self._vote(v) for v in self._votes if v["MovieId"] == movie_id],
        )

    @staticmethod
    def _vote(rec: dict) -> Vote:
        return Vote(user_id=rec["UserId"], movie_id=rec["MovieId"], cycle_id=rec["CycleId"])

    def _active_vote_count(self, user_id: int) -> int:
        count = 0
        for rec in self._votes:
            if rec["UserId"] != user_id:
                continue
            movie = self._movies.get(rec["MovieId"])
            if movie is not None and not movie.get("Removed") and not movie.get("CycleWatchedId"):
                count += 1
        return count

    def _name_taken(self, name: str, ignore_id: int = 0) -> bool:
        if name == DELETED_USER_NAME:
            return False
        lowered = name.lower()
        return any(
            rec["Name"].lower() == lowered for uid, rec in self._users.items() if uid != ignore_id
        )

    def _movie_name_taken(self, name: str, ignore_id: int = 0) -> bool:
        normalized = normalize_movie_name(name)
        return any(
            normalize_movie_name(rec["Name"]) == normalized
            for mid, rec in self._movies.items()
            if mid != ignore_id and not rec.get("Removed", False)
        )

    def _ensure_tag(self, tag: Tag) -> int:
        lowered = tag.name.lower()
        for rec in self._tags.values():
            if rec["Name"].lower() == lowered:
                return rec["Id"]
        tag_id = self._next_id(self._tags)
        self._tags[tag_id] = {"Id": tag_id, "Name": tag.name}
        return tag_id

    def _ensure_link(self, link: Link) -> int:
        lowered = link.url.lower()
        for rec in self._links.values():
            if rec["Url"].lower() == lowered:
                return rec["Id"]
        link_id = self._next_id(self._links)
        self._links[link_id] = {
            "Id": link_id,
            "Url": link.url,
            "Type": LinkType(link.type).value,
            "IsSource": link.is_source,
        }
        return link_id

    def _auth_record(self, auth: AuthMethod, auth_id: int) -> dict:
        return {
            "Id": auth_id,
            "Type": AuthType(auth.type).value,
            "ExtId": auth.ext_id,
            "Password": auth.password,
            "AccessToken": auth.access_token,
            "RefreshToken": auth.refresh_token,
            "Date": _dump_time(auth.date),
        }

    def _ext_id_taken(self, auth_type: AuthType, ext_id: str, ignore_id: int = 0) -> bool:
        if not ext_id:
            return False
        return any(
            rec["Type"] == auth_type.value and rec.get("ExtId") == ext_id
            for aid, rec in self._auth_methods.items()
            if aid != ignore_id
        )

    def _store_auth(self, auth: AuthMethod) -> int:
        auth_type = AuthType(auth.type)
        if auth.id and auth.id in self._auth_methods:
            auth_id = auth.id
        else:
            auth_id = auth.id or self._next_id(self._auth_methods)
        if self._ext_id_taken(auth_type, auth.ext_id, ignore_id=auth_id):
            raise ConflictError(f"{auth_type.value} account is already bound to another user")
        self._auth_methods[auth_id] = self._auth_record(auth, auth_id)
        auth.id = auth_id
        return auth_id

    def _user_record(self, user: User, user_id: int) -> dict:
        auth_ids = [self._store_auth(method) for method in user.auth_methods]
        return {
            "Id": user_id,
            "Name": user.name,
            "Email": user.email,
            "NotifyCycleEnd": user.notify_cycle_end,
            "NotifyVoteSelection": user.notify_vote_selection,
            "Privilege": int(user.privilege),
            "AuthMethods": auth_ids,
        }

    def _movie_record(self, movie: Movie, movie_id: int, cycle_added_id: int) -> dict:
        watched_id = movie.cycle_watched.id if movie.cycle_watched else 0
        if watched_id:
            watched = self._cycles.get(watched_id)
            if watched is None or not watched.get("Ended"):
                raise ConflictError("A movie can only be marked watched in a finished cycle")
        link_ids = []
        for idx, link in enumerate(movie.links):
            if not link.id or link.id not in self._links:
                link.is_source = idx == 0
                link.id = self._ensure_link(link)
            link_ids.append(link.id)
        tag_ids = []
        for tag in movie.tags:
            if not tag.id or tag.id not in self._tags:
                tag.id = self._ensure_tag(tag)
            tag_ids.append(tag.id)
        return {
            "Id": movie_id,
            "Name": movie.name,
            "Links": link_ids,
            "Description": movie.description,
            "Remarks": movie.remarks,
            "Duration": movie.duration,
            "Rating": movie.rating,
            "CycleAddedId": cycle_added_id,
            "CycleWatchedId": watched_id,
            "Removed": movie.removed,
            "Approved": movie.approved,
            "Poster": movie.poster,
            "AddedBy": movie.added_by.id if movie.added_by else 0,
            "Tags": tag_ids,
        }

    # ─── Create ──────────────────────────────────────────────────────────

    def add_cycle(self, planned_end: Optional[datetime] = None) -> int:
        with self._transaction():
            if self._current_cycle_record() is not None:
                raise ConflictError("A cycle is already open, close it before starting a new one")
            cycle_id = self._next_id(self._cycles)
            self._cycles[cycle_id] = {"Id": cycle_id, "PlannedEnd": _dump_time(planned_end), "Ended": None}
            self._commit()
        logger.info("Started cycle %d", cycle_id)
        return cycle_id

    def add_old_cycle(self, cycle: Cycle) -> int:
        with self._transaction():
            if cycle.ended is None and self._current_cycle_record() is not None:
                raise ConflictError("A cycle is already open")
            cycle_id = self._next_id(self._cycles)
            self._cycles[cycle_id] = {
                "Id": cycle_id,
                "PlannedEnd": _dump_time(cycle.planned_end),
                "Ended": _dump_time(cycle.ended),
            }
            self._commit()
        return cycle_id

    def add_movie(self, movie: Movie) -> int:
        with self._transaction():
            current = self._current_cycle_record()
            if current is None:
                raise ConflictError("No cycle active")
            if self._movie_name_taken(movie.name):
                raise ConflictError("Movie already added to the poll or has been already watched")
            movie_id = self._next_id(self._movies)
            self._movies[movie_id] = self._movie_record(movie, movie_id, current["Id"])
            self._commit()
        movie.id = movie_id
        return movie_id

    def add_user(self, user: User) -> int:
        with self._transaction():
            if self._name_taken(user.name):
                raise ConflictError(f"Username {user.name!r} is already taken")
            user_id = self._next_id(self._users)
            self._users[user_id] = self._user_record(user, user_id)
            self._commit()
        user.id = user_id
        return user_id

    def add_tag(self, tag: Tag) -> int:
        with self._transaction():
            tag_id = self._ensure_tag(tag)
            self._commit()
        tag.id = tag_id
        return tag_id

    def add_auth_method(self, auth: AuthMethod) -> int:
        with self._transaction():
            auth.id = 0
            auth_id = self._store_auth(auth)
            self._commit()
        return auth_id

    def add_link(self, link: Link) -> int:
        with self._transaction():
            link_id = self._ensure_link(link)
            self._commit()
        link.id = link_id
        return link_id

    def add_vote(self, user_id: int, movie_id: int, max_votes: Optional[int] = None) -> None:
        with self._transaction():
            if user_id not in self._users:
                raise NotFoundError(f"User with ID {user_id} not found")
            movie = self._movies.get(movie_id)
            if movie is None:
                raise NotFoundError(f"Movie with ID {movie_id} not found")
            current = self._current_cycle_record()
            if current is None:
                raise ConflictError("No cycle active")
            if movie.get("Removed"):
                raise ConflictError("Cannot vote for a removed movie")
            if movie.get("CycleWatchedId"):
                raise ConflictError("Cannot vote for a movie that has been watched")
            if any(v["UserId"] == user_id and v["MovieId"] == movie_id for v in self._votes):
                raise ConflictError("Already voted for this movie")
            if max_votes is not None and self._active_vote_count(user_id) >= max_votes:
                raise PolicyDisabledError("no more votes")
            self._votes.append({"UserId": user_id, "MovieId": movie_id, "CycleId": current["Id"]})
            self._commit()

    # ─── Read ────────────────────────────────────────────────────────────

    def get_cycle(self, cycle_id: int) -> Cycle:
        with self._lock.read():
            cycle = self._cycle(cycle_id, with_watched=True)
        if cycle is None:
            raise NotFoundError(f"Cycle with ID {cycle_id} not found")
        return cycle

    def get_current_cycle(self) -> Optional[Cycle]:
        with self._lock.read():
            rec = self._current_cycle_record()
            return self._cycle(rec["Id"]) if rec else None

    def get_movie(self, movie_id: int) -> Movie:
        with self._lock.read():
            movie = self._movie(movie_id)
        if movie is None:
            raise NotFoundError(f"Movie with ID {movie_id} not found")
        return movie

    def get_active_movies(self) -> list[Movie]:
        with self._lock.read():
            return [
                self._movie(mid)
                for mid, rec in sorted(self._movies.items())
                if not rec.get("CycleWatchedId") and not rec.get("Removed", False)
            ]

    def get_user(self, user_id: int) -> User:
        with self._lock.read():
            user = self._user(user_id)
        if user is None:
            raise NotFoundError(f"User with ID {user_id} not found")
        return user

    def get_users(self, offset: int, count: int) -> list[User]:
        offset = max(offset, 0)
        with self._lock.read():
            ids = sorted(self._users)[offset:offset + max(count, 0)]
            return [self._user(uid) for uid in ids]

    def get_user_votes(self, user_id: int) -> list[Movie]:
        with self._lock.read():
            movies = []
            for vote in self._votes:
                if vote["UserId"] != user_id:
                    continue
                movie = self._movie(vote["MovieId"])
                if movie is not None:
                    movies.append(movie)
            return movies

    def get_user_movies(self, user_id: int) -> list[Movie]:
        with self._lock.read():
            return [
                self._movie(mid)
                for mid, rec in sorted(self._movies.items())
                if rec.get("AddedBy") == user_id
            ]

    def get_users_with_auth(self, auth_type: AuthType, exclusive: bool) -> list[User]:
        with self._lock.read():
            users = []
            for uid in sorted(self._users):
                user = self._user(uid)
                types = {m.type for m in user.auth_methods}
                if auth_type not in types:
                    continue
                if exclusive and types != {auth_type}:
                    continue
                users.append(user)
        if not users:
            raise NotFoundError(f"No users found with {auth_type.value} authentication")
        return users

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        with self._lock.read():
            return self._tag(tag_id)

    def get_auth_method(self, auth_id: int) -> Optional[AuthMethod]:
        with self._lock.read():
            return self._auth(auth_id)

    def get_link(self, link_id: int) -> Optional[Link]:
        with self._lock.read():
            return self._link(link_id)

    def get_past_cycles(self, offset: int, count: int) -> list[Cycle]:
        offset = max(offset, 0)
        with self._lock.read():
            ended = sorted((cid for cid, rec in self._cycles.items() if rec.get("Ended")), reverse=True)
            window = ended[offset:offset + max(count, 0)]
            return [self._cycle(cid, with_watched=True) for cid in window]

    def get_movies_from_cycle(self, cycle_id: int) -> list[Movie]:
        with self._lock.read():
            cycle = self._cycle(cycle_id)
            if cycle is None:
                raise NotFoundError(f"Cycle with ID {cycle_id} not found")
            return [
                self._movie(mid, cycle_watched=cycle)
                for mid, rec in sorted(self._movies.items())
                if rec.get("CycleWatchedId") == cycle_id
            ]

    # ─── Find ────────────────────────────────────────────────────────────

    def find_tag(self, name: str) -> int:
        lowered = name.lower()
        with self._lock.read():
            for rec in self._tags.values():
                if rec["Name"].lower() == lowered:
                    return rec["Id"]
        raise NotFoundError(f"Tag {name!r} not found")

    def find_link(self, url: str) -> int:
        lowered = url.lower()
        with self._lock.read():
            for rec in self._links.values():
                if rec["Url"].lower() == lowered:
                    return rec["Id"]
        raise NotFoundError(f"Link {url!r} not found")

    # ─── Update ──────────────────────────────────────────────────────────

    def update_user(self, user: User) -> None:
        with self._transaction():
            user_id = user.id or self._next_id(self._users)
            if self._name_taken(user.name, ignore_id=user_id):
                raise ConflictError(f"Username {user.name!r} is already taken")
            self._users[user_id] = self._user_record(user, user_id)
            self._commit()
        user.id = user_id

    def update_movie(self, movie: Movie) -> None:
        with self._transaction():
            movie_id = movie.id or self._next_id(self._movies)
            existing = self._movies.get(movie_id)
            if existing is not None:
                cycle_added_id = existing["CycleAddedId"]
            elif movie.cycle_added is not None:
                cycle_added_id = movie.cycle_added.id
            else:
                current = self._current_cycle_record()
                if current is None:
                    raise ConflictError("No cycle active")
                cycle_added_id = current["Id"]
            if self._movie_name_taken(movie.name, ignore_id=movie_id) and not movie.removed:
                raise ConflictError("Movie already added to the poll or has been already watched")
            self._movies[movie_id] = self._movie_record(movie, movie_id, cycle_added_id)
            self._commit()
        movie.id = movie_id

    def update_cycle(self, cycle: Cycle) -> None:
        with self._transaction():
            cycle_id = cycle.id or self._next_id(self._cycles)
            if cycle.ended is None:
                current = self._current_cycle_record()
                if current is not None and current["Id"] != cycle_id:
                    raise ConflictError("A cycle is already open")
            self._cycles[cycle_id] = {
                "Id": cycle_id,
                "PlannedEnd": _dump_time(cycle.planned_end),
                "Ended": _dump_time(cycle.ended),
            }
            self._commit()
        cycle.id = cycle_id

    def update_auth_method(self, auth: AuthMethod) -> None:
        with self._transaction():
            if not auth.id or auth.id not in self._auth_methods:
                raise NotFoundError(f"AuthMethod with ID {auth.id} not found")
            self._store_auth(auth)
            self._commit()

    # ─── Delete ──────────────────────────────────────────────────────────

    def delete_vote(self, user_id: int, movie_id: int) -> None:
        with self._transaction():
            remaining = [
                v for v in self._votes if not (v["UserId"] == user_id and v["MovieId"] == movie_id)
            ]
            if len(remaining) == len(self._votes):
                raise NotFoundError("Vote not found")
            self._votes = remaining
            self._commit()

    def delete_tag(self, tag_id: int) -> None:
        with self._transaction():
            if self._tags.pop(tag_id, None) is None:
                return
            for rec in self._movies.values():
                rec["Tags"] = [t for t in rec.get("Tags", []) if t != tag_id]
            self._commit()

    def delete_auth_method(self, auth_id: int) -> None:
        with self._transaction():
            if self._auth_methods.pop(auth_id, None) is None:
                return
            for rec in self._users.values():
                rec["AuthMethods"] = [a for a in rec.get("AuthMethods", []) if a != auth_id]
            self._commit()

    def delete_link(self, link_id: int) -> None:
        with self._transaction():
            if self._links.pop(link_id, None) is None:
                return
            for rec in self._movies.values():
                rec["Links"] = [link for link in rec.get("Links", []) if link != link_id]
            self._commit()

    def remove_movie(self, movie_id: int) -> None:
        with self._transaction():
            rec = self._movies.get(movie_id)
            if rec is None:
                raise NotFoundError(f"Movie with ID {movie_id} not found")
            if rec.get("CycleWatchedId"):
                raise ConflictError("Cannot remove movie, it has already been watched.")
            rec["Removed"] = True
            self._votes = [v for v in self._votes if v["MovieId"] != movie_id]
            self._commit()

    def purge_user(self, user_id: int) -> None:
        with self._transaction():
            rec = self._users.pop(user_id, None)
            if rec is None:
                raise NotFoundError(f"User with ID {user_id} not found")
            for auth_id in rec.get("AuthMethods", []):
                self._auth_methods.pop(auth_id, None)
            self._votes = [v for v in self._votes if v["UserId"] != user_id]
            self._commit()
        logger.info("Purged user %d", user_id)

    def decay_votes(self, age: int) -> None:
        with self._transaction():
            ordered = sorted(self._cycles, reverse=True)
            if age < 0 or len(ordered) <= age:
                return
            boundary = ordered[age]
            kept = []
            for vote in self._votes:
                movie = self._movies.get(vote["MovieId"])
                watched = bool(movie and movie.get("CycleWatchedId"))
                if not watched and vote["CycleId"] < boundary:
                    continue
                kept.append(vote)
            dropped = len(self._votes) - len(kept)
            if dropped:
                self._votes = kept
                self._commit()
        if dropped:
            logger.info("Decayed %d votes older than cycle %d", dropped, boundary)

    # ─── Auth queries ────────────────────────────────────────────────────

    def user_local_login(self, name: str, hashed_pw: str) -> User:
        lowered = name.lower()
        with self._lock.read():
            for uid, rec in self._users.items():
                if rec["Name"].lower() != lowered:
                    continue
                user = self._user(uid)
                local = user.get_auth_method(AuthType.LOCAL)
                if local is not None and local.password == hashed_pw:
                    return user
                break
        raise UnauthorizedError("Invalid login credentials")

    def _oauth_login(self, auth_type: AuthType, ext_id: str) -> User:
        with self._lock.read():
            for uid, rec in self._users.items():
                for auth_id in rec.get("AuthMethods", []):
                    auth = self._auth_methods.get(auth_id)
                    if auth and auth["Type"] == auth_type.value and auth.get("ExtId") == ext_id:
                        return self._user(uid)
        raise NotFoundError(f"No user found with {auth_type.value} id {ext_id}")

    def user_discord_login(self, ext_id: str) -> User:
        return self._oauth_login(AuthType.DISCORD, ext_id)

    def user_twitch_login(self, ext_id: str) -> User:
        return self._oauth_login(AuthType.TWITCH, ext_id)

    def user_patreon_login(self, ext_id: str) -> User:
        return self._oauth_login(AuthType.PATREON, ext_id)

    def check_oauth_usage(self, ext_id: str, auth_type: AuthType) -> bool:
        with self._lock.read():
            return self._ext_id_taken(auth_type, ext_id)

    # ─── Search and lookups──────────────────────────────────────────────

    def search_movie_titles(self, query: str) -> list[Movie]:
        words, tags = parse_search_query(query)
        with self._lock.read():
            found = [
                self._movie(mid)
                for mid, rec in sorted(self._movies.items())
                if not rec.get("Removed", False) and all(w in rec["Name"].lower() for w in words)
            ]
        return filter_movies_by_tags(found, tags)

    def check_movie_exists(self, title: str) -> bool:
        with self._lock.read():
            return self._movie_name_taken(title)

    def check_user_exists(self, name: str) -> bool:
        with self._lock.read():
            lowered = name.lower()
            return any(rec["Name"].lower() == lowered for rec in self._users.values())

    def user_voted_for_movie(self, user_id: int, movie_id: int) -> bool:
        with self._lock.read():
            return any(v["UserId"] == user_id and v["MovieId"] == movie_id for v in self._votes)

    # ─── Config ──────────────────────────────────────────────────────────

    def _get_cfg(self, key: str, default) -> ConfigValue:
        with self._lock.read():
            value = self._settings.get(key)
        if value is None:
            raise NoValueError(key, default)
        return value

    def get_cfg_string(self, key: str, default: str) -> str:
        return self._get_cfg(key, default).as_string(key)

    def get_cfg_int(self, key: str, default: int) -> int:
        return self._get_cfg(key, default).as_int(key)

    def get_cfg_bool(self, key: str, default: bool) -> bool:
        return self._get_cfg(key, default).as_bool(key)

    def _set_cfg(self, key: str, value: ConfigValue) -> None:
        with self._transaction():
            self._settings[key] = value
            self._commit()

    def set_cfg_string(self, key: str, value: str) -> None:
        self._set_cfg(key, ConfigValue.of(str(value)))

    def set_cfg_int(self, key: str, value: int) -> None:
        self._set_cfg(key, ConfigValue.of(int(value)))

    def set_cfg_bool(self, key: str, value: bool) -> None:
        self._set_cfg(key, ConfigValue.of(bool(value)))

    def delete_cfg_key(self, key: str) -> None:
        with self._transaction():
            if self._settings.pop(key, None) is not None:
                self._commit()

    # ─── Maintenance ─────────────────────────────────────────────────────

    def delete_user(self, user_id: int) -> None:
        with self._transaction():
            if self._users.pop(user_id, None) is not None:
                self._commit()

    def delete_movie(self, movie_id: int) -> None:
        with self._transaction():
            if self._movies.pop(movie_id, None) is not None:
                self._votes = [v for v in self._votes if v["MovieId"] != movie_id]
                self._commit()

    def delete_cycle(self, cycle_id: int) -> None:
        with self._transaction():
            if self._cycles.pop(cycle_id, None) is not None:
                self._commit()

    def get_votes(self, user_id: int) -> list[Vote]:
        with self._lock.read():
            return [self._vote(v) for v in self._votes if v["UserId"] == user_id]
