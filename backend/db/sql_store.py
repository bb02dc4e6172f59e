"""Relational backend on SQLAlchemy.

Every public call opens its own session and transaction through
``transaction_manager.transaction`` and closes it before returning, so
cross-table writes (a movie with its links and tags, a purge with its
votes and bindings) commit or roll back as a unit.

The connection string is any SQLAlchemy URL; a bare path is taken as a
SQLite file.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, delete, func, insert, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from db import register_backend
from db.connector import DataConnector
from db.models import core as orm
from entities import (
    DELETED_USER_NAME,
    AuthMethod,
    AuthType,
    ConfigType,
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
from error_handler import ConflictError, NoValueError, NotFoundError, PolicyDisabledError, UnauthorizedError
from transaction_manager import transaction

logger = logging.getLogger(__name__)


def _to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return round_time(value).astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    return round_time(value) if value is not None else None


def _encode_cfg(value: ConfigValue) -> str:
    if value.type == ConfigType.BOOL:
        return "true" if value.value else "false"
    return str(value.value)


def _decode_cfg(row: orm.ConfigEntry) -> ConfigValue:
    kind = ConfigType(row.type)
    if kind == ConfigType.BOOL:
        return ConfigValue(kind, row.value == "true")
    if kind == ConfigType.INT:
        return ConfigValue(kind, int(row.value))
    return ConfigValue(kind, row.value)


# ─── Row -> entity conversion (session must be open) ─────────────────────────


def _cycle(row: orm.Cycle) -> Cycle:
    return Cycle(id=row.id, planned_end=_from_db_time(row.planned_end), ended=_from_db_time(row.ended))


def _auth(row: orm.AuthMethod) -> AuthMethod:
    return AuthMethod(
        id=row.id,
        type=AuthType(row.type),
        ext_id=row.ext_id,
        password=row.password,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        date=_from_db_time(row.date),
    )


def _user(row: orm.User) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        notify_cycle_end=row.notify_cycle_end,
        notify_vote_selection=row.notify_vote_selection,
        privilege=PrivilegeLevel(row.privilege),
        auth_methods=[_auth(a) for a in row.auth_methods],
    )


def _link(row: orm.Link) -> Link:
    return Link(id=row.id, url=row.url, type=LinkType(row.type), is_source=row.is_source)


def _tag(row: orm.Tag) -> Tag:
    return Tag(id=row.id, name=row.name)


def _movie(row: orm.Movie) -> Movie:
    return Movie(
        id=row.id,
        name=row.name,
        description=row.description,
        remarks=row.remarks,
        duration=row.duration,
        rating=row.rating,
        poster=row.poster,
        links=[_link(assoc.link) for assoc in row.link_assocs],
        tags=[_tag(t) for t in row.tags],
        added_by=_user(row.added_by) if row.added_by is not None else None,
        cycle_added=_cycle(row.cycle_added),
        cycle_watched=_cycle(row.cycle_watched) if row.cycle_watched is not None else None,
        removed=row.removed,
        approved=row.approved,
        votes=[Vote(user_id=v.user_id, movie_id=v.movie_id, cycle_id=v.cycle_id) for v in row.votes],
    )


@register_backend("sql", "mysql", "sqlite")
class SqlConnector(DataConnector):
    """DataConnector over a SQLAlchemy engine."""

    def __init__(self, connection_string: str):
        url = connection_string or "sqlite:///db/moviepolls.db"
        if "://" not in url:
            url = f"sqlite:///{url}"

        engine_options: dict = {}
        if url.startswith("sqlite"):
            db_path = url.split(":///", 1)[-1]
            if db_path and db_path != ":memory:":
                directory = os.path.dirname(os.path.abspath(db_path))
                os.makedirs(directory, exist_ok=True)
            engine_options["connect_args"] = {"check_same_thread": False}
        else:
            engine_options["pool_pre_ping"] = True

        self.engine = create_engine(url, **engine_options)
        orm.Base.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info("Relational backend ready (%s)", self.engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self.engine.dispose()

    def _tx(self):
        return transaction(self._sessions)

    # ─── Helpers (session must be open) ──────────────────────────────────

    @staticmethod
    def _open_cycle(session: Session) -> Optional[orm.Cycle]:
        return session.scalars(select(orm.Cycle).where(orm.Cycle.ended.is_(None)).limit(1)).first()

    @staticmethod
    def _get_or_404(session: Session, model, ident: int, label: str):
        row = session.get(model, ident)
        if row is None:
            raise NotFoundError(f"{label} with ID {ident} not found")
        return row

    @staticmethod
    def _flush_unique(session: Session, message: str) -> None:
        """Flush, turning a unique-key violation from a concurrent writer into ConflictError."""
        try:
            session.flush()
        except IntegrityError as exc:
            raise ConflictError(message) from exc

    @staticmethod
    def _name_taken(session: Session, name: str, ignore_id: int = 0) -> bool:
        if name == DELETED_USER_NAME:
            return False
        stmt = select(orm.User.id).where(func.lower(orm.User.name) == name.lower(), orm.User.id != ignore_id)
        return session.scalars(stmt).first() is not None

    @staticmethod
    def _movie_name_taken(session: Session, name: str, ignore_id: int = 0) -> bool:
        stmt = select(orm.Movie.id).where(
            orm.Movie.normalized_name == normalize_movie_name(name),
            orm.Movie.removed.is_(False),
            orm.Movie.id != ignore_id,
        )
        return session.scalars(stmt).first() is not None

    @staticmethod
    def _ensure_tag(session: Session, tag: Tag) -> orm.Tag:
        row = session.scalars(select(orm.Tag).where(func.lower(orm.Tag.name) == tag.name.lower())).first()
        if row is None:
            row = orm.Tag(name=tag.name)
            session.add(row)
            session.flush()
        return row

    @staticmethod
    def _ensure_link(session: Session, link: Link) -> orm.Link:
        row = session.scalars(select(orm.Link).where(func.lower(orm.Link.url) == link.url.lower())).first()
        if row is None:
            row = orm.Link(url=link.url, type=LinkType(link.type).value, is_source=link.is_source)
            session.add(row)
            session.flush()
        return row

    @staticmethod
    def _ext_id_taken(session: Session, auth_type: AuthType, ext_id: str, ignore_id: int = 0) -> bool:
        if not ext_id:
            return False
        stmt = select(orm.AuthMethod.id).where(
            orm.AuthMethod.type == auth_type.value,
            orm.AuthMethod.ext_id == ext_id,
            orm.AuthMethod.id != ignore_id,
        )
        return session.scalars(stmt).first() is not None

    def _store_auth(self, session: Session, auth: AuthMethod, user_id: Optional[int] = None) -> orm.AuthMethod:
        auth_type = AuthType(auth.type)
        row = session.get(orm.AuthMethod, auth.id) if auth.id else None
        if self._ext_id_taken(session, auth_type, auth.ext_id, ignore_id=auth.id or 0):
            raise ConflictError(f"{auth_type.value} account is already bound to another user")
        if row is None:
            row = orm.AuthMethod(id=auth.id or None)
            session.add(row)
        row.type = auth_type.value
        row.ext_id = auth.ext_id
        row.password = auth.password
        row.access_token = auth.access_token
        row.refresh_token = auth.refresh_token
        row.date = _to_db_time(auth.date)
        if user_id is not None:
            row.user_id = user_id
        row.ext_key = f"{auth_type.value}:{auth.ext_id}" if auth.ext_id else None
        self._flush_unique(session, f"{auth_type.value} account is already bound to another user")
        auth.id = row.id
        return row

    def _apply_user(self, session: Session, row: orm.User, user: User) -> None:
        row.name = user.name
        row.name_key = None if user.name == DELETED_USER_NAME else user.name.lower()
        row.email = user.email
        row.notify_cycle_end = user.notify_cycle_end
        row.notify_vote_selection = user.notify_vote_selection
        row.privilege = int(user.privilege)
        self._flush_unique(session, f"Username {user.name!r} is already taken")
        kept = set()
        for method in user.auth_methods:
            kept.add(self._store_auth(session, method, user_id=row.id).id)
        # Bindings dropped from the list are detached, not deleted
        for auth_row in session.scalars(select(orm.AuthMethod).where(orm.AuthMethod.user_id == row.id)):
            if auth_row.id not in kept:
                auth_row.user_id = None
        session.flush()
        session.expire(row, ["auth_methods"])

    def _apply_movie(self, session: Session, row: orm.Movie, movie: Movie) -> None:
        if movie.cycle_watched is not None:
            watched = session.get(orm.Cycle, movie.cycle_watched.id)
            if watched is None or watched.ended is None:
                raise ConflictError("A movie can only be marked watched in a finished cycle")
            row.cycle_watched_id = watched.id
        else:
            row.cycle_watched_id = None
        row.name = movie.name
        row.normalized_name = normalize_movie_name(movie.name)
        row.description = movie.description
        row.remarks = movie.remarks
        row.duration = movie.duration
        row.rating = movie.rating
        row.poster = movie.poster
        row.removed = movie.removed
        row.approved = movie.approved
        row.added_by_id = movie.added_by.id if movie.added_by else None

        link_rows = []
        for idx, link in enumerate(movie.links):
            link_row = session.get(orm.Link, link.id) if link.id else None
            if link_row is None:
                link.is_source = idx == 0
                link_row = self._ensure_link(session, link)
            link.id = link_row.id
            link_rows.append(link_row)
        existing = {assoc.link_id: assoc for assoc in row.link_assocs}
        assocs = []
        for pos, link_row in enumerate(dict.fromkeys(link_rows)):
            assoc = existing.get(link_row.id) or orm.MovieLink(link_id=link_row.id, link=link_row)
            assoc.position = pos
            assocs.append(assoc)
        row.link_assocs = assocs

        tag_rows = []
        for tag in movie.tags:
            tag_row = session.get(orm.Tag, tag.id) if tag.id else None
            if tag_row is None:
                tag_row = self._ensure_tag(session, tag)
            tag.id = tag_row.id
            if tag_row not in tag_rows:
                tag_rows.append(tag_row)
        row.tags = tag_rows
        session.flush()

    def _oauth_login(self, auth_type: AuthType, ext_id: str) -> User:
        with self._tx() as session:
            stmt = select(orm.User).join(orm.AuthMethod, orm.AuthMethod.user_id == orm.User.id).where(
                orm.AuthMethod.type == auth_type.value, orm.AuthMethod.ext_id == ext_id
            )
            row = session.scalars(stmt).first()
            if row is None:
                raise NotFoundError(f"No user found with {auth_type.value} id {ext_id}")
            return _user(row)

    # ─── Create ──────────────────────────────────────────────────────────

    def add_cycle(self, planned_end: Optional[datetime] = None) -> int:
        with self._tx() as session:
            if self._open_cycle(session) is not None:
                raise ConflictError("A cycle is already open, close it before starting a new one")
            row = orm.Cycle(planned_end=_to_db_time(planned_end), ended=None)
            session.add(row)
            session.flush()
            cycle_id = row.id
        logger.info("Started cycle %d", cycle_id)
        return cycle_id

    def add_old_cycle(self, cycle: Cycle) -> int:
        with self._tx() as session:
            if cycle.ended is None and self._open_cycle(session) is not None:
                raise ConflictError("A cycle is already open")
            row = orm.Cycle(planned_end=_to_db_time(cycle.planned_end), ended=_to_db_time(cycle.ended))
            session.add(row)
            session.flush()
            return row.id

    def add_movie(self, movie: Movie) -> int:
        with self._tx() as session:
            current = self._open_cycle(session)
            if current is None:
                raise ConflictError("No cycle active")
            if self._movie_name_taken(session, movie.name):
                raise ConflictError("Movie already added to the poll or has been already watched")
            row = orm.Movie(cycle_added_id=current.id)
            session.add(row)
            self._apply_movie(session, row, movie)
            movie.id = row.id
            return row.id

    def add_user(self, user: User) -> int:
        with self._tx() as session:
            if self._name_taken(session, user.name):
                raise ConflictError(f"Username {user.name!r} is already taken")
            row = orm.User(name=user.name)
            session.add(row)
            self._apply_user(session, row, user)
            user.id = row.id
            return row.id

    def add_tag(self, tag: Tag) -> int:
        with self._tx() as session:
            tag.id = self._ensure_tag(session, tag).id
            return tag.id

    def add_auth_method(self, auth: AuthMethod) -> int:
        with self._tx() as session:
            auth.id = 0
            return self._store_auth(session, auth).id

    def add_link(self, link: Link) -> int:
        with self._tx() as session:
            link.id = self._ensure_link(session, link).id
            return link.id

    def add_vote(self, user_id: int, movie_id: int, max_votes: Optional[int] = None) -> None:
        with self._tx() as session:
            # Row lock serialises concurrent voters on backends that support it
            if session.get(orm.User, user_id, with_for_update=True) is None:
                raise NotFoundError(f"User with ID {user_id} not found")
            movie = self._get_or_404(session, orm.Movie, movie_id, "Movie")
            current = self._open_cycle(session)
            if current is None:
                raise ConflictError("No cycle active")
            if movie.removed:
                raise ConflictError("Cannot vote for a removed movie")
            if movie.cycle_watched_id is not None:
                raise ConflictError("Cannot vote for a movie that has been watched")
            if session.get(orm.Vote, (user_id, movie_id)) is not None:
                raise ConflictError("Already voted for this movie")

            row = select(literal(user_id), literal(movie_id), literal(current.id))
            if max_votes is not None:
                active = (
                    select(func.count())
                    .select_from(orm.Vote)
                    .join(orm.Movie, orm.Movie.id == orm.Vote.movie_id)
                    .where(
                        orm.Vote.user_id == user_id,
                        orm.Movie.removed.is_(False),
                        orm.Movie.cycle_watched_id.is_(None),
                    )
                    .correlate(None)
                    .scalar_subquery()
                )
                row = row.where(active < max_votes)
            # Quota check and insert run as one statement
            stmt = insert(orm.Vote).from_select(["user_id", "movie_id", "cycle_id"], row)
            try:
                inserted = session.execute(stmt).rowcount
            except IntegrityError as exc:
                raise ConflictError("Already voted for this movie") from exc
            if inserted == 0:
                raise PolicyDisabledError("no more votes")

    # ─── Read ────────────────────────────────────────────────────────────

    def _cycle_with_watched(self, session: Session, row: orm.Cycle) -> Cycle:
        cycle = _cycle(row)
        movies = session.scalars(
            select(orm.Movie).where(orm.Movie.cycle_watched_id == row.id).order_by(orm.Movie.id)
        )
        cycle.watched = [_movie(m) for m in movies]
        return cycle

    def get_cycle(self, cycle_id: int) -> Cycle:
        with self._tx() as session:
            row = self._get_or_404(session, orm.Cycle, cycle_id, "Cycle")
            return self._cycle_with_watched(session, row)

    def get_current_cycle(self) -> Optional[Cycle]:
        with self._tx() as session:
            row = self._open_cycle(session)
            return _cycle(row) if row is not None else None

    def get_movie(self, movie_id: int) -> Movie:
        with self._tx() as session:
            return _movie(self._get_or_404(session, orm.Movie, movie_id, "Movie"))

    def get_active_movies(self) -> list[Movie]:
        with self._tx() as session:
            stmt = (
                select(orm.Movie)
                .where(orm.Movie.cycle_watched_id.is_(None), orm.Movie.removed.is_(False))
                .order_by(orm.Movie.id)
            )
            return [_movie(row) for row in session.scalars(stmt)]

    def get_user(self, user_id: int) -> User:
        with self._tx() as session:
            return _user(self._get_or_404(session, orm.User, user_id, "User"))

    def get_users(self, offset: int, count: int) -> list[User]:
        with self._tx() as session:
            stmt = select(orm.User).order_by(orm.User.id).offset(max(offset, 0)).limit(max(count, 0))
            return [_user(row) for row in session.scalars(stmt)]

    def get_user_votes(self, user_id: int) -> list[Movie]:
        with self._tx() as session:
            stmt = (
                select(orm.Movie)
                .join(orm.Vote, orm.Vote.movie_id == orm.Movie.id)
                .where(orm.Vote.user_id == user_id)
                .order_by(orm.Movie.id)
            )
            return [_movie(row) for row in session.scalars(stmt)]

    def get_user_movies(self, user_id: int) -> list[Movie]:
        with self._tx() as session:
            stmt = select(orm.Movie).where(orm.Movie.added_by_id == user_id).order_by(orm.Movie.id)
            return [_movie(row) for row in session.scalars(stmt)]

    def get_users_with_auth(self, auth_type: AuthType, exclusive: bool) -> list[User]:
        with self._tx() as session:
            stmt = (
                select(orm.User)
                .join(orm.AuthMethod, orm.AuthMethod.user_id == orm.User.id)
                .where(orm.AuthMethod.type == auth_type.value)
                .order_by(orm.User.id)
                .distinct()
            )
            users = [_user(row) for row in session.scalars(stmt)]
        if exclusive:
            users = [u for u in users if {m.type for m in u.auth_methods} == {auth_type}]
        if not users:
            raise NotFoundError(f"No users found with {auth_type.value} authentication")
        return users

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        with self._tx() as session:
            row = session.get(orm.Tag, tag_id)
            return _tag(row) if row is not None else None

    def get_auth_method(self, auth_id: int) -> Optional[AuthMethod]:
        with self._tx() as session:
            row = session.get(orm.AuthMethod, auth_id)
            return _auth(row) if row is not None else None

    def get_link(self, link_id: int) -> Optional[Link]:
        with self._tx() as session:
            row = session.get(orm.Link, link_id)
            return _link(row) if row is not None else None

    def get_past_cycles(self, offset: int, count: int) -> list[Cycle]:
        with self._tx() as session:
            stmt = (
                select(orm.Cycle)
                .where(orm.Cycle.ended.is_not(None))
                .order_by(orm.Cycle.id.desc())
                .offset(max(offset, 0))
                .limit(max(count, 0))
            )
            return [self._cycle_with_watched(session, row) for row in session.scalars(stmt).all()]

    def get_movies_from_cycle(self, cycle_id: int) -> list[Movie]:
        with self._tx() as session:
            row = self._get_or_404(session, orm.Cycle, cycle_id, "Cycle")
            return self._cycle_with_watched(session, row).watched

    # ─── Find ────────────────────────────────────────────────────────────

    def find_tag(self, name: str) -> int:
        with self._tx() as session:
            tag_id = session.scalars(select(orm.Tag.id).where(func.lower(orm.Tag.name) == name.lower())).first()
        if tag_id is None:
            raise NotFoundError(f"Tag {name!r} not found")
        return tag_id

    def find_link(self, url: str) -> int:
        with self._tx() as session:
            link_id = session.scalars(select(orm.Link.id).where(func.lower(orm.Link.url) == url.lower())).first()
        if link_id is None:
            raise NotFoundError(f"Link {url!r} not found")
        return link_id

    # ─── Update ──────────────────────────────────────────────────────────

    def update_user(self, user: User) -> None:
        with self._tx() as session:
            row = session.get(orm.User, user.id) if user.id else None
            if self._name_taken(session, user.name, ignore_id=user.id or 0):
                raise ConflictError(f"Username {user.name!r} is already taken")
            if row is None:
                row = orm.User(id=user.id or None, name=user.name)
                session.add(row)
            self._apply_user(session, row, user)
            user.id = row.id

    def update_movie(self, movie: Movie) -> None:
        with self._tx() as session:
            row = session.get(orm.Movie, movie.id) if movie.id else None
            if not movie.removed and self._movie_name_taken(session, movie.name, ignore_id=movie.id or 0):
                raise ConflictError("Movie already added to the poll or has been already watched")
            if row is None:
                if movie.cycle_added is not None:
                    cycle_added_id = movie.cycle_added.id
                else:
                    current = self._open_cycle(session)
                    if current is None:
                        raise ConflictError("No cycle active")
                    cycle_added_id = current.id
                row = orm.Movie(id=movie.id or None, cycle_added_id=cycle_added_id)
                session.add(row)
            self._apply_movie(session, row, movie)
            movie.id = row.id

    def update_cycle(self, cycle: Cycle) -> None:
        with self._tx() as session:
            if cycle.ended is None:
                current = self._open_cycle(session)
                if current is not None and current.id != cycle.id:
                    raise ConflictError("A cycle is already open")
            row = session.get(orm.Cycle, cycle.id) if cycle.id else None
            if row is None:
                row = orm.Cycle(id=cycle.id or None)
                session.add(row)
            row.planned_end = _to_db_time(cycle.planned_end)
            row.ended = _to_db_time(cycle.ended)
            session.flush()
            cycle.id = row.id

    def update_auth_method(self, auth: AuthMethod) -> None:
        with self._tx() as session:
            if not auth.id or session.get(orm.AuthMethod, auth.id) is None:
                raise NotFoundError(f"AuthMethod with ID {auth.id} not found")
            self._store_auth(session, auth)

    # ─── Delete ──────────────────────────────────────────────────────────

    def delete_vote(self, user_id: int, movie_id: int) -> None:
        with self._tx() as session:
            row = session.get(orm.Vote, (user_id, movie_id))
            if row is None:
                raise NotFoundError("Vote not found")
            session.delete(row)

    def delete_tag(self, tag_id: int) -> None:
        with self._tx() as session:
            session.execute(delete(orm.movie_tags).where(orm.movie_tags.c.tag_id == tag_id))
            session.execute(delete(orm.Tag).where(orm.Tag.id == tag_id))

    def delete_auth_method(self, auth_id: int) -> None:
        with self._tx() as session:
            session.execute(delete(orm.AuthMethod).where(orm.AuthMethod.id == auth_id))

    def delete_link(self, link_id: int) -> None:
        with self._tx() as session:
            session.execute(delete(orm.MovieLink).where(orm.MovieLink.link_id == link_id))
            session.execute(delete(orm.Link).where(orm.Link.id == link_id))

    def remove_movie(self, movie_id: int) -> None:
        with self._tx() as session:
            row = self._get_or_404(session, orm.Movie, movie_id, "Movie")
            if row.cycle_watched_id is not None:
                raise ConflictError("Cannot remove movie, it has already been watched.")
            row.removed = True
            session.execute(delete(orm.Vote).where(orm.Vote.movie_id == movie_id))

    def purge_user(self, user_id: int) -> None:
        with self._tx() as session:
            row = self._get_or_404(session, orm.User, user_id, "User")
            session.execute(delete(orm.Vote).where(orm.Vote.user_id == user_id))
            session.execute(delete(orm.AuthMethod).where(orm.AuthMethod.user_id == user_id))
            session.execute(
                orm.Movie.__table__.update().where(orm.Movie.added_by_id == user_id).values(added_by_id=None)
            )
            session.delete(row)
        logger.info("Purged user %d", user_id)

    def decay_votes(self, age: int) -> None:
        with self._tx() as session:
            ordered = session.scalars(select(orm.Cycle.id).order_by(orm.Cycle.id.desc())).all()
            if age < 0 or len(ordered) <= age:
                return
            boundary = ordered[age]
            unwatched = select(orm.Movie.id).where(orm.Movie.cycle_watched_id.is_(None))
            result = session.execute(
                delete(orm.Vote)
                .where(orm.Vote.cycle_id < boundary, orm.Vote.movie_id.in_(unwatched))
                .execution_options(synchronize_session=False)
            )
            dropped = result.rowcount or 0
        if dropped:
            logger.info("Decayed %d votes older than cycle %d", dropped, boundary)

    # ─── Auth queries ────────────────────────────────────────────────────

    def user_local_login(self, name: str, hashed_pw: str) -> User:
        with self._tx() as session:
            row = session.scalars(select(orm.User).where(func.lower(orm.User.name) == name.lower())).first()
            if row is not None:
                user = _user(row)
                local = user.get_auth_method(AuthType.LOCAL)
                if local is not None and local.password == hashed_pw:
                    return user
        raise UnauthorizedError("Invalid login credentials")

    def user_discord_login(self, ext_id: str) -> User:
        return self._oauth_login(AuthType.DISCORD, ext_id)

    def user_twitch_login(self, ext_id: str) -> User:
        return self._oauth_login(AuthType.TWITCH, ext_id)

    def user_patreon_login(self, ext_id: str) -> User:
        return self._oauth_login(AuthType.PATREON, ext_id)

    def check_oauth_usage(self, ext_id: str, auth_type: AuthType) -> bool:
        with self._tx() as session:
            return self._ext_id_taken(session, auth_type, ext_id)

    # ─── Search and lookups──────────────────────────────────────────────

    def search_movie_titles(self, query: str) -> list[Movie]:
        words, tags = parse_search_query(query)
        with self._tx() as session:
            stmt = select(orm.Movie).where(orm.Movie.removed.is_(False))
            for word in words:
                stmt = stmt.where(func.lower(orm.Movie.name).contains(word, autoescape=True))
            found = [_movie(row) for row in session.scalars(stmt.order_by(orm.Movie.id))]
        return filter_movies_by_tags(found, tags)

    def check_movie_exists(self, title: str) -> bool:
        with self._tx() as session:
            return self._movie_name_taken(session, title)

    def check_user_exists(self, name: str) -> bool:
        with self._tx() as session:
            stmt = select(orm.User.id).where(func.lower(orm.User.name) == name.lower())
            return session.scalars(stmt).first() is not None

    def user_voted_for_movie(self, user_id: int, movie_id: int) -> bool:
        with self._tx() as session:
            return session.get(orm.Vote, (user_id, movie_id)) is not None

    # ─── Config ──────────────────────────────────────────────────────────

    def _get_cfg(self, key: str, default) -> ConfigValue:
        with self._tx() as session:
            row = session.get(orm.ConfigEntry, key)
            if row is None:
                raise NoValueError(key, default)
            return _decode_cfg(row)

    def get_cfg_string(self, key: str, default: str) -> str:
        return self._get_cfg(key, default).as_string(key)

    def get_cfg_int(self, key: str, default: int) -> int:
        return self._get_cfg(key, default).as_int(key)

    def get_cfg_bool(self, key: str, default: bool) -> bool:
        return self._get_cfg(key, default).as_bool(key)

    def _set_cfg(self, key: str, value: ConfigValue) -> None:
        with self._tx() as session:
            row = session.get(orm.ConfigEntry, key)
            if row is None:
                row = orm.ConfigEntry(key=key)
                session.add(row)
            row.type = int(value.type)
            row.value = _encode_cfg(value)

    def set_cfg_string(self, key: str, value: str) -> None:
        self._set_cfg(key, ConfigValue.of(str(value)))

    def set_cfg_int(self, key: str, value: int) -> None:
        self._set_cfg(key, ConfigValue.of(int(value)))

    def set_cfg_bool(self, key: str, value: bool) -> None:
        self._set_cfg(key, ConfigValue.of(bool(value)))

    def delete_cfg_key(self, key: str) -> None:
        with self._tx() as session:
            session.execute(delete(orm.ConfigEntry).where(orm.ConfigEntry.key == key))

    # ─── Maintenance ─────────────────────────────────────────────────────

    def delete_user(self, user_id: int) -> None:
        with self._tx() as session:
            session.execute(
                orm.AuthMethod.__table__.update().where(orm.AuthMethod.user_id == user_id).values(user_id=None)
            )
            session.execute(delete(orm.User).where(orm.User.id == user_id))

    def delete_movie(self, movie_id: int) -> None:
        with self._tx() as session:
            session.execute(delete(orm.Vote).where(orm.Vote.movie_id == movie_id))
            session.execute(delete(orm.MovieLink).where(orm.MovieLink.movie_id == movie_id))
            session.execute(delete(orm.movie_tags).where(orm.movie_tags.c.movie_id == movie_id))
            session.execute(delete(orm.Movie).where(orm.Movie.id == movie_id))

    def delete_cycle(self, cycle_id: int) -> None:
        with self._tx() as session:
            session.execute(delete(orm.Cycle).where(orm.Cycle.id == cycle_id))

    def get_votes(self, user_id: int) -> list[Vote]:
        with self._tx() as session:
            rows = session.scalars(select(orm.Vote).where(orm.Vote.user_id == user_id).order_by(orm.Vote.movie_id))
            return [Vote(user_id=v.user_id, movie_id=v.movie_id, cycle_id=v.cycle_id) for v in rows]
