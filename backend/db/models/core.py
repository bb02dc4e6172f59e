"""Relational schema: cycles, movies, users, auth methods, votes, links, tags, config.

Timestamps are stored as naive UTC DateTime values and converted back to
aware datetimes by the connector.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


movie_tags = Table(
    "movie_tags",
    Base.metadata,
    Column("movie_id", Integer, ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Cycle(Base):
    """A voting round. ``ended`` is NULL for the open cycle."""

    __tablename__ = "cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    planned_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ended: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (Index("idx_cycles_ended", "ended"),)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    notify_cycle_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notify_vote_selection: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    privilege: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # lower(name); NULL for deleted accounts so they never collide
    name_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    auth_methods: Mapped[list["AuthMethod"]] = relationship(
        back_populates="user", lazy="selectin", order_by="AuthMethod.id"
    )

    __table_args__ = (Index("idx_users_name", "name"),)


class AuthMethod(Base):
    """Credential binding. ``user_id`` is NULL until bound to a user."""

    __tablename__ = "auth_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    ext_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # "<type>:<ext_id>"; NULL when ext_id is empty (local logins)
    ext_key: Mapped[Optional[str]] = mapped_column(String(280), nullable=True, unique=True)

    user: Mapped[Optional[User]] = relationship(back_populates="auth_methods")

    __table_args__ = (Index("idx_auth_methods_ext", "type", "ext_id"),)


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="Misc")
    is_source: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class MovieLink(Base):
    """Ordered membership of a link in a movie; position 0 is the source."""

    __tablename__ = "movie_links"

    movie_id: Mapped[int] = mapped_column(ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True)
    link_id: Mapped[int] = mapped_column(ForeignKey("links.id", ondelete="CASCADE"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    link: Mapped[Link] = relationship(lazy="joined")


class Movie(Base):
    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    remarks: Mapped[str] = mapped_column(Text, nullable=False, default="")
    duration: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    poster: Mapped[str] = mapped_column(Text, nullable=False, default="")
    added_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    cycle_added_id: Mapped[int] = mapped_column(ForeignKey("cycles.id"), nullable=False)
    cycle_watched_id: Mapped[Optional[int]] = mapped_column(ForeignKey("cycles.id"), nullable=True)
    removed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    link_assocs: Mapped[list[MovieLink]] = relationship(
        order_by=MovieLink.position, cascade="all, delete-orphan", lazy="selectin"
    )
    tags: Mapped[list[Tag]] = relationship(secondary=movie_tags, lazy="selectin", order_by=Tag.id)
    votes: Mapped[list["Vote"]] = relationship(lazy="selectin", viewonly=True)
    added_by: Mapped[Optional[User]] = relationship(lazy="selectin")
    cycle_added: Mapped[Cycle] = relationship(foreign_keys=[cycle_added_id], lazy="selectin")
    cycle_watched: Mapped[Optional[Cycle]] = relationship(foreign_keys=[cycle_watched_id], lazy="selectin")

    __table_args__ = (
        Index("idx_movies_normalized_name", "normalized_name"),
        Index("idx_movies_cycle_watched", "cycle_watched_id"),
        Index("idx_movies_added_by", "added_by_id"),
    )


class Vote(Base):
    """One row per (user, movie); ``cycle_id`` is the cycle the vote was cast in."""

    __tablename__ = "votes"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    movie_id: Mapped[int] = mapped_column(ForeignKey("movies.id"), primary_key=True)
    cycle_id: Mapped[int] = mapped_column(ForeignKey("cycles.id"), nullable=False)

    __table_args__ = (Index("idx_votes_cycle", "cycle_id"),)


class ConfigEntry(Base):
    """Typed site configuration value. ``type`` follows entities.ConfigType."""

    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    type: Mapped[int] = mapped_column(Integer, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
