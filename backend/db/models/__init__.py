"""SQLAlchemy ORM models for the relational MoviePolls backend.

Import all models from here so ``Base.metadata`` knows every table.
"""

from db.models.core import (
    AuthMethod,
    Base,
    ConfigEntry,
    Cycle,
    Link,
    Movie,
    MovieLink,
    Tag,
    User,
    Vote,
    movie_tags,
)

__all__ = [
    "AuthMethod",
    "Base",
    "ConfigEntry",
    "Cycle",
    "Link",
    "Movie",
    "MovieLink",
    "Tag",
    "User",
    "Vote",
    "movie_tags",
]
