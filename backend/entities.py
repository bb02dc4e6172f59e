"""Domain entities shared by every data backend and service.

Entities reference each other by object on the way out of the data layer;
backends store only ids and rehydrate the references on read.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Optional, Union

from error_handler import ConfigTypeError

DELETED_USER_NAME = "[deleted]"
UNKNOWN_POSTER = "posters/unknown.jpg"


class AuthType(str, Enum):
    LOCAL = "Local"
    TWITCH = "Twitch"
    DISCORD = "Discord"
    PATREON = "Patreon"


# Order in which a session is re-established after a binding changes
AUTH_TYPE_PREFERENCE = (AuthType.LOCAL, AuthType.TWITCH, AuthType.DISCORD, AuthType.PATREON)
OAUTH_TYPES = (AuthType.TWITCH, AuthType.DISCORD, AuthType.PATREON)


class PrivilegeLevel(IntEnum):
    USER = 0
    MOD = 1
    ADMIN = 2


class LinkType(str, Enum):
    IMDB = "IMDb"
    MAL = "MyAnimeList"
    MISC = "Misc"


class UrlKeyType(str, Enum):
    ADMIN_AUTH = "AdminAuth"
    PASSWORD_RESET = "PasswordReset"


class ConfigType(IntEnum):
    """On-disk tag of a config value (document backend stores the int)."""

    STRING = 0
    INT = 1
    BOOL = 2


# ─── Time helpers ────────────────────────────────────────────────────────────


def round_time(value: Optional[datetime]) -> Optional[datetime]:
    """Round to the nearest whole second, normalised to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if value.microsecond >= 500_000:
        value += timedelta(seconds=1)
    return value.replace(microsecond=0)


def utc_now() -> datetime:
    return round_time(datetime.now(timezone.utc))


# ─── Entities ────────────────────────────────────────────────────────────────


@dataclass
class Tag:
    id: int = 0
    name: str = ""


@dataclass
class Link:
    id: int = 0
    url: str = ""
    type: LinkType = LinkType.MISC
    is_source: bool = False


@dataclass
class AuthMethod:
    id: int = 0
    type: AuthType = AuthType.LOCAL
    ext_id: str = ""
    password: str = ""
    access_token: str = ""
    refresh_token: str = ""
    date: Optional[datetime] = None


@dataclass
class User:
    id: int = 0
    name: str = ""
    email: str = ""
    notify_cycle_end: bool = False
    notify_vote_selection: bool = False
    privilege: PrivilegeLevel = PrivilegeLevel.USER
    auth_methods: list[AuthMethod] = field(default_factory=list)

    def get_auth_method(self, auth_type: AuthType) -> Optional[AuthMethod]:
        for method in self.auth_methods:
            if method.type == auth_type:
                return method
        return None

    def has_auth_method(self, auth_type: AuthType) -> bool:
        return self.get_auth_method(auth_type) is not None

    @property
    def is_mod(self) -> bool:
        return self.privilege >= PrivilegeLevel.MOD

    @property
    def is_admin(self) -> bool:
        return self.privilege >= PrivilegeLevel.ADMIN

    @property
    def is_deleted(self) -> bool:
        return self.name == DELETED_USER_NAME


@dataclass
class Vote:
    user_id: int
    movie_id: int
    cycle_id: int


@dataclass
class Cycle:
    id: int = 0
    planned_end: Optional[datetime] = None
    ended: Optional[datetime] = None
    watched: list["Movie"] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.ended is None


@dataclass
class Movie:
    id: int = 0
    name: str = ""
    description: str = ""
    remarks: str = ""
    duration: str = ""
    rating: float = 0.0
    poster: str = UNKNOWN_POSTER
    links: list[Link] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)
    added_by: Optional[User] = None
    cycle_added: Optional[Cycle] = None
    cycle_watched: Optional[Cycle] = None
    removed: bool = False
    approved: bool = False
    votes: list[Vote] = field(default_factory=list)

    @property
    def normalized_name(self) -> str:
        return normalize_movie_name(self.name)

    @property
    def source_link(self) -> Optional[Link]:
        return self.links[0] if self.links else None

    @property
    def vote_count(self) -> int:
        return len(self.votes)

    @property
    def is_watched(self) -> bool:
        return self.cycle_watched is not None

    @property
    def is_active(self) -> bool:
        return not self.removed and self.cycle_watched is None

    def has_tag(self, name: str) -> bool:
        name = name.lower()
        return any(tag.name.lower() == name for tag in self.tags)


@dataclass
class UrlKey:
    url: str
    key: str
    type: UrlKeyType
    user_id: Optional[int] = None
    generated: Optional[datetime] = None


# ─── Config values ───────────────────────────────────────────────────────────

ConfigScalar = Union[str, int, bool]


@dataclass(frozen=True)
class ConfigValue:
    """A typed config value: exactly one of string, int or bool."""

    type: ConfigType
    value: ConfigScalar

    @classmethod
    def of(cls, value: ConfigScalar) -> "ConfigValue":
        # bool is checked first, it is a subclass of int
        if isinstance(value, bool):
            return cls(ConfigType.BOOL, value)
        if isinstance(value, int):
            return cls(ConfigType.INT, value)
        if isinstance(value, str):
            return cls(ConfigType.STRING, value)
        raise TypeError(f"Unsupported config value type: {type(value).__name__}")

    def _expect(self, expected: ConfigType, key: str) -> ConfigScalar:
        if self.type != expected:
            raise ConfigTypeError(
                f"Config key {key!r} holds a {self.type.name.lower()}, not a {expected.name.lower()}",
                context={"key": key, "stored": self.type.name, "requested": expected.name},
            )
        return self.value

    def as_string(self, key: str = "") -> str:
        return str(self._expect(ConfigType.STRING, key))

    def as_int(self, key: str = "") -> int:
        return int(self._expect(ConfigType.INT, key))

    def as_bool(self, key: str = "") -> bool:
        return bool(self._expect(ConfigType.BOOL, key))

    def to_json(self) -> dict:
        return {"Type": int(self.type), "Value": self.value}

    @classmethod
    def from_json(cls, data: dict) -> "ConfigValue":
        kind = ConfigType(int(data["Type"]))
        raw = data["Value"]
        if kind == ConfigType.BOOL:
            return cls(kind, bool(raw))
        if kind == ConfigType.INT:
            return cls(kind, int(raw))
        return cls(kind, str(raw))


# ─── Movie helpers ───────────────────────────────────────────────────────────


def normalize_movie_name(name: str) -> str:
    """Lower-case, collapse inner whitespace and trim."""
    return " ".join(name.lower().split())


def string_length(value: str) -> int:
    """Length of a form value as the field limits count it."""
    return len(value.strip())


def sort_movies_by_votes(movies: list[Movie]) -> list[Movie]:
    """Most votes first; ties broken by name ascending."""
    return sorted(movies, key=lambda m: (-m.vote_count, m.name))


def sort_movies_by_name(movies: list[Movie]) -> list[Movie]:
    return sorted(movies, key=lambda m: m.name)


_TAG_TERM = re.compile(r't:"([^"]*)"')


def parse_search_query(query: str) -> tuple[list[str], list[str]]:
    """Split a search string into plain words and ``t:"tag"`` terms."""
    tags = [t.strip().lower() for t in _TAG_TERM.findall(query) if t.strip()]
    rest = _TAG_TERM.sub(" ", query)
    words = [w for w in rest.lower().split() if w]
    return words, tags


def filter_movies_by_tags(movies: list[Movie], tags: list[str]) -> list[Movie]:
    """Keep movies that carry every one of the given tags."""
    if not tags:
        return list(movies)
    return [m for m in movies if all(m.has_tag(t) for t in tags)]
