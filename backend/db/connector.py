"""Data-layer contract implemented by every persistence backend.

Lookups by id raise NotFoundError when nothing matches, except the
``get_tag`` / ``get_auth_method`` / ``get_link`` family which return None.
Config getters raise NoValueError (carrying the caller's default) for
absent keys and ConfigTypeError when the stored variant differs.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from entities import AuthMethod, AuthType, Cycle, Link, Movie, Tag, User, Vote


class DataConnector(ABC):
    """Abstract base class for persistence backends."""

    # ─── Create ──────────────────────────────────────────────────────────

    @abstractmethod
    def add_cycle(self, planned_end: Optional[datetime] = None) -> int:
        """Open a new cycle and return its id.

        Raises:
            ConflictError: Another cycle is still open.
        """

    @abstractmethod
    def add_old_cycle(self, cycle: Cycle) -> int:
        """Insert an already finished cycle (imports and tests)."""

    @abstractmethod
    def add_movie(self, movie: Movie) -> int:
        """Persist a new movie in the current cycle.

        ``movie.links`` and ``movie.tags`` must already carry ids. The
        movie's cycle_added is set to the current cycle.

        Raises:
            ConflictError: No open cycle, or the normalized name exists.
        """

    @abstractmethod
    def add_user(self, user: User) -> int:
        """Raises ConflictError on a case-insensitive name collision."""

    @abstractmethod
    def add_tag(self, tag: Tag) -> int:
        """Return the id of an equal tag (case-insensitive) or a new one."""

    @abstractmethod
    def add_auth_method(self, auth: AuthMethod) -> int:
        """Raises ConflictError when the extId is already bound for the type."""

    @abstractmethod
    def add_link(self, link: Link) -> int:
        """Return the id of an equal link (case-insensitive) or a new one."""

    @abstractmethod
    def add_vote(self, user_id: int, movie_id: int, max_votes: Optional[int] = None) -> None:
        """Record a vote in the current cycle.

        The quota check and the insert happen atomically. Only votes for
        movies that are neither removed nor watched count against
        ``max_votes``; ``None`` means unlimited.

        Raises:
            NotFoundError: Unknown user or movie.
            ConflictError: No open cycle, the movie is removed or watched,
                or the user already voted for it.
            PolicyDisabledError: The user already holds ``max_votes`` active votes.
        """

    # ─── Read ────────────────────────────────────────────────────────────

    @abstractmethod
    def get_cycle(self, cycle_id: int) -> Cycle: ...

    @abstractmethod
    def get_current_cycle(self) -> Optional[Cycle]:
        """Return the open cycle, or None when no cycle is open."""

    @abstractmethod
    def get_movie(self, movie_id: int) -> Movie: ...

    @abstractmethod
    def get_active_movies(self) -> list[Movie]:
        """Movies that are neither removed nor watched."""

    @abstractmethod
    def get_user(self, user_id: int) -> User: ...

    @abstractmethod
    def get_users(self, offset: int, count: int) -> list[User]:
        """Users ordered by id, windowed by offset and count."""

    @abstractmethod
    def get_user_votes(self, user_id: int) -> list[Movie]:
        """Every movie the user currently has a vote row for."""

    @abstractmethod
    def get_user_movies(self, user_id: int) -> list[Movie]:
        """Movies nominated by the user."""

    @abstractmethod
    def get_users_with_auth(self, auth_type: AuthType, exclusive: bool) -> list[User]:
        """Users bound to ``auth_type``; with exclusive, bound to nothing else.

        Raises:
            NotFoundError: No user matches.
        """

    @abstractmethod
    def get_tag(self, tag_id: int) -> Optional[Tag]: ...

    @abstractmethod
    def get_auth_method(self, auth_id: int) -> Optional[AuthMethod]: ...

    @abstractmethod
    def get_link(self, link_id: int) -> Optional[Link]: ...

    @abstractmethod
    def get_past_cycles(self, offset: int, count: int) -> list[Cycle]:
        """Ended cycles, newest first, with ``watched`` filled in.

        A negative offset is treated as zero.
        """

    @abstractmethod
    def get_movies_from_cycle(self, cycle_id: int) -> list[Movie]:
        """Movies watched in the given cycle. NotFoundError for unknown ids."""

    # ─── Find ────────────────────────────────────────────────────────────

    @abstractmethod
    def find_tag(self, name: str) -> int:
        """Id of the tag with this name (case-insensitive) or NotFoundError."""

    @abstractmethod
    def find_link(self, url: str) -> int:
        """Id of the link with this url (case-insensitive) or NotFoundError."""

    # ─── Update ──────────────────────────────────────────────────────────

    @abstractmethod
    def update_user(self, user: User) -> None:
        """Insert or replace the user record, auth bindings included."""

    @abstractmethod
    def update_movie(self, movie: Movie) -> None:
        """Insert or replace the movie record, links and tags included."""

    @abstractmethod
    def update_cycle(self, cycle: Cycle) -> None:
        """Insert or replace the cycle record.

        Raises:
            ConflictError: The write would leave two open cycles.
        """

    @abstractmethod
    def update_auth_method(self, auth: AuthMethod) -> None:
        """Raises NotFoundError for unknown ids."""

    # ─── Delete ──────────────────────────────────────────────────────────

    @abstractmethod
    def delete_vote(self, user_id: int, movie_id: int) -> None:
        """Raises NotFoundError when the vote does not exist."""

    @abstractmethod
    def delete_tag(self, tag_id: int) -> None: ...

    @abstractmethod
    def delete_auth_method(self, auth_id: int) -> None: ...

    @abstractmethod
    def delete_link(self, link_id: int) -> None: ...

    @abstractmethod
    def remove_movie(self, movie_id: int) -> None:
        """Soft-delete a movie and drop its votes.

        Raises:
            ConflictError: The movie has already been watched.
        """

    @abstractmethod
    def purge_user(self, user_id: int) -> None:
        """Delete the user, their votes and their auth bindings."""

    @abstractmethod
    def decay_votes(self, age: int) -> None:
        """Drop votes cast more than ``age`` cycles ago.

        Cycles are sorted newest first; the id at index ``age`` is the
        boundary and votes from older cycles are removed unless the movie
        has been watched. Nothing happens when there are not enough cycles.
        """

    # ─── Auth queries ────────────────────────────────────────────────────

    @abstractmethod
    def user_local_login(self, name: str, hashed_pw: str) -> User:
        """Raises UnauthorizedError on unknown name or wrong password."""

    @abstractmethod
    def user_discord_login(self, ext_id: str) -> User: ...

    @abstractmethod
    def user_twitch_login(self, ext_id: str) -> User: ...

    @abstractmethod
    def user_patreon_login(self, ext_id: str) -> User: ...

    @abstractmethod
    def check_oauth_usage(self, ext_id: str, auth_type: AuthType) -> bool:
        """True when some user already has this external id bound."""

    # ─── Search and lookups──────────────────────────────────────────────

    @abstractmethod
    def search_movie_titles(self, query: str) -> list[Movie]:
        """Whitespace-tokenized AND-substring match over lower-cased titles."""

    @abstractmethod
    def check_movie_exists(self, title: str) -> bool: ...

    @abstractmethod
    def check_user_exists(self, name: str) -> bool: ...

    @abstractmethod
    def user_voted_for_movie(self, user_id: int, movie_id: int) -> bool: ...

    # ─── Config ──────────────────────────────────────────────────────────

    @abstractmethod
    def get_cfg_string(self, key: str, default: str) -> str: ...

    @abstractmethod
    def get_cfg_int(self, key: str, default: int) -> int: ...

    @abstractmethod
    def get_cfg_bool(self, key: str, default: bool) -> bool: ...

    @abstractmethod
    def set_cfg_string(self, key: str, value: str) -> None: ...

    @abstractmethod
    def set_cfg_int(self, key: str, value: int) -> None: ...

    @abstractmethod
    def set_cfg_bool(self, key: str, value: bool) -> None: ...

    @abstractmethod
    def delete_cfg_key(self, key: str) -> None: ...

    # ─── Maintenance ─────────────────────────────────────────────────────

    @abstractmethod
    def delete_user(self, user_id: int) -> None:
        """Hard delete of the user row only (tooling and tests)."""

    @abstractmethod
    def delete_movie(self, movie_id: int) -> None:
        """Hard delete of the movie and its votes (tooling and tests)."""

    @abstractmethod
    def delete_cycle(self, cycle_id: int) -> None:
        """Hard delete of a cycle (tooling and tests)."""

    @abstractmethod
    def get_votes(self, user_id: int) -> list[Vote]:
        """Raw vote rows of a user."""

    def user_login(self, auth_type: AuthType, ext_id: str) -> User:
        """Dispatch an OAuth login to the provider specific lookup."""
        if auth_type == AuthType.TWITCH:
            return self.user_twitch_login(ext_id)
        if auth_type == AuthType.DISCORD:
            return self.user_discord_login(ext_id)
        if auth_type == AuthType.PATREON:
            return self.user_patreon_login(ext_id)
        raise ValueError(f"{auth_type.value} is not an OAuth provider")

    def close(self) -> None:
        """Release backend resources. Default is a no-op."""
