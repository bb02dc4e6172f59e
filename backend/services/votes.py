"""Voting engine: vote quota and vote toggling."""

import logging
from typing import Optional

from db.connector import DataConnector
from entities import Movie
from error_handler import ConflictError, InvalidInputError, PolicyDisabledError
from services.site_config import MAX_USER_VOTES, UNLIMITED_VOTES, VOTING_ENABLED, SiteConfig

logger = logging.getLogger(__name__)


class VotingEngine:
    """Applies the site's voting policy on top of the data layer."""

    def __init__(self, data: DataConnector, site_config: SiteConfig):
        self.data = data
        self.site_config = site_config

    def voting_enabled(self) -> bool:
        return self.site_config.get_bool(VOTING_ENABLED)

    def user_votes(self, user_id: int) -> tuple[list[Movie], list[Movie]]:
        """Split a user's votes into (active, watched); removed movies are dropped."""
        active, watched = [], []
        for movie in self.data.get_user_votes(user_id):
            if movie.removed:
                continue
            if movie.is_watched:
                watched.append(movie)
            else:
                active.append(movie)
        return active, watched

    def max_votes(self) -> Optional[int]:
        """Active-vote quota per user, or None when votes are unlimited."""
        if self.site_config.get_bool(UNLIMITED_VOTES):
            return None
        return self.site_config.get_int(MAX_USER_VOTES)

    def available_votes(self, user_id: int) -> int:
        quota = self.max_votes()
        if quota is None:
            return 1
        active, _ = self.user_votes(user_id)
        return max(0, quota - len(active))

    def toggle_vote(self, user_id: int, movie_id: int) -> bool:
        """Add the vote if absent, otherwise remove it.

        Returns:
            True when a vote was added, False when one was removed.

        Raises:
            PolicyDisabledError: Voting is switched off or the quota is used up.
            InvalidInputError: The movie is not approved yet.
            ConflictError: The movie is watched or removed.
        """
        if not self.voting_enabled():
            raise PolicyDisabledError("Voting is not enabled")

        movie = self.data.get_movie(movie_id)
        if self.data.user_voted_for_movie(user_id, movie_id):
            if movie.is_watched:
                raise ConflictError("Cannot remove a vote for a movie that has been watched")
            self.data.delete_vote(user_id, movie_id)
            logger.debug("User %d removed vote for movie %d", user_id, movie_id)
            return False

        if not movie.approved:
            raise InvalidInputError("This movie has not been approved yet")
        self.data.add_vote(user_id, movie_id, max_votes=self.max_votes())
        logger.debug("User %d voted for movie %d", user_id, movie_id)
        return True
