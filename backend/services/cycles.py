"""Cycle engine: opening, two-stage closing and history of voting rounds.

A cycle moves OPEN -> SELECTING -> CLOSED. The SELECTING stage is not
stored on the cycle itself; it is marked by the ``CycleEnding`` config key
holding the id of the cycle being closed, with voting switched off.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from db.connector import DataConnector
from entities import Cycle, Movie, round_time, sort_movies_by_votes, utc_now
from error_handler import ConflictError, InvalidInputError, NoValueError
from services.site_config import CYCLE_ENDING, VOTING_ENABLED, SiteConfig

logger = logging.getLogger(__name__)

END_DATE_FORMAT = "%Y-%m-%d"


def parse_end_date(value: str) -> Optional[datetime]:
    """Parse an admin supplied ``YYYY-MM-DD`` end date (UTC midnight).

    Empty input means "now" and returns None.

    Raises:
        InvalidInputError: Malformed date.
    """
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, END_DATE_FORMAT)
    except ValueError:
        raise InvalidInputError(f"Invalid end date {value!r}, expected YYYY-MM-DD") from None
    return parsed.replace(tzinfo=timezone.utc)


class CycleEngine:
    """Drives the cycle state machine on top of a DataConnector."""

    def __init__(self, data: DataConnector, site_config: SiteConfig):
        self.data = data
        self.site_config = site_config

    def current_cycle(self) -> Optional[Cycle]:
        return self.data.get_current_cycle()

    def start_cycle(self, planned_end: Optional[datetime] = None) -> int:
        """Open a new cycle and re-enable voting.

        Raises:
            ConflictError: A cycle is still open.
        """
        cycle_id = self.data.add_cycle(round_time(planned_end))
        self.site_config.set_bool(VOTING_ENABLED, True)
        self._clear_ending()
        return cycle_id

    def set_planned_end(self, planned_end: Optional[datetime]) -> Cycle:
        """Move the planned end of the open cycle.

        Raises:
            ConflictError: No cycle is open.
        """
        cycle = self.data.get_current_cycle()
        if cycle is None:
            raise ConflictError("No cycle active")
        cycle.planned_end = round_time(planned_end)
        self.data.update_cycle(cycle)
        logger.info("Cycle %d planned end set to %s", cycle.id, cycle.planned_end)
        return cycle

    def closing_cycle_id(self) -> Optional[int]:
        """Id of the cycle in the selection stage, or None."""
        try:
            value = self.data.get_cfg_string(CYCLE_ENDING, "")
        except NoValueError:
            return None
        return int(value) if value.isdigit() else None

    def is_closing(self) -> bool:
        return self.closing_cycle_id() is not None

    def begin_close(self) -> list[Movie]:
        """Stage one: stop voting and return the candidates for selection.

        Candidates are the active movies, most votes first, ties by name.

        Raises:
            ConflictError: No cycle is open.
        """
        cycle = self.data.get_current_cycle()
        if cycle is None:
            raise ConflictError("No cycle active")
        self.site_config.set_bool(VOTING_ENABLED, False)
        self.site_config.set_string(CYCLE_ENDING, str(cycle.id))
        logger.info("Closing cycle %d: voting disabled", cycle.id)
        return sort_movies_by_votes(self.data.get_active_movies())

    def cancel_close(self) -> None:
        """Abort stage one and turn voting back on."""
        self.site_config.set_bool(VOTING_ENABLED, True)
        self._clear_ending()
        logger.info("Cycle close cancelled")

    def finish_close(self, winner_ids: Iterable[int], ended: Optional[datetime] = None) -> Cycle:
        """Stage two: end the open cycle and mark the selected winners watched.

        Voting stays disabled until the next cycle is started.

        Args:
            winner_ids: Ids of active movies to mark as watched.
            ended: Override end time; defaults to now.

        Raises:
            ConflictError: No cycle is open.
            NotFoundError: A winner id is unknown.
            InvalidInputError: A winner is removed or already watched.
        """
        cycle = self.data.get_current_cycle()
        if cycle is None:
            raise ConflictError("No cycle active")

        winners = []
        for movie_id in dict.fromkeys(winner_ids):
            movie = self.data.get_movie(movie_id)
            if not movie.is_active:
                raise InvalidInputError(f"Movie {movie.name!r} cannot be selected, it is not active")
            winners.append(movie)

        # The cycle must be ended before movies may reference it as watched
        cycle.ended = round_time(ended) if ended is not None else utc_now()
        self.data.update_cycle(cycle)
        for movie in winners:
            movie.cycle_watched = cycle
            self.data.update_movie(movie)

        self._clear_ending()
        logger.info("Closed cycle %d with %d watched movie(s)", cycle.id, len(winners))
        return self.data.get_cycle(cycle.id)

    def past_cycles(self, offset: int = 0, count: int = 100) -> list[Cycle]:
        return self.data.get_past_cycles(offset, count)

    def decay_votes(self, age: int) -> None:
        if age < 0:
            raise InvalidInputError("Decay age must not be negative")
        self.data.decay_votes(age)

    def _clear_ending(self) -> None:
        self.site_config.delete(CYCLE_ENDING)
