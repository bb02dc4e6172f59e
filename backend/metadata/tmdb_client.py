"""TMDB API v3 client for movie metadata lookups.

Resolves an IMDb id to a TMDB movie via the find endpoint, then fetches
the movie details. Uses the v3 ``api_key`` query parameter. Returns None
on errors (never crashes).
"""

import logging

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15

TMDB_POSTER_BASE = "https://image.tmdb.org/t/p/original"


class TMDBClient:
    """TMDB (The Movie Database) API v3 client."""

    BASE_URL = "https://api.themoviedb.org"

    def __init__(self, api_key: str, timeout: int = REQUEST_TIMEOUT):
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["Accept"] = "application/json"

    def _get(self, path: str, params: dict = None) -> dict | None:
        """GET request helper. Returns parsed JSON or None on failure."""
        url = f"{self.BASE_URL}{path}"
        query = {"api_key": self.api_key}
        if params:
            query.update(params)
        try:
            resp = self.session.get(url, params=query, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            # The exception text carries the URL and with it the api key
            logger.warning("TMDB GET %s failed: %s", path, type(e).__name__)
            return None
        return data if isinstance(data, dict) else None

    def find_by_imdb_id(self, imdb_id: str) -> int | None:
        """Map an IMDb title id (tt...) to a TMDB movie id.

        Returns:
            TMDB movie id, or None when the id is unknown or is not a movie.
        """
        data = self._get(
            f"/3/find/{imdb_id}",
            params={"language": "en-US", "external_source": "imdb_id"},
        )
        if not data:
            return None
        results = data.get("movie_results") or []
        if not results or not isinstance(results[0], dict):
            return None
        movie_id = results[0].get("id")
        return movie_id if isinstance(movie_id, int) else None

    def get_movie_details(self, movie_id: int) -> dict | None:
        """Get full details for a movie.

        Args:
            movie_id: TMDB movie ID.

        Returns:
            Movie details dict or None.
        """
        return self._get(f"/3/movie/{movie_id}")

    @staticmethod
    def get_poster_url(poster_path: str | None) -> str:
        """Build full poster URL from TMDB poster path."""
        if not poster_path:
            return ""
        return f"{TMDB_POSTER_BASE}{poster_path}"
