"""Jikan (unofficial MyAnimeList) REST client for anime lookups.

No API key required. Returns None on errors (never crashes); the resolver
turns a None into a user-facing MetadataError.
"""

import logging

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15


class JikanClient:
    """Jikan API v3 client."""

    BASE_URL = "https://api.jikan.moe/v3"

    def __init__(self, timeout: int = REQUEST_TIMEOUT):
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["Accept"] = "application/json"

    def _get(self, path: str) -> dict | None:
        """GET request helper. Returns parsed JSON or None on failure."""
        url = f"{self.BASE_URL}{path}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Jikan GET %s failed: %s", path, e)
            return None
        return data if isinstance(data, dict) else None

    def get_anime(self, mal_id: str) -> dict | None:
        """Get the anime record for a MyAnimeList id.

        Args:
            mal_id: Numeric MyAnimeList anime id.

        Returns:
            Anime dict (type, episodes, duration, title, genres, ...) or None.
        """
        return self._get(f"/anime/{mal_id}")
