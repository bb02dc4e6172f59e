"""Metadata package -- Jikan and TMDB API clients with resolver.

MetadataResolver turns the source link of a nomination into the fields of
a movie (title, description, poster, duration, rating, tags). The provider
is picked by the link type; site policy (provider switches, banned anime
types, episode and length caps) is read from SiteConfig on every call.
"""

import logging
import re
from dataclasses import dataclass, field

from entities import Link, LinkType, UNKNOWN_POSTER
from error_handler import MetadataError
from links import get_imdb_id, get_mal_id
from metadata.jikan_client import JikanClient
from metadata.posters import download_poster
from metadata.tmdb_client import TMDBClient
from services.site_config import (
    JIKAN_BANNED_TYPES,
    JIKAN_ENABLED,
    JIKAN_MAX_EPISODES,
    MAX_MULT_EP_LENGTH,
    TMDB_ENABLED,
    TMDB_TOKEN,
    SiteConfig,
)

logger = logging.getLogger(__name__)

MAL_TAG = "MAL"
IMDB_TAG = "IMDB"

_EPISODE_MINUTES = re.compile(r"([0-9]{1,3}) min")


@dataclass
class MovieMetadata:
    """Normalized provider result used to fill in a nomination."""

    title: str
    description: str = ""
    poster: str = UNKNOWN_POSTER
    duration: str = ""
    rating: float = 0.0
    tags: list[str] = field(default_factory=list)


def format_runtime(minutes) -> str:
    """Render a runtime in minutes as ``"H hr M min"``."""
    if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes <= 0:
        return ""
    return f"{minutes // 60} hr {minutes % 60} min"


def _as_float(value) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


def _genre_names(data: dict) -> list[str]:
    names = []
    for genre in data.get("genres") or []:
        if isinstance(genre, dict) and isinstance(genre.get("name"), str):
            names.append(genre["name"])
    return names


class MetadataResolver:
    """Resolves a nomination's source link through Jikan or TMDB.

    Provider failures are reported as MetadataError with a message meant
    for the nominating user; nothing here raises anything else.
    """

    def __init__(self, site_config: SiteConfig, posters_dir: str = "posters", timeout: int = 15):
        self.site_config = site_config
        self.posters_dir = posters_dir
        self.timeout = timeout
        self._jikan_instance = None

    @property
    def _jikan(self) -> JikanClient:
        """Lazy Jikan client creation. No key needed."""
        if self._jikan_instance is None:
            self._jikan_instance = JikanClient(timeout=self.timeout)
        return self._jikan_instance

    def _tmdb(self, token: str) -> TMDBClient:
        # The token is admin editable, so the client is not cached
        return TMDBClient(token, timeout=self.timeout)

    def resolve(self, source: Link) -> MovieMetadata:
        """Fetch metadata for the source link of a nomination.

        Raises:
            MetadataError: Unsupported link, provider disabled, policy
                rejection or provider failure.
        """
        if source.type not in (LinkType.IMDB, LinkType.MAL):
            raise MetadataError("To use autofill an imdb or myanimelist link as first link is required")
        try:
            if source.type == LinkType.MAL:
                return self._resolve_jikan(source.url)
            return self._resolve_tmdb(source.url)
        except MetadataError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error("Autofill for %s failed on unexpected provider data: %s", source.url, e)
            raise MetadataError(
                f"Could not complete autofill, contact your site administrator\n Error: {e}"
            ) from e

    # ─── Jikan ───────────────────────────────────────────────────────────

    def _resolve_jikan(self, url: str) -> MovieMetadata:
        cfg = self.site_config
        if not cfg.get_bool(JIKAN_ENABLED):
            raise MetadataError("Jikan API usage was not enabled by the site administrator")

        mal_id = get_mal_id(url)
        if not mal_id:
            raise MetadataError("Could not retrive anime id from provided link, did you input a manga link?")

        data = self._jikan.get_anime(mal_id)
        if not data:
            raise MetadataError("Could not retrieve anime information from Jikan, try again later")

        anime_type = data.get("type")
        banned = [t.strip().lower() for t in cfg.get_string(JIKAN_BANNED_TYPES).split(",") if t.strip()]
        if isinstance(anime_type, str) and anime_type.lower() in banned:
            raise MetadataError(
                f"The anime type {anime_type} was banned by the sites administrator. "
                "Please choose a different type!"
            )

        episodes = data.get("episodes")
        if not isinstance(episodes, int) or isinstance(episodes, bool):
            raise MetadataError(
                "The episode count of this anime has not been published yet. "
                "Therefore this anime can not be added."
            )

        max_episodes = cfg.get_int(JIKAN_MAX_EPISODES)
        if max_episodes != 0 and episodes > max_episodes:
            raise MetadataError(
                f"The anime has too many ({episodes}) episodes. "
                f"The site administrator only allowed animes up to {max_episodes} episodes."
            )

        duration = data.get("duration")
        max_length = cfg.get_int(MAX_MULT_EP_LENGTH)
        if isinstance(duration, str) and duration and duration != "Unknown" and max_length >= 0:
            match = _EPISODE_MINUTES.search(duration)
            if match is None:
                raise MetadataError(
                    "The episode duration of this anime has not been published or has an "
                    "unexpected format. Therefore this anime can not be added."
                )
            if int(match.group(1)) * episodes > max_length:
                raise MetadataError(
                    "The duration of this series (episode duration * episodes) is longer than "
                    "the maximum duration defined by the admin. Therefore this anime can not be added."
                )

        title = data.get("title") or ""
        if not isinstance(title, str) or not title:
            raise MetadataError("Jikan returned no title for this anime")
        english = data.get("title_english")
        if isinstance(english, str) and english and english != title:
            title = f"{title} ({english})"

        poster = download_poster(
            data.get("image_url") or "", mal_id, self.posters_dir, session=self._jikan.session, timeout=self.timeout
        )
        logger.info("Resolved MAL %s as %r", mal_id, title)
        return MovieMetadata(
            title=title,
            description=data.get("synopsis") or "",
            poster=poster,
            duration=duration if isinstance(duration, str) else "",
            rating=_as_float(data.get("score")),
            tags=[MAL_TAG] + _genre_names(data),
        )

    # ─── TMDB ────────────────────────────────────────────────────────────

    def _resolve_tmdb(self, url: str) -> MovieMetadata:
        cfg = self.site_config
        if not cfg.get_bool(TMDB_ENABLED):
            raise MetadataError("Tmdb API usage was not enabled by the site administrator")
        token = cfg.get_string(TMDB_TOKEN)
        if not token:
            raise MetadataError("The Tmdb integration is not configured correctly, contact the site administrator")

        imdb_id = get_imdb_id(url)
        if not imdb_id:
            raise MetadataError("Could not retrive movie information from the first provided link")

        client = self._tmdb(token)
        movie_id = client.find_by_imdb_id(imdb_id)
        if movie_id is None:
            raise MetadataError("Could not find a movie for the provided imdb link on Tmdb")
        data = client.get_movie_details(movie_id)
        if not data:
            raise MetadataError("Could not retrieve movie information from Tmdb, try again later")

        title = data.get("title") or ""
        if not isinstance(title, str) or not title:
            raise MetadataError("Tmdb returned no title for this movie")
        release = data.get("release_date")
        if isinstance(release, str) and len(release) >= 4 and release[:4].isdigit():
            title = f"{title} ({release[:4]})"

        poster = download_poster(
            TMDBClient.get_poster_url(data.get("poster_path")),
            imdb_id,
            self.posters_dir,
            session=client.session,
            timeout=self.timeout,
        )
        logger.info("Resolved IMDb %s as %r", imdb_id, title)
        return MovieMetadata(
            title=title,
            description=data.get("overview") or "",
            poster=poster,
            duration=format_runtime(data.get("runtime")),
            rating=_as_float(data.get("vote_average")),
            tags=[IMDB_TAG] + _genre_names(data),
        )
