"""Nomination engine: validating and persisting new movie entries.

A nomination is either autofilled from the source link's provider or typed
in by hand (form-fill). Validation problems are collected per form field
and raised together as one FormError.
"""

import logging
from typing import Mapping, Optional

from db.connector import DataConnector
from entities import (
    Movie,
    Tag,
    User,
    filter_movies_by_tags,
    normalize_movie_name,
    parse_search_query,
    sort_movies_by_votes,
    string_length,
)
from error_handler import FormError, InvalidInputError, MetadataError, PolicyDisabledError
from links import parse_links
from metadata import MetadataResolver, MovieMetadata
from metadata.posters import read_upload, store_poster
from services.site_config import (
    ENTRIES_REQUIRE_APPROVAL,
    FORMFILL_ENABLED,
    MAX_DESCRIPTION_LENGTH,
    MAX_LINK_LENGTH,
    MAX_REMARKS_LENGTH,
    MAX_TITLE_LENGTH,
    SiteConfig,
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_SIZE = 10 * 1024 * 1024
DUPLICATE_TITLE = "Movie already added to the poll or has been already watched"


class NominationEngine:
    """Turns the add-movie form into a stored Movie."""

    def __init__(
        self,
        data: DataConnector,
        site_config: SiteConfig,
        resolver: MetadataResolver,
        posters_dir: str = "posters",
        max_upload_size: int = MAX_UPLOAD_SIZE,
    ):
        self.data = data
        self.site_config = site_config
        self.resolver = resolver
        self.posters_dir = posters_dir
        self.max_upload_size = max_upload_size

    def add_movie(self, fields: Mapping[str, str], user: User, poster_file=None) -> int:
        """Validate the form and store the nomination.

        Args:
            fields: Form values: Title, Description, Links, Remarks, AutofillBox.
            user: The nominating user.
            poster_file: Optional binary stream of an uploaded poster.

        Returns:
            Id of the new movie.

        Raises:
            FormError: One or more fields failed validation.
            PolicyDisabledError: Form-fill requested while it is switched off.
            ConflictError: No cycle is open.
        """
        cfg = self.site_config
        errors: dict[str, str] = {}

        links = []
        try:
            links = parse_links(fields.get("Links", ""), cfg.get_int(MAX_LINK_LENGTH))
        except InvalidInputError as e:
            errors["Links"] = str(e)

        remarks = fields.get("Remarks", "").strip()
        max_remarks = cfg.get_int(MAX_REMARKS_LENGTH)
        if string_length(remarks) > max_remarks:
            errors["Remarks"] = f"Remarks too long! Max Length: {max_remarks} characters"

        poster_data = b""
        if fields.get("AutofillBox") == "on":
            meta = None
            if not errors:
                try:
                    meta = self.resolver.resolve(links[0])
                except MetadataError as e:
                    errors["Autofill"] = str(e)
                else:
                    if self.data.check_movie_exists(meta.title):
                        errors["Autofill"] = DUPLICATE_TITLE
        else:
            if not cfg.get_bool(FORMFILL_ENABLED):
                raise PolicyDisabledError("Adding movies without autofill is disabled")
            meta = self._formfill(fields, errors)
            if poster_file is not None and not errors:
                try:
                    poster_data = read_upload(poster_file, self.max_upload_size)
                except InvalidInputError as e:
                    errors["PosterFile"] = str(e)

        if errors:
            raise FormError(errors)

        for link in links:
            link.id = self.data.add_link(link)
        tags = []
        for name in meta.tags:
            tag = Tag(name=name)
            tag.id = self.data.add_tag(tag)
            tags.append(tag)

        movie = Movie(
            name=meta.title,
            description=meta.description,
            remarks=remarks,
            duration=meta.duration,
            rating=meta.rating,
            poster=meta.poster,
            links=links,
            tags=tags,
            added_by=user,
            approved=not cfg.get_bool(ENTRIES_REQUIRE_APPROVAL),
        )
        movie_id = self.data.add_movie(movie)
        logger.info("User %d nominated movie %d (%s)", user.id, movie_id, movie.name)

        # The file is written only once the row exists, named after its id
        if poster_data:
            stored = self.data.get_movie(movie_id)
            try:
                stored.poster = store_poster(poster_data, poster_stem(stored), self.posters_dir)
            except InvalidInputError as e:
                logger.warning("Poster for movie %d not stored: %s", movie_id, e)
            else:
                self.data.update_movie(stored)
        return movie_id

    def edit_movie(self, movie_id: int, fields: Mapping[str, str], poster_file=None) -> Movie:
        """Admin edit of an existing movie.

        Only the fields present in ``fields`` change: Title, Description,
        Remarks and Links (one per line, replacing the current list). An
        uploaded poster replaces the stored one.

        Raises:
            NotFoundError: Unknown movie.
            FormError: One or more fields failed validation.
            ConflictError: The new title collides with another movie.
        """
        cfg = self.site_config
        movie = self.data.get_movie(movie_id)
        errors: dict[str, str] = {}

        if "Title" in fields:
            title = fields["Title"].strip()
            max_title = cfg.get_int(MAX_TITLE_LENGTH)
            if not title:
                errors["Title"] = "A title is required"
            elif string_length(title) > max_title:
                errors["Title"] = f"Title too long! Max Length: {max_title} characters"
            elif (
                normalize_movie_name(title) != normalize_movie_name(movie.name)
                and self.data.check_movie_exists(title)
            ):
                errors["Title"] = DUPLICATE_TITLE
            else:
                movie.name = title

        if "Description" in fields:
            description = fields["Description"].strip()
            max_description = cfg.get_int(MAX_DESCRIPTION_LENGTH)
            if string_length(description) > max_description:
                errors["Description"] = f"Description too long! Max Length: {max_description} characters"
            else:
                movie.description = description

        if "Remarks" in fields:
            remarks = fields["Remarks"].strip()
            max_remarks = cfg.get_int(MAX_REMARKS_LENGTH)
            if string_length(remarks) > max_remarks:
                errors["Remarks"] = f"Remarks too long! Max Length: {max_remarks} characters"
            else:
                movie.remarks = remarks

        links = None
        if "Links" in fields:
            try:
                links = parse_links(fields["Links"], cfg.get_int(MAX_LINK_LENGTH))
            except InvalidInputError as e:
                errors["Links"] = str(e)

        poster_data = b""
        if poster_file is not None:
            try:
                poster_data = read_upload(poster_file, self.max_upload_size)
            except InvalidInputError as e:
                errors["PosterFile"] = str(e)

        if errors:
            raise FormError(errors)

        if links is not None:
            for link in links:
                link.id = self.data.add_link(link)
            movie.links = links
        if poster_data:
            movie.poster = store_poster(poster_data, poster_stem(movie), self.posters_dir)
        self.data.update_movie(movie)
        return self.data.get_movie(movie_id)

    def _formfill(self, fields: Mapping[str, str], errors: dict) -> Optional[MovieMetadata]:
        cfg = self.site_config
        title = fields.get("Title", "").strip()
        max_title = cfg.get_int(MAX_TITLE_LENGTH)
        if not title:
            errors["Title"] = "A title is required when not using autofill!"
        elif string_length(title) > max_title:
            errors["Title"] = f"Title too long! Max Length: {max_title} characters"
        elif self.data.check_movie_exists(title):
            errors["Title"] = DUPLICATE_TITLE

        description = fields.get("Description", "").strip()
        max_description = cfg.get_int(MAX_DESCRIPTION_LENGTH)
        if string_length(description) > max_description:
            errors["Description"] = f"Description too long! Max Length: {max_description} characters"

        return MovieMetadata(title=title, description=description)


def poster_stem(movie: Movie) -> str:
    """File stem for an uploaded poster; the id prefix keeps similar titles apart."""
    return f"{movie.id}-{movie.name}"


def list_movies(data: DataConnector, query: str = "", include_unapproved: bool = False) -> list[Movie]:
    """Active movies for the front page, optionally filtered by a search query.

    Plain words are matched against titles; ``t:"tag"`` terms keep movies
    carrying every listed tag. Result is ordered by votes, then name.
    """
    words, tags = parse_search_query(query or "")
    if words:
        movies = [m for m in data.search_movie_titles(" ".join(words)) if m.is_active]
    else:
        movies = data.get_active_movies()
    movies = filter_movies_by_tags(movies, tags)
    if not include_unapproved:
        movies = [m for m in movies if m.approved]
    return sort_movies_by_votes(movies)
