"""Link validation, canonicalisation and provider classification."""

import re
from typing import Optional

from entities import Link, LinkType, string_length
from error_handler import InvalidInputError

# Known mirrors rewritten to their canonical host
_HOST_REPLACEMENTS = (
    ("m.imdb.com", "imdb.com"),
)

_LINK_RE = re.compile(r"[a-zA-Z0-9:._\+]{1,256}\.[a-zA-Z0-9()]{1,6}[a-zA-Z0-9%_:\+.\/]*")

_MAL_ID_RE = re.compile(r"[^\/]*\/anime\/([0-9]+)")
_IMDB_ID_RE = re.compile(r"[^\/]*\/title\/(tt[0-9]*)")


def normalize_url(raw: str) -> str:
    """Trim, drop ``/?...`` query noise and canonicalise known hosts."""
    url = raw.strip()
    idx = url.find("/?")
    if idx != -1:
        url = url[:idx]
    for old, new in _HOST_REPLACEMENTS:
        url = url.replace(old, new)
    return url


def classify_url(url: str) -> LinkType:
    lowered = url.lower()
    if "imdb" in lowered:
        return LinkType.IMDB
    if "myanimelist" in lowered:
        return LinkType.MAL
    return LinkType.MISC


def validate_link(raw: str, is_source: bool = False) -> Link:
    """Turn user input into a normalised, classified Link.

    Raises:
        InvalidInputError: The input does not look like a web address.
    """
    url = normalize_url(raw)
    match = _LINK_RE.search(url)
    if not url or match is None:
        raise InvalidInputError(f"Invalid link: {raw.strip()}")
    # Scheme check only looks at the start of the string
    if "//" not in url[:8]:
        url = "https://" + url
    return Link(url=url, type=classify_url(url), is_source=is_source)


def parse_links(text: str, max_length: int) -> list[Link]:
    """Parse the newline separated Links form field.

    Blank lines are ignored. The first link becomes the source link.

    Raises:
        InvalidInputError: No links, an invalid link or a link over
            ``max_length`` characters.
    """
    lines = [line for line in text.replace("\r", "").split("\n") if line.strip()]
    if not lines:
        raise InvalidInputError("No link found")

    links = []
    for idx, line in enumerate(lines):
        length = string_length(line)
        if length > max_length:
            raise InvalidInputError(
                f"A Link is too long! Max Length: {max_length} characters, "
                f"found a link with {length} characters."
            )
        links.append(validate_link(line, is_source=(idx == 0)))
    return links


def get_mal_id(url: str) -> Optional[str]:
    match = _MAL_ID_RE.search(url)
    return match.group(1) if match else None


def get_imdb_id(url: str) -> Optional[str]:
    match = _IMDB_ID_RE.search(url)
    if match and match.group(1) != "tt":
        return match.group(1)
    return None
