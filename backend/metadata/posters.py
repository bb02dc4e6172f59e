"""Poster download, upload handling and normalisation.

Every poster ends up as a 200 px wide JPEG under the posters directory;
the stored movie field is the path relative to the web root
(``posters/{stem}.jpg``), which is served under ``/posters/``.
"""

import io
import logging
import os

import requests
from PIL import Image, UnidentifiedImageError

from entities import UNKNOWN_POSTER
from error_handler import InvalidInputError
from security_utils import is_safe_path, safe_file_stem

logger = logging.getLogger(__name__)

POSTER_WIDTH = 200
REQUEST_TIMEOUT = 15


def _resize(image: Image.Image) -> Image.Image:
    """Scale to POSTER_WIDTH keeping the aspect ratio (nearest neighbour)."""
    width, height = image.size
    if width <= 0 or height <= 0:
        raise ValueError("Empty image")
    new_height = max(1, round(height * POSTER_WIDTH / width))
    image = image.resize((POSTER_WIDTH, new_height), Image.Resampling.NEAREST)
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def _write_jpeg(data: bytes, stem: str, posters_dir: str) -> str:
    """Decode, resize and write an image. Returns the stored poster path."""
    stem = safe_file_stem(stem)
    target = os.path.join(posters_dir, f"{stem}.jpg")
    if not is_safe_path(target, posters_dir):
        raise ValueError(f"Poster path escapes posters directory: {stem}")
    with Image.open(io.BytesIO(data)) as img:
        resized = _resize(img)
    os.makedirs(posters_dir, exist_ok=True)
    resized.save(target, "JPEG")
    return f"posters/{stem}.jpg"


def download_poster(
    url: str,
    stem: str,
    posters_dir: str,
    session: requests.Session | None = None,
    timeout: int = REQUEST_TIMEOUT,
) -> str:
    """Fetch a remote poster and store it as ``posters/{stem}.jpg``.

    Failures never propagate: the unknown-poster placeholder is returned
    and a warning is logged.
    """
    if not url:
        return UNKNOWN_POSTER
    http = session or requests
    try:
        resp = http.get(url, timeout=timeout)
        resp.raise_for_status()
        return _write_jpeg(resp.content, stem, posters_dir)
    except (requests.RequestException, UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Poster download from %s failed: %s", url, e)
        return UNKNOWN_POSTER


def read_upload(stream, max_size: int) -> bytes:
    """Read an uploaded poster and check it decodes, without storing it.

    Returns:
        The raw bytes; empty when nothing was uploaded.

    Raises:
        InvalidInputError: Oversized upload or an unreadable image.
    """
    data = stream.read(max_size + 1)
    if len(data) > max_size:
        raise InvalidInputError("File too large for uploading")
    if data:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise InvalidInputError("Uploaded poster is not a readable image") from e
    return data


def store_poster(data: bytes, stem: str, posters_dir: str) -> str:
    """Write already read poster bytes as ``posters/{stem}.jpg``.

    Raises:
        InvalidInputError: The image cannot be decoded or written.
    """
    if not data:
        return UNKNOWN_POSTER
    try:
        return _write_jpeg(data, stem, posters_dir)
    except (UnidentifiedImageError, ValueError) as e:
        raise InvalidInputError("Uploaded poster is not a readable image") from e
    except OSError as e:
        logger.error("Failed to write uploaded poster %s: %s", stem, e)
        raise InvalidInputError("Could not store the uploaded poster") from e
