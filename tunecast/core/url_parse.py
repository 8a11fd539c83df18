"""
YouTube playlist URL parsing and validation.
"""

import re
import unicodedata

from tunecast.core.constants import PLAYLIST_URL_PATTERN
from tunecast.core.error_codes import JobError, ErrorCode


def normalize_text(text: str) -> str:
    """NFKC-normalise and strip a string coming from user input or the API."""
    return unicodedata.normalize("NFKC", text or "").strip()


def extract_playlist_id(url: str) -> str | None:
    """
    Extract the playlist id from a youtube.com/playlist?list=... URL.
    Anything after the id (&si= tracking, &index=, ...) is dropped.
    Returns None if the URL does not have the playlist shape.
    """
    url = normalize_text(url)
    if not url:
        return None
    m = re.match(PLAYLIST_URL_PATTERN, url)
    if not m:
        return None
    return m.group(1)


def validate_playlist_url(url: str) -> str:
    """
    Validate a playlist URL and return the playlist id.
    Raises JobError if invalid.
    """
    playlist_id = extract_playlist_id(url)
    if not playlist_id:
        raise JobError(ErrorCode.INVALID_URL,
                       f"Playlist URL must look like youtube.com/playlist?list=<id>: {url}")
    return playlist_id


def is_playlist_url(url: str) -> bool:
    """Quick check if a string looks like a YouTube playlist URL."""
    return extract_playlist_id(url) is not None
