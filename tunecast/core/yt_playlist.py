"""
Playlist metadata fetching via the YouTube Data API.

Pages through playlistItems, drops items that are too long or no longer
available, and appends the survivors to a staging file as they arrive.
"""

import re
import logging
from dataclasses import dataclass
from pathlib import Path

import requests

from tunecast.core.constants import (
    ErrorCode, YOUTUBE_API_BASE, YOUTUBE_WATCH_URL, YOUTUBE_CHANNEL_URL,
    PLAYLIST_PAGE_SIZE, PLAYLIST_PAGE_TIMEOUT, DURATIONS_TIMEOUT,
    THUMBNAIL_PROBE_TIMEOUT, DEFAULT_MAX_ITEM_MINUTES,
    UNAVAILABLE_TITLES, UNAVAILABLE_DESCRIPTION,
)
from tunecast.core.error_codes import JobError
from tunecast.core.models import PlaylistItem, Thumbnails
from tunecast.core.staging import StagingWriter
from tunecast.core.url_parse import validate_playlist_url, normalize_text

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(
    r'^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:[\d.]+S)?)?$', re.IGNORECASE,
)


def parse_minutes(duration: str) -> int:
    """
    Whole minutes in an ISO-8601 duration such as "PT1H2M30S".
    Seconds are ignored. Unparseable input counts as 0 minutes.
    """
    m = _DURATION_RE.match((duration or "").strip())
    if not m:
        logger.debug("Unparseable duration %r", duration)
        return 0
    days, hours, minutes = (int(g) if g else 0 for g in m.groups())
    return days * 24 * 60 + hours * 60 + minutes


def is_unavailable(snippet: dict) -> bool:
    """True for entries the provider reports as deleted or private."""
    if snippet.get('title') in UNAVAILABLE_TITLES:
        return True
    if snippet.get('description') == UNAVAILABLE_DESCRIPTION:
        return True
    return not snippet.get('videoOwnerChannelId')


@dataclass
class FetchResult:
    playlist_id: str
    staged: int = 0
    pages: int = 0
    dropped_pages: int = 0
    too_long: int = 0
    unavailable: int = 0


class PlaylistFetcher:
    """Reads a playlist from the YouTube Data API into a staging file."""

    def __init__(self, api_key: str, session: requests.Session | None = None,
                 page_timeout: float = PLAYLIST_PAGE_TIMEOUT,
                 durations_timeout: float = DURATIONS_TIMEOUT,
                 thumbnail_timeout: float = THUMBNAIL_PROBE_TIMEOUT):
        if not api_key:
            raise JobError(ErrorCode.MISSING_API_KEY,
                           "YouTube API key not configured (set youtube_api_key or YOUTUBE_API_KEY)")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.page_timeout = page_timeout
        self.durations_timeout = durations_timeout
        self.thumbnail_timeout = thumbnail_timeout

    # ── HTTP ──────────────────────────────────────────────────────────

    def _get_json(self, endpoint: str, params: dict, timeout: float) -> dict:
        params = dict(params, key=self.api_key)
        try:
            resp = self.session.get(f"{YOUTUBE_API_BASE}/{endpoint}",
                                    params=params, timeout=timeout)
        except requests.exceptions.Timeout:
            raise JobError(ErrorCode.CATALOG_REQUEST_FAILED,
                           f"{endpoint} request timed out after {timeout}s")
        except requests.exceptions.RequestException as e:
            raise JobError(ErrorCode.CATALOG_REQUEST_FAILED, f"{endpoint} request failed: {e}")

        if resp.status_code != 200:
            raise JobError(ErrorCode.CATALOG_REQUEST_FAILED,
                           f"{endpoint} returned HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise JobError(ErrorCode.CATALOG_REQUEST_FAILED, f"{endpoint} returned invalid JSON: {e}")
        if not isinstance(data, dict):
            raise JobError(ErrorCode.CATALOG_REQUEST_FAILED, f"{endpoint} returned unexpected payload")
        return data

    def _is_reachable(self, url: str) -> bool:
        try:
            resp = self.session.head(url, timeout=self.thumbnail_timeout, allow_redirects=True)
            return resp.ok
        except requests.exceptions.RequestException as e:
            logger.debug("Thumbnail %s unreachable: %s", url, e)
            return False

    # ── Filtering ─────────────────────────────────────────────────────

    def too_long_ids(self, video_ids: list[str], max_item_minutes: int) -> set[str]:
        """Ids in the batch whose duration exceeds max_item_minutes."""
        if not video_ids:
            return set()
        data = self._get_json("videos", {
            'part': 'contentDetails',
            'id': ','.join(video_ids),
        }, self.durations_timeout)

        too_long = set()
        for video in data.get('items') or []:
            duration = (video.get('contentDetails') or {}).get('duration', '')
            if parse_minutes(duration) > max_item_minutes:
                too_long.add(video.get('id'))
        return too_long

    def resolve_thumbnails(self, options: dict) -> Thumbnails:
        """
        Pick low/medium/high thumbnail URLs.
        Reachable variants are sorted by height; if none answer, all are used.
        """
        variants = [v for v in (options or {}).values()
                    if isinstance(v, dict) and v.get('url')]
        if not variants:
            return Thumbnails(low="", medium="", high="")

        reachable = [v for v in variants if self._is_reachable(v['url'])]
        pool = sorted(reachable or variants, key=lambda v: v.get('height') or 0)
        return Thumbnails(
            low=pool[0]['url'],
            medium=pool[(len(pool) - 1) // 2]['url'],
            high=pool[-1]['url'],
        )

    def to_item(self, snippet: dict) -> PlaylistItem:
        video_id = (snippet.get('resourceId') or {}).get('videoId', '')
        return PlaylistItem(
            title=normalize_text(snippet.get('title', '')),
            channel_name=normalize_text(snippet.get('videoOwnerChannelTitle', '')),
            channel_url=YOUTUBE_CHANNEL_URL.format(channel_id=snippet.get('videoOwnerChannelId', '')),
            source_url=YOUTUBE_WATCH_URL.format(video_id=video_id),
            thumbnails=self.resolve_thumbnails(snippet.get('thumbnails') or {}),
        )

    # ── Pagination ────────────────────────────────────────────────────

    def fetch(self, playlist_url: str, staging_path: Path,
              max_item_minutes: int = DEFAULT_MAX_ITEM_MINUTES) -> FetchResult:
        """
        Stage every usable item of the playlist.

        A page that fails is logged, counted in dropped_pages and not retried.
        When the listing call itself fails the next page token is unknown, so
        pagination stops there.
        """
        playlist_id = validate_playlist_url(playlist_url)
        logger.info("Retrieving playlist info (id=%s)", playlist_id)

        writer = StagingWriter(staging_path)
        result = FetchResult(playlist_id=playlist_id)
        page_token = ""

        while True:
            try:
                page = self._get_json("playlistItems", {
                    'part': 'snippet',
                    'playlistId': playlist_id,
                    'maxResults': PLAYLIST_PAGE_SIZE,
                    'pageToken': page_token,
                }, self.page_timeout)
            except JobError as e:
                result.dropped_pages += 1
                logger.warning("Dropped playlist page (token=%r), no later pages reachable: %s",
                               page_token, e.message)
                break

            result.pages += 1
            next_token = page.get('nextPageToken')
            snippets = [entry.get('snippet') or {} for entry in page.get('items') or []]
            ids = [(s.get('resourceId') or {}).get('videoId') for s in snippets]
            ids = [i for i in ids if i]

            try:
                too_long = self.too_long_ids(ids, max_item_minutes)
            except JobError as e:
                result.dropped_pages += 1
                logger.warning("Dropped playlist page (token=%r, %d items): %s",
                               page_token, len(snippets), e.message)
                snippets = []
                too_long = set()

            for snippet in snippets:
                video_id = (snippet.get('resourceId') or {}).get('videoId')
                if not video_id or is_unavailable(snippet):
                    result.unavailable += 1
                    continue
                if video_id in too_long:
                    result.too_long += 1
                    continue
                writer.append(self.to_item(snippet))
                result.staged += 1

            if not next_token:
                break
            page_token = next_token

        logger.info("Playlist %s: staged %d items (%d too long, %d unavailable, %d pages dropped)",
                    playlist_id, result.staged, result.too_long, result.unavailable,
                    result.dropped_pages)
        return result
