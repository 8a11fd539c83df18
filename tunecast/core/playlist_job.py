"""
Playlist download job.
Fetches a playlist's metadata, then downloads its items one at a time.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

from tunecast.core.constants import (
    ErrorCode, PlaylistStatus,
    STAGING_FILENAME, TIMELINE_FILENAME, PLAYLIST_MANIFEST_NAME, MAX_ITEMS_TO_LOG,
    DEFAULT_QUALITY, DEFAULT_SEGMENT_SECONDS, DEFAULT_MAX_ITEMS,
    DEFAULT_MAX_ITEM_MINUTES, DEFAULT_AUDIO_FILTERS,
    PLAYLIST_PAGE_TIMEOUT, DURATIONS_TIMEOUT, THUMBNAIL_PROBE_TIMEOUT,
    FAILED_ITEM_CLEANUP_DELAY,
)
from tunecast.core.cleanup import schedule_removal, remove_stale_temp_files
from tunecast.core.download_item import download_item, item_manifest_path
from tunecast.core.error_codes import JobError, is_item_level
from tunecast.core.models import PlaylistItem, StagedItem, TimelineEntry, with_length
from tunecast.core.progress_store import ProgressStore
from tunecast.core.security_utils import safe_child_path, sanitize_folder_name
from tunecast.core.staging import StagingCursor
from tunecast.core.thread_budget import ThreadBudget
from tunecast.core.timeline import (
    Timeline, assemble_manifest, write_manifest, finalize_offsets, shuffle,
)
from tunecast.core.url_parse import validate_playlist_url
from tunecast.core.yt_playlist import PlaylistFetcher

logger = logging.getLogger(__name__)


@dataclass
class PlaylistOutcome:
    name: str
    status: str
    succeeded: int = 0
    failed: int = 0
    dropped_pages: int = 0
    total_length: Decimal = Decimal(0)
    manifest_path: Optional[Path] = None


def completion_status(succeeded: int, failed: int, dropped_pages: int) -> str:
    if succeeded == 0:
        return PlaylistStatus.FAILED
    if failed or dropped_pages:
        return PlaylistStatus.PARTIAL
    return PlaylistStatus.COMPLETE


class PlaylistDownloader:
    """
    Runs playlist downloads. Items of one playlist are processed strictly in
    order; different users' playlists may run on separate threads, sharing
    one ThreadBudget. A second download for a user who already has one
    running is refused.
    """

    def __init__(self, store: ProgressStore, budget: ThreadBudget,
                 config: dict | None = None,
                 fetcher_factory: Callable[[], PlaylistFetcher] | None = None,
                 download: Callable[..., Path] = download_item):
        self.store = store
        self.budget = budget
        self.config = config or {}
        self._fetcher_factory = fetcher_factory or self._default_fetcher
        self._download = download
        self._active_users: set[str] = set()
        self._lock = threading.Lock()

        # Callbacks
        self.on_item_done: Optional[Callable[[str, str, StagedItem], None]] = None
        self.on_playlist_done: Optional[Callable[[str, PlaylistOutcome], None]] = None

    # ── Config helpers ────────────────────────────────────────────────

    @property
    def quality(self) -> int:
        return self.config.get('quality', DEFAULT_QUALITY)

    @property
    def segment_seconds(self) -> int:
        return self.config.get('segment_seconds', DEFAULT_SEGMENT_SECONDS)

    @property
    def max_items(self) -> int:
        return self.config.get('max_items', DEFAULT_MAX_ITEMS)

    @property
    def max_item_minutes(self) -> int:
        return self.config.get('max_item_minutes', DEFAULT_MAX_ITEM_MINUTES)

    @property
    def audio_filters(self) -> list[str]:
        return list(self.config.get('audio_filters', DEFAULT_AUDIO_FILTERS))

    @property
    def cleanup_delay(self) -> float:
        return self.config.get('cleanup_delay', FAILED_ITEM_CLEANUP_DELAY)

    def _default_fetcher(self) -> PlaylistFetcher:
        return PlaylistFetcher(
            self.config.get('youtube_api_key'),
            page_timeout=self.config.get('page_timeout', PLAYLIST_PAGE_TIMEOUT),
            durations_timeout=self.config.get('durations_timeout', DURATIONS_TIMEOUT),
            thumbnail_timeout=self.config.get('thumbnail_timeout', THUMBNAIL_PROBE_TIMEOUT),
        )

    # ── Per-user serialisation ────────────────────────────────────────

    def _claim_user(self, username: str):
        with self._lock:
            if username in self._active_users:
                raise JobError(ErrorCode.USER_BUSY,
                               f"{username} already has a playlist download running")
            self._active_users.add(username)

    def _release_user(self, username: str):
        with self._lock:
            self._active_users.discard(username)

    @contextmanager
    def _claimed(self, username: str):
        self._claim_user(username)
        try:
            yield
        finally:
            self._release_user(username)

    def is_downloading(self, username: str) -> bool:
        with self._lock:
            return username in self._active_users

    # ── Entry points ──────────────────────────────────────────────────

    def start(self, username: str, playlist_url: str, **options) -> threading.Thread:
        """
        Validate and claim synchronously, then download on a background thread.
        Invalid URLs, unknown users and busy users raise here.
        """
        validate_playlist_url(playlist_url)
        self.store.get_user(username)
        self._claim_user(username)

        def _worker():
            try:
                self._run(username, playlist_url, **options)
            except JobError as e:
                logger.error("%s - playlist download failed: %s", username, e)
            except Exception as e:
                logger.error("%s - playlist download crashed: %s", username, e, exc_info=True)
            finally:
                self._release_user(username)

        thread = threading.Thread(target=_worker, name=f"playlist-{username}", daemon=True)
        thread.start()
        return thread

    def download_playlist(self, username: str, playlist_url: str, **options) -> PlaylistOutcome:
        """Download a playlist on the calling thread."""
        validate_playlist_url(playlist_url)
        self.store.get_user(username)
        with self._claimed(username):
            return self._run(username, playlist_url, **options)

    # ── Pipeline ──────────────────────────────────────────────────────

    def _run(self, username: str, playlist_url: str,
             quality: int | None = None, segment_seconds: int | None = None,
             max_items: int | None = None, max_item_minutes: int | None = None) -> PlaylistOutcome:
        quality = self.quality if quality is None else quality
        segment_seconds = self.segment_seconds if segment_seconds is None else segment_seconds
        max_items = self.max_items if max_items is None else max_items
        max_item_minutes = self.max_item_minutes if max_item_minutes is None else max_item_minutes

        name = self.store.create_playlist(username)
        try:
            outcome = self._fill_playlist(username, name, playlist_url, quality,
                                          segment_seconds, max_items, max_item_minutes)
        except Exception:
            self._mark_failed(username, name)
            raise

        if self.on_playlist_done:
            self.on_playlist_done(username, outcome)
        return outcome

    def _fill_playlist(self, username: str, name: str, playlist_url: str, quality: int,
                       segment_seconds: int, max_items: int, max_item_minutes: int) -> PlaylistOutcome:
        playlist_dir = self.store.playlist_dir(username, name)
        fetched = self._fetcher_factory().fetch(
            playlist_url, playlist_dir / STAGING_FILENAME, max_item_minutes,
        )
        if fetched.dropped_pages:
            self.store.set_dropped_pages(username, name, fetched.dropped_pages)
        logger.info("%s - downloading playlist %s (%d items staged, max %d)",
                    username, name, fetched.staged, max_items)

        outcome = PlaylistOutcome(name=name, status=PlaylistStatus.IN_PROGRESS,
                                  dropped_pages=fetched.dropped_pages)
        cursor = StagingCursor(playlist_dir / STAGING_FILENAME)
        timeline = Timeline(playlist_dir / TIMELINE_FILENAME)

        while outcome.succeeded < max_items:
            item = cursor.read_next()
            if item is None:
                break
            if outcome.succeeded + outcome.failed < MAX_ITEMS_TO_LOG:
                logger.info("%s - item: %s (%s)", username, item.title, item.source_url)

            filename = uuid.uuid4().hex
            item_dir = playlist_dir / filename
            try:
                staged = self._download_one(username, name, playlist_dir, filename, item,
                                            timeline, quality, segment_seconds)
            except JobError as e:
                if not is_item_level(e.code):
                    raise
                outcome.failed += 1
                self._handle_item_error(item_dir, item, e)
                continue
            except Exception as e:
                outcome.failed += 1
                logger.error("Unexpected error downloading %s: %s", item.source_url, e, exc_info=True)
                self._handle_item_error(item_dir, item, e)
                continue

            outcome.succeeded += 1
            if self.on_item_done:
                self.on_item_done(username, name, staged)

        outcome.total_length = timeline.finalize()
        outcome.manifest_path = self._write_playlist_manifest(playlist_dir, timeline.entries,
                                                              segment_seconds)
        remove_stale_temp_files(playlist_dir)

        outcome.status = completion_status(outcome.succeeded, outcome.failed, outcome.dropped_pages)
        self.store.mark_done(username, name, outcome.status)
        logger.info("%s - finished playlist %s: %s (%d ok, %d failed, %d pages dropped, %ss)",
                    username, name, outcome.status, outcome.succeeded, outcome.failed,
                    outcome.dropped_pages, outcome.total_length)
        return outcome

    def _download_one(self, username: str, playlist_name: str, playlist_dir: Path,
                      filename: str, item: PlaylistItem, timeline: Timeline,
                      quality: int, segment_seconds: int) -> StagedItem:
        item_dir = self._download(
            item.source_url, playlist_dir, filename, self.budget,
            quality=quality, segment_seconds=segment_seconds,
            audio_filters=self.audio_filters,
        )

        def record(entry: TimelineEntry):
            self.store.record_item_success(username, playlist_name,
                                           with_length(item, filename, entry.length))

        # Timeline entries only exist for recorded items
        entry = timeline.record_duration(filename, item_manifest_path(item_dir, filename),
                                         before_append=record)
        return with_length(item, filename, entry.length)

    def _handle_item_error(self, item_dir: Path, item: PlaylistItem, error: Exception):
        logger.error("Item download failed (%s, %s): %s", item_dir.name, item.source_url, error)
        # A colliding directory belongs to another item
        if isinstance(error, JobError) and error.code == ErrorCode.ITEM_DIR_EXISTS:
            return
        schedule_removal(item_dir, self.cleanup_delay)

    def _mark_failed(self, username: str, name: str):
        try:
            self.store.mark_done(username, name, PlaylistStatus.FAILED)
        except Exception as e:
            logger.error("%s - could not mark %s as failed: %s", username, name, e)

    def _write_playlist_manifest(self, playlist_dir: Path, entries: list[TimelineEntry],
                                 segment_seconds: int) -> Path:
        text = assemble_manifest(
            entries,
            lambda f: item_manifest_path(playlist_dir / f, f),
            segment_seconds,
        )
        return write_manifest(playlist_dir / f"{PLAYLIST_MANIFEST_NAME}.m3u8", text)

    # ── Playlist edits ────────────────────────────────────────────────

    def reorder_playlist(self, username: str, playlist_name: str,
                         order: list[str] | None = None, rng=None) -> Path:
        """
        Re-order a finished playlist (shuffled when `order` is None),
        re-deriving start offsets and rewriting its manifest.
        Refused with USER_BUSY while the user has a download running.
        """
        with self._claimed(username):
            record = self.store.get_playlist(username, playlist_name)
            playlist_dir = self.store.playlist_dir(username, playlist_name)
            timeline = Timeline(playlist_dir / TIMELINE_FILENAME)

            if order is None:
                timeline.entries = shuffle(timeline.entries, rng)
                timeline.save()
            else:
                timeline.reorder(order)

            by_name = {i.filename: i for i in record.items}
            self.store.replace_items(username, playlist_name,
                                     [by_name[e.filename] for e in timeline.entries if e.filename in by_name])
            return self._write_playlist_manifest(playlist_dir, timeline.entries, self.segment_seconds)

    def build_custom_manifest(self, username: str, playlist_name: str,
                              player_name: str, filenames: list[str]) -> Path:
        """Write <player_name>.m3u8 holding only the chosen items, in the given order."""
        if not player_name or player_name == PLAYLIST_MANIFEST_NAME \
                or sanitize_folder_name(player_name) != player_name:
            raise JobError(ErrorCode.RECORD_INVALID, f"Invalid player name: {player_name!r}")

        with self._claimed(username):
            record = self.store.get_playlist(username, playlist_name)
            playlist_dir = self.store.playlist_dir(username, playlist_name)
            known = {i.filename: i for i in record.items}

            entries = []
            for filename in filenames:
                if filename not in known:
                    raise JobError(ErrorCode.RECORD_INVALID,
                                   f"{playlist_name} has no item {filename}")
                safe_child_path(playlist_dir, filename)
                entries.append(known[filename])

            timeline_entries = [TimelineEntry(filename=i.filename, length=i.length) for i in entries]
            finalize_offsets(timeline_entries)

            text = assemble_manifest(
                timeline_entries,
                lambda f: item_manifest_path(playlist_dir / f, f),
                self.segment_seconds,
            )
            target = safe_child_path(playlist_dir, f"{player_name}.m3u8")
            return write_manifest(target, text)
