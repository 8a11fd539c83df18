"""
Playlist progress stored in the users.playlists_json column.

Every operation is a read-modify-write of the whole column. There is no
version check: callers must not run two downloads for the same user at the
same time.
"""

import logging
import sqlite3
import uuid
from pathlib import Path

from tunecast.core.constants import (
    ErrorCode, PlaylistStatus, PLAYLIST_FOLDER_PREFIX, MAX_PLAYLIST_FOLDER_ATTEMPTS,
)
from tunecast.core.db_sqlite import Database
from tunecast.core.error_codes import JobError
from tunecast.core.models import (
    PlaylistRecord, StagedItem, UserRecord, load_playlists, dump_playlists,
)
from tunecast.core.security_utils import sanitize_folder_name

logger = logging.getLogger(__name__)


def create_folder(path: Path) -> Path | None:
    """Create a single directory. Returns None if it already exists."""
    try:
        path.mkdir(parents=False, exist_ok=False)
        return path
    except FileExistsError:
        return None


class ProgressStore:
    """Reads and writes PlaylistRecords for users."""

    def __init__(self, db: Database, playlists_root: Path):
        self.db = db
        self.playlists_root = Path(playlists_root)

    # ── Users ─────────────────────────────────────────────────────────

    def create_user(self, username: str, credential: str) -> UserRecord:
        """
        Register a user and give them a storage folder. The folder is named
        after the user; if that is taken a random name is used instead.
        """
        if self.db.has_user(username):
            raise JobError(ErrorCode.USER_EXISTS, f"Username already taken: {username}")

        self.playlists_root.mkdir(parents=True, exist_ok=True)
        folder_name = sanitize_folder_name(username) or uuid.uuid4().hex
        while (self.db.folder_name_taken(folder_name)
               or create_folder(self.playlists_root / folder_name) is None):
            folder_name = uuid.uuid4().hex

        try:
            self.db.create_user(username, credential, folder_name)
        except sqlite3.IntegrityError as e:
            raise JobError(ErrorCode.USER_EXISTS, f"Could not create user {username}: {e}")
        logger.info("Created user %s (folder %s)", username, folder_name)
        return self.get_user(username)

    def get_user(self, username: str) -> UserRecord:
        user = self.db.get_user(username)
        if user is None:
            raise JobError(ErrorCode.USER_NOT_FOUND, f"No such user: {username}")
        return user

    def user_folder(self, username: str) -> Path:
        return self.playlists_root / self.get_user(username).folder_name

    def playlist_dir(self, username: str, playlist_name: str) -> Path:
        return self.user_folder(username) / playlist_name

    # ── Playlists column ──────────────────────────────────────────────

    def get_playlists(self, username: str) -> list[PlaylistRecord]:
        raw = self.db.get_playlists_json(username)
        if raw is None:
            raise JobError(ErrorCode.USER_NOT_FOUND, f"No such user: {username}")
        return load_playlists(raw)

    def _save(self, username: str, playlists: list[PlaylistRecord]):
        self.db.set_playlists_json(username, dump_playlists(playlists))

    def get_playlist(self, username: str, playlist_name: str) -> PlaylistRecord:
        for playlist in self.get_playlists(username):
            if playlist.name == playlist_name:
                return playlist
        raise JobError(ErrorCode.PLAYLIST_NOT_FOUND,
                       f"{username} has no playlist named {playlist_name}")

    def _update(self, username: str, playlist_name: str, change) -> PlaylistRecord:
        playlists = self.get_playlists(username)
        for playlist in playlists:
            if playlist.name == playlist_name:
                change(playlist)
                self._save(username, playlists)
                return playlist
        raise JobError(ErrorCode.PLAYLIST_NOT_FOUND,
                       f"{username} has no playlist named {playlist_name}")

    # ── Operations ────────────────────────────────────────────────────

    def create_playlist(self, username: str) -> str:
        """
        Claim the next free playlist_<n> folder under the user's storage
        folder and add an empty record for it. Returns the playlist name.
        """
        user_folder = self.user_folder(username)
        user_folder.mkdir(parents=True, exist_ok=True)
        taken = {p.name for p in self.get_playlists(username)}

        name = None
        for i in range(MAX_PLAYLIST_FOLDER_ATTEMPTS + 1):
            candidate = f"{PLAYLIST_FOLDER_PREFIX}{i}"
            if candidate in taken:
                continue
            if create_folder(user_folder / candidate) is not None:
                name = candidate
                break
        if name is None:
            raise JobError(ErrorCode.FOLDER_LIMIT,
                           f"Excessive playlist folder creation attempts under {user_folder}")

        playlists = self.get_playlists(username)
        playlists.append(PlaylistRecord(name=name))
        self._save(username, playlists)
        logger.info("%s - created playlist %s", username, name)
        return name

    def record_item_success(self, username: str, playlist_name: str, item: StagedItem) -> int:
        """Append a downloaded item and bump progress. Returns the new progress."""
        def change(playlist: PlaylistRecord):
            playlist.progress += 1
            playlist.items.append(item)
        return self._update(username, playlist_name, change).progress

    def set_dropped_pages(self, username: str, playlist_name: str, dropped_pages: int):
        def change(playlist: PlaylistRecord):
            playlist.dropped_pages = dropped_pages
        self._update(username, playlist_name, change)

    def mark_done(self, username: str, playlist_name: str,
                  status: str = PlaylistStatus.COMPLETE) -> PlaylistRecord:
        def change(playlist: PlaylistRecord):
            playlist.done = True
            playlist.status = status
        return self._update(username, playlist_name, change)

    def replace_items(self, username: str, playlist_name: str, items: list[StagedItem]):
        """Store items in a new order (after a reorder of the timeline)."""
        def change(playlist: PlaylistRecord):
            playlist.items = list(items)
        self._update(username, playlist_name, change)
