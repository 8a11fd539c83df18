"""
Shared constants for TuneCast.
Single source of truth for paths, defaults and error codes.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "TuneCast"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_DATA_DIR = pathlib.Path(
    os.environ.get("TUNECAST_HOME", str(HOME / ".local" / "share" / APP_NAME))
)
LOG_DIR = APP_DATA_DIR / "logs"
DB_PATH = APP_DATA_DIR / "app.db"
CONFIG_PATH = APP_DATA_DIR / "config.json"
DEFAULT_PLAYLISTS_ROOT = APP_DATA_DIR / "playlists"

# Per-playlist files
STAGING_FILENAME = "staging.jsonl"
TIMELINE_FILENAME = "timeline.json"
PLAYLIST_MANIFEST_NAME = "playlist"
PLAYLIST_FOLDER_PREFIX = "playlist_"
MAX_PLAYLIST_FOLDER_ATTEMPTS = 100_000

# ── Playlist status values ────────────────────────────────────────────
class PlaylistStatus:
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"

PLAYLIST_STATUSES = {
    PlaylistStatus.IN_PROGRESS,
    PlaylistStatus.COMPLETE,
    PlaylistStatus.PARTIAL,
    PlaylistStatus.FAILED,
}

# Version of the JSON document stored in users.playlists_json
PLAYLISTS_SCHEMA_VERSION = 1

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Whole-operation failures
    INVALID_URL = "ERR_INVALID_URL"
    USER_NOT_FOUND = "ERR_USER_NOT_FOUND"
    USER_EXISTS = "ERR_USER_EXISTS"
    USER_BUSY = "ERR_USER_BUSY"
    PLAYLIST_NOT_FOUND = "ERR_PLAYLIST_NOT_FOUND"
    FOLDER_LIMIT = "ERR_FOLDER_LIMIT"
    RECORD_INVALID = "ERR_RECORD_INVALID"
    MISSING_API_KEY = "ERR_MISSING_API_KEY"
    READER_BUSY = "ERR_READER_BUSY"

    # Item-level failures
    ITEM_DIR_EXISTS = "ERR_ITEM_DIR_EXISTS"
    SPAWN_FAILED = "ERR_SPAWN_FAILED"
    PROCESS_FAILED = "ERR_PROCESS_FAILED"
    PROBE_FAILED = "ERR_PROBE_FAILED"
    MANIFEST_MISSING = "ERR_MANIFEST_MISSING"

    # Retryable
    CATALOG_REQUEST_FAILED = "ERR_CATALOG_REQUEST_FAILED"

RETRYABLE_ERRORS = {
    ErrorCode.CATALOG_REQUEST_FAILED,
}

# ── Remote catalog API ────────────────────────────────────────────────
YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
YOUTUBE_CHANNEL_URL = "https://www.youtube.com/channel/{channel_id}"
PLAYLIST_PAGE_SIZE = 50

PLAYLIST_PAGE_TIMEOUT = 1.5     # seconds
DURATIONS_TIMEOUT = 3.5
THUMBNAIL_PROBE_TIMEOUT = 1.5

PLAYLIST_URL_PATTERN = (
    r'^(?:https?://)?(?:www\.|m\.)?youtube\.com/playlist\?list=([a-zA-Z0-9_-]+)'
)

# Items the provider reports as gone
UNAVAILABLE_TITLES = {"Deleted video", "Private video"}
UNAVAILABLE_DESCRIPTION = "This video is unavailable."

# ── Download / transcode defaults ─────────────────────────────────────
DEFAULT_QUALITY = 6             # libmp3lame VBR: 0 best - 9 worst
DEFAULT_SEGMENT_SECONDS = 10
DEFAULT_MAX_ITEMS = 50
DEFAULT_MAX_ITEM_MINUTES = 45

# Ordered ffmpeg filter chain applied before encoding
DEFAULT_AUDIO_FILTERS = [
    "anlmdn=s=25",                                          # noise reduction
    "acompressor=ratio=2:threshold=-50dB:attack=1",         # expander
    "acompressor=ratio=4.35:threshold=-36dB:attack=1:release=120",
    "loudnorm=I=-17:LRA=10:TP=-0.5",                        # loudness
]

# Raw PCM handed from the filter stage to the encode stage
PCM_FORMAT = "s16le"
PCM_SAMPLE_RATE = 44100
PCM_CHANNELS = 2

PIPE_CHUNK_SIZE = 64 * 1024
STDERR_TAIL_LINES = 40

FAILED_ITEM_CLEANUP_DELAY = 1.0  # seconds

# Guard precision for cumulative playlist offsets
TIMELINE_DECIMAL_PRECISION = 250_000

# ── External tools ────────────────────────────────────────────────────
YTDLP_BIN = "yt-dlp"
FFMPEG_BIN = "ffmpeg"
FFPROBE_BIN = "ffprobe"
REQUIRED_TOOLS = [YTDLP_BIN, FFMPEG_BIN, FFPROBE_BIN]

# ── Misc ──────────────────────────────────────────────────────────────
# Characters forbidden in folder names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FOLDER_NAME_LEN = 200
MAX_ITEMS_TO_LOG = 3
