"""
Application configuration manager.
Stores settings in a JSON file under the application data directory.
"""

import json
import logging
import os
from pathlib import Path

from tunecast.core.constants import (
    CONFIG_PATH, DB_PATH, DEFAULT_PLAYLISTS_ROOT,
    DEFAULT_QUALITY, DEFAULT_SEGMENT_SECONDS, DEFAULT_MAX_ITEMS,
    DEFAULT_MAX_ITEM_MINUTES, DEFAULT_AUDIO_FILTERS,
    PLAYLIST_PAGE_TIMEOUT, DURATIONS_TIMEOUT, THUMBNAIL_PROBE_TIMEOUT,
)

# Validation bounds
_QUALITY_MIN = 0
_QUALITY_MAX = 9
_SEGMENT_MIN = 1
_SEGMENT_MAX = 60
_MAX_ITEMS_MIN = 1
_MAX_ITEMS_MAX = 5000
_ITEM_MINUTES_MIN = 1
_ITEM_MINUTES_MAX = 1440

API_KEY_ENV = "YOUTUBE_API_KEY"

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'playlists_root': str(DEFAULT_PLAYLISTS_ROOT),
    'db_path': str(DB_PATH),
    'youtube_api_key': None,
    'quality': DEFAULT_QUALITY,
    'segment_seconds': DEFAULT_SEGMENT_SECONDS,
    'max_items': DEFAULT_MAX_ITEMS,
    'max_item_minutes': DEFAULT_MAX_ITEM_MINUTES,
    'audio_filters': list(DEFAULT_AUDIO_FILTERS),
    'thread_budget': None,
    'limit_threads_to_cpu': True,
    'page_timeout': PLAYLIST_PAGE_TIMEOUT,
    'durations_timeout': DURATIONS_TIMEOUT,
    'thumbnail_timeout': THUMBNAIL_PROBE_TIMEOUT,
}

SETTING_NAMES = tuple(_DEFAULTS)

_INT_RANGES = {
    'quality': (_QUALITY_MIN, _QUALITY_MAX),
    'segment_seconds': (_SEGMENT_MIN, _SEGMENT_MAX),
    'max_items': (_MAX_ITEMS_MIN, _MAX_ITEMS_MAX),
    'max_item_minutes': (_ITEM_MINUTES_MIN, _ITEM_MINUTES_MAX),
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        self._data['audio_filters'] = list(DEFAULT_AUDIO_FILTERS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _INT_RANGES:
            low, high = _INT_RANGES[key]
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return max(low, min(high, value))

        if key in ('page_timeout', 'durations_timeout', 'thumbnail_timeout'):
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return value if value > 0 else _DEFAULTS[key]

        if key == 'audio_filters':
            if not isinstance(value, list) or not all(isinstance(f, str) for f in value):
                logger.warning("Invalid audio_filters %r, using defaults", value)
                return list(DEFAULT_AUDIO_FILTERS)
            return [f.strip() for f in value if f.strip()]

        if key == 'thread_budget':
            if value is None:
                return None
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid thread_budget %r, using CPU count", value)
                return None
            return value if value >= 1 else None

        if key == 'limit_threads_to_cpu':
            return bool(value)

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def playlists_root(self) -> Path:
        return Path(self._data.get('playlists_root', str(DEFAULT_PLAYLISTS_ROOT)))

    @property
    def db_path(self) -> Path:
        return Path(self._data.get('db_path', str(DB_PATH)))

    @property
    def api_key(self) -> str | None:
        """API key from the config file, falling back to the environment."""
        return self._data.get('youtube_api_key') or os.environ.get(API_KEY_ENV)
