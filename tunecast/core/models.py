"""
Record types (plain dataclasses) for TuneCast.

Every record round-trips through the camelCase JSON shape stored on disk and
in the users table. from_dict() validates what it reads and raises
JobError(RECORD_INVALID) instead of trusting the structure.
"""

import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from tunecast.core.constants import (
    ErrorCode, PlaylistStatus, PLAYLIST_STATUSES, PLAYLISTS_SCHEMA_VERSION,
)
from tunecast.core.error_codes import JobError


def _require(data, key: str, kind, record: str):
    if not isinstance(data, dict):
        raise JobError(ErrorCode.RECORD_INVALID, f"{record} must be an object, got {type(data).__name__}")
    if key not in data:
        raise JobError(ErrorCode.RECORD_INVALID, f"{record} is missing '{key}'")
    value = data[key]
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise JobError(ErrorCode.RECORD_INVALID, f"{record}.{key} has invalid type {type(value).__name__}")
    return value


def _decimal_string(value, record: str, key: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise JobError(ErrorCode.RECORD_INVALID, f"{record}.{key} is not a number")
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        raise JobError(ErrorCode.RECORD_INVALID, f"{record}.{key} is not a number: {value!r}")
    if not parsed.is_finite() or parsed < 0:
        raise JobError(ErrorCode.RECORD_INVALID, f"{record}.{key} must be finite and >= 0")
    return str(value)


@dataclass(frozen=True)
class Thumbnails:
    low: str
    medium: str
    high: str

    def to_dict(self) -> dict:
        return {'low': self.low, 'medium': self.medium, 'high': self.high}

    @classmethod
    def from_dict(cls, data) -> "Thumbnails":
        return cls(
            low=_require(data, 'low', str, 'thumbnails'),
            medium=_require(data, 'medium', str, 'thumbnails'),
            high=_require(data, 'high', str, 'thumbnails'),
        )


@dataclass(frozen=True)
class PlaylistItem:
    title: str
    channel_name: str
    channel_url: str
    source_url: str
    thumbnails: Thumbnails

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'channelName': self.channel_name,
            'channelUrl': self.channel_url,
            'sourceUrl': self.source_url,
            'thumbnails': self.thumbnails.to_dict(),
        }

    @classmethod
    def from_dict(cls, data) -> "PlaylistItem":
        if isinstance(data, dict) and 'sourceUrl' not in data and 'videoUrl' in data:
            data = dict(data, sourceUrl=data['videoUrl'])
        return cls(
            title=_require(data, 'title', str, 'item'),
            channel_name=_require(data, 'channelName', str, 'item'),
            channel_url=_require(data, 'channelUrl', str, 'item'),
            source_url=_require(data, 'sourceUrl', str, 'item'),
            thumbnails=Thumbnails.from_dict(_require(data, 'thumbnails', dict, 'item')),
        )


@dataclass(frozen=True)
class StagedItem:
    """A playlist item that made it through download and transcode."""
    item: PlaylistItem
    filename: str
    length: str

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data['filename'] = self.filename
        data['length'] = self.length
        return data

    @classmethod
    def from_dict(cls, data) -> "StagedItem":
        return cls(
            item=PlaylistItem.from_dict(data),
            filename=_require(data, 'filename', str, 'item'),
            length=_decimal_string(_require(data, 'length', (str, int, float), 'item'), 'item', 'length'),
        )


@dataclass
class TimelineEntry:
    filename: str
    length: str
    start_time: str = "0"

    def to_dict(self) -> dict:
        return {'filename': self.filename, 'startTime': self.start_time, 'length': self.length}

    @classmethod
    def from_dict(cls, data) -> "TimelineEntry":
        start = data.get('startTime', "0") if isinstance(data, dict) else "0"
        return cls(
            filename=_require(data, 'filename', str, 'timeline entry'),
            length=_decimal_string(_require(data, 'length', (str, int, float), 'timeline entry'),
                                   'timeline entry', 'length'),
            start_time=_decimal_string(start, 'timeline entry', 'startTime'),
        )


@dataclass
class PlaylistRecord:
    name: str
    progress: int = 0
    done: bool = False
    status: str = PlaylistStatus.IN_PROGRESS
    items: list[StagedItem] = field(default_factory=list)
    dropped_pages: int = 0

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'progress': self.progress,
            'done': self.done,
            'status': self.status,
            'items': [i.to_dict() for i in self.items],
            'droppedPages': self.dropped_pages,
        }

    @classmethod
    def from_dict(cls, data) -> "PlaylistRecord":
        if isinstance(data, dict) and 'items' not in data and 'songs' in data:
            data = dict(data, items=data['songs'])
        done = _require(data, 'done', bool, 'playlist')
        status = data.get('status')
        if status is None:
            status = PlaylistStatus.COMPLETE if done else PlaylistStatus.IN_PROGRESS
        if status not in PLAYLIST_STATUSES:
            raise JobError(ErrorCode.RECORD_INVALID, f"playlist.status {status!r} is unknown")
        progress = _require(data, 'progress', int, 'playlist')
        if progress < 0:
            raise JobError(ErrorCode.RECORD_INVALID, "playlist.progress must be >= 0")
        return cls(
            name=_require(data, 'name', str, 'playlist'),
            progress=progress,
            done=done,
            status=status,
            items=[StagedItem.from_dict(i) for i in _require(data, 'items', list, 'playlist')],
            dropped_pages=int(data.get('droppedPages', 0) or 0),
        )


@dataclass
class UserRecord:
    username: str
    credential: str
    folder_name: str
    playlists: list[PlaylistRecord] = field(default_factory=list)


def load_playlists(raw: str | None) -> list[PlaylistRecord]:
    """
    Decode the users.playlists_json column.
    Accepts the versioned document and the older unversioned shapes
    (a bare list, or an object with only 'playlists').
    """
    if raw is None or raw == "":
        return []
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise JobError(ErrorCode.RECORD_INVALID, f"playlists column is not JSON: {e}")

    if isinstance(doc, list):
        playlists = doc
    elif isinstance(doc, dict):
        version = doc.get('version', PLAYLISTS_SCHEMA_VERSION)
        if version != PLAYLISTS_SCHEMA_VERSION:
            raise JobError(ErrorCode.RECORD_INVALID, f"Unsupported playlists schema version {version!r}")
        playlists = _require(doc, 'playlists', list, 'playlists column')
    else:
        raise JobError(ErrorCode.RECORD_INVALID, "playlists column must be a list or object")

    return [PlaylistRecord.from_dict(p) for p in playlists]


def dump_playlists(playlists: list[PlaylistRecord]) -> str:
    return json.dumps({
        'version': PLAYLISTS_SCHEMA_VERSION,
        'playlists': [p.to_dict() for p in playlists],
    })


def with_length(item: PlaylistItem, filename: str, length) -> StagedItem:
    """Pair a downloaded item with its storage name and measured length."""
    return StagedItem(item=item, filename=filename, length=str(length))

