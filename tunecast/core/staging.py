"""
Staging file: newline-delimited JSON, one PlaylistItem per line.

The writer appends and flushes line by line. The cursor remembers how many
bytes it has consumed, so a long playlist can be scanned in many short reads
while the file is still growing.
"""

import json
import logging
import threading
from pathlib import Path

from tunecast.core.constants import ErrorCode
from tunecast.core.error_codes import JobError
from tunecast.core.models import PlaylistItem

logger = logging.getLogger(__name__)


class StagingWriter:
    """Appends items to a staging file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.count = 0

    def append(self, item: PlaylistItem):
        line = json.dumps(item.to_dict(), ensure_ascii=False) + "\n"
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(line)
            f.flush()
        self.count += 1


class StagingCursor:
    """
    Forward-only reader over a staging file.

    `offset` is the number of bytes consumed so far. Lines are only consumed
    once they end in a newline; a half-written trailing line is left for a
    later call.
    """

    def __init__(self, path: Path, offset: int = 0):
        self.path = Path(path)
        self.offset = offset
        self._busy = threading.Lock()

    def read_next(self, match_url: str | None = None) -> PlaylistItem | None:
        """
        Return the next staged item, or None at the end of the data.
        With match_url, lines whose sourceUrl differs are skipped (and
        consumed) until a match is found.
        """
        if not self._busy.acquire(blocking=False):
            raise JobError(ErrorCode.READER_BUSY, f"A read is already in progress on {self.path}")
        try:
            return self._scan(match_url)
        finally:
            self._busy.release()

    def _scan(self, match_url: str | None) -> PlaylistItem | None:
        if not self.path.exists():
            return None

        with open(self.path, 'rb') as f:
            f.seek(self.offset)
            for raw in f:
                if not raw.endswith(b"\n"):
                    break
                self.offset += len(raw)

                try:
                    text = raw.decode('utf-8').strip()
                    if not text:
                        continue
                    item = PlaylistItem.from_dict(json.loads(text))
                except (UnicodeDecodeError, json.JSONDecodeError, JobError) as e:
                    logger.warning("Skipping malformed staging line at byte %d: %s",
                                   self.offset - len(raw), e)
                    continue

                if match_url is None or item.source_url == match_url:
                    return item
        return None

    def __iter__(self):
        while True:
            item = self.read_next()
            if item is None:
                return
            yield item
