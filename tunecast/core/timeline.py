"""
Playlist timeline: per-item durations, cumulative start offsets and the
concatenated playlist manifest.

Durations are kept as decimal strings and summed with Decimal so that
start offsets stay exact across thousands of items.
"""

import json
import os
import random
import logging
import subprocess
from decimal import Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Callable

from tunecast.core import manifest
from tunecast.core.constants import (
    ErrorCode, FFPROBE_BIN, TIMELINE_DECIMAL_PRECISION, DEFAULT_SEGMENT_SECONDS,
)
from tunecast.core.error_codes import JobError
from tunecast.core.models import TimelineEntry
from tunecast.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)


def probe_duration(media_path: Path) -> str | None:
    """Duration of a media file in seconds as reported by ffprobe, or None."""
    args = [
        FFPROBE_BIN,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(media_path),
    ]
    try:
        result = run_subprocess_capture(args, timeout=60)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("ffprobe failed for %s: %s", media_path, e)
        return None

    if result.returncode != 0:
        logger.warning("ffprobe rc=%d for %s: %s", result.returncode, media_path,
                       (result.stderr or "")[:200])
        return None

    value = (result.stdout or "").strip()
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        logger.warning("ffprobe returned no duration for %s: %r", media_path, value)
        return None
    if not parsed.is_finite() or parsed <= 0:
        return None
    return value


def measure_length(manifest_path: Path) -> str:
    """
    Length of a downloaded item in seconds, as a decimal string.
    ffprobe is authoritative; the sum of the manifest's #EXTINF values is the
    fallback when the probe gives nothing.
    """
    length = probe_duration(manifest_path)
    if length is not None:
        return length

    try:
        text = manifest_path.read_text(encoding='utf-8')
    except OSError as e:
        raise JobError(ErrorCode.PROBE_FAILED, f"Cannot read {manifest_path}: {e}")
    total = manifest.sum_segment_durations(text)
    if total <= 0:
        raise JobError(ErrorCode.PROBE_FAILED, f"Could not determine duration of {manifest_path}")
    logger.info("Using summed segment durations for %s: %s", manifest_path, total)
    return str(total)


def finalize_offsets(entries: list[TimelineEntry]) -> Decimal:
    """
    Set each entry's start_time to the sum of the lengths before it, in list
    order. Returns the total length.
    """
    with localcontext() as ctx:
        ctx.prec = TIMELINE_DECIMAL_PRECISION
        total = Decimal(0)
        for entry in entries:
            entry.start_time = str(total)
            total += Decimal(entry.length)
    return total


def reorder(entries: list[TimelineEntry], order: list[str]) -> list[TimelineEntry]:
    """
    Return the entries in the order given by filenames, offsets re-derived.
    `order` must name every entry exactly once.
    """
    by_name = {e.filename: e for e in entries}
    if sorted(order) != sorted(by_name) or len(order) != len(entries):
        raise JobError(ErrorCode.RECORD_INVALID,
                       "order must contain every timeline filename exactly once")
    reordered = [TimelineEntry(filename=name, length=by_name[name].length) for name in order]
    finalize_offsets(reordered)
    return reordered


def shuffle(entries: list[TimelineEntry], rng: random.Random | None = None) -> list[TimelineEntry]:
    order = [e.filename for e in entries]
    (rng or random).shuffle(order)
    return reorder(entries, order)


def assemble_manifest(entries: list[TimelineEntry],
                      manifest_for: Callable[[str], Path],
                      default_target_duration: int = DEFAULT_SEGMENT_SECONDS) -> str:
    """
    Concatenate the per-item manifests of `entries`, in order, into one
    playlist manifest. Segment URIs are prefixed with the item's folder and
    each item is preceded by a discontinuity marker.
    """
    bodies = []
    targets = []
    for entry in entries:
        path = manifest_for(entry.filename)
        try:
            text = path.read_text(encoding='utf-8')
        except OSError as e:
            raise JobError(ErrorCode.MANIFEST_MISSING, f"Cannot read manifest {path}: {e}")
        target = manifest.target_duration(text)
        if target is not None:
            targets.append(target)
        body = manifest.extract_body(manifest.prefix_segment_uris(text, entry.filename))
        bodies.append(f"{manifest.DISCONTINUITY}\n{body}")

    parts = [manifest.header(max(targets) if targets else default_target_duration)]
    parts.extend(bodies)
    parts.append(manifest.ENDLIST)
    return "\n".join(parts) + "\n"


def write_manifest(path: Path, text: str) -> Path:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding='utf-8')
    os.replace(tmp, path)
    logger.info("Wrote playlist manifest: %s", path)
    return path


class Timeline:
    """
    Ordered timeline entries persisted as a JSON array.
    The file is rewritten whole on every change.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.entries: list[TimelineEntry] = []
        if self.path.exists():
            self.load()

    def load(self):
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise JobError(ErrorCode.RECORD_INVALID, f"Timeline {self.path} is not JSON: {e}")
        if not isinstance(data, list):
            raise JobError(ErrorCode.RECORD_INVALID, f"Timeline {self.path} must be a JSON array")
        self.entries = [TimelineEntry.from_dict(d) for d in data]

    def save(self):
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump([e.to_dict() for e in self.entries], f, indent=2)
        os.replace(tmp, self.path)

    def append(self, entry: TimelineEntry) -> TimelineEntry:
        self.entries.append(entry)
        self.save()
        return entry

    def record_duration(self, filename: str, manifest_path: Path,
                        before_append: Callable[[TimelineEntry], None] | None = None) -> TimelineEntry:
        """
        Measure a downloaded item and append it with a placeholder start time.
        `before_append` sees the measured entry first; if it raises, the
        timeline is left untouched.
        """
        entry = TimelineEntry(filename=filename, length=measure_length(Path(manifest_path)))
        if before_append is not None:
            before_append(entry)
        return self.append(entry)

    def finalize(self) -> Decimal:
        total = finalize_offsets(self.entries)
        self.save()
        return total

    def reorder(self, order: list[str]) -> Decimal:
        self.entries = reorder(self.entries, order)
        self.save()
        return self.total_length()

    def total_length(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = TIMELINE_DECIMAL_PRECISION
            return sum((Decimal(e.length) for e in self.entries), Decimal(0))
