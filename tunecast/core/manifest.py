"""
HLS (m3u8) text helpers used when stitching per-item manifests together.
"""

import math
from decimal import Decimal, InvalidOperation

EXTM3U = "#EXTM3U"
EXTINF = "#EXTINF"
TARGET_DURATION = "#EXT-X-TARGETDURATION"
DISCONTINUITY = "#EXT-X-DISCONTINUITY"
ENDLIST = "#EXT-X-ENDLIST"
HLS_VERSION = 3


def segment_durations(m3u8: str) -> list[Decimal]:
    """Durations of every #EXTINF entry, in order."""
    durations = []
    for line in m3u8.splitlines():
        line = line.strip()
        if not line.startswith(EXTINF + ":"):
            continue
        value = line[len(EXTINF) + 1:].split(",", 1)[0].strip()
        try:
            durations.append(Decimal(value))
        except InvalidOperation:
            continue
    return durations


def sum_segment_durations(m3u8: str) -> Decimal:
    return sum(segment_durations(m3u8), Decimal(0))


def target_duration(m3u8: str) -> int | None:
    """
    The manifest's #EXT-X-TARGETDURATION, or the ceiling of its longest
    segment when the tag is missing. None for a manifest without segments.
    """
    for line in m3u8.splitlines():
        line = line.strip()
        if line.startswith(TARGET_DURATION + ":"):
            try:
                return int(line.split(":", 1)[1].strip())
            except ValueError:
                break
    durations = segment_durations(m3u8)
    if not durations:
        return None
    return math.ceil(max(durations))


def prefix_segment_uris(m3u8: str, prefix: str) -> str:
    """Rewrite every segment URI line as '<prefix>/<uri>'."""
    out = []
    for line in m3u8.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            out.append(f"{prefix}/{stripped}")
        else:
            out.append(line)
    return "\n".join(out)


def extract_body(m3u8: str) -> str:
    """Everything from the first #EXTINF up to (not including) #EXT-X-ENDLIST."""
    start = m3u8.find(EXTINF)
    if start == -1:
        return ""
    end = m3u8.find(ENDLIST, start)
    if end == -1:
        end = len(m3u8)
    return m3u8[start:end].strip()


def header(target: int) -> str:
    return "\n".join([
        EXTM3U,
        f"#EXT-X-VERSION:{HLS_VERSION}",
        f"{TARGET_DURATION}:{target}",
        "#EXT-X-MEDIA-SEQUENCE:0",
    ])
