"""
Per-item audio download and transcode.

yt-dlp (best audio → stdout)
  → ffmpeg filter stage (audio filters → raw PCM on stdout)
  → ffmpeg encode stage (PCM → MP3 HLS segments + <id>.m3u8)
"""

import logging
import subprocess
from pathlib import Path

from tunecast.core.constants import (
    ErrorCode, YTDLP_BIN, FFMPEG_BIN, DEFAULT_QUALITY, DEFAULT_SEGMENT_SECONDS,
    DEFAULT_AUDIO_FILTERS, PCM_FORMAT, PCM_SAMPLE_RATE, PCM_CHANNELS,
)
from tunecast.core.error_codes import JobError, ProcessError
from tunecast.core.process import spawn, pipe_streams
from tunecast.core.thread_budget import ThreadBudget

logger = logging.getLogger(__name__)

_FORWARDER_JOIN_SEC = 5


def fetch_args(source_url: str) -> list[str]:
    return [
        "-f", "bestaudio",
        "--ignore-errors", "--geo-bypass",
        "--no-playlist",
        "--quiet", "--no-progress",
        "-o", "-",                      # stdout
        source_url,
    ]


def filter_args(audio_filters: list[str], threads: int) -> list[str]:
    args = ["-hide_banner", "-nostats", "-loglevel", "error",
            "-threads", str(threads),
            "-i", "pipe:0"]
    if audio_filters:
        args += ["-af", ",".join(audio_filters)]
    args += [
        "-f", PCM_FORMAT,
        "-ar", str(PCM_SAMPLE_RATE),
        "-ac", str(PCM_CHANNELS),
        "pipe:1",
    ]
    return args


def encode_args(item_id: str, quality: int, segment_seconds: int, threads: int) -> list[str]:
    return [
        "-hide_banner", "-nostats", "-loglevel", "error",
        "-threads", str(threads),
        "-f", PCM_FORMAT,
        "-ar", str(PCM_SAMPLE_RATE),
        "-ac", str(PCM_CHANNELS),
        "-i", "pipe:0",
        "-c:a", "libmp3lame", "-q:a", str(quality),
        "-f", "hls",
        "-start_number", "0",
        "-hls_list_size", "0",
        "-hls_time", str(segment_seconds),
        "-hls_segment_filename", f"{item_id}_%05d.ts",
        f"{item_id}.m3u8",
    ]


def item_manifest_path(item_dir: Path, item_id: str) -> Path:
    return item_dir / f"{item_id}.m3u8"


def download_item(source_url: str, destination_dir: Path, item_id: str,
                  budget: ThreadBudget,
                  quality: int = DEFAULT_QUALITY,
                  segment_seconds: int = DEFAULT_SEGMENT_SECONDS,
                  audio_filters: list[str] | None = None) -> Path:
    """
    Download one item into destination_dir/item_id as HLS segments.

    Returns the item directory. Raises JobError on directory collision, on
    a stage that cannot be started, or when the encode stage fails. The
    caller owns removal of the directory on failure.
    """
    item_dir = Path(destination_dir) / item_id
    try:
        item_dir.mkdir(parents=False, exist_ok=False)
    except FileExistsError:
        raise JobError(ErrorCode.ITEM_DIR_EXISTS, f"Item directory already exists: {item_dir}")

    if audio_filters is None:
        audio_filters = list(DEFAULT_AUDIO_FILTERS)

    threads = budget.acquire()
    handles = []
    forwarders = []
    try:
        logger.info("Downloading %s → %s (threads=%d, q=%s, segment=%ss)",
                    source_url, item_id, threads, quality, segment_seconds)

        fetch = spawn(YTDLP_BIN, fetch_args(source_url), cwd=item_dir)
        if fetch is None:
            raise JobError(ErrorCode.SPAWN_FAILED, f"Could not start {YTDLP_BIN}")
        handles.append(fetch)

        filt = spawn(FFMPEG_BIN, filter_args(audio_filters, threads), cwd=item_dir)
        if filt is None:
            raise JobError(ErrorCode.SPAWN_FAILED, f"Could not start {FFMPEG_BIN} (filter stage)")
        handles.append(filt)

        encode = spawn(FFMPEG_BIN, encode_args(item_id, quality, segment_seconds, threads),
                       cwd=item_dir, stdout=subprocess.DEVNULL)
        if encode is None:
            raise JobError(ErrorCode.SPAWN_FAILED, f"Could not start {FFMPEG_BIN} (encode stage)")
        handles.append(encode)

        forwarders.append(pipe_streams(fetch.stdout, filt.stdin, name=f"{item_id}-fetch>filter"))
        forwarders.append(pipe_streams(filt.stdout, encode.stdin, name=f"{item_id}-filter>encode"))

        try:
            encode.wait()
        except ProcessError as e:
            # Upstream failures usually surface as an encoder fed no input
            upstream = [h for h in (fetch, filt) if h.returncode not in (None, 0)]
            detail = "; ".join(f"{h.command} rc={h.returncode}: {h.stderr_tail[-200:]}"
                               for h in upstream)
            if detail:
                raise JobError(ErrorCode.PROCESS_FAILED, f"{e.message} (upstream: {detail})") from e
            raise

        manifest = item_manifest_path(item_dir, item_id)
        if not manifest.exists():
            raise JobError(ErrorCode.MANIFEST_MISSING, f"Encoder produced no manifest for {item_id}")

        logger.info("Transcoded %s into %s", source_url, item_dir)
        return item_dir
    finally:
        budget.release()
        for handle in handles:
            handle.close()
        for thread in forwarders:
            thread.join(timeout=_FORWARDER_JOIN_SEC)
