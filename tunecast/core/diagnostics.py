"""
Environment report: external tool versions and the transcode thread budget.
"""

import shutil
import logging

from tunecast.core.constants import YTDLP_BIN, FFMPEG_BIN, FFPROBE_BIN, REQUIRED_TOOLS
from tunecast.core.security_utils import run_subprocess_capture
from tunecast.core.thread_budget import CPU_THREAD_COUNT, ThreadBudget

logger = logging.getLogger(__name__)


def _tool_version(args: list[str]) -> str:
    try:
        result = run_subprocess_capture(args, timeout=10)
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"
    if result.returncode != 0:
        return f"Error (rc={result.returncode})"
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else ""


def get_ytdlp_version() -> str:
    """yt-dlp version, or a short reason it could not be read."""
    return _tool_version([YTDLP_BIN, "--version"])


def get_ffmpeg_version() -> str:
    """Return the first line of `ffmpeg -version`, or error message."""
    return _tool_version([FFMPEG_BIN, "-version"])


def get_ffprobe_version() -> str:
    return _tool_version([FFPROBE_BIN, "-version"])


def missing_tools() -> list[str]:
    """External tools that are not on PATH."""
    return [tool for tool in REQUIRED_TOOLS if not shutil.which(tool)]


def get_diagnostics(budget: ThreadBudget | None = None) -> dict:
    """Everything the `diagnostics` command prints."""
    info = {
        "ytdlp_version": get_ytdlp_version(),
        "ffmpeg_version": get_ffmpeg_version(),
        "ffprobe_version": get_ffprobe_version(),
        "missing_tools": missing_tools(),
        "cpu_threads": CPU_THREAD_COUNT,
    }
    if budget is not None:
        info["thread_budget"] = budget.target
        info["active_transcodes"] = budget.active
    return info
