"""
Path and subprocess safety for TuneCast.

Folder names derived from user input are sanitised before they touch the
filesystem, child paths are checked against their root, and external tools
are only ever run from argument arrays.
"""

import re
import subprocess
import pathlib
import logging

from tunecast.core.constants import UNSAFE_FILENAME_CHARS, MAX_FOLDER_NAME_LEN

logger = logging.getLogger(__name__)


# ── Folder names and paths ────────────────────────────────────────────

def sanitize_folder_name(name: str) -> str:
    """
    Turn a user-supplied name (a username, usually) into a single safe
    folder name. Returns "" when nothing usable is left.
    """
    if not name:
        return ""
    cleaned = re.sub(UNSAFE_FILENAME_CHARS, '_', name).replace('..', '')
    cleaned = re.sub(r'\s+', ' ', cleaned).strip()
    cleaned = cleaned[:MAX_FOLDER_NAME_LEN].rstrip()
    # no hidden folders
    return cleaned.strip('.')


def safe_child_path(root: pathlib.Path, *parts: str) -> pathlib.Path:
    """
    Join parts under root, refusing any result that escapes root.
    Raises ValueError on traversal.
    """
    candidate = root.joinpath(*parts)
    real_root = root.resolve(strict=False)
    real_candidate = candidate.resolve(strict=False)
    if real_candidate != real_root and real_root not in real_candidate.parents:
        raise ValueError(f"Path traversal detected: {'/'.join(parts)}")
    return candidate


# ── External tools ────────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """Run a tool to completion. `args` must be a list; a shell is never used."""
    if not isinstance(args, (list, tuple)):
        raise TypeError(f"Tool arguments must be a list, got {type(args).__name__}")
    if kwargs.pop('shell', False):
        logger.warning("Ignoring shell=True for %s", args[0] if args else "?")

    logger.debug("Running %s", ' '.join(str(a) for a in args))
    return subprocess.run([str(a) for a in args], shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run a tool and collect its stdout/stderr as text."""
    return run_subprocess(args, capture_output=True, text=True, timeout=timeout, **kwargs)
