"""
Cleanup: delete the folders of items that failed to download.
"""

import shutil
import logging
import threading
from pathlib import Path

from tunecast.core.constants import FAILED_ITEM_CLEANUP_DELAY

logger = logging.getLogger(__name__)


def remove_item_dir(item_dir: Path) -> bool:
    """
    Recursively delete a failed item's folder. Missing folders are fine.
    Failures are logged, never raised.
    """
    item_dir = Path(item_dir)
    if not item_dir.exists():
        return True
    try:
        shutil.rmtree(item_dir)
        logger.debug("Deleted: %s", item_dir)
        return True
    except OSError as e:
        logger.warning("Failed to delete %s: %s", item_dir, e)
        return False


def schedule_removal(item_dir: Path, delay: float = FAILED_ITEM_CLEANUP_DELAY) -> threading.Timer:
    """
    Delete item_dir after `delay` seconds, once the killed processes have
    let go of their files.
    """
    timer = threading.Timer(delay, remove_item_dir, args=(Path(item_dir),))
    timer.daemon = True
    timer.start()
    return timer


def remove_stale_temp_files(playlist_dir: Path):
    """Drop *.tmp files left behind by an interrupted atomic write."""
    for tmp in Path(playlist_dir).glob("*.tmp"):
        try:
            tmp.unlink()
        except OSError as e:
            logger.warning("Failed to delete %s: %s", tmp, e)
