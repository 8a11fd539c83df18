#!/usr/bin/env python3
"""
TuneCast v1.0.0: main entry point.
Command line front end for the playlist download pipeline.
"""

import sys
import json
import logging
import argparse
import traceback
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tunecast.core.constants import APP_NAME, APP_VERSION, LOG_DIR, REQUIRED_TOOLS
from tunecast.core.config import SETTING_NAMES

logger = logging.getLogger("tunecast")


def setup_logging(verbose: bool = False):
    """Log to <app data>/logs/app.log and to stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def check_prerequisites():
    """Check that yt-dlp, ffmpeg and ffprobe are available, exit if not."""
    import shutil
    missing = [tool for tool in REQUIRED_TOOLS if not shutil.which(tool)]
    if missing:
        logger.error("Missing required tools: %s", ", ".join(missing))
        sys.exit(1)

    # Log found paths for debugging
    for tool in REQUIRED_TOOLS:
        logger.info("%s found at: %s", tool, shutil.which(tool))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tunecast", description=f"{APP_NAME} playlist downloader")
    parser.add_argument("--config", type=Path, help="path to config.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add-user", help="register a user and create their storage folder")
    p.add_argument("username")
    p.add_argument("--credential", default="", help="opaque credential stored with the user")

    p = sub.add_parser("download", help="download a playlist for a user")
    p.add_argument("username")
    p.add_argument("url")
    p.add_argument("--quality", type=int)
    p.add_argument("--segment-seconds", type=int)
    p.add_argument("--max-items", type=int)
    p.add_argument("--max-item-minutes", type=int)

    p = sub.add_parser("playlists", help="list a user's playlists")
    p.add_argument("username")

    sub.add_parser("users", help="list registered users")

    p = sub.add_parser("config", help="show or change a setting")
    p.add_argument("key", choices=SETTING_NAMES)
    p.add_argument("value", nargs="?", help="new value; JSON is accepted for lists and numbers")

    sub.add_parser("diagnostics", help="show tool versions and thread budget")
    return parser


def parse_setting(text: str):
    """Command line values are JSON where they parse as JSON, plain strings otherwise."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def run(args) -> int:
    from tunecast.core.config import AppConfig
    from tunecast.core.db_sqlite import Database
    from tunecast.core.progress_store import ProgressStore
    from tunecast.core.thread_budget import ThreadBudget

    config = AppConfig(args.config) if args.config else AppConfig()
    budget = ThreadBudget(config.get('thread_budget'), config.get('limit_threads_to_cpu'))

    if args.command == "config":
        if args.value is not None:
            config.set(args.key, parse_setting(args.value))
        print(json.dumps(config.get(args.key)))
        return 0

    if args.command == "diagnostics":
        from tunecast.core.diagnostics import get_diagnostics
        print(json.dumps(get_diagnostics(budget), indent=2))
        return 0

    db = Database(config.db_path)
    try:
        store = ProgressStore(db, config.playlists_root)

        if args.command == "add-user":
            user = store.create_user(args.username, args.credential)
            print(f"Created {user.username} (folder {user.folder_name})")
            return 0

        if args.command == "users":
            for username in db.get_all_usernames():
                print(username)
            return 0

        if args.command == "playlists":
            for playlist in store.get_playlists(args.username):
                print(f"{playlist.name}\t{playlist.status}\t{playlist.progress} items"
                      f"\t{playlist.dropped_pages} pages dropped")
            return 0

        # download
        from tunecast.core.playlist_job import PlaylistDownloader
        check_prerequisites()
        settings = config.as_dict()
        settings['youtube_api_key'] = config.api_key
        downloader = PlaylistDownloader(store, budget, settings)
        outcome = downloader.download_playlist(
            args.username, args.url,
            quality=args.quality,
            segment_seconds=args.segment_seconds,
            max_items=args.max_items,
            max_item_minutes=args.max_item_minutes,
        )
        print(f"{outcome.name}: {outcome.status} ({outcome.succeeded} downloaded, "
              f"{outcome.failed} failed, {outcome.dropped_pages} pages dropped)")
        print(outcome.manifest_path)
        return 0 if outcome.succeeded else 1
    finally:
        db.close()


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Command: %s", args.command)
    logger.info("=" * 60)

    from tunecast.core.error_codes import JobError
    try:
        sys.exit(run(args))
    except JobError as e:
        logger.error("%s", e)
        sys.exit(1)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.critical("Fatal error: %s\n%s", error_msg, traceback.format_exc())
        sys.exit(1)


if __name__ == "__main__":
    main()
