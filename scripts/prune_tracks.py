#!/usr/bin/env python3
"""
Delete stored GPX tracks whose activity type is not the one you keep.

The activity is the first <type> of the file's tracks (Strava/Garmin exports
write e.g. "cycling" or "running"). Files without a type, or that fail to
parse, count as non-matching.

Examples:
  python scripts/prune_tracks.py --dry-run
  python scripts/prune_tracks.py --tracks-dir data/tracks --keep cycling
"""
from __future__ import annotations

import argparse
import os
import sys

# Add the project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.logging_setup import get_logger
from tile_server.errors import ParseFailure, StorageFailure
from tile_server.server import _load_config
from tile_server.tracks import TrackRepository, activity_type


log = get_logger("prune_tracks")


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--tracks-dir", default=None, help="Track directory (default: tracks.dir from config)")
    ap.add_argument("--keep", default="cycling", help="Activity type to keep")
    ap.add_argument("--dry-run", action="store_true", help="Only list what would be deleted")
    args = ap.parse_args()

    repo = TrackRepository(args.tracks_dir or _load_config()["tracks"]["dir"])
    kept = deleted = 0
    for track_id in repo.list_ids():
        try:
            kind = activity_type(repo.read(track_id))
        except ParseFailure as e:
            log.warning("unreadable track", extra={"extra": {"track": track_id, "reason": e.reason}})
            kind = None
        if kind == args.keep:
            kept += 1
            continue
        if args.dry_run:
            print(f"[dry-run] would delete {track_id} (type={kind})")
        else:
            try:
                repo.remove(track_id)
            except StorageFailure as e:
                log.error("delete failed", extra={"extra": {"track": track_id, "error": str(e)}})
                continue
            print(f"[ok] deleted {track_id} (type={kind})")
        deleted += 1

    print(f"{kept} kept, {deleted} {'to delete' if args.dry_run else 'deleted'}")
    if deleted and not args.dry_run:
        print("Restart the server (or upload/delete any track) to rebuild the tile cache.")


if __name__ == "__main__":
    main()
