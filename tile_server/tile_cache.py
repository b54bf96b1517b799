from __future__ import annotations

import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Dict, Optional

from common.logging_setup import get_logger
from common.types import TileKey
from common.utils import ReadWriteLock, Stopwatch
from tile_server.errors import StorageFailure


log = get_logger(__name__)

# stored beside the cache directory as ".{name}.source-tag"
TAG_SUFFIX = ".source-tag"


class TileCache:
    """
    Rendered tiles on disk, one flat directory:

        root/
          ├─ 0-0-0.png
          ├─ 10-512-497.png
          └─ ...

    Entries are written to a temp file in the same directory and renamed into
    place, so a crash leaves a missing entry rather than a truncated one.

    Each cache carries a generation number. Readers and writers pass the
    generation of the snapshot they rendered against; anything tagged with an
    older generation is ignored. `invalidate_all` takes the lock exclusively,
    so no tile can be stored while the purge runs.
    """

    def __init__(self, root: str = "data/tile-cache", generation: int = 0):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = ReadWriteLock()
        self._generation = int(generation)
        self._remove_leftover_purges()

    @property
    def generation(self) -> int:
        return self._generation

    # -------- public API --------

    def path_for(self, key: TileKey) -> Path:
        return self.root / key.filename

    def get(self, key: TileKey, generation: Optional[int] = None) -> Optional[bytes]:
        """
        Cached bytes for `key`, or None on a miss. Read errors are logged and
        reported as a miss so the caller re-renders.
        """
        with self._lock.shared():
            if generation is not None and generation != self._generation:
                return None
            try:
                return self.path_for(key).read_bytes()
            except FileNotFoundError:
                return None
            except OSError as e:
                err = StorageFailure(f"cache read failed for {key}: {e}")
                log.warning(str(err), extra={"extra": {"tile": str(key)}})
                return None

    def put(self, key: TileKey, data: bytes, generation: Optional[int] = None) -> bool:
        """
        Store `data` under `key`. Returns False when the write was dropped,
        either because `generation` is outdated or because writing failed
        (logged, never raised).
        """
        with self._lock.shared():
            if generation is not None and generation != self._generation:
                log.debug("dropping tile from outdated snapshot",
                          extra={"extra": {"tile": str(key), "generation": generation}})
                return False
            tmp: Optional[str] = None
            try:
                fd, tmp = tempfile.mkstemp(prefix=f".{key.filename}.", suffix=".tmp", dir=self.root)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp, self.path_for(key))
                return True
            except OSError as e:
                if tmp is not None:
                    Path(tmp).unlink(missing_ok=True)
                err = StorageFailure(f"cache write failed for {key}: {e}")
                log.warning(str(err), extra={"extra": {"tile": str(key)}})
                return False

    def invalidate_all(self, generation: Optional[int] = None, tag: Optional[str] = None) -> None:
        """
        Synchronously remove every entry and move to `generation` (default:
        the next one). Gets and puts wait until the purge has finished.

        If the entries cannot be removed, StorageFailure is raised and the
        cache stays on its old generation, so callers tagged with the new one
        only ever miss.

        `tag` identifies the data the new entries will be rendered from; it is
        stored beside the cache directory so a restarted server can tell
        whether they are still valid (see `resume`).
        """
        gen = self._generation + 1 if generation is None else int(generation)
        with self._lock.exclusive():
            self._clear_tag()
            self._purge(gen)
            if tag is not None:
                self._write_tag(tag)

    def resume(self, generation: int, tag: str) -> bool:
        """
        Keep the existing entries for `generation` if they were rendered from
        data carrying the same `tag`. Returns False (and changes nothing) when
        the tags differ; the caller must then invalidate.
        """
        with self._lock.exclusive():
            if self._read_tag() != tag:
                return False
            self._generation = int(generation)
            return True

    def stats(self) -> Dict[str, int]:
        entries = 0
        size = 0
        with self._lock.shared():
            for p in self.root.glob("*.png"):
                try:
                    size += p.stat().st_size
                except OSError:
                    continue
                entries += 1
            return {"entries": entries, "bytes": size, "generation": self._generation}

    # -------- internals --------

    def _purge(self, generation: int) -> None:
        """
        Swap the whole directory out with one rename, then delete it. The
        rename is the point at which every entry disappears at once. When the
        rename is refused, entries are unlinked one by one instead.

        The generation only advances once no old entry is left.
        """
        sw = Stopwatch()
        removed = 0
        trash: Optional[Path] = self.root.with_name(f".{self.root.name}.purge-{uuid.uuid4().hex}")
        try:
            os.replace(self.root, trash)
        except FileNotFoundError:
            trash = None
        except OSError as e:
            log.warning("cache directory swap failed, removing entries in place",
                        extra={"extra": {"error": str(e)}})
            trash = None
            removed = self._unlink_entries()
        else:
            removed = sum(1 for _ in trash.glob("*.png"))

        self._generation = int(generation)
        if trash is not None:
            shutil.rmtree(trash, ignore_errors=True)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageFailure(f"cannot recreate cache directory: {e}") from e

        log.info("tile cache invalidated",
                 extra={"extra": {"removed": removed, "generation": self._generation, "ms": sw.ms}})

    def _unlink_entries(self) -> int:
        removed = 0
        failed = []
        for p in self.root.glob("*.png"):
            try:
                p.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                failed.append(f"{p.name}: {e}")
        if failed:
            raise StorageFailure(f"cache invalidation failed for {len(failed)} entries: {failed[0]}")
        return removed

    @property
    def _tag_path(self) -> Path:
        return self.root.with_name(f".{self.root.name}{TAG_SUFFIX}")

    def _read_tag(self) -> Optional[str]:
        try:
            return self._tag_path.read_text().strip()
        except OSError:
            return None

    def _write_tag(self, tag: str) -> None:
        try:
            self._tag_path.write_text(tag)
        except OSError as e:
            # without a tag the next start simply purges again
            log.warning("cannot write cache tag", extra={"extra": {"error": str(e)}})

    def _clear_tag(self) -> None:
        try:
            self._tag_path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("cannot remove cache tag", extra={"extra": {"error": str(e)}})

    def _remove_leftover_purges(self) -> None:
        for p in self.root.parent.glob(f".{self.root.name}.purge-*"):
            shutil.rmtree(p, ignore_errors=True)
