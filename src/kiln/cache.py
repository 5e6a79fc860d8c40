from __future__ import annotations

"""Archive cache.

CONTRACT
- Inputs: cache root (the platform cache dir), tool names, install trees
- Outputs (required):
  - <root>/<tool>/      copy of the tool's install prefix
  - <root>/<tool>.json  CacheRecord sidecar (tool, versions, created_at)
- Invariants:
  - restore() after store() reproduces the tree verbatim, symlinks included
  - Entries are used as-is; no checksum is verified on restore
  - store() replaces any previous entry for the same name
  - lock(name) serializes concurrent runs sharing the cache root, per entry
- Failure:
  - Raises CacheIOError on filesystem copy/remove failures
  - A crash mid-store can leave a partial entry; invalidate() clears it
"""

import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from filelock import FileLock, Timeout
from loguru import logger
from pydantic import ValidationError

from .errors import CacheIOError
from .runs.schemas import CacheRecord
from .util.ids import validate_name


@dataclass(frozen=True)
class CacheEntryInfo:
    name: str
    path: Path
    record: CacheRecord | None


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


@dataclass(frozen=True)
class ArchiveCache:
    root: Path

    def entry_path(self, name: str) -> Path:
        return self.root / validate_name(name)

    def record_path(self, name: str) -> Path:
        return self.root / f"{validate_name(name)}.json"

    def lock(self, name: str, timeout_s: float = -1) -> FileLock:
        lock_path = self.root / ".locks" / f"{validate_name(name)}.lock"
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(lock_path), timeout=timeout_s)

    @contextmanager
    def locked(self, name: str) -> Iterator[FileLock]:
        """Hold the entry lock, logging when another run already holds it."""
        lock = self.lock(name)
        try:
            lock.acquire(timeout=0)
        except Timeout:
            logger.info(f"Waiting for cache lock {lock.lock_file}")
            lock.acquire()
        try:
            yield lock
        finally:
            lock.release()

    def has(self, name: str) -> bool:
        return self.entry_path(name).is_dir()

    def record(self, name: str) -> CacheRecord | None:
        p = self.record_path(name)
        if not p.exists():
            return None
        try:
            return CacheRecord.model_validate_json(p.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable cache record {p}: {e}")
            return None

    def restore(self, name: str, into_dir: Path) -> Path:
        src = self.entry_path(name)
        if not src.is_dir():
            raise CacheIOError(name, "restore", f"no cache entry at {src}")
        try:
            _remove(into_dir)
            into_dir.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(src, into_dir, symlinks=True)
        except (OSError, shutil.Error) as e:
            raise CacheIOError(name, "restore", str(e)) from e
        return into_dir

    def store(self, name: str, from_dir: Path, record: CacheRecord | None = None) -> Path:
        dest = self.entry_path(name)
        if not from_dir.is_dir():
            raise CacheIOError(name, "store", f"nothing to cache at {from_dir}")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            _remove(dest)
            self.record_path(name).unlink(missing_ok=True)
            shutil.copytree(from_dir, dest, symlinks=True)
            if record is not None:
                self.record_path(name).write_text(
                    record.model_dump_json(indent=2) + "\n", encoding="utf-8"
                )
        except (OSError, shutil.Error) as e:
            raise CacheIOError(name, "store", str(e)) from e
        return dest

    def invalidate(self, name: str) -> bool:
        """Remove the entry and its record. Returns True if anything was removed."""
        dest = self.entry_path(name)
        rec = self.record_path(name)
        existed = dest.exists() or rec.exists()
        try:
            _remove(dest)
            rec.unlink(missing_ok=True)
        except OSError as e:
            raise CacheIOError(name, "invalidate", str(e)) from e
        return existed

    def entries(self) -> list[CacheEntryInfo]:
        if not self.root.is_dir():
            return []
        out = []
        for d in sorted(self.root.iterdir()):
            if not d.is_dir() or d.name.startswith("."):
                continue
            try:
                validate_name(d.name)
            except ValueError:
                continue
            out.append(CacheEntryInfo(name=d.name, path=d, record=self.record(d.name)))
        return out


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Archive cache CLI")
    parser.add_argument("--root", required=True, help="Cache root directory")
    parser.add_argument("--invalidate", help="Remove the named entry")
    args = parser.parse_args()

    cache = ArchiveCache(Path(args.root))
    if args.invalidate:
        removed = cache.invalidate(args.invalidate)
        print("removed" if removed else "no entry")
        sys.exit(0)
    for entry in cache.entries():
        version = entry.record.version if entry.record else "?"
        print(f"{entry.name}\t{version}\t{entry.path}")
