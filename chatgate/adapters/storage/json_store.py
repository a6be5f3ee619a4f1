"""JSON file-based storage adapter — implements StoragePort."""

import json
import os
import sys
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict


def _log(msg: str):
    print(msg, file=sys.stderr)


class JsonStorage:
    """File-based JSON storage implementing StoragePort protocol.

    Every ``save`` rewrites the whole document through a temp file and
    ``os.replace``; writers to the same file are serialized by a per-path lock.
    """

    def __init__(self, storage_dir: str = "data"):
        self._storage_dir = Path(storage_dir)
        self._storage_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    def _path(self, key: str) -> Path:
        return self._storage_dir / f"{key}.json"

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    def load(self, key: str, default: Any = None) -> Any:
        """Return the stored document, or ``default`` when missing or malformed.

        When ``default`` is a list or dict, a document of another type counts
        as malformed.
        """
        if default is None:
            default = []
        path = self._path(key)
        if not path.exists():
            return default
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except Exception as e:
            _log(f"[storage] {path.name} unreadable, using empty default: {e}")
            return default
        if isinstance(default, (list, dict)) and not isinstance(raw, type(default)):
            _log(f"[storage] {path.name} has unexpected shape, using empty default")
            return default
        return raw

    def save(self, key: str, data: Any) -> None:
        path = self._path(key)
        content = json.dumps(data, ensure_ascii=False, indent=2)
        with self._lock_for(path):
            path.parent.mkdir(parents=True, exist_ok=True)
            # Atomic write
            fd, tmp_path = tempfile.mkstemp(
                dir=str(path.parent), suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_path, str(path))
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise

    def append_line(self, name: str, line: str) -> None:
        """Append one line to a plain-text log file (the only non-rewrite write)."""
        path = self._storage_dir / name
        with self._lock_for(path):
            with path.open("a", encoding="utf-8") as f:
                f.write(line.rstrip("\n") + "\n")
