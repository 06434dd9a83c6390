from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from _fs import write_json

log = logging.getLogger(__name__)


class ManifestError(Exception):
    """A manifest could not be read or is not a JSON object."""


class ManifestStore:
    """Parsed-manifest cache for one invocation.

    Workspace members are read from worker threads, so lookups and inserts go
    through a lock. ``write`` drops the cached copy of the written path.
    """

    def __init__(self) -> None:
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def clear(self) -> int:
        with self._lock:
            size = len(self._cache)
            self._cache.clear()
        log.debug("Manifest cache cleared, had %d entries", size)
        return size

    def __len__(self) -> int:
        return len(self._cache)

    def read(self, path: Path) -> Dict[str, Any]:
        key = str(Path(path).resolve())
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            payload = json.loads(Path(key).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ManifestError(f"Invalid JSON at {key}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ManifestError(f"Invalid manifest at {key}: expected a JSON object")
        with self._lock:
            self._cache[key] = payload
        return payload

    def load(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            return self.read(path)
        except ManifestError as exc:
            log.error("%s", exc)
            return None

    def write(self, path: Path, manifest: Dict[str, Any]) -> Path:
        target = Path(path).resolve()
        if target.suffix != ".json":
            raise ManifestError(f"Invalid target file: {target}")
        write_json(target, manifest)
        with self._lock:
            self._cache.pop(str(target), None)
        return target
