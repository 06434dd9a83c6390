"""Tool settings: the manifest's ``pastoralist`` object plus an optional rc file."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .constants import CONFIG_FILES, CONFIG_KEY

log = logging.getLogger(__name__)

DICT_MERGED_KEYS = ("appendix", "overridePaths", "resolutionPaths", "security")


def find_config_file(root: Path) -> Optional[Path]:
    for name in CONFIG_FILES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def load_external_config(root: Path) -> Tuple[Optional[Path], Dict[str, Any]]:
    """First rc file found under ``root``; an unreadable one counts as absent."""
    path = find_config_file(root)
    if path is None:
        return None, {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        log.warning("Ignoring config file %s: %s", path, exc)
        return path, {}
    if not isinstance(payload, dict):
        log.warning("Ignoring config file %s: expected a JSON object", path)
        return path, {}
    log.debug("Loaded config from %s", path)
    return path, payload


def manifest_config(manifest: Mapping[str, Any]) -> Dict[str, Any]:
    section = manifest.get(CONFIG_KEY)
    return dict(section) if isinstance(section, dict) else {}


def merge_config(external: Mapping[str, Any], section: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay the manifest section on the rc file; the manifest wins per key."""
    merged: Dict[str, Any] = dict(external)
    for key, value in section.items():
        base = merged.get(key)
        if key in DICT_MERGED_KEYS and isinstance(base, dict) and isinstance(value, dict):
            merged[key] = {**base, **value}
        else:
            merged[key] = value
    return merged


def effective_config(manifest: Mapping[str, Any], root: Path) -> Dict[str, Any]:
    _, external = load_external_config(root)
    return merge_config(external, manifest_config(manifest))
