from __future__ import annotations

import fnmatch
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from .constants import CONFIG_KEY, EXCLUDE_DIRS, PATCH_GLOBS, WORKSPACE_SENTINELS

log = logging.getLogger(__name__)

FileFinder = Callable[[Sequence[str], Path, Sequence[str]], List[Path]]


def match_globs(path: str, globs: Iterable[str]) -> bool:
    for glob in globs:
        if fnmatch.fnmatch(path, glob):
            return True
        if glob.startswith("**/") and fnmatch.fnmatch(path, glob[3:]):
            return True
    return False


def is_excluded(rel: str) -> bool:
    return any(part in EXCLUDE_DIRS for part in rel.split("/")[:-1])


def find_files(patterns: Sequence[str], root: Path, ignore: Sequence[str] = ()) -> List[Path]:
    """Expand glob patterns under ``root``, skipping ``node_modules`` and ignored paths."""
    root = root.resolve()
    found = set()
    for pattern in patterns:
        pattern = pattern.strip()
        if not pattern:
            continue
        if pattern.startswith("./"):
            pattern = pattern[2:]
        for path in root.glob(pattern):
            if not path.is_file():
                continue
            rel = path.relative_to(root).as_posix()
            if is_excluded(rel) or match_globs(rel, ignore):
                continue
            found.add(path)
    return sorted(found)


def workspace_globs(manifest: Mapping[str, Any]) -> List[str]:
    workspaces = manifest.get("workspaces")
    if isinstance(workspaces, dict):
        workspaces = workspaces.get("packages")
    if not isinstance(workspaces, list):
        return []
    return [f"{ws.rstrip('/')}/package.json" for ws in workspaces if isinstance(ws, str) and ws.strip()]


def resolve_dep_paths(
    cli_dep_paths: Optional[Sequence[str]],
    manifest: Mapping[str, Any],
) -> Optional[List[str]]:
    """Member manifest globs. CLI globs win over the manifest's ``depPaths``."""
    if cli_dep_paths:
        if len(cli_dep_paths) == 1 and cli_dep_paths[0] in WORKSPACE_SENTINELS:
            return workspace_globs(manifest) or None
        return list(cli_dep_paths)
    config = manifest.get(CONFIG_KEY)
    dep_paths = config.get("depPaths") if isinstance(config, dict) else None
    if isinstance(dep_paths, str) and dep_paths in WORKSPACE_SENTINELS:
        return workspace_globs(manifest) or None
    if isinstance(dep_paths, list):
        globs = [item for item in dep_paths if isinstance(item, str) and item.strip()]
        return globs or None
    if dep_paths is None and manifest.get("workspaces"):
        return workspace_globs(manifest) or None
    return None


def find_member_manifests(
    globs: Sequence[str],
    root: Path,
    ignore: Sequence[str],
    *,
    root_manifest: Optional[Path] = None,
    finder: FileFinder = find_files,
) -> List[Path]:
    members = [path for path in finder(globs, root, ignore) if path.name == "package.json"]
    if root_manifest is not None:
        root_resolved = root_manifest.resolve()
        members = [path for path in members if path.resolve() != root_resolved]
    if not members:
        log.debug("No package.json files found matching %s in %s", ", ".join(globs), root)
    return members


def find_patch_files(root: Path, finder: FileFinder = find_files) -> List[str]:
    root = root.resolve()
    return [path.relative_to(root).as_posix() for path in finder(PATCH_GLOBS, root, ())]
