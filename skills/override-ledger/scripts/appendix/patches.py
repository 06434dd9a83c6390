from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from model import Appendix, deep_copy, package_from_key

log = logging.getLogger(__name__)

PATCH_SUFFIX = ".patch"


def parse_patch_filename(path: str) -> Optional[Tuple[str, str]]:
    """``lodash+4.17.21.patch`` -> (``lodash``, ``4.17.21``).

    Scoped packages encode the slash as ``+`` (``@types+node+20.1.0.patch``);
    ``a++b+1.0.0.patch`` patches ``b`` nested under ``a``. Anything else is None.
    """
    name = PurePosixPath(path).name
    if not name.endswith(PATCH_SUFFIX):
        return None
    stem = name[: -len(PATCH_SUFFIX)]
    package, sep, version = stem.rpartition("+")
    if not sep or not package or not version:
        return None
    package = package.split("++")[-1]
    if package.startswith("@"):
        scope, sep, bare = package.partition("+")
        if not sep or not bare or "+" in bare or scope == "@":
            return None
        package = f"{scope}/{bare}"
    elif "+" in package:
        return None
    return package, version


def build_patch_map(patch_files: Sequence[str]) -> Dict[str, List[str]]:
    patch_map: Dict[str, List[str]] = {}
    for path in patch_files:
        parsed = parse_patch_filename(path)
        if parsed is None:
            continue
        files = patch_map.setdefault(parsed[0], [])
        if path not in files:
            files.append(path)
    return patch_map


def attach_patches(appendix: Appendix, patch_files: Sequence[str]) -> Appendix:
    """Record patch files on the items of the packages they patch."""
    patch_map = build_patch_map(patch_files)
    result = deep_copy(appendix)
    if not patch_map:
        return result
    for key, item in result.items():
        files = patch_map.get(package_from_key(key))
        if not files:
            continue
        patches = list(item.get("patches") or [])
        for path in files:
            if path not in patches:
                patches.append(path)
        item["patches"] = patches
    return result


def find_unused_patches(patch_files: Sequence[str], all_deps: Mapping[str, str]) -> List[str]:
    unused: List[str] = []
    for path in patch_files:
        parsed = parse_patch_filename(path)
        if parsed is not None and parsed[0] not in all_deps:
            unused.append(path)
    if unused:
        log.debug("Patches for packages no longer installed: %s", ", ".join(unused))
    return unused
