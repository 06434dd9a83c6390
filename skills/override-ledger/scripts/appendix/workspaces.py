from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import reduce
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from manifest import ManifestError, ManifestStore
from model import Appendix, OverrideMap, OverridePaths, deep_copy, merged_dependencies, sorted_appendix

from .builder import build_partial, merge_appendices


@dataclass
class MemberScan:
    path: str
    appendix: Appendix
    deps: Dict[str, str]


@dataclass
class WorkspaceResult:
    appendix: Appendix = field(default_factory=dict)
    all_deps: Dict[str, str] = field(default_factory=dict)
    override_paths: OverridePaths = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    scanned: int = 0


def member_key(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.resolve().as_posix()


def scan_member(path: Path, root: Path, overrides: OverrideMap, store: ManifestStore) -> MemberScan:
    manifest = store.read(path)
    key = member_key(path, root)
    fallback = path.parent.name or key
    return MemberScan(
        path=key,
        appendix=build_partial(manifest, overrides, fallback),
        deps=merged_dependencies(manifest),
    )


def union_deps(left: Mapping[str, str], right: Mapping[str, str]) -> Dict[str, str]:
    merged = dict(left)
    for name, spec in right.items():
        current = merged.get(name)
        merged[name] = spec if current is None else max(current, spec)
    return merged


def find_missing_in_root(
    overrides: OverrideMap,
    root_deps: Mapping[str, str],
    log: logging.Logger,
    *,
    has_dep_paths: bool = False,
) -> List[str]:
    missing = [name for name in overrides if name not in root_deps]
    if missing and not has_dep_paths:
        log.info("Found overrides for packages not in root dependencies: %s", ", ".join(missing))
        log.info("For monorepo support, pass --dep-paths or set pastoralist.depPaths in package.json")
    return missing


def aggregate_workspaces(
    member_paths: Sequence[Path],
    overrides: OverrideMap,
    log: logging.Logger,
    *,
    store: ManifestStore,
    root: Path,
    previous_paths: Optional[OverridePaths] = None,
    workers: int = 4,
) -> WorkspaceResult:
    """Scan every member against the root override map and union the results.

    Members are independent; the fold is order-free, so results are identical
    whatever order the pool finishes in. Members that cannot be read are
    skipped, and tracking recorded for them on earlier runs is kept.
    """
    result = WorkspaceResult()
    if not member_paths or not overrides:
        result.override_paths = deep_copy(previous_paths or {})
        return result

    scans: List[MemberScan] = []

    def scan(path: Path) -> Optional[MemberScan]:
        try:
            return scan_member(path, root, overrides, store)
        except ManifestError as exc:
            log.warning("Skipping workspace member %s: %s", path, exc)
            result.skipped.append(member_key(path, root))
            return None

    max_workers = max(1, int(workers or 1))
    if max_workers > 1 and len(member_paths) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(scan, path) for path in member_paths]
            for future in as_completed(futures):
                scanned = future.result()
                if scanned is not None:
                    scans.append(scanned)
    else:
        for path in member_paths:
            scanned = scan(path)
            if scanned is not None:
                scans.append(scanned)

    scans.sort(key=lambda item: item.path)
    result.skipped.sort()
    result.scanned = len(scans)
    result.appendix = reduce(merge_appendices, (scan.appendix for scan in scans), {})
    result.all_deps = reduce(union_deps, (scan.deps for scan in scans), {})

    paths: OverridePaths = deep_copy(previous_paths or {})
    for scan in scans:
        if scan.appendix:
            paths[scan.path] = sorted_appendix(scan.appendix)
    result.override_paths = {key: paths[key] for key in sorted(paths)}
    log.debug(
        "Scanned %d workspace members, %d with overrides, %d skipped",
        result.scanned,
        sum(1 for scan in scans if scan.appendix),
        len(result.skipped),
    )
    return result
