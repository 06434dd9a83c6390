"""One update run: read the manifest, rebuild the appendix, sweep, write once."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from manifest import (
    CONFIG_KEY,
    DependencyTree,
    ManifestStore,
    OverrideKind,
    effective_config,
    find_member_manifests,
    find_patch_files,
    remove_overrides,
    resolve_dep_paths,
    resolve_overrides,
    render_manifest,
)
from manifest.discovery import FileFinder, find_files
from model import Appendix, OverrideMap, OverridePaths, deep_copy, merged_dependencies, sorted_appendix
from utils import ToolState, progress

from .builder import merge_partial_into, override_keys, update_appendix
from .gc import collect_garbage, monorepo_hint, removed_versions
from .ledger import LedgerInputs, SecurityDetail
from .patches import attach_patches, find_unused_patches
from .workspaces import WorkspaceResult, aggregate_workspaces, find_missing_in_root, union_deps

log = logging.getLogger(__name__)

PATHS_KEYS = ("overridePaths", "resolutionPaths")


@dataclass
class UpdateOptions:
    root: Path
    path: Optional[Path] = None
    dep_paths: Optional[List[str]] = None
    ignore: List[str] = field(default_factory=list)
    dry_run: bool = False
    reason: Optional[str] = None
    security_details: List[SecurityDetail] = field(default_factory=list)
    security_provider: Optional[str] = None
    security_overrides: Dict[str, str] = field(default_factory=dict)
    manual_reasons: Dict[str, str] = field(default_factory=dict)
    workers: int = 4
    use_tree: bool = True
    compact: Optional[bool] = None

    @property
    def manifest_path(self) -> Path:
        return self.path if self.path is not None else self.root / "package.json"


@dataclass
class RunCache:
    """Parsed manifests and the installed tree, valid for a single run."""

    store: ManifestStore
    tree: DependencyTree

    @classmethod
    def fresh(cls, root: Path, warnings: List[str], tools: ToolState, use_tree: bool = True) -> "RunCache":
        tree = DependencyTree.for_root(root, warnings, tools) if use_tree else DependencyTree.disabled()
        return cls(store=ManifestStore(), tree=tree)

    def clear(self) -> None:
        self.store.clear()
        self.tree.clear()


@dataclass
class RunMetrics:
    appendix_added: int = 0
    overrides_removed: Dict[str, str] = field(default_factory=dict)
    severities: Dict[str, int] = field(default_factory=dict)
    workspace_scanned: int = 0
    workspace_skipped: int = 0
    write: str = "skipped"


@dataclass
class UpdateResult:
    manifest_path: Path
    overrides: Dict[str, Any] = field(default_factory=dict)
    appendix: Appendix = field(default_factory=dict)
    override_paths: OverridePaths = field(default_factory=dict)
    removed: OverrideMap = field(default_factory=dict)
    missing_in_root: List[str] = field(default_factory=list)
    patches: List[str] = field(default_factory=list)
    unused_patches: List[str] = field(default_factory=list)
    manifest: Optional[Dict[str, Any]] = None
    metrics: RunMetrics = field(default_factory=RunMetrics)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "manifest": str(self.manifest_path),
            "overrides": self.overrides,
            "appendix": self.appendix,
            "overridePaths": self.override_paths,
            "removed": removed_versions(self.removed),
            "missingInRoot": self.missing_in_root,
            "patches": self.patches,
            "unusedPatches": self.unused_patches,
            "metrics": {
                "appendixAdded": self.metrics.appendix_added,
                "overridesRemoved": self.metrics.overrides_removed,
                "severities": self.metrics.severities,
                "workspaceScanned": self.metrics.workspace_scanned,
                "workspaceSkipped": self.metrics.workspace_skipped,
                "write": self.metrics.write,
            },
            "warnings": self.warnings,
        }


def paths_key_for(config: Dict[str, Any], kind: Optional[OverrideKind]) -> str:
    for key in PATHS_KEYS:
        if isinstance(config.get(key), dict):
            return key
    return "resolutionPaths" if kind is OverrideKind.RESOLUTIONS else "overridePaths"


def severity_counts(appendix: Appendix) -> Dict[str, int]:
    counts: Counter = Counter()
    for item in appendix.values():
        ledger = item.get("ledger") if isinstance(item.get("ledger"), dict) else {}
        if ledger.get("severity"):
            counts[str(ledger["severity"])] += 1
    return dict(sorted(counts.items()))


def package_name(manifest: Dict[str, Any]) -> str:
    name = manifest.get("name")
    return name if isinstance(name, str) and name else "root"


def run_update(
    options: UpdateOptions,
    tools: Optional[ToolState] = None,
    *,
    cache: Optional[RunCache] = None,
    finder: FileFinder = find_files,
) -> UpdateResult:
    warnings: List[str] = []
    tools = tools or ToolState()
    root = options.root.resolve()
    manifest_path = options.manifest_path
    if cache is None:
        cache = RunCache.fresh(root, warnings, tools, use_tree=options.use_tree)
    else:
        cache.clear()
    result = UpdateResult(manifest_path=manifest_path, warnings=warnings)

    manifest = cache.store.load(manifest_path)
    if manifest is None:
        warnings.append(f"Could not read {manifest_path}; nothing written")
        return result
    manifest = deep_copy(manifest)

    config = effective_config(manifest, root)
    source = resolve_overrides(manifest)
    overrides: OverrideMap = dict(source.overrides) if source else {}
    if source and source.skipped:
        log.debug("Leaving unsupported override entries untouched: %s", ", ".join(sorted(source.skipped)))
    for package, version in options.security_overrides.items():
        overrides[package] = version

    dep_globs = resolve_dep_paths(options.dep_paths, {**manifest, CONFIG_KEY: config})
    root_deps = merged_dependencies(manifest)
    result.missing_in_root = find_missing_in_root(overrides, root_deps, log, has_dep_paths=bool(dep_globs))

    kind = source.kind if source else None
    paths_key = paths_key_for(config, kind)
    previous_paths = config.get(paths_key) if isinstance(config.get(paths_key), dict) else {}
    workspaces = WorkspaceResult()
    if dep_globs:
        progress(f"Scanning workspace manifests ({', '.join(dep_globs)})...")
        members = find_member_manifests(
            dep_globs,
            root,
            options.ignore,
            root_manifest=manifest_path,
            finder=finder,
        )
        workspaces = aggregate_workspaces(
            members,
            overrides,
            log,
            store=cache.store,
            root=root,
            previous_paths=previous_paths,
            workers=options.workers,
        )
        progress(f"Scanned {workspaces.scanned} workspace manifests", done=True)
        for skipped in workspaces.skipped:
            warnings.append(f"Skipped unreadable workspace manifest: {skipped}")
    override_paths = workspaces.override_paths if dep_globs else previous_paths

    security = config.get("security") if isinstance(config.get("security"), dict) else {}
    provider = options.security_provider or security.get("provider")
    ledger = LedgerInputs(
        reason=options.reason,
        security_details=list(options.security_details),
        security_provider=provider if isinstance(provider, str) else None,
        manual_reasons=dict(options.manual_reasons),
    )
    baseline = config.get("appendix") if isinstance(config.get("appendix"), dict) else {}
    owners = override_keys(overrides)
    appendix = merge_partial_into(baseline, workspaces.appendix, owners, ledger)
    appendix = update_appendix(
        overrides,
        dependencies=root_deps,
        package_name=package_name(manifest),
        appendix=appendix,
        ledger=ledger,
        transitive=cache.tree.contains,
    )

    all_deps = union_deps(root_deps, workspaces.all_deps)
    result.patches = find_patch_files(root, finder)
    appendix = attach_patches(appendix, result.patches)
    result.unused_patches = find_unused_patches(result.patches, all_deps)

    swept = collect_garbage(
        overrides,
        appendix,
        all_deps,
        result.missing_in_root,
        override_paths,
        cache.tree,
    )
    hint = monorepo_hint(swept.unresolved, bool(dep_globs))
    if hint:
        warnings.append(hint)

    final_overrides = deep_copy(remove_overrides(source.raw if source else {}, swept.removed))
    for package, version in options.security_overrides.items():
        if package not in swept.removed:
            final_overrides[package] = version

    result.overrides = final_overrides
    result.appendix = sorted_appendix(swept.appendix)
    result.override_paths = override_paths or {}
    result.removed = swept.removed
    compact = options.compact if options.compact is not None else bool(config.get("compactAppendix"))
    result.manifest = render_manifest(
        manifest,
        overrides=final_overrides,
        appendix=result.appendix,
        kind=kind,
        override_paths=workspaces.override_paths if dep_globs else None,
        paths_key=paths_key,
        compact=compact,
    )

    result.metrics = RunMetrics(
        appendix_added=len(set(result.appendix) - set(baseline)),
        overrides_removed=removed_versions(swept.removed),
        severities=severity_counts(result.appendix),
        workspace_scanned=workspaces.scanned,
        workspace_skipped=len(workspaces.skipped),
    )
    if options.dry_run:
        result.metrics.write = "dry-run"
        return result
    cache.store.write(manifest_path, result.manifest)
    result.metrics.write = "written"
    progress(f"Updated {manifest_path}", done=True)
    return result
