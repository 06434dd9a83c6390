"""Mark-and-sweep of overrides nothing depends on any more."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from manifest import DependencyTree
from model import Appendix, OverrideMap, OverridePaths, deep_copy, item_dependents, package_from_key

from .builder import override_keys

log = logging.getLogger(__name__)


@dataclass
class GcResult:
    overrides: OverrideMap = field(default_factory=dict)
    appendix: Appendix = field(default_factory=dict)
    removed: OverrideMap = field(default_factory=dict)
    pruned_keys: List[str] = field(default_factory=list)
    # Removed overrides that were never root dependencies in the first place.
    unresolved: List[str] = field(default_factory=list)


def in_dependency_sets(package: str, all_deps: Mapping[str, str]) -> bool:
    return package in all_deps


def protected_by_override_paths(package: str, override_paths: Optional[OverridePaths]) -> bool:
    """True when some member's recorded appendix still mentions ``package``.

    A mention is either a key for the package itself or a dependent value
    naming it, which is how nested-override parents are recorded.
    """
    prefix = f"{package}@"
    for member_appendix in (override_paths or {}).values():
        if not isinstance(member_appendix, dict):
            continue
        for key, item in member_appendix.items():
            if package_from_key(key) == package:
                return True
            if any(value.startswith(prefix) for value in item_dependents(item).values()):
                return True
    return False


def in_installed_tree(package: str, tree: Optional[DependencyTree]) -> bool:
    return tree is not None and tree.contains(package)


def is_live(
    package: str,
    all_deps: Mapping[str, str],
    override_paths: Optional[OverridePaths],
    tree: Optional[DependencyTree],
) -> bool:
    # Ordered so the tree oracle runs only when nothing else matched.
    return (
        in_dependency_sets(package, all_deps)
        or protected_by_override_paths(package, override_paths)
        or in_installed_tree(package, tree)
    )


def collect_garbage(
    overrides: OverrideMap,
    appendix: Appendix,
    all_deps: Mapping[str, str],
    missing_in_root: Sequence[str] = (),
    override_paths: Optional[OverridePaths] = None,
    tree: Optional[DependencyTree] = None,
) -> GcResult:
    """Drop dead overrides and every appendix key no remaining override produces.

    Nested overrides live and die with their parent package. An inner key shared
    with another live override stays.
    """
    result = GcResult()
    for package, value in overrides.items():
        if is_live(package, all_deps, override_paths, tree):
            result.overrides[package] = deep_copy(value)
            continue
        log.debug("Removing unused override %s", package)
        result.removed[package] = deep_copy(value)
        if package in missing_in_root:
            result.unresolved.append(package)

    kept_keys = override_keys(result.overrides)
    for key, item in appendix.items():
        if key in kept_keys:
            result.appendix[key] = deep_copy(item)
        else:
            log.debug("Pruning appendix entry %s", key)
            result.pruned_keys.append(key)
    return result


def monorepo_hint(unresolved: Sequence[str], has_dep_paths: bool) -> Optional[str]:
    if not unresolved or has_dep_paths:
        return None
    return (
        "Removed overrides for packages not found in root dependencies: "
        f"{', '.join(sorted(unresolved))}. If they belong to workspace packages, "
        "pass --dep-paths or set pastoralist.depPaths."
    )


def removed_versions(removed: OverrideMap) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for package, value in removed.items():
        if isinstance(value, dict):
            out[package] = ", ".join(f"{inner}@{version}" for inner, version in sorted(value.items()))
        else:
            out[package] = value
    return out
