from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import nodesemver

from model import (
    NESTED_SUFFIX,
    TRANSITIVE_SUFFIX,
    Appendix,
    OverrideMap,
    appendix_key,
    deep_copy,
    is_nested,
    item_dependents,
    item_ledger,
    merged_dependencies,
    package_from_key,
)

from .ledger import LedgerInputs

log = logging.getLogger(__name__)

KeyOwners = Dict[str, Tuple[str, Optional[str]]]


def is_exact_version(spec: str) -> bool:
    try:
        nodesemver.make_semver(spec, loose=True)
    except (ValueError, TypeError):
        return False
    return True


def changes_resolution(declared: Optional[str], pinned: str) -> bool:
    """False only when the declared spec already names exactly the pinned version."""
    if not declared or not is_exact_version(declared):
        return True
    try:
        return not nodesemver.satisfies(pinned, declared, loose=True)
    except (ValueError, TypeError):
        return True


def dependent_value(package: str, declared: Optional[str]) -> str:
    return f"{package}@{declared}"


def transitive_value(package: str) -> str:
    return f"{package}{TRANSITIVE_SUFFIX}"


def nested_value(parent: str, parent_declared: Optional[str]) -> str:
    return f"{parent}@{parent_declared}{NESTED_SUFFIX}"


def override_keys(overrides: OverrideMap) -> KeyOwners:
    """Map every appendix key an override map can produce to (package, parent)."""
    owners: KeyOwners = {}
    for package, value in overrides.items():
        if is_nested(value):
            for inner, version in value.items():
                owners.setdefault(appendix_key(inner, version), (inner, package))
        else:
            owners.setdefault(appendix_key(package, value), (package, None))
    return owners


def merge_dependents(current: Mapping[str, str], incoming: Mapping[str, str]) -> Dict[str, str]:
    merged = dict(current)
    merged.update(incoming)
    return merged


def merge_item(
    appendix: Appendix,
    key: str,
    dependents: Mapping[str, str],
    *,
    package: str,
    parent: Optional[str] = None,
    ledger: Optional[LedgerInputs] = None,
) -> Appendix:
    existing = appendix.get(key) or {}
    item: Dict[str, Any] = {"dependents": merge_dependents(item_dependents(existing), dependents)}
    if ledger is not None:
        item["ledger"] = ledger.ledger_for(package, item_ledger(existing), parent=parent)
    if existing.get("patches"):
        item["patches"] = list(existing["patches"])
    appendix[key] = item
    return appendix


def remove_empty_entries(appendix: Appendix) -> Appendix:
    return {key: item for key, item in appendix.items() if item_dependents(item)}


def update_appendix(
    overrides: OverrideMap,
    *,
    dependencies: Optional[Mapping[str, str]] = None,
    dev_dependencies: Optional[Mapping[str, str]] = None,
    peer_dependencies: Optional[Mapping[str, str]] = None,
    package_name: str = "root",
    appendix: Optional[Appendix] = None,
    ledger: Optional[LedgerInputs] = None,
    transitive: Optional[Callable[[str], bool]] = None,
) -> Appendix:
    """Record which declared overrides one manifest actually uses.

    ``appendix`` is the baseline; its items are kept and merged into, never
    replaced. Pass ``ledger=None`` for partial results that must stay free of
    timestamps (workspace members). ``transitive`` answers whether a package
    that is not a direct dependency is installed anyway.
    """
    deps: Dict[str, str] = {}
    for group in (dependencies, dev_dependencies, peer_dependencies):
        if group:
            deps.update(group)
    result: Appendix = deep_copy(appendix) if appendix else {}

    for package, value in overrides.items():
        declared = deps.get(package)
        if is_nested(value):
            if declared is None:
                continue
            for inner, version in value.items():
                merge_item(
                    result,
                    appendix_key(inner, version),
                    {package_name: nested_value(package, declared)},
                    package=inner,
                    parent=package,
                    ledger=ledger,
                )
            continue
        if declared is not None:
            if not changes_resolution(declared, value):
                log.debug("%s@%s already satisfies %s; nothing to record", package, declared, value)
                continue
            dependent = dependent_value(package, declared)
        elif transitive is not None and transitive(package):
            dependent = transitive_value(package)
        else:
            continue
        merge_item(
            result,
            appendix_key(package, value),
            {package_name: dependent},
            package=package,
            ledger=ledger,
        )

    return remove_empty_entries(result)


def build_partial(manifest: Mapping[str, Any], overrides: OverrideMap, fallback_name: str) -> Appendix:
    """Ledger-free appendix for one workspace member."""
    name = manifest.get("name") if isinstance(manifest.get("name"), str) else None
    deps = merged_dependencies(manifest)
    if not any(package in deps for package in overrides):
        return {}
    return update_appendix(overrides, dependencies=deps, package_name=name or fallback_name)


def merge_appendices(left: Appendix, right: Appendix) -> Appendix:
    """Union two ledger-free partial appendices.

    Commutative and associative: when both sides name the same consumer with
    different values, the larger string wins.
    """
    merged: Appendix = {}
    for key in set(left) | set(right):
        dependents = item_dependents(left.get(key))
        for consumer, value in item_dependents(right.get(key)).items():
            current = dependents.get(consumer)
            dependents[consumer] = value if current is None else max(current, value)
        merged[key] = {"dependents": dependents}
    return merged


def merge_partial_into(
    appendix: Appendix,
    partial: Appendix,
    owners: KeyOwners,
    ledger: Optional[LedgerInputs],
) -> Appendix:
    """Fold workspace results into the root appendix, giving new keys a ledger."""
    result = deep_copy(appendix)
    for key, item in partial.items():
        package, parent = owners.get(key, (package_from_key(key), None))
        merge_item(result, key, item_dependents(item), package=package, parent=parent, ledger=ledger)
    return result
