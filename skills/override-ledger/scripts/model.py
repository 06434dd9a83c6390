from __future__ import annotations

import copy
import time
from typing import Any, Dict, Mapping, Optional, Union


OverrideValue = Union[str, Dict[str, str]]
OverrideMap = Dict[str, OverrideValue]
Appendix = Dict[str, Dict[str, Any]]
OverridePaths = Dict[str, Appendix]

NESTED_SUFFIX = " (nested override)"
TRANSITIVE_SUFFIX = " (transitive dependency)"
DEPENDENCY_FIELDS = ("dependencies", "devDependencies", "peerDependencies")
SECURITY_FIELDS = ("securityChecked", "securityCheckDate", "securityProvider", "cve", "severity", "url")


def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def appendix_key(package: str, version: str) -> str:
    return f"{package}@{version}"


def package_from_key(key: str) -> str:
    """Return the package part of ``pkg@version``, keeping a leading scope ``@``.

    The version may itself contain ``@`` (``npm:lodash@4.17.21`` aliases), so
    the split is at the first ``@`` after the name.
    """
    at = key.find("@", 1)
    if at == -1:
        return key
    return key[:at]


def merged_dependencies(manifest: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    if not manifest:
        return merged
    for field_name in DEPENDENCY_FIELDS:
        deps = manifest.get(field_name)
        if isinstance(deps, dict):
            merged.update({name: str(spec) for name, spec in deps.items()})
    return merged


def is_nested(value: Any) -> bool:
    return isinstance(value, dict)


def item_dependents(item: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if not isinstance(item, Mapping):
        return {}
    dependents = item.get("dependents")
    return dict(dependents) if isinstance(dependents, dict) else {}


def item_ledger(item: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Existing ledger of an item; compact items only carry ``addedDate``."""
    if not isinstance(item, Mapping):
        return None
    ledger = item.get("ledger")
    if isinstance(ledger, dict):
        return dict(ledger)
    added = item.get("addedDate")
    if isinstance(added, str):
        return {"addedDate": added}
    return None


def sorted_appendix(appendix: Mapping[str, Any]) -> Appendix:
    """Stable key order so repeated runs serialize byte-identically."""
    out: Appendix = {}
    for key in sorted(appendix):
        item = dict(appendix[key])
        if isinstance(item.get("dependents"), dict):
            item["dependents"] = {name: item["dependents"][name] for name in sorted(item["dependents"])}
        out[key] = item
    return out


def deep_copy(value: Any) -> Any:
    return copy.deepcopy(value)
