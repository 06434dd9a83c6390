from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from model import Appendix, OverridePaths, SECURITY_FIELDS, deep_copy, item_ledger, now_iso

from .constants import CONFIG_KEY, PRESERVED_CONFIG_KEYS
from .overrides import OverrideKind, existing_kind


def is_compactable(item: Mapping[str, Any]) -> bool:
    ledger = item.get("ledger") if isinstance(item.get("ledger"), dict) else {}
    if any(ledger.get(name) for name in SECURITY_FIELDS):
        return False
    return not item.get("patches")


def to_compact_appendix(appendix: Appendix) -> Appendix:
    compact: Appendix = {}
    for key, item in appendix.items():
        if is_compactable(item):
            ledger = item_ledger(item) or {}
            compact[key] = {"addedDate": ledger.get("addedDate") or now_iso()[:10]}
        else:
            compact[key] = item
    return compact


def preserved_config(config: Mapping[str, Any]) -> Dict[str, Any]:
    section = config.get(CONFIG_KEY)
    if not isinstance(section, dict):
        return {}
    return {key: section[key] for key in PRESERVED_CONFIG_KEYS if section.get(key) is not None}


def strip_override_fields(manifest: Dict[str, Any]) -> Dict[str, Any]:
    manifest.pop("resolutions", None)
    manifest.pop("overrides", None)
    pnpm = manifest.get("pnpm")
    if isinstance(pnpm, dict):
        pnpm.pop("overrides", None)
        if not pnpm:
            manifest.pop("pnpm")
    return manifest


def apply_overrides(manifest: Dict[str, Any], overrides: Dict[str, Any], kind: OverrideKind) -> Dict[str, Any]:
    if kind is OverrideKind.PNPM_OVERRIDES:
        pnpm = manifest.get("pnpm") if isinstance(manifest.get("pnpm"), dict) else {}
        pnpm["overrides"] = overrides
        manifest["pnpm"] = pnpm
    else:
        manifest[kind.value] = overrides
    return manifest


def render_manifest(
    config: Mapping[str, Any],
    *,
    overrides: Dict[str, Any],
    appendix: Appendix,
    kind: Optional[OverrideKind] = None,
    override_paths: Optional[OverridePaths] = None,
    paths_key: str = "overridePaths",
    compact: bool = False,
) -> Dict[str, Any]:
    """Return a copy of ``config`` carrying the new override map and tracking data.

    Unrelated ``pastoralist`` settings are kept; the section is dropped when
    nothing is left in it.
    """
    manifest = deep_copy(dict(config))
    section = preserved_config(manifest)
    if override_paths:
        section.pop("overridePaths", None)
        section.pop("resolutionPaths", None)
        section[paths_key] = override_paths
    if appendix and overrides:
        section = {"appendix": to_compact_appendix(appendix) if compact else appendix, **section}
    if section:
        manifest[CONFIG_KEY] = section
    else:
        manifest.pop(CONFIG_KEY, None)

    if not overrides:
        return strip_override_fields(manifest)
    target = kind or existing_kind(manifest) or OverrideKind.OVERRIDES
    return apply_overrides(manifest, overrides, target)
