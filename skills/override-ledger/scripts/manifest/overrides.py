"""Pick the one override field of a manifest that is authoritative."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from model import OverrideMap

log = logging.getLogger(__name__)


class OverrideKind(enum.Enum):
    RESOLUTIONS = "resolutions"
    OVERRIDES = "overrides"
    PNPM_OVERRIDES = "pnpm.overrides"


# Highest priority first.
PRIORITY: Tuple[OverrideKind, ...] = (
    OverrideKind.RESOLUTIONS,
    OverrideKind.OVERRIDES,
    OverrideKind.PNPM_OVERRIDES,
)


@dataclass
class OverrideSource:
    kind: OverrideKind
    overrides: OverrideMap
    raw: Dict[str, Any] = field(default_factory=dict)
    ignored: List[OverrideKind] = field(default_factory=list)

    @property
    def skipped(self) -> Dict[str, Any]:
        """Entries present on disk that the active map cannot express."""
        return {name: value for name, value in self.raw.items() if name not in self.overrides}


def field_value(manifest: Mapping[str, Any], kind: OverrideKind) -> Dict[str, Any]:
    if kind is OverrideKind.PNPM_OVERRIDES:
        pnpm = manifest.get("pnpm")
        value = pnpm.get("overrides") if isinstance(pnpm, dict) else None
    else:
        value = manifest.get(kind.value)
    return value if isinstance(value, dict) else {}


def normalize_entry(name: str, value: Any) -> Optional[Any]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and value:
        nested: Dict[str, str] = {}
        for inner, version in value.items():
            if not isinstance(version, str):
                log.debug("Skipping %s: nested value for %s is not a version string", name, inner)
                return None
            if inner == ".":
                continue
            nested[inner] = version
        return nested or None
    log.debug("Skipping %s: unsupported override value %r", name, value)
    return None


def normalize_overrides(raw: Mapping[str, Any]) -> OverrideMap:
    overrides: OverrideMap = {}
    for name, value in raw.items():
        entry = normalize_entry(name, value)
        if entry is not None:
            overrides[name] = entry
    return overrides


def resolve_overrides(manifest: Optional[Mapping[str, Any]]) -> Optional[OverrideSource]:
    if not manifest:
        return None
    populated = [kind for kind in PRIORITY if field_value(manifest, kind)]
    if not populated:
        log.debug("No overrides configuration found")
        return None
    active, ignored = populated[0], populated[1:]
    if ignored:
        log.debug(
            "Using %s; ignoring %s",
            active.value,
            ", ".join(kind.value for kind in ignored),
        )
    raw = dict(field_value(manifest, active))
    return OverrideSource(
        kind=active,
        overrides=normalize_overrides(raw),
        raw=raw,
        ignored=ignored,
    )


def existing_kind(manifest: Mapping[str, Any]) -> Optional[OverrideKind]:
    """Field already present on the manifest, even when empty."""
    if "resolutions" in manifest:
        return OverrideKind.RESOLUTIONS
    if "overrides" in manifest:
        return OverrideKind.OVERRIDES
    pnpm = manifest.get("pnpm")
    if isinstance(pnpm, dict) and "overrides" in pnpm:
        return OverrideKind.PNPM_OVERRIDES
    return None


def remove_overrides(overrides: Mapping[str, Any], removable: Iterable[str]) -> Dict[str, Any]:
    drop = set(removable)
    return {name: value for name, value in overrides.items() if name not in drop}
