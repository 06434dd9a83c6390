from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from appendix import SecurityDetail, UpdateOptions

FIX_VERSION_KEYS = ("fixedVersion", "patchedVersion", "fixed_version")


def resolve_root(root_arg: Optional[str]) -> Path:
    return Path(root_arg or ".").resolve()


def resolve_manifest_path(root: Path, path_arg: Optional[str]) -> Path:
    if not path_arg:
        return root / "package.json"
    path = Path(path_arg)
    return path if path.is_absolute() else (root / path)


def security_records(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        for key in ("vulnerabilities", "alerts", "details"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
    if not isinstance(payload, list):
        raise ValueError("expected a list of security records")
    return [record for record in payload if isinstance(record, dict)]


def load_security_details(path: Path) -> Tuple[List[SecurityDetail], Dict[str, str]]:
    """Parse a vulnerability report into ledger details and forced versions.

    Raises ValueError for unreadable files or records without a package name.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"cannot read {path}: {exc}") from exc
    details: List[SecurityDetail] = []
    overrides: Dict[str, str] = {}
    for record in security_records(payload):
        detail = SecurityDetail.from_dict(record)
        details.append(detail)
        for key in FIX_VERSION_KEYS:
            version = record.get(key)
            if isinstance(version, str) and version:
                overrides[detail.package_name] = version
                break
    return details, overrides


def options_from_args(args: argparse.Namespace) -> UpdateOptions:
    """CLI values only; anything left unset falls back to the manifest config."""
    root = resolve_root(args.root)
    details: List[SecurityDetail] = []
    security_overrides: Dict[str, str] = {}
    if getattr(args, "security_details", None):
        details, security_overrides = load_security_details(Path(args.security_details))
    return UpdateOptions(
        root=root,
        path=resolve_manifest_path(root, args.path),
        dep_paths=list(args.dep_paths) if getattr(args, "dep_paths", None) else None,
        ignore=list(getattr(args, "ignore", None) or []),
        dry_run=bool(getattr(args, "dry_run", False)),
        reason=getattr(args, "reason", None),
        security_details=details,
        security_provider=getattr(args, "security_provider", None),
        security_overrides=security_overrides,
        workers=max(1, int(getattr(args, "workers", 4) or 1)),
        use_tree=not getattr(args, "no_tree", False),
        compact=True if getattr(args, "compact", False) else None,
    )
