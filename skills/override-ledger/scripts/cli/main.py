#!/usr/bin/env python3
"""Override ledger CLI: keep the package.json override appendix up to date."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from _fs import safe_preview_json
from appendix import UpdateOptions, collect_reason_candidates, run_update
from appendix.patches import find_unused_patches
from appendix.pipeline import UpdateResult
from manifest import (
    CONFIG_KEY,
    ManifestStore,
    effective_config,
    find_member_manifests,
    find_patch_files,
    resolve_dep_paths,
)
from model import merged_dependencies
from utils import ToolState, progress
from .config import options_from_args, resolve_manifest_path, resolve_root

log = logging.getLogger(__name__)

COMMANDS = ("update", "reasons", "patches")


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def prompt_reasons(packages: Sequence[str], ask: Callable[[str], str] = input) -> Dict[str, str]:
    reasons: Dict[str, str] = {}
    for package in packages:
        try:
            answer = ask(f"Reason for overriding {package} (blank to skip): ")
        except EOFError:
            break
        if answer.strip():
            reasons[package] = answer.strip()
    return reasons


def load_manifests(root: Path, manifest_path: Path, dep_paths: Optional[List[str]], ignore: List[str]):
    """Root manifest plus readable workspace members, and the merged config."""
    store = ManifestStore()
    manifest = store.load(manifest_path)
    if manifest is None:
        return None, [], {}
    config = effective_config(manifest, root)
    manifests = [manifest]
    globs = resolve_dep_paths(dep_paths, {**manifest, CONFIG_KEY: config})
    if globs:
        for path in find_member_manifests(globs, root, ignore, root_manifest=manifest_path):
            member = store.load(path)
            if member is not None:
                manifests.append(member)
    return manifest, manifests, config


def format_update_text(result: UpdateResult) -> str:
    metrics = result.metrics
    lines = [
        "[UPDATE]",
        f"manifest={result.manifest_path}",
        f"overrides={len(result.overrides)}",
        f"appendix={len(result.appendix)}",
        f"added={metrics.appendix_added}",
        f"write={metrics.write}",
    ]
    if metrics.workspace_scanned or metrics.workspace_skipped:
        lines.append(f"workspaces={metrics.workspace_scanned} skipped={metrics.workspace_skipped}")
    if metrics.overrides_removed:
        lines.append(
            "removed=" + ",".join(f"{name}@{version}" for name, version in sorted(metrics.overrides_removed.items()))
        )
    if metrics.severities:
        lines.append("severity=" + ",".join(f"{name}:{count}" for name, count in metrics.severities.items()))
    if result.missing_in_root:
        lines.append("missing_in_root=" + ",".join(result.missing_in_root))
    if result.unused_patches:
        lines.append("unused_patches=" + ",".join(result.unused_patches))
    return "\n".join(lines)


def run_update_command(args: argparse.Namespace) -> int:
    try:
        options = options_from_args(args)
    except ValueError as exc:
        print(json.dumps({"error": str(exc)}, ensure_ascii=True), file=sys.stderr)
        return 2
    if args.prompt_for_reasons:
        options.manual_reasons = ask_for_reasons(options)
    tools = ToolState()
    progress(f"Updating overrides in {options.manifest_path}...")
    result = run_update(options, tools)
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    if args.format == "json":
        print(json.dumps(result.to_dict(), ensure_ascii=True, indent=2))
    else:
        print(format_update_text(result))
        if options.dry_run and result.manifest is not None:
            print(safe_preview_json(result.manifest.get(CONFIG_KEY, {}), max_bytes=2048))
    return 0


def ask_for_reasons(options: UpdateOptions) -> Dict[str, str]:
    _, manifests, config = load_manifests(
        options.root, options.manifest_path, options.dep_paths, options.ignore
    )
    candidates = collect_reason_candidates(manifests, options.security_details, config.get("appendix"))
    if not candidates or options.reason:
        return {}
    return prompt_reasons(candidates)


def run_reasons(args: argparse.Namespace) -> int:
    root = resolve_root(args.root)
    manifest_path = resolve_manifest_path(root, args.path)
    manifest, manifests, config = load_manifests(root, manifest_path, args.dep_paths, args.ignore)
    if manifest is None:
        print(json.dumps({"error": f"cannot read {manifest_path}"}, ensure_ascii=True), file=sys.stderr)
        return 2
    candidates = collect_reason_candidates(manifests, appendix=config.get("appendix"))
    if args.format == "json":
        print(json.dumps({"missing_reasons": candidates}, ensure_ascii=True, indent=2))
    else:
        print("\n".join(["[REASONS]", *candidates]) if candidates else "[REASONS]\nall overrides have a reason")
    return 0


def run_patches(args: argparse.Namespace) -> int:
    root = resolve_root(args.root)
    manifest_path = resolve_manifest_path(root, args.path)
    manifest, manifests, _ = load_manifests(root, manifest_path, args.dep_paths, args.ignore)
    if manifest is None:
        print(json.dumps({"error": f"cannot read {manifest_path}"}, ensure_ascii=True), file=sys.stderr)
        return 2
    all_deps: Dict[str, str] = {}
    for item in manifests:
        all_deps.update(merged_dependencies(item))
    patches = find_patch_files(root)
    unused = find_unused_patches(patches, all_deps)
    if args.format == "json":
        print(json.dumps({"patches": patches, "unused": unused}, ensure_ascii=True, indent=2))
    else:
        lines = ["[PATCHES]", f"found={len(patches)}"]
        lines.extend(f"patch={path}" for path in patches)
        lines.extend(f"unused={path}" for path in unused)
        print("\n".join(lines))
    return 0


def add_scope_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dep-paths",
        nargs="+",
        default=None,
        help="Workspace manifest globs, or 'workspace' to use the workspaces field",
    )
    parser.add_argument("--ignore", nargs="+", default=[], help="Globs to skip when finding manifests")
    parser.add_argument("--format", choices=["text", "json"], default="text")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Track why package.json overrides exist")
    parser.add_argument("--root", default=".", help="Project root (default: .)")
    parser.add_argument("--path", default=None, help="Manifest path (default: <root>/package.json)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging to stderr")
    subparsers = parser.add_subparsers(dest="command")

    update_parser = subparsers.add_parser("update", help="Rebuild the appendix and write the manifest")
    add_scope_args(update_parser)
    update_parser.add_argument("--dry-run", action="store_true", help="Compute everything, write nothing")
    update_parser.add_argument("--reason", default=None, help="Reason recorded on new appendix entries")
    update_parser.add_argument(
        "--security-details",
        default=None,
        help="JSON file of {packageName, reason, cve, severity, description, url} records",
    )
    update_parser.add_argument("--security-provider", default=None, help="Name recorded as securityProvider")
    update_parser.add_argument(
        "--prompt-for-reasons",
        action="store_true",
        help="Ask for a reason for each override that has none",
    )
    update_parser.add_argument("--workers", type=int, default=4, help="Workspace scan threads")
    update_parser.add_argument(
        "--no-tree",
        action="store_true",
        help="Skip 'npm ls'; liveness uses declared dependencies only",
    )
    update_parser.add_argument(
        "--compact",
        action="store_true",
        help="Write appendix entries without security data or patches as {addedDate}",
    )

    reasons_parser = subparsers.add_parser("reasons", help="List overrides that have no reason yet")
    add_scope_args(reasons_parser)

    patches_parser = subparsers.add_parser("patches", help="List patch files and unused ones")
    add_scope_args(patches_parser)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    if not any(arg in COMMANDS for arg in argv) and not any(arg in ("-h", "--help") for arg in argv):
        argv.append("update")
    args = parser.parse_args(argv)
    configure_logging(args.debug)

    handlers = {
        "update": run_update_command,
        "reasons": run_reasons,
        "patches": run_patches,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except Exception as exc:
        log.exception("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
