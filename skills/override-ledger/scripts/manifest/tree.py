from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from utils import ToolState, run_cmd

from .constants import NPM_LS_CMD, NPM_LS_TIMEOUT

log = logging.getLogger(__name__)

TreeLoader = Callable[[], Dict[str, bool]]


def parse_npm_ls_output(stdout: str) -> Dict[str, bool]:
    tree = json.loads(stdout)
    packages: Dict[str, bool] = {}

    def walk(deps: Any) -> None:
        if not isinstance(deps, dict):
            return
        for name, value in deps.items():
            packages[name] = True
            if isinstance(value, dict) and "dependencies" in value:
                walk(value["dependencies"])

    if isinstance(tree, dict):
        walk(tree.get("dependencies"))
    return packages


def npm_ls(root: Path, warnings: List[str], tools: ToolState) -> Dict[str, bool]:
    result = run_cmd(
        list(NPM_LS_CMD),
        cwd=root,
        warnings=warnings,
        tools=tools,
        timeout=NPM_LS_TIMEOUT,
    )
    if result is None:
        raise RuntimeError("npm ls did not run")
    # npm exits 1 on peer/extraneous problems but still prints the tree.
    if result.returncode not in (0, 1) or not result.stdout:
        raise RuntimeError(f"npm ls returned {result.returncode}")
    return parse_npm_ls_output(result.stdout)


class DependencyTree:
    """Installed-package reachability, queried at most once per run."""

    def __init__(self, loader: Optional[TreeLoader] = None) -> None:
        self._loader = loader
        self._packages: Optional[Dict[str, bool]] = None
        self._lock = threading.Lock()
        self.calls = 0

    @classmethod
    def for_root(cls, root: Path, warnings: List[str], tools: ToolState) -> "DependencyTree":
        return cls(lambda: npm_ls(root, warnings, tools))

    @classmethod
    def disabled(cls) -> "DependencyTree":
        return cls(None)

    def clear(self) -> None:
        with self._lock:
            self._packages = None

    def packages(self) -> Dict[str, bool]:
        with self._lock:
            if self._packages is not None:
                return self._packages
            if self._loader is None:
                self._packages = {}
                return self._packages
            self.calls += 1
            try:
                self._packages = dict(self._loader())
            except Exception as exc:  # oracle failure never fails the run
                log.debug("Failed to get dependency tree: %s", exc)
                self._packages = {}
            return self._packages

    def contains(self, package: str) -> bool:
        return bool(self.packages().get(package))
