"""Filesystem pattern helpers.

Rules:
- manifests are rewritten whole, never patched in place
- print only small summaries/previews (never dump huge payloads to stdout)
"""
from __future__ import annotations

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any


def format_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2) + "\n"


def target_mode(path: Path) -> int:
    """Mode of the file being replaced, or 0o666 under the umask for a new one."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_json(path: Path, obj: Any) -> Path:
    """Write ``obj`` next to ``path`` first, then swap it in keeping its mode."""
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = target_mode(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(format_json(obj))
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


def safe_preview_text(text: str, max_bytes: int = 512) -> str:
    data = text.encode("utf-8", errors="replace")
    if len(data) <= max_bytes:
        return text
    cut = data[:max_bytes]
    return cut.decode("utf-8", errors="ignore") + "..."


def safe_preview_json(obj: Any, max_bytes: int = 512) -> str:
    rendered = json.dumps(obj, ensure_ascii=True, indent=2)
    return safe_preview_text(rendered, max_bytes=max_bytes)
