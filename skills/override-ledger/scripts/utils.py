from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Set


@dataclass
class ToolState:
    """External tools found missing or too slow during this run; not retried."""

    missing: Set[str] = field(default_factory=set)
    timed_out: Set[str] = field(default_factory=set)

    def unavailable(self, tool: str) -> bool:
        return tool in self.missing or tool in self.timed_out


def progress(message: str, done: bool = False) -> None:
    """Status line on stderr; stdout stays reserved for command output."""
    marker = "done" if done else "...."
    print(f"  [{marker}] {message}", file=sys.stderr)


def run_cmd(
    cmd: Sequence[str],
    *,
    cwd: Optional[Path],
    warnings: List[str],
    tools: ToolState,
    timeout: Optional[float] = None,
) -> Optional[subprocess.CompletedProcess]:
    """Run ``cmd`` capturing text output; None when the tool cannot run."""
    tool = cmd[0]
    if tools.unavailable(tool):
        return None
    try:
        return subprocess.run(
            list(cmd),
            cwd=str(cwd) if cwd else None,
            check=False,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        tools.missing.add(tool)
        warnings.append(f"Missing tool: {tool}")
    except subprocess.TimeoutExpired:
        tools.timed_out.add(tool)
        warnings.append(f"{tool} timed out after {timeout}s")
    return None
