"""Workspace detection and paths.

The workspace is the release repository checkout that holds ``relreg.toml``.
Runtime state (candidate files, audit log, lock files) lives under
``.relreg/`` in that directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "CONFIG_FILENAME",
    "WORKSPACE_ENV",
    "Workspace",
    "detect_workspace",
    "find_workspace_upward",
]

CONFIG_FILENAME = "relreg.toml"
WORKSPACE_ENV = "RELREG_WORKSPACE"


@dataclass(frozen=True, slots=True)
class Workspace:
    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILENAME

    @property
    def state_dir(self) -> Path:
        return self.root / ".relreg"

    @property
    def candidates_dir(self) -> Path:
        return self.state_dir / "candidates"

    @property
    def audit_path(self) -> Path:
        return self.state_dir / "audit.jsonl"

    def resolve(self, relative: str) -> Path:
        """Resolve a config path against the workspace root."""
        p = Path(relative).expanduser()
        return p if p.is_absolute() else self.root / p


def find_workspace_upward(start: Path) -> Path | None:
    for parent in (start, *start.parents):
        if (parent / CONFIG_FILENAME).is_file():
            return parent
    return None


def detect_workspace(start: Path | None = None) -> Workspace:
    """Find the workspace root.

    Order: ``RELREG_WORKSPACE``, the nearest parent holding ``relreg.toml``,
    then the starting directory itself (defaults apply without a config file).
    """
    env = os.environ.get(WORKSPACE_ENV)
    if env:
        return Workspace(root=Path(env).expanduser().resolve())

    cwd = (start or Path.cwd()).resolve()
    found = find_workspace_upward(cwd)
    return Workspace(root=found or cwd)
