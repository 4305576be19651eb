"""Project target validation for ``specify init``."""

import os
from pathlib import Path

from .errors import ProjectAccessDeniedError, ProjectExistsError, ProjectNameError, ProjectPathError

INVALID_NAME_CHARS = '/\\:*?"<>|'
RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)


def validate_project_name(name: str) -> None:
    if not name or not name.strip():
        raise ProjectNameError("project name cannot be empty")
    bad = sorted({c for c in name if c in INVALID_NAME_CHARS})
    if bad:
        raise ProjectNameError(f"project name contains invalid characters: {' '.join(bad)}")
    if name.strip(". ") == "":
        raise ProjectNameError(f"project name '{name}' is not a valid directory name")
    if name.split(".")[0].upper() in RESERVED_NAMES:
        raise ProjectNameError(f"project name '{name}' is reserved on Windows")


def resolve_target(project_name: str | None, here: bool, cwd: Path | None = None) -> Path:
    """Return the directory templates will be written into.

    A new project must not exist yet; --here requires a writable directory.
    """
    cwd = cwd or Path.cwd()
    if here:
        if not cwd.is_dir():
            raise ProjectPathError(f"current directory does not exist: {cwd}", path=cwd)
        if not os.access(cwd, os.W_OK):
            raise ProjectAccessDeniedError(f"current directory is not writable: {cwd}", path=cwd)
        return cwd

    validate_project_name(project_name)
    target = (cwd / project_name).resolve()
    if target.exists():
        raise ProjectExistsError(f"directory '{project_name}' already exists", path=target)
    parent = target.parent
    if not parent.is_dir():
        raise ProjectPathError(f"parent directory does not exist: {parent}", path=parent)
    if not os.access(parent, os.W_OK):
        raise ProjectAccessDeniedError(f"parent directory is not writable: {parent}", path=parent)
    return target
