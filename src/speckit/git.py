"""Thin wrappers around the git command line."""

import subprocess
from pathlib import Path
from typing import Optional, Tuple

from .errors import GitError

INITIAL_COMMIT_MESSAGE = "Initial commit from Specify template"


def _git(cwd: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(["git", *args], check=True, capture_output=True, text=True, cwd=cwd)


def _describe_failure(e: subprocess.CalledProcessError) -> str:
    lines = [f"Command: {' '.join(e.cmd)}", f"Exit code: {e.returncode}"]
    if e.stderr:
        lines.append(f"Error: {e.stderr.strip()}")
    elif e.stdout:
        lines.append(f"Output: {e.stdout.strip()}")
    return "\n".join(lines)


def is_git_repo(path: Optional[Path] = None) -> bool:
    """True when path (default: cwd) lies inside a git work tree."""
    path = path or Path.cwd()
    if not path.is_dir():
        return False
    try:
        _git(path, "rev-parse", "--is-inside-work-tree")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False
    return True


def init_git_repo(project_path: Path) -> Tuple[bool, Optional[str]]:
    """git init, add and commit everything in project_path.

    Returns (success, error_message); failures are reported, not raised, so
    that init can finish and print manual instructions instead.
    """
    try:
        _git(project_path, "init")
        _git(project_path, "add", ".")
        _git(project_path, "commit", "-m", INITIAL_COMMIT_MESSAGE)
    except subprocess.CalledProcessError as e:
        return False, _describe_failure(e)
    except FileNotFoundError:
        return False, "git executable not found"
    return True, None


class GitRepository:
    """Git operations scoped to a working directory."""

    def __init__(self, cwd: Optional[Path] = None):
        self.cwd = cwd or Path.cwd()

    def _run(self, *args: str) -> str:
        try:
            return _git(self.cwd, *args).stdout.strip()
        except subprocess.CalledProcessError as e:
            raise GitError(_describe_failure(e)) from e
        except FileNotFoundError as e:
            raise GitError("git executable not found") from e

    def root(self) -> Path:
        try:
            return Path(self._run("rev-parse", "--show-toplevel"))
        except GitError as e:
            raise GitError(f"not in a git repository: {self.cwd}") from e

    def current_branch(self) -> str:
        return self._run("rev-parse", "--abbrev-ref", "HEAD")

    def create_branch(self, name: str) -> None:
        self._run("checkout", "-b", name)
