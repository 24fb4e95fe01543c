# git.py
# Small, focused wrapper around the Git CLI.
# The source step goes through here for every read-only query so the rest of
# the codebase never parses git output itself.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError on a non-zero exit.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def is_repo(path: str | Path) -> bool:
    """True if `path` is the top level of a git working tree."""
    p = Path(path)
    if not (p / ".git").exists():
        return False
    try:
        top = _git(["rev-parse", "--show-toplevel"], cwd=p)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False
    return Path(top).resolve() == p.resolve()


def head_sha(cwd: str | Path) -> str:
    """Full SHA of HEAD in the checkout at `cwd`."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)

