# git.py
# Small, focused wrapper around the Git CLI.
# Only local runs need it: on a hosted runner the event data comes from the
# environment instead.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError when git exits non-zero and
    FileNotFoundError when git is not installed; callers decide whether
    that is fatal.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of HEAD, recorded in the run report."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Name of the checked-out branch.

    Returns None on a detached HEAD, where there is no branch to match
    trigger filters against.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def remote_url(remote: str = "origin", cwd: Optional[str] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)
