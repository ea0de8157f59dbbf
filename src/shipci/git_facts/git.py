# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to describe the local checkout as an event
# (ref + commit) when --ref / --sha are not given.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError if git exits non-zero.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def tag_at_head(cwd: Optional[str] = None) -> Optional[str]:
    """Name of a tag pointing exactly at HEAD, or None."""
    try:
        return _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd) or None
    except subprocess.CalledProcessError:
        return None


def current_ref(cwd: Optional[str] = None) -> str:
    """
    Fully qualified ref describing HEAD.

      on a branch          -> refs/heads/<branch>
      detached at a tag    -> refs/tags/<tag>
      detached elsewhere   -> the commit SHA
    """
    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        pass
    tag = tag_at_head(cwd=cwd)
    if tag:
        return f"refs/tags/{tag}"
    return head_sha(cwd=cwd)
