"""
Read-only git helpers.

Every call shells out to ``git`` in the project directory and returns an
empty result on any failure (not a repository, git missing, timeout).
"""

from __future__ import annotations

import logging
import subprocess
from typing import Optional

logger = logging.getLogger(__name__)

_TIMEOUT = 10


def _git(args: list[str], cwd: str) -> str:
    try:
        result = subprocess.run(
            ["git"] + args,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("[Git] git %s failed: %s", " ".join(args[:2]), exc)
        return ""
    if result.returncode != 0:
        logger.debug("[Git] git %s exited %d", " ".join(args[:2]), result.returncode)
        return ""
    return result.stdout


def status(cwd: str) -> str:
    return _git(["status", "--porcelain"], cwd)


def current_branch(cwd: str) -> str:
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd).strip()


def log(cwd: str, limit: int = 10) -> list[dict]:
    """Recent commits as dicts with hash, date, message and author."""
    out = _git(["log", f"-{int(limit)}", "--format=%H|%aI|%s|%an"], cwd)
    commits = []
    for line in out.splitlines():
        parts = line.split("|", 3)
        if len(parts) == 4:
            commits.append({
                "hash": parts[0], "date": parts[1], "message": parts[2], "author": parts[3],
            })
    return commits


def diff(cwd: str, ref: Optional[str] = None) -> str:
    return _git(["diff"] + ([ref] if ref else []), cwd)


def diff_stat(cwd: str, ref: Optional[str] = None) -> list[dict]:
    """Per-file numeric stats from ``git diff --numstat``."""
    out = _git(["diff", "--numstat"] + ([ref] if ref else []), cwd)
    stats = []
    for line in out.splitlines():
        parts = line.split("\t")
        if len(parts) != 3:
            continue
        added, removed, path = parts
        stats.append({
            "file": path,
            # Binary files report "-"
            "added": int(added) if added.isdigit() else 0,
            "removed": int(removed) if removed.isdigit() else 0,
        })
    return stats


def changed_files(cwd: str, since: str = "HEAD") -> list[str]:
    """Files changed in the working tree or index relative to *since*."""
    files: dict[str, None] = {}
    for args in (["diff", "--name-only", since], ["diff", "--name-only", "--cached"]):
        for line in _git(args, cwd).splitlines():
            if line.strip():
                files[line.strip()] = None
    return list(files)


def blame(cwd: str, path: str) -> str:
    return _git(["blame", "--line-porcelain", "--", path], cwd)


def range_diff(cwd: str, start: str, end: str = "HEAD") -> str:
    """Diff between two commits."""
    return _git(["diff", f"{start}..{end}"], cwd)
