"""
Commit window resolution.

Reads a commit, its first parent and the diff between them from git and
turns them into an immutable CommitWindow.
"""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .redaction import redact_sensitive_data
from .types import CommitWindow

logger = logging.getLogger(__name__)

# ASCII unit separator keeps multi-line commit bodies intact
_SEP = "\x1f"
_SHOW_FORMAT = _SEP.join(["%H", "%P", "%an", "%at", "%B"])

JOURNAL_ENTRIES_PREFIX = "journal/entries/"


class FatalRepositoryError(Exception):
    """The commit window cannot be resolved; the pipeline must stop."""
    pass


class GitUnavailable(FatalRepositoryError):
    """Not a git repository, git missing, or the reference does not resolve."""
    pass


def _run_git(args: list[str], repo_path: Path, timeout: float) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=repo_path,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise GitUnavailable("git executable not found") from e
    except NotADirectoryError as e:
        raise GitUnavailable(f"Not a directory: {repo_path}") from e
    except subprocess.TimeoutExpired as e:
        raise GitUnavailable(f"git {args[0]} timed out after {timeout}s") from e

    if result.returncode != 0:
        raise GitUnavailable(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result.stdout


def _commit_time(repo_path: Path, ref: str, timeout: float) -> datetime:
    out = _run_git(["show", "--no-patch", "--format=%at", ref], repo_path, timeout).strip()
    return datetime.fromtimestamp(int(out), tz=timezone.utc)


def get_changed_files(commit_ref: str = "HEAD", repo_path: Path | str | None = None, timeout: float = 30.0) -> list[str]:
    """List the files a commit touched."""
    repo = Path(repo_path or Path.cwd())
    out = _run_git(["diff-tree", "--no-commit-id", "--name-only", "-r", "--root", commit_ref], repo, timeout)
    return [line for line in out.splitlines() if line]


def resolve_commit_window(
    commit_ref: str = "HEAD",
    repo_path: Path | str | None = None,
    default_lookback: timedelta = timedelta(hours=24),
    timeout: float = 30.0,
) -> CommitWindow:
    """
    Resolve ``commit_ref`` into a CommitWindow.

    Args:
        commit_ref: Any git revision (default: most recent commit)
        repo_path: Working tree to read from (default: cwd)
        default_lookback: Window length used when the commit has no parent
        timeout: Per git invocation, in seconds

    Returns:
        CommitWindow with timestamp_start at the previous commit's time

    Raises:
        GitUnavailable: If the repository or reference cannot be read
    """
    repo = Path(repo_path or Path.cwd())
    if not repo.exists():
        raise GitUnavailable(f"Repository path does not exist: {repo}")

    raw = _run_git(["show", "--no-patch", f"--format={_SHOW_FORMAT}", commit_ref], repo, timeout)
    parts = raw.split(_SEP, 4)
    if len(parts) < 5:
        raise GitUnavailable(f"Unexpected git show output for {commit_ref}")

    commit_hash, parents, author, epoch, body = parts
    parent_hashes = parents.split()
    timestamp_end = datetime.fromtimestamp(int(epoch), tz=timezone.utc)

    if parent_hashes:
        parent_hash: str | None = parent_hashes[0]
        timestamp_start = _commit_time(repo, parent_hash, timeout)
    else:
        parent_hash = None
        timestamp_start = timestamp_end - default_lookback
        logger.info(f"{commit_hash[:8]} is a root commit, using {default_lookback} lookback")

    diff = _run_git(["diff-tree", "-p", "--root", "--no-commit-id", "--no-color", commit_hash], repo, timeout)
    changed = get_changed_files(commit_hash, repo, timeout)

    window = CommitWindow(
        hash=commit_hash.strip(),
        parent_hash=parent_hash,
        message=redact_sensitive_data(body.strip()),
        author=author,
        timestamp_start=timestamp_start,
        timestamp_end=timestamp_end,
        diff_text=redact_sensitive_data(diff),
        changed_files=tuple(changed),
        parent_count=len(parent_hashes),
    )
    logger.info(
        f"Resolved {window.short_hash}: window {window.timestamp_start.isoformat()} -> "
        f"{window.timestamp_end.isoformat()}, {len(changed)} files"
    )
    return window


def is_merge_commit(window: CommitWindow) -> bool:
    """A merge commit has two or more parents."""
    return window.parent_count >= 2


def is_journal_only_commit(window: CommitWindow) -> bool:
    """
    True when every changed file is an auto-generated journal entry.

    Manual content under journal/ (reflections, context captures) still
    counts as real work.
    """
    if not window.changed_files:
        return False
    return all(path.startswith(JOURNAL_ENTRIES_PREFIX) for path in window.changed_files)


__all__ = [
    "FatalRepositoryError",
    "GitUnavailable",
    "get_changed_files",
    "is_journal_only_commit",
    "is_merge_commit",
    "resolve_commit_window",
]
