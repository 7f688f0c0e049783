"""
Structural analysis of unified diffs.

Used to build the diff summary that replaces oversized diffs, to decide
whether a commit touched functional code, and to render commit details.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DIFF_HEADER = re.compile(r"^diff --git a/(.+?) b/(.+)$")

DOC_SUFFIXES = (".md", ".txt", ".rst")
DOC_MARKERS = ("README", "CHANGELOG")


@dataclass
class FileChange:
    path: str
    added: int = 0
    removed: int = 0

    @property
    def total(self) -> int:
        return self.added + self.removed


@dataclass
class DiffStats:
    files: list[FileChange] = field(default_factory=list)

    @property
    def changed_files(self) -> list[str]:
        return [f.path for f in self.files]

    @property
    def lines_added(self) -> int:
        return sum(f.added for f in self.files)

    @property
    def lines_removed(self) -> int:
        return sum(f.removed for f in self.files)

    @property
    def lines_changed(self) -> int:
        return self.lines_added + self.lines_removed

    @property
    def doc_files(self) -> list[str]:
        return [p for p in self.changed_files if is_documentation_file(p)]

    @property
    def functional_files(self) -> list[str]:
        return [p for p in self.changed_files if not is_documentation_file(p)]

    @property
    def has_functional_code(self) -> bool:
        return bool(self.functional_files)

    @property
    def has_only_docs(self) -> bool:
        return bool(self.files) and not self.functional_files


def is_documentation_file(path: str) -> bool:
    return path.endswith(DOC_SUFFIXES) or any(marker in path for marker in DOC_MARKERS)


def analyze_diff(diff: str) -> DiffStats:
    """Collect per-file added/removed line counts from a unified diff."""
    stats = DiffStats()
    if not diff:
        return stats

    current: FileChange | None = None
    for line in diff.splitlines():
        match = DIFF_HEADER.match(line)
        if match:
            current = FileChange(path=match.group(1))
            stats.files.append(current)
            continue
        if current is None:
            continue
        if line.startswith("+++") or line.startswith("---"):
            continue
        if line.startswith("+"):
            current.added += 1
        elif line.startswith("-"):
            current.removed += 1
    return stats


def summarize_diff(diff: str, changed_files: tuple[str, ...] | list[str] = ()) -> str:
    """
    Structural summary of a diff: file list plus change magnitude.

    ``changed_files`` fills in files git reported that have no textual hunk
    (binary files, pure renames).
    """
    stats = analyze_diff(diff)
    known = set(stats.changed_files)
    extra = [p for p in changed_files if p not in known]

    lines = [
        "[Diff summarized: full diff exceeded the size threshold]",
        f"Files changed: {len(stats.files) + len(extra)}",
        f"Lines added: {stats.lines_added}, lines removed: {stats.lines_removed}",
    ]
    if stats.files:
        lines.append("")
        for change in sorted(stats.files, key=lambda c: c.total, reverse=True):
            lines.append(f"- {change.path} (+{change.added} / -{change.removed})")
    for path in extra:
        lines.append(f"- {path} (no textual changes)")
    if stats.doc_files:
        lines.append("")
        lines.append(f"Documentation files: {', '.join(stats.doc_files)}")
    return "\n".join(lines)


def render_commit_details(message: str, diff: str, changed_files: tuple[str, ...] | list[str] = ()) -> str:
    """Programmatic commit-details block for the journal entry."""
    stats = analyze_diff(diff)
    files = stats.changed_files or list(changed_files)
    parts: list[str] = []

    if files:
        parts.append("**Files Changed**:")
        parts.extend(f"- {path}" for path in files)
        parts.append("")
    if stats.lines_changed > 0:
        parts.append(f"**Lines Changed**: ~{stats.lines_changed} lines")
    subject = message.split("\n", 1)[0]
    parts.append(f'**Message**: "{subject}"')
    return "\n".join(parts).strip()


__all__ = [
    "DiffStats",
    "FileChange",
    "analyze_diff",
    "is_documentation_file",
    "render_commit_details",
    "summarize_diff",
]
