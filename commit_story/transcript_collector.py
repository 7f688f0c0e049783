"""
Claude Code transcript collector.

Reads the JSONL transcript files that Claude Code maintains at:
~/.claude/projects/{project_hash}/{session_id}.jsonl

and returns every user/assistant record whose working directory matches
the repository and whose timestamp falls inside a commit window.

Key entry types:
- "user": User message or tool result
- "assistant": Assistant response with possible tool calls
- "progress", "system", "summary": ignored
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any

from .types import (
    CommitWindow,
    ContentBlock,
    RawContent,
    RawMessage,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
)

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPTS_DIR = Path.home() / ".claude" / "projects"

MESSAGE_ENTRY_TYPES = ("user", "assistant")


class MalformedRecord(ValueError):
    """A transcript line that cannot be turned into a RawMessage."""
    pass


@dataclass
class CollectionResult:
    """Messages in the window plus counters for everything skipped."""

    messages: list[RawMessage] = field(default_factory=list)
    files_scanned: int = 0
    files_skipped: int = 0
    skipped_count: int = 0  # malformed records
    ignored_count: int = 0  # non-message entry types
    project_filtered: int = 0
    time_filtered: int = 0

    @property
    def session_ids(self) -> set[str]:
        return {m.session_id for m in self.messages}

    def merge(self, other: "CollectionResult") -> None:
        self.messages.extend(other.messages)
        self.files_scanned += other.files_scanned
        self.files_skipped += other.files_skipped
        self.skipped_count += other.skipped_count
        self.ignored_count += other.ignored_count
        self.project_filtered += other.project_filtered
        self.time_filtered += other.time_filtered


@lru_cache(maxsize=256)
def normalize_workspace_path(path: str) -> str:
    """Canonical form for path comparison: expanded, absolute, symlinks resolved."""
    return str(Path(path).expanduser().resolve(strict=False))


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a transcript timestamp ("2025-08-20T20:54:46.152Z") to aware UTC.

    Raises:
        MalformedRecord: If the value is missing or not ISO-8601
    """
    if not value or not isinstance(value, str):
        raise MalformedRecord("missing timestamp")
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise MalformedRecord(f"bad timestamp {value!r}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _flatten_result_content(content: Any) -> str:
    """Convert tool_result content (string or block list) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "\n".join(parts)
    return ""


def parse_block(block: Any) -> ContentBlock:
    """Map one transcript content block onto the tagged union by its type tag."""
    if isinstance(block, str):
        return TextBlock(text=block)
    if not isinstance(block, dict):
        return UnknownBlock(block_type=type(block).__name__)

    block_type = block.get("type", "")
    if block_type == "text":
        return TextBlock(text=str(block.get("text", "")))
    if block_type == "tool_use":
        tool_input = block.get("input")
        return ToolUseBlock(
            tool_use_id=str(block.get("id", "")),
            name=str(block.get("name", "unknown")),
            input=tool_input if isinstance(tool_input, dict) else {},
        )
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=str(block.get("tool_use_id", "")),
            content=_flatten_result_content(block.get("content", "")),
        )
    return UnknownBlock(block_type=str(block_type))


def parse_content(content: Any) -> RawContent:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return tuple(parse_block(b) for b in content)
    if content is None:
        return ""
    raise MalformedRecord(f"unsupported content type {type(content).__name__}")


def _role_for(entry_type: str, content: RawContent) -> Role:
    if entry_type == "assistant":
        return Role.ASSISTANT
    if isinstance(content, tuple) and content and all(isinstance(b, ToolResultBlock) for b in content):
        return Role.TOOL
    return Role.HUMAN


def parse_record(entry: dict[str, Any], source_file: str | None = None) -> RawMessage:
    """
    Build a RawMessage from one decoded user/assistant transcript entry.

    Raises:
        MalformedRecord: If required fields are missing or unusable
    """
    session_id = entry.get("sessionId")
    if not session_id:
        raise MalformedRecord("missing sessionId")

    timestamp = parse_timestamp(entry.get("timestamp"))

    message = entry.get("message")
    if not isinstance(message, dict):
        raise MalformedRecord("missing message payload")
    content = parse_content(message.get("content", ""))

    return RawMessage(
        session_id=str(session_id),
        workspace_path=str(entry.get("cwd", "")),
        timestamp=timestamp,
        role=_role_for(entry.get("type", ""), content),
        content=content,
        uuid=entry.get("uuid"),
        source_file=source_file,
    )


class TranscriptCollector:
    """
    Collect raw chat messages for a commit window.

    All transcript files under every project directory are scanned, since
    Claude Code's directory naming does not reliably map back to a path.
    """

    def __init__(self, transcripts_dir: str | Path | None = None):
        self.transcripts_dir = Path(transcripts_dir).expanduser() if transcripts_dir else DEFAULT_TRANSCRIPTS_DIR

    def find_transcript_files(self) -> list[Path]:
        """All *.jsonl files one level below the transcripts directory."""
        if not self.transcripts_dir.is_dir():
            logger.info(f"No transcript directory at {self.transcripts_dir}")
            return []

        files: list[Path] = []
        for project_dir in sorted(self.transcripts_dir.iterdir()):
            if not project_dir.is_dir():
                continue
            try:
                files.extend(sorted(project_dir.glob("*.jsonl")))
            except OSError as e:
                logger.warning(f"Cannot list {project_dir}: {e}")
        return files

    def scan_file(self, path: Path, window: CommitWindow, workspace: str) -> CollectionResult:
        """Read one transcript file and keep records for ``workspace`` in ``window``."""
        result = CollectionResult()
        try:
            with open(path, encoding="utf-8") as f:
                lines = f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable transcript {path}: {e}")
            result.files_skipped = 1
            return result

        result.files_scanned = 1
        for line_no, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue

            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug(f"{path.name}:{line_no}: unparseable line")
                result.skipped_count += 1
                continue

            if not isinstance(entry, dict) or entry.get("type") not in MESSAGE_ENTRY_TYPES:
                result.ignored_count += 1
                continue

            cwd = entry.get("cwd")
            if not cwd or normalize_workspace_path(str(cwd)) != workspace:
                result.project_filtered += 1
                continue

            try:
                message = parse_record(entry, source_file=str(path))
            except MalformedRecord as e:
                logger.debug(f"{path.name}:{line_no}: {e}")
                result.skipped_count += 1
                continue

            if window.contains(message.timestamp):
                result.messages.append(message)
            else:
                result.time_filtered += 1

        return result

    async def collect(self, window: CommitWindow, workspace_path: str | Path) -> CollectionResult:
        """
        Collect messages for ``workspace_path`` inside ``window``.

        Returns an empty result (not an error) when no transcripts exist.
        Messages are sorted by timestamp; ties keep file order.
        """
        workspace = normalize_workspace_path(str(workspace_path))
        files = self.find_transcript_files()

        total = CollectionResult()
        if not files:
            return total

        scans = await asyncio.gather(
            *(asyncio.to_thread(self.scan_file, path, window, workspace) for path in files)
        )
        for scan in scans:
            total.merge(scan)

        total.messages.sort(key=lambda m: m.timestamp)

        if total.skipped_count:
            logger.warning(f"Skipped {total.skipped_count} malformed transcript records")
        logger.info(
            f"Collected {len(total.messages)} messages from {total.files_scanned} files "
            f"({len(total.session_ids)} sessions, {total.project_filtered} other-project, "
            f"{total.time_filtered} outside window)"
        )
        return total


async def collect_messages(
    window: CommitWindow,
    workspace_path: str | Path,
    transcripts_dir: str | Path | None = None,
) -> CollectionResult:
    """Convenience function to collect messages for a window."""
    return await TranscriptCollector(transcripts_dir).collect(window, workspace_path)


__all__ = [
    "CollectionResult",
    "MalformedRecord",
    "TranscriptCollector",
    "collect_messages",
    "normalize_workspace_path",
    "parse_block",
    "parse_record",
    "parse_timestamp",
]
