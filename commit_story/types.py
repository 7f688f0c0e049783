"""
Core data model shared by the pipeline stages.

Everything here is created fresh for one commit and discarded once the
journal entry has been assembled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class Role(str, Enum):
    """Who produced a transcript record."""

    HUMAN = "human"
    ASSISTANT = "assistant"
    TOOL = "tool"


class MessageKind(str, Enum):
    """Shape of a normalized message after flattening."""

    TEXT = "text"
    TOOL_INVOCATION = "tool_invocation"  # only tool calls, no prose
    TOOL_RESULT = "tool_result"
    COMMAND = "command"  # slash-command markup such as /clear
    EMPTY = "empty"


class SelectionMethod(str, Enum):
    """How the disambiguator arrived at its selection."""

    FAST_PATH = "fast-path"
    MODEL_ASSISTED = "model-assisted"
    NONE = "none"


@dataclass(frozen=True)
class CommitWindow:
    """A commit plus the time interval since its predecessor."""

    hash: str
    parent_hash: str | None
    message: str
    author: str
    timestamp_start: datetime  # exclusive
    timestamp_end: datetime  # inclusive
    diff_text: str
    changed_files: tuple[str, ...] = ()
    parent_count: int = 1

    @property
    def short_hash(self) -> str:
        return self.hash[:8]

    @property
    def subject(self) -> str:
        """First line of the commit message."""
        return self.message.split("\n", 1)[0].strip()

    def contains(self, ts: datetime) -> bool:
        """True when ``ts`` falls in (timestamp_start, timestamp_end]."""
        return self.timestamp_start < ts <= self.timestamp_end


# Content blocks: a tagged union keyed by the transcript "type" field.


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    tool_use_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str = ""


@dataclass(frozen=True)
class UnknownBlock:
    block_type: str


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, UnknownBlock]
RawContent = Union[str, tuple[ContentBlock, ...]]


@dataclass(frozen=True)
class RawMessage:
    """A transcript record as read from disk."""

    session_id: str
    workspace_path: str
    timestamp: datetime
    role: Role
    content: RawContent
    uuid: str | None = None
    source_file: str | None = None


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call kept for commit-evidence and file-change heuristics."""

    name: str
    command: str | None = None  # Bash command line
    file_path: str | None = None  # Edit/Write target


@dataclass(frozen=True)
class NormalizedMessage:
    """Flat, speaker-attributed message derived 1:1 from a RawMessage."""

    session_id: str
    timestamp: datetime
    speaker: Role
    text: str
    kind: MessageKind = MessageKind.TEXT
    tool_name: str | None = None
    tool_invocations: tuple[ToolInvocation, ...] = ()

    @property
    def is_tool_invocation(self) -> bool:
        return bool(self.tool_invocations)


@dataclass
class Session:
    """Messages of one conversational thread, time-ordered."""

    session_id: str
    messages: list[NormalizedMessage] = field(default_factory=list)

    @property
    def source_id(self) -> str:
        """The transcript's session id, shared by every /clear segment of it."""
        return self.messages[0].session_id if self.messages else self.session_id

    @property
    def start(self) -> datetime | None:
        return self.messages[0].timestamp if self.messages else None

    @property
    def end(self) -> datetime | None:
        return self.messages[-1].timestamp if self.messages else None

    @property
    def tool_invocations(self) -> list[ToolInvocation]:
        return [inv for msg in self.messages for inv in msg.tool_invocations]


@dataclass(frozen=True)
class SelectionResult:
    """Which sessions proceed downstream and why."""

    selected_session_ids: frozenset[str]
    method: SelectionMethod
    reasoning: str | None = None


@dataclass(frozen=True)
class FilteredContext:
    """Final bundle handed to generation. Never exceeds ``ceiling`` tokens."""

    messages: tuple[NormalizedMessage, ...]
    diff_summary: str
    token_estimate: int
    dropped_count: int
    ceiling: int
    diff_summarized: bool = False
    noise_count: int = 0


@dataclass(frozen=True)
class ModelUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class SectionResult:
    section_name: str
    text: str
    model_usage: ModelUsage = field(default_factory=ModelUsage)


@dataclass
class PipelineDiagnostics:
    """Observable record of everything the pipeline absorbed."""

    files_scanned: int = 0
    skipped_records: int = 0
    messages_collected: int = 0
    sessions_found: int = 0
    selection_method: SelectionMethod | None = None
    selection_reasoning: str | None = None
    noise_dropped: int = 0
    messages_dropped: int = 0
    diff_summarized: bool = False
    token_estimate: int = 0
    failed_sections: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_scanned": self.files_scanned,
            "skipped_records": self.skipped_records,
            "messages_collected": self.messages_collected,
            "sessions_found": self.sessions_found,
            "selection_method": self.selection_method.value if self.selection_method else None,
            "selection_reasoning": self.selection_reasoning,
            "noise_dropped": self.noise_dropped,
            "messages_dropped": self.messages_dropped,
            "diff_summarized": self.diff_summarized,
            "token_estimate": self.token_estimate,
            "failed_sections": list(self.failed_sections),
        }


@dataclass
class JournalEntry:
    """Payload handed to the persistence layer."""

    window: CommitWindow
    sections: list[SectionResult]
    commit_details: str
    diagnostics: PipelineDiagnostics = field(default_factory=PipelineDiagnostics)

    def section(self, name: str) -> SectionResult | None:
        for result in self.sections:
            if result.section_name == name:
                return result
        return None

    def to_payload(self) -> dict[str, Any]:
        return {
            "commit": {
                "hash": self.window.hash,
                "parent_hash": self.window.parent_hash,
                "message": self.window.message,
                "author": self.window.author,
                "timestamp": self.window.timestamp_end.isoformat(),
                "previous_timestamp": self.window.timestamp_start.isoformat(),
                "changed_files": list(self.window.changed_files),
            },
            "sections": [
                {
                    "name": s.section_name,
                    "text": s.text,
                    "input_tokens": s.model_usage.input_tokens,
                    "output_tokens": s.model_usage.output_tokens,
                }
                for s in self.sections
            ],
            "commit_details": self.commit_details,
            "diagnostics": self.diagnostics.to_dict(),
        }


__all__ = [
    "CommitWindow",
    "ContentBlock",
    "FilteredContext",
    "JournalEntry",
    "MessageKind",
    "ModelUsage",
    "NormalizedMessage",
    "PipelineDiagnostics",
    "RawContent",
    "RawMessage",
    "Role",
    "SectionResult",
    "SelectionMethod",
    "SelectionResult",
    "Session",
    "TextBlock",
    "ToolInvocation",
    "ToolResultBlock",
    "ToolUseBlock",
    "UnknownBlock",
]
