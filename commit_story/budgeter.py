"""
Context budgeting.

Cuts the selected conversation and the diff down to what one generation
call may carry. The token ceiling is a hard postcondition.
"""

from __future__ import annotations

import logging
import math

from .diff_analysis import summarize_diff
from .types import CommitWindow, FilteredContext, MessageKind, NormalizedMessage

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

NOISE_KINDS = frozenset({
    MessageKind.TOOL_RESULT,
    MessageKind.TOOL_INVOCATION,
    MessageKind.COMMAND,
    MessageKind.EMPTY,
})

FILE_CHANGE_TOOLS = frozenset({"Edit", "Write", "MultiEdit", "NotebookEdit"})

TRUNCATION_MARKER = "\n[... truncated to fit context budget]"


def estimate_tokens(text: str) -> int:
    """Rough token count (~4 chars per token), rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def render_message(msg: NormalizedMessage) -> str:
    """The exact line a message occupies in a generation prompt."""
    return f"[{msg.timestamp.isoformat()}] {msg.speaker.value}: {msg.text}"


def message_tokens(msg: NormalizedMessage) -> int:
    return estimate_tokens(render_message(msg))


def is_noise(msg: NormalizedMessage) -> bool:
    return msg.kind in NOISE_KINDS or not msg.text.strip()


def _changes_files(msg: NormalizedMessage) -> bool:
    return any(inv.name in FILE_CHANGE_TOOLS for inv in msg.tool_invocations)


def _protected_indexes(
    messages: list[NormalizedMessage],
    changed_files: tuple[str, ...],
    preserve_recent: int,
) -> set[int]:
    """
    Indexes (into ``messages``) that trimming should spare.

    The newest ``preserve_recent`` textual messages, textual messages next to
    a file-changing tool call, and textual messages naming a changed file.
    """
    protected: set[int] = set()
    textual = [i for i, m in enumerate(messages) if not is_noise(m)]
    if preserve_recent > 0:
        protected.update(textual[-preserve_recent:])

    file_names = [p for p in changed_files if p]
    for i, msg in enumerate(messages):
        if is_noise(msg):
            continue
        if _changes_files(msg):
            protected.add(i)
        for j in (i - 1, i + 1):
            if 0 <= j < len(messages) and _changes_files(messages[j]):
                protected.add(i)
        if file_names and any(path in msg.text for path in file_names):
            protected.add(i)
    return protected


def _truncate_to_tokens(text: str, max_tokens: int) -> str:
    if estimate_tokens(text) <= max_tokens:
        return text
    if max_tokens <= 0:
        return ""
    budget_chars = max_tokens * CHARS_PER_TOKEN - len(TRUNCATION_MARKER)
    if budget_chars <= 0:
        return text[: max_tokens * CHARS_PER_TOKEN]
    return text[:budget_chars] + TRUNCATION_MARKER


class ContextBudgeter:
    """
    Build a FilteredContext that never exceeds ``token_ceiling``.

    Pure: the same messages and window always give the same result.
    """

    def __init__(
        self,
        token_ceiling: int = 100_000,
        diff_token_threshold: int = 15_000,
        preserve_recent: int = 10,
    ):
        if token_ceiling < 0:
            raise ValueError("token_ceiling must be non-negative")
        self.token_ceiling = token_ceiling
        self.diff_token_threshold = diff_token_threshold
        self.preserve_recent = preserve_recent

    def build(self, messages: list[NormalizedMessage], window: CommitWindow) -> FilteredContext:
        protected = _protected_indexes(messages, window.changed_files, self.preserve_recent)

        # 1. noise
        kept: list[tuple[int, NormalizedMessage]] = [
            (i, m) for i, m in enumerate(messages) if not is_noise(m)
        ]
        noise_count = len(messages) - len(kept)

        # 2. diff
        diff = window.diff_text
        diff_summarized = False
        if estimate_tokens(diff) > self.diff_token_threshold:
            diff = summarize_diff(diff, window.changed_files)
            diff_summarized = True
            logger.info(f"Diff of ~{estimate_tokens(window.diff_text)} tokens replaced by structural summary")

        diff_tokens = estimate_tokens(diff)
        if diff_tokens > self.token_ceiling:
            diff = _truncate_to_tokens(diff, self.token_ceiling)
            diff_tokens = estimate_tokens(diff)

        # 3. trim oldest-first: unprotected, then protected. With every message
        # dropped only the diff remains, and it already fits.
        costs = {i: message_tokens(m) for i, m in kept}
        total = diff_tokens + sum(costs.values())
        dropped: set[int] = set()
        for pass_protected in (False, True):
            for i, _ in kept:
                if total <= self.token_ceiling:
                    break
                if (i in protected) != pass_protected or i in dropped:
                    continue
                dropped.add(i)
                total -= costs[i]

        final = tuple(m for i, m in kept if i not in dropped)
        if dropped:
            logger.info(f"Dropped {len(dropped)} messages to fit {self.token_ceiling} token ceiling")

        return FilteredContext(
            messages=final,
            diff_summary=diff,
            token_estimate=total,
            dropped_count=len(dropped),
            ceiling=self.token_ceiling,
            diff_summarized=diff_summarized,
            noise_count=noise_count,
        )


def build_filtered_context(
    messages: list[NormalizedMessage],
    window: CommitWindow,
    token_ceiling: int = 100_000,
    diff_token_threshold: int = 15_000,
    preserve_recent: int = 10,
) -> FilteredContext:
    """Convenience function to budget a context."""
    return ContextBudgeter(token_ceiling, diff_token_threshold, preserve_recent).build(messages, window)


__all__ = [
    "ContextBudgeter",
    "build_filtered_context",
    "estimate_tokens",
    "is_noise",
    "message_tokens",
    "render_message",
]
