"""Flatten raw transcript payloads into speaker-attributed text."""

from __future__ import annotations

import re

from .redaction import redact_sensitive_data
from .types import (
    ContentBlock,
    MessageKind,
    NormalizedMessage,
    RawMessage,
    Role,
    TextBlock,
    ToolInvocation,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
)

# Claude Code wraps slash commands in <command-name> markup
COMMAND_MARKUP = re.compile(r"<command-name>\s*(/?[\w:-]+)\s*</command-name>")
BARE_COMMAND = re.compile(r"^/[a-z][\w:-]*$")
CLEAR_COMMANDS = ("/clear", "clear")

FILE_PATH_KEYS = ("file_path", "notebook_path", "path")


def _invocation_from(block: ToolUseBlock) -> ToolInvocation:
    command = block.input.get("command")
    file_path = next((block.input[k] for k in FILE_PATH_KEYS if isinstance(block.input.get(k), str)), None)
    return ToolInvocation(
        name=block.name,
        command=command if isinstance(command, str) else None,
        file_path=file_path,
    )


def _flatten_blocks(blocks: tuple[ContentBlock, ...]) -> tuple[str, list[ToolInvocation]]:
    texts: list[str] = []
    invocations: list[ToolInvocation] = []
    for block in blocks:
        if isinstance(block, TextBlock):
            if block.text.strip():
                texts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            invocations.append(_invocation_from(block))
        elif isinstance(block, ToolResultBlock):
            continue
        elif isinstance(block, UnknownBlock):
            continue
        else:
            raise TypeError(f"Unhandled content block: {block!r}")
    return "\n".join(texts), invocations


def command_name(text: str) -> str | None:
    """Slash command carried by a message, if any."""
    match = COMMAND_MARKUP.search(text)
    if match:
        return match.group(1)
    stripped = text.strip()
    if BARE_COMMAND.match(stripped):
        return stripped
    return None


def is_clear_command(message: NormalizedMessage) -> bool:
    return message.kind == MessageKind.COMMAND and command_name(message.text) in CLEAR_COMMANDS


def _kind_for(role: Role, text: str, invocations: list[ToolInvocation]) -> MessageKind:
    if role == Role.TOOL:
        return MessageKind.TOOL_RESULT
    if text and role == Role.HUMAN and command_name(text):
        return MessageKind.COMMAND
    if text:
        return MessageKind.TEXT
    if invocations:
        return MessageKind.TOOL_INVOCATION
    return MessageKind.EMPTY


def normalize_message(raw: RawMessage) -> NormalizedMessage:
    """
    Normalize one RawMessage.

    The speaker is always the source role, whatever the content shape.
    """
    if isinstance(raw.content, str):
        text, invocations = raw.content, []
    else:
        text, invocations = _flatten_blocks(raw.content)

    text = redact_sensitive_data(text.strip())
    return NormalizedMessage(
        session_id=raw.session_id,
        timestamp=raw.timestamp,
        speaker=raw.role,
        text=text,
        kind=_kind_for(raw.role, text, invocations),
        tool_name=invocations[0].name if invocations else None,
        tool_invocations=tuple(invocations),
    )


def normalize_messages(raw_messages: list[RawMessage]) -> list[NormalizedMessage]:
    """One-to-one, order-preserving normalization."""
    return [normalize_message(raw) for raw in raw_messages]


__all__ = [
    "command_name",
    "is_clear_command",
    "normalize_message",
    "normalize_messages",
]
