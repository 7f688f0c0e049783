"""
Shared fixtures.

Provides factories for commit windows, messages and transcript files, and a
scripted model client that records every request it receives.
"""

import asyncio
import json
import os
import subprocess
import sys
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from commit_story.api_client import APIResponse, BaseLLMClient, LLMError, Provider
from commit_story.types import (
    CommitWindow,
    MessageKind,
    NormalizedMessage,
    Role,
    ToolInvocation,
)

T0 = datetime(2025, 8, 20, 12, 0, tzinfo=timezone.utc)


class ScriptedClient(BaseLLMClient):
    """
    Fake model client.

    ``reply`` is either a fixed string or a callable taking (system, prompt)
    and returning the reply text. ``fail`` raises LLMError, ``delay`` sleeps
    before answering so timeouts can be exercised.
    """

    def __init__(
        self,
        reply: str | Callable[[str, str], str] = "ok",
        fail: bool = False,
        delay: float = 0.0,
    ):
        self.reply = reply
        self.fail = fail
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> APIResponse:
        prompt = messages[-1]["content"] if messages else ""
        self.calls.append(
            {"system": system or "", "prompt": prompt, "model": model, "temperature": temperature}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise LLMError("scripted failure")
        text = self.reply(system or "", prompt) if callable(self.reply) else self.reply
        return APIResponse(
            content=text,
            input_tokens=len(prompt) // 4,
            output_tokens=len(text) // 4,
            model=model or "fake-model",
            provider=Provider.OPENAI,
        )


@pytest.fixture
def scripted_client():
    """Factory for ScriptedClient instances."""
    return ScriptedClient


@pytest.fixture
def make_window():
    """Factory for CommitWindow with sensible defaults."""

    def _make(
        commit_hash: str = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678",
        message: str = "Add retry logic to fetcher",
        diff_text: str = "",
        changed_files: tuple[str, ...] = ("src/fetcher.py",),
        start: datetime = T0,
        end: datetime = T0 + timedelta(hours=2),
        parent_count: int = 1,
    ) -> CommitWindow:
        return CommitWindow(
            hash=commit_hash,
            parent_hash="f" * 40 if parent_count else None,
            message=message,
            author="Dev",
            timestamp_start=start,
            timestamp_end=end,
            diff_text=diff_text,
            changed_files=changed_files,
            parent_count=parent_count,
        )

    return _make


@pytest.fixture
def make_message():
    """Factory for NormalizedMessage; ``minutes`` is an offset from T0."""

    def _make(
        text: str,
        speaker: Role = Role.HUMAN,
        session_id: str = "session-a",
        minutes: float = 1,
        kind: MessageKind | None = None,
        invocations: tuple[ToolInvocation, ...] = (),
    ) -> NormalizedMessage:
        if kind is None:
            kind = MessageKind.TEXT if text else MessageKind.TOOL_INVOCATION if invocations else MessageKind.EMPTY
        return NormalizedMessage(
            session_id=session_id,
            timestamp=T0 + timedelta(minutes=minutes),
            speaker=speaker,
            text=text,
            kind=kind,
            tool_name=invocations[0].name if invocations else None,
            tool_invocations=invocations,
        )

    return _make


def transcript_record(
    text: str | list[dict[str, Any]],
    session_id: str = "session-a",
    minutes: float = 1,
    entry_type: str = "user",
    cwd: str = "/work/project",
) -> dict[str, Any]:
    timestamp = (T0 + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z")
    return {
        "type": entry_type,
        "sessionId": session_id,
        "timestamp": timestamp,
        "cwd": cwd,
        "uuid": f"{session_id}-{minutes}",
        "message": {"role": "assistant" if entry_type == "assistant" else "user", "content": text},
    }


@pytest.fixture
def record():
    """Factory for raw transcript JSON records."""
    return transcript_record


@pytest.fixture
def transcripts_dir(tmp_path):
    """Empty ~/.claude/projects lookalike."""
    path = tmp_path / "projects"
    path.mkdir()
    return path


@pytest.fixture
def write_transcript(transcripts_dir):
    """Write records (dicts or raw strings) as a JSONL transcript file."""

    def _write(name: str, records: list[dict[str, Any] | str], project: str = "-work-project") -> Path:
        project_dir = transcripts_dir / project
        project_dir.mkdir(exist_ok=True)
        path = project_dir / f"{name}.jsonl"
        with open(path, "w", encoding="utf-8") as f:
            for rec in records:
                f.write(rec if isinstance(rec, str) else json.dumps(rec))
                f.write("\n")
        return path

    return _write


GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Dev",
    "GIT_AUTHOR_EMAIL": "dev@example.com",
    "GIT_COMMITTER_NAME": "Test Dev",
    "GIT_COMMITTER_EMAIL": "dev@example.com",
}


def git(repo: Path, *args: str, env: dict[str, str] | None = None) -> str:
    full_env = {**os.environ, **GIT_ENV, **(env or {})}
    result = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
        env=full_env,
    )
    return result.stdout


@pytest.fixture
def git_repo(tmp_path):
    """
    Temporary repository with two commits.

    The first commit is dated T0, the second T0 + 2h, so the second
    commit's window is (T0, T0 + 2h].
    """
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")

    (repo / "README.md").write_text("# Project\n")
    stamp = T0.strftime("%Y-%m-%dT%H:%M:%S+00:00")
    git(repo, "add", ".")
    git(repo, "commit", "-q", "-m", "Initial commit", env={"GIT_AUTHOR_DATE": stamp, "GIT_COMMITTER_DATE": stamp})

    (repo / "src").mkdir()
    (repo / "src" / "fetcher.py").write_text("def fetch():\n    return retry(get)\n")
    stamp = (T0 + timedelta(hours=2)).strftime("%Y-%m-%dT%H:%M:%S+00:00")
    git(repo, "add", ".")
    git(
        repo,
        "commit",
        "-q",
        "-m",
        "Add retry logic to fetcher",
        env={"GIT_AUTHOR_DATE": stamp, "GIT_COMMITTER_DATE": stamp},
    )
    return repo


@pytest.fixture
def run_git():
    return git


@pytest.fixture
def t0():
    """Timestamp of the first commit in ``git_repo``; message offsets start here."""
    return T0
