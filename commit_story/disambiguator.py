"""
Session disambiguation.

Decides which conversation session(s) produced a commit:

- one session in the window: take it (fast path, no model call)
- several sessions: look for an explicit ``git commit`` at the end of a
  session first, then ask a model
- no decision obtainable: keep every session, flagged as ``none``
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from pydantic import BaseModel, Field, ValidationError

from .api_client import BaseLLMClient, complete_bounded
from .diff_analysis import analyze_diff
from .normalizer import is_clear_command
from .prompts import SESSION_ANALYSIS_SYSTEM, build_session_analysis_prompt
from .types import (
    CommitWindow,
    NormalizedMessage,
    SelectionMethod,
    SelectionResult,
    Session,
)

logger = logging.getLogger(__name__)

# options may take a value, as in "git -C <path> commit"
COMMIT_PATTERN = re.compile(r"\bgit\s+(?:-[A-Za-z]\s+\S+\s+|-\S+\s+)*commit\b", re.IGNORECASE)
EVIDENCE_WINDOW = 3  # trailing messages inspected per session
MIN_PREFIX = 7
SEGMENT_SEP = "/"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class SessionSelectionResponse(BaseModel):
    """Structured reply expected from the disambiguation model."""

    session_ids: list[str] = Field(alias="sessionIds")
    reasoning: str | None = None

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class CommitEvidence:
    """Whether a session ends with a commit action, and whether it is *this* commit."""

    ran_commit: bool = False
    references_commit: bool = False


def group_sessions(messages: list[NormalizedMessage], split_on_clear: bool = True) -> list[Session]:
    """
    Group messages by session id, in order of first appearance.

    With ``split_on_clear`` a /clear command closes the current segment and
    starts ``<session_id>/2``, ``<session_id>/3``...
    """
    sessions: dict[str, Session] = {}
    segment_index: dict[str, int] = {}

    for msg in messages:
        if split_on_clear and is_clear_command(msg) and msg.session_id in segment_index:
            segment_index[msg.session_id] += 1

        index = segment_index.setdefault(msg.session_id, 1)
        key = msg.session_id if index == 1 else f"{msg.session_id}{SEGMENT_SEP}{index}"
        sessions.setdefault(key, Session(session_id=key)).messages.append(msg)

    return list(sessions.values())


def selected_messages(sessions: list[Session], result: SelectionResult) -> list[NormalizedMessage]:
    """Messages of the selected sessions, merged back into timestamp order."""
    chosen = [m for s in sessions if s.session_id in result.selected_session_ids for m in s.messages]
    return sorted(chosen, key=lambda m: m.timestamp)


def detect_commit_evidence(session: Session, window: CommitWindow) -> CommitEvidence:
    """
    Inspect the last few messages of a session for an explicit commit.

    Only a Bash ``git commit`` invocation counts as running a commit; text
    that merely mentions one does not. The commit is *this* commit when the
    hash prefix or the commit subject appears in the command, or the hash
    prefix appears in the surrounding messages.
    """
    tail = session.messages[-EVIDENCE_WINDOW:]
    hash_prefix = window.hash[:MIN_PREFIX].lower()
    subject = window.subject.lower()

    ran_commit = False
    references = False
    for msg in tail:
        for inv in msg.tool_invocations:
            if inv.name == "Bash" and inv.command and COMMIT_PATTERN.search(inv.command):
                ran_commit = True
                command = inv.command.lower()
                if (subject and subject in command) or hash_prefix in command:
                    references = True
        if hash_prefix and hash_prefix in msg.text.lower():
            references = True

    return CommitEvidence(ran_commit=ran_commit, references_commit=ran_commit and references)


def parse_selection_response(raw: str) -> SessionSelectionResponse | None:
    """Extract and validate the JSON selection from a model reply."""
    raw = raw.strip()
    match = _JSON_OBJECT.search(raw)
    if not match:
        logger.warning("Disambiguation reply contained no JSON object")
        return None
    try:
        return SessionSelectionResponse.model_validate(json.loads(match.group(0)))
    except json.JSONDecodeError as e:
        logger.warning(f"Disambiguation reply was not valid JSON: {e}")
    except ValidationError as e:
        logger.warning(f"Disambiguation reply had the wrong shape: {e.error_count()} errors")
    return None


def resolve_session_ids(returned: list[str], known: list[str]) -> set[str]:
    """Map model-returned ids (possibly 8-char previews) onto known session ids."""
    resolved: set[str] = set()
    for candidate in returned:
        candidate = str(candidate).strip()
        if not candidate:
            continue
        if candidate in known:
            resolved.add(candidate)
            continue
        matches = [sid for sid in known if sid.startswith(candidate)]
        if len(matches) == 1:
            resolved.add(matches[0])
        else:
            logger.debug(f"Discarding unknown or ambiguous session id {candidate!r}")
    return resolved


class SessionDisambiguator:
    """
    Select the session(s) responsible for a commit.

    Never raises for model problems: any failure degrades to selecting all
    sessions with ``SelectionMethod.NONE``.
    """

    def __init__(
        self,
        client: BaseLLMClient | None = None,
        model: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 1000,
        timeout: float = 30.0,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def select(self, sessions: list[Session], window: CommitWindow) -> SelectionResult:
        if not sessions:
            return SelectionResult(selected_session_ids=frozenset(), method=SelectionMethod.NONE,
                                   reasoning="no sessions in window")

        # /clear segments of one transcript still count as a single session
        if len({s.source_id for s in sessions}) == 1:
            return SelectionResult(
                selected_session_ids=frozenset(s.session_id for s in sessions),
                method=SelectionMethod.FAST_PATH,
                reasoning="single session in window",
            )

        evidence = {s.session_id: detect_commit_evidence(s, window) for s in sessions}
        definitive = self._definitive_session(evidence)
        if definitive is not None:
            logger.info(f"Session {definitive} ends with the commit, skipping model call")
            return SelectionResult(
                selected_session_ids=frozenset({definitive}),
                method=SelectionMethod.FAST_PATH,
                reasoning=f"session {definitive} ran git commit for {window.short_hash}",
            )

        return await self._select_with_model(sessions, window, evidence)

    def _definitive_session(self, evidence: dict[str, CommitEvidence]) -> str | None:
        referencing = [sid for sid, e in evidence.items() if e.references_commit]
        if len(referencing) == 1:
            return referencing[0]
        if referencing:
            return None
        committing = [sid for sid, e in evidence.items() if e.ran_commit]
        if len(committing) == 1:
            return committing[0]
        return None

    async def _select_with_model(
        self,
        sessions: list[Session],
        window: CommitWindow,
        evidence: dict[str, CommitEvidence],
    ) -> SelectionResult:
        known = [s.session_id for s in sessions]
        stats = analyze_diff(window.diff_text)
        prompt = build_session_analysis_prompt(
            sessions,
            commit_message=window.message,
            changed_files=list(window.changed_files) or stats.changed_files,
            change_summary=f"{len(stats.files)} files, +{stats.lines_added}/-{stats.lines_removed} lines",
            commit_evidence={sid: e.ran_commit for sid, e in evidence.items()},
        )

        outcome = await complete_bounded(
            self.client,
            prompt=prompt,
            system=SESSION_ANALYSIS_SYSTEM,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout=self.timeout,
        )
        if not outcome.ok:
            logger.warning(f"Session disambiguation unavailable ({outcome.error}), keeping all sessions")
            return self._fallback(known, f"model unavailable: {outcome.error}")

        parsed = parse_selection_response(outcome.text)
        if parsed is None:
            return self._fallback(known, "unparseable model response")

        chosen = resolve_session_ids(parsed.session_ids, known)
        if not chosen:
            logger.warning("Model selected no known session, keeping all sessions")
            return self._fallback(known, "model selected no known session")

        logger.info(f"Model selected {len(chosen)}/{len(known)} sessions")
        return SelectionResult(
            selected_session_ids=frozenset(chosen),
            method=SelectionMethod.MODEL_ASSISTED,
            reasoning=parsed.reasoning,
        )

    @staticmethod
    def _fallback(known: list[str], reason: str) -> SelectionResult:
        return SelectionResult(
            selected_session_ids=frozenset(known),
            method=SelectionMethod.NONE,
            reasoning=reason,
        )


__all__ = [
    "CommitEvidence",
    "SessionDisambiguator",
    "SessionSelectionResponse",
    "detect_commit_evidence",
    "group_sessions",
    "parse_selection_response",
    "resolve_session_ids",
    "selected_messages",
]
