"""
Journal pipeline.

Runs the stages for one commit in order:

1. resolve the commit window (git)
2. collect transcript records inside the window
3. normalize them
4. pick the session(s) behind the commit
5. budget the context
6. generate the narrative sections

Only GitUnavailable and PipelineTimeout escape; every other problem is
absorbed into a degraded entry and recorded in its diagnostics.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .api_client import BaseLLMClient, create_client, get_context_limit
from .budgeter import ContextBudgeter
from .config import JournalConfig, default_config
from .diff_analysis import render_commit_details
from .disambiguator import SessionDisambiguator, group_sessions, selected_messages
from .git_window import is_journal_only_commit, is_merge_commit, resolve_commit_window
from .normalizer import normalize_messages
from .orchestrator import NarrativeOrchestrator
from .transcript_collector import TranscriptCollector
from .types import (
    CommitWindow,
    FilteredContext,
    JournalEntry,
    NormalizedMessage,
    PipelineDiagnostics,
    SelectionMethod,
    SelectionResult,
    Session,
)

logger = logging.getLogger(__name__)


class PipelineTimeout(Exception):
    """The whole run exceeded its time budget."""
    pass


@dataclass
class PreparedContext:
    """Output of the model-free stages."""

    messages: list[NormalizedMessage] = field(default_factory=list)
    sessions: list[Session] = field(default_factory=list)
    files_scanned: int = 0
    skipped_records: int = 0


class JournalPipeline:
    """
    Produce a JournalEntry for one commit.

    A missing model client is not fatal: selection falls back to all
    sessions and every section is reported as failed. Without an injected
    client each run opens its own and closes it before returning.
    """

    def __init__(
        self,
        config: JournalConfig | None = None,
        client: BaseLLMClient | None = None,
        repo_path: str | Path | None = None,
        transcripts_dir: str | Path | None = None,
    ):
        self.config = config or default_config
        self.client = client
        self.repo_path = Path(repo_path).expanduser() if repo_path else Path.cwd()
        self.collector = TranscriptCollector(transcripts_dir or self.config.collector.transcripts_path)

    def _open_client(self) -> BaseLLMClient | None:
        """A fresh client for one run; None when no credentials exist."""
        try:
            return create_client(default_model=self.config.models.generation_model)
        except ValueError as e:
            logger.warning(f"No model client available: {e}")
            return None

    def effective_ceiling(
        self,
        window: CommitWindow,
        prior_entry: str | None = None,
        message_count: int = 0,
    ) -> int:
        """
        Configured ceiling, capped by what the generation model can take.

        The model limit is reduced by the output allowance and by everything
        a request carries besides the budgeted chat and diff.
        """
        overhead = NarrativeOrchestrator(None, self.config).prompt_overhead(window, prior_entry, message_count)
        limit = (
            get_context_limit(self.config.models.generation_model)
            - self.config.models.max_output_tokens
            - overhead
        )
        return max(0, min(self.config.budget.token_ceiling, limit))

    def _budgeter(
        self,
        window: CommitWindow,
        messages: list[NormalizedMessage],
        prior_entry: str | None = None,
    ) -> ContextBudgeter:
        return ContextBudgeter(
            token_ceiling=self.effective_ceiling(window, prior_entry, len(messages)),
            diff_token_threshold=self.config.budget.diff_token_threshold,
            preserve_recent=self.config.budget.preserve_recent,
        )

    def skip_reason(self, window: CommitWindow) -> str | None:
        if is_journal_only_commit(window):
            return "journal-only commit"
        if self.config.skip_merge_commits and is_merge_commit(window):
            return "merge commit"
        return None

    async def resolve_window(self, commit_ref: str = "HEAD") -> CommitWindow:
        return await asyncio.to_thread(
            resolve_commit_window,
            commit_ref,
            self.repo_path,
            self.config.collector.default_lookback,
            self.config.timeouts.git,
        )

    async def prepare(self, window: CommitWindow, workspace: str | Path | None = None) -> PreparedContext:
        """Stages 2-3 plus session grouping."""
        collected = await self.collector.collect(window, workspace or self.repo_path)
        messages = normalize_messages(collected.messages)
        sessions = group_sessions(messages, split_on_clear=self.config.collector.split_on_clear)
        return PreparedContext(
            messages=messages,
            sessions=sessions,
            files_scanned=collected.files_scanned,
            skipped_records=collected.skipped_count,
        )

    async def build_filtered_context(self, window: CommitWindow, workspace: str | Path | None = None) -> FilteredContext:
        """
        Stages 2-5 without any model call.

        All sessions are kept, so repeated calls on unchanged inputs give
        identical contexts.
        """
        prepared = await self.prepare(window, workspace)
        everything = SelectionResult(
            selected_session_ids=frozenset(s.session_id for s in prepared.sessions),
            method=SelectionMethod.NONE,
        )
        messages = selected_messages(prepared.sessions, everything)
        return self._budgeter(window, messages).build(messages, window)

    async def run(self, commit_ref: str = "HEAD", prior_entry: str | None = None) -> JournalEntry | None:
        """
        Generate the journal entry for ``commit_ref``.

        Returns:
            The entry, or None when the commit is skipped

        Raises:
            GitUnavailable: If the commit cannot be read
            PipelineTimeout: If the run exceeds the configured pipeline timeout
        """
        timeout = self.config.timeouts.pipeline
        try:
            return await asyncio.wait_for(self._run(commit_ref, prior_entry), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PipelineTimeout(f"Journal generation exceeded {timeout}s") from e

    async def _run(self, commit_ref: str, prior_entry: str | None) -> JournalEntry | None:
        window = await self.resolve_window(commit_ref)

        reason = self.skip_reason(window)
        if reason:
            logger.info(f"Skipping {window.short_hash}: {reason}")
            return None

        diagnostics = PipelineDiagnostics()
        prepared = await self.prepare(window)
        diagnostics.files_scanned = prepared.files_scanned
        diagnostics.skipped_records = prepared.skipped_records
        diagnostics.messages_collected = len(prepared.messages)
        diagnostics.sessions_found = len(prepared.sessions)

        # an injected client belongs to the caller; one opened here is closed here
        owned = self.client is None
        client = self._open_client() if owned else self.client
        try:
            return await self._generate(window, prepared, client, prior_entry, diagnostics)
        finally:
            if owned and client is not None:
                await client.aclose()

    async def _generate(
        self,
        window: CommitWindow,
        prepared: PreparedContext,
        client: BaseLLMClient | None,
        prior_entry: str | None,
        diagnostics: PipelineDiagnostics,
    ) -> JournalEntry:
        """Stages 4-6."""
        disambiguator = SessionDisambiguator(
            client,
            model=self.config.models.disambiguation_model,
            temperature=self.config.models.disambiguation_temperature,
            max_tokens=self.config.models.disambiguation_max_tokens,
            timeout=self.config.timeouts.disambiguation,
        )
        selection = await disambiguator.select(prepared.sessions, window)
        diagnostics.selection_method = selection.method
        diagnostics.selection_reasoning = selection.reasoning
        logger.info(
            f"Selected {len(selection.selected_session_ids)}/{len(prepared.sessions)} sessions "
            f"({selection.method.value})"
        )

        messages = selected_messages(prepared.sessions, selection)
        context = self._budgeter(window, messages, prior_entry).build(messages, window)
        diagnostics.noise_dropped = context.noise_count
        diagnostics.messages_dropped = context.dropped_count
        diagnostics.diff_summarized = context.diff_summarized
        diagnostics.token_estimate = context.token_estimate

        orchestrator = NarrativeOrchestrator(client, self.config)
        generated = await orchestrator.generate(window, context, prior_entry)
        diagnostics.failed_sections = generated.failed_sections

        return JournalEntry(
            window=window,
            sections=generated.sections,
            commit_details=render_commit_details(window.message, window.diff_text, window.changed_files),
            diagnostics=diagnostics,
        )


async def generate_entry(
    commit_ref: str = "HEAD",
    repo_path: str | Path | None = None,
    config: JournalConfig | None = None,
    prior_entry: str | None = None,
) -> JournalEntry | None:
    """Convenience function to run the pipeline once."""
    return await JournalPipeline(config=config, repo_path=repo_path).run(commit_ref, prior_entry)


__all__ = [
    "JournalPipeline",
    "PipelineTimeout",
    "PreparedContext",
    "generate_entry",
]
