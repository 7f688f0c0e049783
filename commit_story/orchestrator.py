"""
Narrative orchestration.

Turns a FilteredContext into the journal's prose sections. Each section
generator builds its own request, so sections share no mutable state and
one failing section never takes the others down.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .api_client import BaseLLMClient, complete_bounded
from .budgeter import estimate_tokens, render_message
from .config import JournalConfig, default_config
from .diff_analysis import analyze_diff, is_documentation_file
from .prompts import (
    AVAILABLE_DATA_DESCRIPTION,
    DEFAULT_GUIDELINES,
    TECHNICAL_DECISIONS_PROMPT,
    GenerationGuidelines,
    dialogue_prompt,
    summary_prompt,
)
from .types import CommitWindow, FilteredContext, ModelUsage, NormalizedMessage, Role, SectionResult

logger = logging.getLogger(__name__)

SUMMARY = "summary"
DIALOGUE = "dialogue"
TECHNICAL_DECISIONS = "technical_decisions"
KNOWN_SECTIONS = (SUMMARY, DIALOGUE, TECHNICAL_DECISIONS)

SUBSTANTIAL_CHARS = 20
MAX_DIALOGUE_QUOTES = 8

SUMMARY_REQUEST = "Summarize this development session:\n\n"
DIALOGUE_REQUEST = "Extract supporting dialogue for this development session:\n\n"
DECISIONS_REQUEST = "Document the technical decisions from this development session:\n\n"
SUMMARY_GUIDE_HEADER = "## Session summary (your guide for what matters)\n"

# rounding and separators not covered by per-part estimates
PROMPT_SLACK_TOKENS = 256

NO_DIALOGUE_TEXT = "No significant dialogue found for this development session"
NO_DECISIONS_TEXT = "No significant technical decisions documented for this development session"


def substantial_human_messages(messages: tuple[NormalizedMessage, ...] | list[NormalizedMessage]) -> list[NormalizedMessage]:
    """Human messages long enough to carry real intent."""
    return [m for m in messages if m.speaker == Role.HUMAN and len(m.text.strip()) >= SUBSTANTIAL_CHARS]


def clean_dialogue(text: str) -> str:
    """Undo JSON-style escaping some models leave in quoted dialogue."""
    return text.strip().replace('\\"', '"').replace("\\n", "\n")


@dataclass(frozen=True)
class GenerationInput:
    """Everything a section generator may read. Immutable."""

    window: CommitWindow
    context: FilteredContext
    prior_entry: str | None = None
    prior_entry_chars: int = 2000

    @property
    def has_functional_code(self) -> bool:
        stats = analyze_diff(self.window.diff_text)
        if stats.files:
            return stats.has_functional_code
        return any(not is_documentation_file(p) for p in self.window.changed_files)

    @property
    def substantial_count(self) -> int:
        return len(substantial_human_messages(self.context.messages))

    def render(self) -> str:
        """Commit data, code changes, chat and prior-entry excerpt as prompt text."""
        files = ", ".join(self.window.changed_files) or "(none recorded)"
        parts = [
            "## Commit",
            f"Hash: {self.window.hash}",
            f"Author: {self.window.author}",
            f"Message: {self.window.message.strip()}",
            f"Files: {files}",
            "",
            "## Code changes",
            self.context.diff_summary or "(no diff)",
            "",
            "## Chat",
        ]
        if self.context.messages:
            parts.extend(render_message(m) for m in self.context.messages)
        else:
            parts.append("(no chat messages for this commit)")

        if self.prior_entry:
            excerpt = self.prior_entry.strip()[-self.prior_entry_chars:]
            parts.extend(["", "## Previous journal entry (excerpt, for continuity only)", excerpt])
        return "\n".join(parts)


@dataclass
class GenerationOutcome:
    """Sections that succeeded, in configured order, plus the names that failed."""

    sections: list[SectionResult] = field(default_factory=list)
    failed_sections: list[str] = field(default_factory=list)


class NarrativeOrchestrator:
    """
    Generate the configured narrative sections for one commit.

    Summary and technical decisions run concurrently. Dialogue waits for
    the summary and uses it as a guide, unless ``dialogue_uses_summary`` is
    off, in which case all sections run at once.
    """

    def __init__(
        self,
        client: BaseLLMClient | None = None,
        config: JournalConfig | None = None,
        guidelines: GenerationGuidelines = DEFAULT_GUIDELINES,
    ):
        self.client = client
        self.config = config or default_config
        self.guidelines = guidelines

    def _system_prompt(self, section_prompt: str) -> str:
        return f"{self.guidelines.compose()}\n\n{AVAILABLE_DATA_DESCRIPTION}\n\n{section_prompt}"

    def prompt_overhead(self, window: CommitWindow, prior_entry: str | None = None, message_count: int = 0) -> int:
        """
        Tokens any one request spends beyond the budgeted chat and diff.

        Covers the largest system prompt, the request framing, the commit
        header and file list, the prior-entry excerpt, one separator per
        message, and the summary handed to dialogue.
        """
        section_prompts = [
            summary_prompt(has_functional_code=code, has_substantial_chat=chat)
            for code in (True, False)
            for chat in (True, False)
        ]
        section_prompts += [dialogue_prompt(MAX_DIALOGUE_QUOTES), TECHNICAL_DECISIONS_PROMPT]
        system = max(estimate_tokens(self._system_prompt(p)) for p in section_prompts)

        empty = FilteredContext(messages=(), diff_summary="", token_estimate=0, dropped_count=0, ceiling=0)
        frame = GenerationInput(window, empty, prior_entry, self.config.budget.prior_entry_chars).render()
        request = max(estimate_tokens(r) for r in (SUMMARY_REQUEST, DIALOGUE_REQUEST, DECISIONS_REQUEST))

        guide = 0
        if self.config.dialogue_uses_summary:
            guide = estimate_tokens(SUMMARY_GUIDE_HEADER) + self.config.models.max_output_tokens

        return (
            system
            + request
            + estimate_tokens(frame)
            + estimate_tokens("\n" * message_count)
            + guide
            + PROMPT_SLACK_TOKENS
        )

    async def _call(self, section: str, section_prompt: str, user_prompt: str, temperature: float) -> SectionResult | None:
        outcome = await complete_bounded(
            self.client,
            prompt=user_prompt,
            system=self._system_prompt(section_prompt),
            model=self.config.models.generation_model,
            max_tokens=self.config.models.max_output_tokens,
            temperature=temperature,
            timeout=self.config.timeouts.section,
        )
        if not outcome.ok:
            logger.warning(f"Section {section} failed: {outcome.error}")
            return None

        response = outcome.response
        return SectionResult(
            section_name=section,
            text=response.content.strip(),
            model_usage=ModelUsage(input_tokens=response.input_tokens, output_tokens=response.output_tokens),
        )

    async def generate_summary(self, data: GenerationInput) -> SectionResult | None:
        prompt = summary_prompt(
            has_functional_code=data.has_functional_code,
            has_substantial_chat=data.substantial_count > 0,
        )
        return await self._call(
            SUMMARY,
            prompt,
            f"{SUMMARY_REQUEST}{data.render()}",
            self.config.models.summary_temperature,
        )

    async def generate_dialogue(self, data: GenerationInput, summary: str | None = None) -> SectionResult | None:
        substantial = data.substantial_count
        if substantial == 0:
            return SectionResult(section_name=DIALOGUE, text=NO_DIALOGUE_TEXT)

        max_quotes = min(substantial, MAX_DIALOGUE_QUOTES)
        user_prompt = f"{DIALOGUE_REQUEST}{data.render()}"
        if summary:
            user_prompt = f"{SUMMARY_GUIDE_HEADER}{summary}\n\n{user_prompt}"

        result = await self._call(DIALOGUE, dialogue_prompt(max_quotes), user_prompt, self.config.models.dialogue_temperature)
        if result is None:
            return None
        return SectionResult(section_name=DIALOGUE, text=clean_dialogue(result.text), model_usage=result.model_usage)

    async def generate_technical_decisions(self, data: GenerationInput) -> SectionResult | None:
        if data.substantial_count == 0:
            return SectionResult(section_name=TECHNICAL_DECISIONS, text=NO_DECISIONS_TEXT)

        return await self._call(
            TECHNICAL_DECISIONS,
            TECHNICAL_DECISIONS_PROMPT,
            f"{DECISIONS_REQUEST}{data.render()}",
            self.config.models.technical_temperature,
        )

    async def generate(
        self,
        window: CommitWindow,
        context: FilteredContext,
        prior_entry: str | None = None,
    ) -> GenerationOutcome:
        """
        Run every configured section.

        Failed sections are omitted from the result and listed in
        ``failed_sections``; nothing here raises for model problems.
        """
        data = GenerationInput(
            window=window,
            context=context,
            prior_entry=prior_entry,
            prior_entry_chars=self.config.budget.prior_entry_chars,
        )
        wanted = [s for s in self.config.sections if s in KNOWN_SECTIONS]
        for unknown in set(self.config.sections) - set(KNOWN_SECTIONS):
            logger.warning(f"Ignoring unknown section {unknown!r}")

        results: dict[str, SectionResult | None] = {}

        async def summary_then_dialogue() -> None:
            if SUMMARY in wanted:
                results[SUMMARY] = await self.generate_summary(data)
            if DIALOGUE in wanted:
                summary = results.get(SUMMARY)
                results[DIALOGUE] = await self.generate_dialogue(data, summary.text if summary else None)

        async def run_summary() -> None:
            results[SUMMARY] = await self.generate_summary(data)

        async def run_dialogue() -> None:
            results[DIALOGUE] = await self.generate_dialogue(data)

        async def run_technical() -> None:
            results[TECHNICAL_DECISIONS] = await self.generate_technical_decisions(data)

        tasks = []
        if self.config.dialogue_uses_summary:
            if SUMMARY in wanted or DIALOGUE in wanted:
                tasks.append(summary_then_dialogue())
        else:
            if SUMMARY in wanted:
                tasks.append(run_summary())
            if DIALOGUE in wanted:
                tasks.append(run_dialogue())
        if TECHNICAL_DECISIONS in wanted:
            tasks.append(run_technical())

        await asyncio.gather(*tasks)

        outcome = GenerationOutcome()
        for name in wanted:
            result = results.get(name)
            if result is None:
                outcome.failed_sections.append(name)
            else:
                outcome.sections.append(result)

        if outcome.failed_sections:
            logger.warning(f"Sections omitted: {', '.join(outcome.failed_sections)}")
        return outcome


__all__ = [
    "DIALOGUE",
    "GenerationInput",
    "GenerationOutcome",
    "NO_DECISIONS_TEXT",
    "NO_DIALOGUE_TEXT",
    "NarrativeOrchestrator",
    "SUMMARY",
    "TECHNICAL_DECISIONS",
    "clean_dialogue",
    "substantial_human_messages",
]
