"""Tests for narrative section generation."""

import asyncio

import pytest

from commit_story.api_client import APIResponse, BaseLLMClient, LLMError, Provider
from commit_story.budgeter import build_filtered_context
from commit_story.config import JournalConfig
from commit_story.orchestrator import (
    NO_DECISIONS_TEXT,
    NO_DIALOGUE_TEXT,
    GenerationInput,
    NarrativeOrchestrator,
    clean_dialogue,
)
from commit_story.prompts import ANTI_HALLUCINATION_GUIDELINES
from commit_story.types import Role

DIFF = "diff --git a/src/fetcher.py b/src/fetcher.py\n+    return retry(get)\n"


def section_of(system: str) -> str:
    if "PURPOSE: Document technical decisions" in system:
        return "technical_decisions"
    if "capture authentic dialogue" in system:
        return "dialogue"
    return "summary"


class SectionClient(BaseLLMClient):
    """Answers per section; sections listed in ``hang`` never answer, ``fail`` raise."""

    def __init__(self, hang=(), fail=()):
        self.hang = set(hang)
        self.fail = set(fail)
        self.calls: list[tuple[str, str, str]] = []

    async def complete(self, messages, system=None, model=None, max_tokens=4096, temperature=0.0):
        section = section_of(system or "")
        prompt = messages[-1]["content"]
        self.calls.append((section, system or "", prompt))
        if section in self.hang:
            await asyncio.sleep(10)
        if section in self.fail:
            raise LLMError(f"{section} exploded")
        return APIResponse(
            content=f"{section} text",
            input_tokens=10,
            output_tokens=5,
            model=model or "fake",
            provider=Provider.ANTHROPIC,
        )

    def prompts_for(self, section):
        return [prompt for name, _, prompt in self.calls if name == section]


@pytest.fixture
def config():
    cfg = JournalConfig()
    cfg.timeouts.section = 0.2
    return cfg


@pytest.fixture
def chatty_context(make_message, make_window):
    window = make_window(diff_text=DIFF)
    messages = [
        make_message("Why does the fetcher fail on the first timeout?", minutes=1),
        make_message("It never retries; get() raises immediately.", speaker=Role.ASSISTANT, minutes=2),
        make_message("Let's wrap it in retry() with three attempts", minutes=3),
        make_message("ok", minutes=4),
    ]
    return window, build_filtered_context(messages, window)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_all_sections(self, config, chatty_context):
        """Every configured section comes back in order with its usage."""
        window, context = chatty_context
        client = SectionClient()
        outcome = await NarrativeOrchestrator(client, config).generate(window, context)

        assert [s.section_name for s in outcome.sections] == ["summary", "dialogue", "technical_decisions"]
        assert outcome.failed_sections == []
        assert outcome.sections[0].model_usage.input_tokens == 10

    @pytest.mark.asyncio
    async def test_one_section_times_out(self, config, chatty_context):
        """A hung section is dropped; the other two still arrive."""
        window, context = chatty_context
        client = SectionClient(hang={"technical_decisions"})
        outcome = await NarrativeOrchestrator(client, config).generate(window, context)

        assert [s.section_name for s in outcome.sections] == ["summary", "dialogue"]
        assert outcome.failed_sections == ["technical_decisions"]

    @pytest.mark.asyncio
    async def test_summary_failure_does_not_block_dialogue(self, config, chatty_context):
        """Dialogue still runs, unguided, when the summary fails."""
        window, context = chatty_context
        client = SectionClient(fail={"summary"})
        outcome = await NarrativeOrchestrator(client, config).generate(window, context)

        assert [s.section_name for s in outcome.sections] == ["dialogue", "technical_decisions"]
        assert outcome.failed_sections == ["summary"]
        assert "Session summary" not in client.prompts_for("dialogue")[0]

    @pytest.mark.asyncio
    async def test_dialogue_guided_by_summary(self, config, chatty_context):
        """Dialogue runs after the summary and receives it."""
        window, context = chatty_context
        client = SectionClient()
        await NarrativeOrchestrator(client, config).generate(window, context)

        dialogue_prompt = client.prompts_for("dialogue")[0]
        assert "## Session summary" in dialogue_prompt
        assert "summary text" in dialogue_prompt
        order = [name for name, _, _ in client.calls]
        assert order.index("summary") < order.index("dialogue")

    @pytest.mark.asyncio
    async def test_independent_dialogue(self, config, chatty_context):
        """With the dependency off, dialogue does not see the summary."""
        window, context = chatty_context
        config.dialogue_uses_summary = False
        client = SectionClient()
        outcome = await NarrativeOrchestrator(client, config).generate(window, context)

        assert len(outcome.sections) == 3
        assert "Session summary" not in client.prompts_for("dialogue")[0]

    @pytest.mark.asyncio
    async def test_no_substantial_input(self, config, make_message, make_window):
        """Without substantial human input dialogue and decisions use fixed texts."""
        window = make_window(diff_text=DIFF)
        context = build_filtered_context([make_message("ok"), make_message("thanks", minutes=2)], window)
        client = SectionClient()
        outcome = await NarrativeOrchestrator(client, config).generate(window, context)

        texts = {s.section_name: s.text for s in outcome.sections}
        assert texts["dialogue"] == NO_DIALOGUE_TEXT
        assert texts["technical_decisions"] == NO_DECISIONS_TEXT
        assert [name for name, _, _ in client.calls] == ["summary"]

    @pytest.mark.asyncio
    async def test_without_client(self, config, chatty_context):
        """Without a client every section is reported as failed."""
        window, context = chatty_context
        outcome = await NarrativeOrchestrator(None, config).generate(window, context)
        assert outcome.sections == []
        assert outcome.failed_sections == ["summary", "dialogue", "technical_decisions"]

    @pytest.mark.asyncio
    async def test_configured_sections_only(self, config, chatty_context):
        """Only configured, known sections are generated."""
        window, context = chatty_context
        config.sections = ["technical_decisions", "bogus"]
        client = SectionClient()
        outcome = await NarrativeOrchestrator(client, config).generate(window, context)

        assert [s.section_name for s in outcome.sections] == ["technical_decisions"]
        assert [name for name, _, _ in client.calls] == ["technical_decisions"]


class TestRequests:
    @pytest.mark.asyncio
    async def test_guidelines_in_every_system_prompt(self, config, chatty_context):
        """Every request carries the shared guidelines and the full context."""
        window, context = chatty_context
        client = SectionClient()
        await NarrativeOrchestrator(client, config).generate(window, context)

        assert len(client.calls) == 3
        for _, system, prompt in client.calls:
            assert ANTI_HALLUCINATION_GUIDELINES in system
            assert "Why does the fetcher fail" in prompt
            assert "+    return retry(get)" in prompt

    @pytest.mark.asyncio
    async def test_max_quotes(self, config, chatty_context):
        """The quote limit follows the number of substantial human messages."""
        window, context = chatty_context
        client = SectionClient()
        await NarrativeOrchestrator(client, config).generate(window, context)

        dialogue_system = next(system for name, system, _ in client.calls if name == "dialogue")
        assert "at most 2 quotes" in dialogue_system

    @pytest.mark.asyncio
    async def test_summary_prompt_reflects_docs_only(self, config, make_message, make_window):
        """A docs-only commit gets the routine-update summary prompt."""
        window = make_window(diff_text="diff --git a/README.md b/README.md\n+typo\n", changed_files=("README.md",))
        context = build_filtered_context([make_message("ok")], window)
        client = SectionClient()
        await NarrativeOrchestrator(client, config).generate(window, context)

        summary_system = next(system for name, system, _ in client.calls if name == "summary")
        assert "routine documentation update" in summary_system


class TestGenerationInput:
    def test_prior_entry_excerpt(self, chatty_context):
        """Only the tail of the previous entry is included."""
        window, context = chatty_context
        data = GenerationInput(window, context, prior_entry="A" * 50 + "B" * 10, prior_entry_chars=10)
        rendered = data.render()
        assert "## Previous journal entry" in rendered
        assert "B" * 10 in rendered
        assert "A" not in rendered.split("## Previous journal entry")[1]

    def test_empty_chat(self, make_window):
        """An empty chat is stated explicitly in the prompt."""
        window = make_window(diff_text=DIFF)
        data = GenerationInput(window, build_filtered_context([], window))
        assert "(no chat messages for this commit)" in data.render()
        assert data.substantial_count == 0
        assert data.has_functional_code


class TestCleanDialogue:
    def test_unescapes(self):
        """Escaped quotes and newlines are restored."""
        assert clean_dialogue('  > **Human:** \\"hi\\"\\n> **Assistant:** ok ') == '> **Human:** "hi"\n> **Assistant:** ok'
