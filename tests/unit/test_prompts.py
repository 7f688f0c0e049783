"""Tests for prompt composition."""

from commit_story.disambiguator import group_sessions
from commit_story.prompts import (
    ANTI_HALLUCINATION_GUIDELINES,
    DEFAULT_GUIDELINES,
    build_session_analysis_prompt,
    dialogue_prompt,
    summary_prompt,
)
from commit_story.types import Role, ToolInvocation


class TestGuidelines:
    def test_compose_is_verbatim(self):
        """Guidelines are composed verbatim, anti-fabrication first."""
        composed = DEFAULT_GUIDELINES.compose()
        assert composed.startswith(ANTI_HALLUCINATION_GUIDELINES)
        assert "EXTERNAL READER ACCESSIBILITY" in composed


class TestSummaryPrompt:
    def test_code_and_chat(self):
        """Code with discussion asks for the why from the chat."""
        prompt = summary_prompt(has_functional_code=True, has_substantial_chat=True)
        assert "Find the Why in the Chat" in prompt
        assert "alternatives considered" in prompt

    def test_code_without_chat(self):
        """Code without discussion skips the chat step."""
        prompt = summary_prompt(has_functional_code=True, has_substantial_chat=False)
        assert "Skip this step" in prompt
        assert "don't have chat context" in prompt

    def test_chat_without_code(self):
        """Discussion without code asks what was discussed."""
        prompt = summary_prompt(has_functional_code=False, has_substantial_chat=True)
        assert "Find What Was Discussed" in prompt

    def test_routine_update(self):
        """No code and no discussion gives the routine-update prompt."""
        prompt = summary_prompt(has_functional_code=False, has_substantial_chat=False)
        assert "routine documentation update" in prompt


class TestDialoguePrompt:
    def test_max_quotes(self):
        """The dialogue prompt states the quote limit."""
        assert "at most 4 quotes" in dialogue_prompt(4)


class TestSessionAnalysisPrompt:
    def test_lists_sessions_and_evidence(self, make_message):
        """Each session is listed with truncated previews and commit evidence."""
        sessions = group_sessions([
            make_message("Let's add retry logic", session_id="alpha", minutes=1),
            make_message("x" * 300, session_id="beta", minutes=2),
            make_message(
                "",
                speaker=Role.ASSISTANT,
                session_id="alpha",
                minutes=3,
                invocations=(ToolInvocation("Bash", command="git commit -m retry"),),
            ),
        ])
        prompt = build_session_analysis_prompt(
            sessions,
            commit_message="Add retry logic",
            changed_files=["src/fetcher.py"],
            change_summary="1 files, +2/-1 lines",
            commit_evidence={"alpha": True},
        )

        assert "conversation data from 2 sessions" in prompt
        assert "Session 1 (alpha):" in prompt
        assert "Session 2 (beta):" in prompt
        assert "  - assistant: [Bash]..." in prompt
        assert "x" * 100 + "..." in prompt
        assert "x" * 101 not in prompt
        assert prompt.count("Contains git commit command") == 1
        assert '"sessionIds"' in prompt
