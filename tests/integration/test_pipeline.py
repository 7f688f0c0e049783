"""
End-to-end pipeline tests.

A real temporary git repository and transcript directory; only the model
is scripted.
"""

import json
from unittest.mock import AsyncMock

import pytest

from commit_story import pipeline as pipeline_module
from commit_story.budgeter import estimate_tokens
from commit_story.config import JournalConfig
from commit_story.git_window import GitUnavailable
from commit_story.orchestrator import NarrativeOrchestrator
from commit_story.pipeline import JournalPipeline, PipelineTimeout
from commit_story.prompts import SESSION_ANALYSIS_SYSTEM
from commit_story.types import SelectionMethod

pytestmark = pytest.mark.integration


def commit_tool_use(command):
    return [{"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {"command": command}}]


def model_reply(selection):
    """Disambiguation gets ``selection`` as JSON; every section gets a tagged line."""

    def _reply(system, prompt):
        if system == SESSION_ANALYSIS_SYSTEM:
            return json.dumps({"sessionIds": selection, "reasoning": "matches the fetcher change"})
        if "capture authentic dialogue" in system:
            return '> **Human:** \\"Let\'s retry\\"'
        return "Generated section."

    return _reply


@pytest.fixture
def config():
    cfg = JournalConfig()
    cfg.timeouts.section = 2.0
    cfg.timeouts.disambiguation = 2.0
    return cfg


@pytest.fixture
def two_session_transcripts(git_repo, write_transcript, record):
    cwd = str(git_repo)
    write_transcript("alpha", [
        record("The fetcher gives up on the first timeout, can we add retries?", session_id="alpha", minutes=10, cwd=cwd),
        record([{"type": "text", "text": "I'll wrap get() in retry() with backoff."}],
               session_id="alpha", minutes=11, entry_type="assistant", cwd=cwd),
        record("Looks good, three attempts is plenty for now", session_id="alpha", minutes=30, cwd=cwd),
    ])
    write_transcript("beta", [
        record("What's a good font pairing for the landing page?", session_id="beta", minutes=15, cwd=cwd),
        record([{"type": "text", "text": "Try Inter with Source Serif."}],
               session_id="beta", minutes=16, entry_type="assistant", cwd=cwd),
    ])


class TestJournalPipeline:
    @pytest.mark.asyncio
    async def test_model_assisted_entry(self, git_repo, transcripts_dir, two_session_transcripts, config, scripted_client):
        """Only the model's chosen session reaches the narrative sections."""
        client = scripted_client(model_reply(["alpha"]))
        pipeline = JournalPipeline(config, client=client, repo_path=git_repo, transcripts_dir=transcripts_dir)

        entry = await pipeline.run("HEAD")

        assert entry is not None
        assert [s.section_name for s in entry.sections] == ["summary", "dialogue", "technical_decisions"]
        assert entry.section("dialogue").text == "> **Human:** \"Let's retry\""
        assert "**Files Changed**:" in entry.commit_details

        diag = entry.diagnostics
        assert diag.selection_method == SelectionMethod.MODEL_ASSISTED
        assert diag.sessions_found == 2
        assert diag.messages_collected == 5
        assert diag.failed_sections == []
        assert diag.token_estimate <= pipeline.effective_ceiling(entry.window)

        section_prompts = [c["prompt"] for c in client.calls if c["system"] != SESSION_ANALYSIS_SYSTEM]
        assert section_prompts
        for prompt in section_prompts:
            assert "can we add retries?" in prompt
            assert "font pairing" not in prompt

    @pytest.mark.asyncio
    async def test_explicit_commit_fast_path(self, git_repo, transcripts_dir, write_transcript, record,
                                             two_session_transcripts, config, scripted_client):
        """A session that ran the commit is chosen without asking the model."""
        write_transcript("alpha-commit", [
            record(commit_tool_use("git add -A && git commit -m 'Add retry logic to fetcher'"),
                   session_id="alpha", minutes=40, entry_type="assistant", cwd=str(git_repo)),
        ])
        client = scripted_client(model_reply(["beta"]))
        pipeline = JournalPipeline(config, client=client, repo_path=git_repo, transcripts_dir=transcripts_dir)

        entry = await pipeline.run("HEAD")

        assert entry.diagnostics.selection_method == SelectionMethod.FAST_PATH
        assert all(c["system"] != SESSION_ANALYSIS_SYSTEM for c in client.calls)

    @pytest.mark.asyncio
    async def test_tool_only_session_uses_diff(self, git_repo, transcripts_dir, write_transcript, record,
                                               config, scripted_client):
        """A tool-only session still yields an entry built from the diff."""
        cwd = str(git_repo)
        write_transcript("tools", [
            record([{"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "src/fetcher.py"}}],
                   minutes=5, entry_type="assistant", cwd=cwd),
            record([{"type": "tool_result", "tool_use_id": "t1", "content": "def fetch(): ..."}], minutes=6, cwd=cwd),
            record([], minutes=7, entry_type="assistant", cwd=cwd),
        ])
        client = scripted_client(model_reply([]))
        pipeline = JournalPipeline(config, client=client, repo_path=git_repo, transcripts_dir=transcripts_dir)

        window = await pipeline.resolve_window()
        context = await pipeline.build_filtered_context(window)
        assert context.messages == ()
        assert "src/fetcher.py" in context.diff_summary

        entry = await pipeline.run("HEAD")
        assert entry.section("summary").text == "Generated section."
        assert entry.diagnostics.noise_dropped == 3

    @pytest.mark.asyncio
    async def test_filtered_context_is_idempotent(self, git_repo, transcripts_dir, two_session_transcripts, config):
        """Repeated runs over the same inputs give the same context."""
        pipeline = JournalPipeline(config, repo_path=git_repo, transcripts_dir=transcripts_dir)
        window = await pipeline.resolve_window("HEAD")

        first = await pipeline.build_filtered_context(window)
        second = await pipeline.build_filtered_context(window)

        assert first == second
        assert len(first.messages) == 5

    @pytest.mark.asyncio
    async def test_no_model_available(self, git_repo, transcripts_dir, two_session_transcripts, config, monkeypatch):
        """Without credentials the entry still has commit details."""
        for var in ("ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN", "OPENAI_API_KEY"):
            monkeypatch.delenv(var, raising=False)
        pipeline = JournalPipeline(config, repo_path=git_repo, transcripts_dir=transcripts_dir)

        entry = await pipeline.run("HEAD")

        assert entry.sections == []
        assert entry.diagnostics.selection_method == SelectionMethod.NONE
        assert entry.diagnostics.failed_sections == ["summary", "dialogue", "technical_decisions"]
        assert "**Message**" in entry.commit_details

    @pytest.mark.asyncio
    async def test_journal_only_commit_skipped(self, git_repo, run_git, transcripts_dir, config, scripted_client):
        """Journal-only commits produce no entry and no model call."""
        entries = git_repo / "journal" / "entries" / "2025-08"
        entries.mkdir(parents=True)
        (entries / "2025-08-20.md").write_text("### entry\n")
        run_git(git_repo, "add", ".")
        run_git(git_repo, "commit", "-q", "-m", "Journal entry")

        client = scripted_client()
        pipeline = JournalPipeline(config, client=client, repo_path=git_repo, transcripts_dir=transcripts_dir)
        assert await pipeline.run("HEAD") is None
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_pipeline_timeout(self, git_repo, transcripts_dir, two_session_transcripts, config, scripted_client):
        """A run over the time limit raises PipelineTimeout."""
        config.timeouts.pipeline = 0.2
        config.timeouts.section = 5.0
        config.timeouts.disambiguation = 5.0
        pipeline = JournalPipeline(config, client=scripted_client(delay=2.0), repo_path=git_repo,
                                   transcripts_dir=transcripts_dir)

        with pytest.raises(PipelineTimeout):
            await pipeline.run("HEAD")

    @pytest.mark.asyncio
    async def test_not_a_repository(self, tmp_path, transcripts_dir, config):
        """A path outside git raises GitUnavailable."""
        pipeline = JournalPipeline(config, repo_path=tmp_path, transcripts_dir=transcripts_dir)
        with pytest.raises(GitUnavailable):
            await pipeline.run("HEAD")

    def test_effective_ceiling_respects_model_limit(self, config, make_window):
        """The ceiling shrinks to fit small model context windows, prompt overhead included."""
        window = make_window()
        config.models.generation_model = "gpt-4"
        overhead = NarrativeOrchestrator(None, config).prompt_overhead(window)
        ceiling = JournalPipeline(config).effective_ceiling(window)
        assert ceiling == 8_192 - config.models.max_output_tokens - overhead
        assert 0 < ceiling < 8_192 - config.models.max_output_tokens

        config.models.generation_model = "sonnet"
        assert JournalPipeline(config).effective_ceiling(window) == config.budget.token_ceiling

    def test_overhead_grows_with_prior_entry_and_messages(self, config, make_window):
        """A prior entry and more chat lines leave less room for context."""
        window = make_window()
        config.models.generation_model = "gpt-4"
        pipeline = JournalPipeline(config)
        base = pipeline.effective_ceiling(window)
        assert pipeline.effective_ceiling(window, prior_entry="p" * 2000) < base
        assert pipeline.effective_ceiling(window, message_count=400) < base

    @pytest.mark.asyncio
    async def test_requests_fit_small_model(self, git_repo, transcripts_dir, write_transcript, record,
                                            config, scripted_client):
        """With a ceiling above the model limit every section request still fits the model."""
        cwd = str(git_repo)
        write_transcript("long", [
            record(f"Thinking about retry policy, attempt {i}: " + "detail " * 120, minutes=1 + i % 100, cwd=cwd)
            for i in range(200)
        ])
        config.models.generation_model = "gpt-4"
        config.budget.token_ceiling = 1_000_000
        client = scripted_client(model_reply([]))
        pipeline = JournalPipeline(config, client=client, repo_path=git_repo, transcripts_dir=transcripts_dir)

        entry = await pipeline.run("HEAD", prior_entry="Yesterday: " + "context " * 400)

        assert entry.diagnostics.messages_dropped > 0
        room = 8_192 - config.models.max_output_tokens
        section_calls = [c for c in client.calls if c["system"] != SESSION_ANALYSIS_SYSTEM]
        assert len(section_calls) == 3
        for call in section_calls:
            assert estimate_tokens(call["system"]) + estimate_tokens(call["prompt"]) <= room

    @pytest.mark.asyncio
    async def test_owned_client_closed_after_each_run(self, git_repo, transcripts_dir, two_session_transcripts,
                                                      config, scripted_client, monkeypatch):
        """Without an injected client each run builds its own and closes it."""
        opened = []

        class ClosingClient(scripted_client):
            closed = False

            async def aclose(self):
                self.closed = True

        def fake_create_client(default_model):
            client = ClosingClient(model_reply(["alpha"]))
            client.default_model = default_model
            opened.append(client)
            return client

        monkeypatch.setattr(pipeline_module, "create_client", fake_create_client)
        config.models.generation_model = "haiku"
        pipeline = JournalPipeline(config, repo_path=git_repo, transcripts_dir=transcripts_dir)

        await pipeline.run("HEAD")
        await pipeline.run("HEAD")

        assert len(opened) == 2
        assert opened[0] is not opened[1]
        assert all(c.closed for c in opened)
        assert all(c.default_model == "haiku" for c in opened)
        assert pipeline.client is None

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, git_repo, transcripts_dir, two_session_transcripts,
                                             config, scripted_client):
        """A caller-supplied client is not closed by the pipeline."""
        client = scripted_client(model_reply(["alpha"]))
        client.aclose = AsyncMock()
        await JournalPipeline(config, client=client, repo_path=git_repo, transcripts_dir=transcripts_dir).run("HEAD")
        client.aclose.assert_not_called()
