"""commit-story: development journal entries from commits and AI chat.

For each commit, finds the AI-assistant conversations that happened since
the previous commit, works out which of them produced the commit, and
turns the code changes plus those conversations into narrative sections.

Pipeline:
- Git: commit window (previous commit time -> this commit time)
- Transcripts: Claude Code JSONL records inside the window
- Selection: which session(s) led to the commit
- Budget: noise removal, diff summary, token ceiling
- Narrative: summary, dialogue, technical decisions
"""

__version__ = "0.1.0"

# Stages
from .git_window import FatalRepositoryError, GitUnavailable, resolve_commit_window
from .transcript_collector import TranscriptCollector, collect_messages
from .normalizer import normalize_messages
from .disambiguator import SessionDisambiguator, group_sessions
from .budgeter import ContextBudgeter, estimate_tokens
from .orchestrator import NarrativeOrchestrator
from .pipeline import JournalPipeline, PipelineTimeout, generate_entry

# Types & Config
from .types import (
    CommitWindow,
    FilteredContext,
    JournalEntry,
    NormalizedMessage,
    RawMessage,
    Role,
    SectionResult,
    SelectionMethod,
    SelectionResult,
    Session,
)
from .config import JournalConfig, default_config
from .api_client import LLMError, MultiProviderClient

__all__ = [
    # Stages
    "FatalRepositoryError",
    "GitUnavailable",
    "resolve_commit_window",
    "TranscriptCollector",
    "collect_messages",
    "normalize_messages",
    "SessionDisambiguator",
    "group_sessions",
    "ContextBudgeter",
    "estimate_tokens",
    "NarrativeOrchestrator",
    "JournalPipeline",
    "PipelineTimeout",
    "generate_entry",
    # Types
    "CommitWindow",
    "FilteredContext",
    "JournalEntry",
    "NormalizedMessage",
    "RawMessage",
    "Role",
    "SectionResult",
    "SelectionMethod",
    "SelectionResult",
    "Session",
    # Config
    "JournalConfig",
    "default_config",
    "LLMError",
    "MultiProviderClient",
]
