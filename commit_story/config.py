"""
Configuration management for commit-story.

Scalar settings read once per invocation. Values come from
~/.claude/commit-story-config.json when present, then environment
overrides, then dataclass defaults.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

CONFIG_PATH = Path.home() / ".claude" / "commit-story-config.json"

DEFAULT_SECTIONS = ["summary", "dialogue", "technical_decisions"]


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


@dataclass
class ModelConfig:
    """Model selection for generation and disambiguation."""

    generation_model: str = "gpt-4o-mini"
    disambiguation_model: str = "gpt-4o-mini"

    # 0.0-0.3 = deterministic, 0.4-0.7 = balanced, 0.8-1.0 = creative
    summary_temperature: float = 0.7
    dialogue_temperature: float = 0.7
    technical_temperature: float = 0.1
    disambiguation_temperature: float = 0.1

    max_output_tokens: int = 2000
    disambiguation_max_tokens: int = 1000


@dataclass
class BudgetConfig:
    """Context budget for generation calls (tokens)."""

    token_ceiling: int = 100_000
    diff_token_threshold: int = 15_000
    preserve_recent: int = 10
    prior_entry_chars: int = 2000


@dataclass
class CollectorConfig:
    """Where transcripts live and how the window is bounded."""

    transcripts_dir: str = "~/.claude/projects"
    default_lookback_hours: float = 24.0
    split_on_clear: bool = True

    @property
    def transcripts_path(self) -> Path:
        return Path(self.transcripts_dir).expanduser()

    @property
    def default_lookback(self) -> timedelta:
        return timedelta(hours=self.default_lookback_hours)


@dataclass
class TimeoutConfig:
    """Upper bounds (seconds) for model calls and the whole run."""

    disambiguation: float = 30.0
    section: float = 60.0
    pipeline: float = 300.0
    git: float = 30.0


@dataclass
class JournalConfig:
    """Complete commit-story configuration."""

    models: ModelConfig = field(default_factory=ModelConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    sections: list[str] = field(default_factory=lambda: list(DEFAULT_SECTIONS))
    dialogue_uses_summary: bool = True
    skip_merge_commits: bool = True

    @classmethod
    def load(cls, path: Path | None = None) -> "JournalConfig":
        """Load configuration from file, falling back to defaults."""
        if path is None:
            path = CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError):
                # Use defaults on error
                data = {}

        config = cls(
            models=ModelConfig(**_filter_dataclass_fields(data.get("models", {}), ModelConfig)),
            budget=BudgetConfig(**_filter_dataclass_fields(data.get("budget", {}), BudgetConfig)),
            collector=CollectorConfig(**_filter_dataclass_fields(data.get("collector", {}), CollectorConfig)),
            timeouts=TimeoutConfig(**_filter_dataclass_fields(data.get("timeouts", {}), TimeoutConfig)),
            sections=list(data.get("sections", DEFAULT_SECTIONS)),
            dialogue_uses_summary=data.get("dialogue_uses_summary", True),
            skip_merge_commits=data.get("skip_merge_commits", True),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Apply environment overrides."""
        model = os.environ.get("COMMIT_STORY_MODEL")
        if model:
            self.models.generation_model = model
        transcripts = os.environ.get("COMMIT_STORY_TRANSCRIPTS_DIR")
        if transcripts:
            self.collector.transcripts_dir = transcripts

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(
                {
                    "models": asdict(self.models),
                    "budget": asdict(self.budget),
                    "collector": asdict(self.collector),
                    "timeouts": asdict(self.timeouts),
                    "sections": self.sections,
                    "dialogue_uses_summary": self.dialogue_uses_summary,
                    "skip_merge_commits": self.skip_merge_commits,
                },
                f,
                indent=2,
            )


# Default configuration instance
default_config = JournalConfig()
