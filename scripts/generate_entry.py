#!/usr/bin/env python3
"""
Generate a journal entry for a commit.

Usage:
    # Most recent commit in the current repository
    python scripts/generate_entry.py

    # A specific commit in another repository, as JSON
    python scripts/generate_entry.py abc1234 --repo ~/src/project --json

Exit codes:
    0  entry printed, or commit skipped (journal-only / merge)
    1  repository or commit could not be read
    2  generation timed out

LLM Provider Selection (automatic):
    - ANTHROPIC_API_KEY and/or OPENAI_API_KEY (environment or .env)
    - Without either key the entry is still produced, minus model sections
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from commit_story.config import JournalConfig
from commit_story.git_window import FatalRepositoryError
from commit_story.pipeline import JournalPipeline, PipelineTimeout
from commit_story.types import JournalEntry

SECTION_TITLES = {
    "summary": "Summary",
    "dialogue": "Development Dialogue",
    "technical_decisions": "Technical Decisions",
}


def render_markdown(entry: JournalEntry) -> str:
    """Render an entry the way it reads in the journal."""
    window = entry.window
    lines = [f"### {window.timestamp_end.strftime('%Y-%m-%d %H:%M UTC')} - Commit: {window.short_hash}", ""]
    for section in entry.sections:
        title = SECTION_TITLES.get(section.section_name, section.section_name.replace("_", " ").title())
        lines.extend([f"#### {title}", "", section.text, ""])
    lines.extend(["#### Commit Details", "", entry.commit_details, ""])
    return "\n".join(lines)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a development journal entry for a git commit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python scripts/generate_entry.py
    python scripts/generate_entry.py HEAD~1 --json
    python scripts/generate_entry.py --repo ~/src/project --verbose
        """,
    )
    parser.add_argument("commit", nargs="?", default="HEAD", help="Commit reference (default: HEAD)")
    parser.add_argument("--repo", "-r", type=Path, default=None, help="Repository path (default: cwd)")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Config file (JSON)")
    parser.add_argument("--timeout", "-t", type=float, default=None, help="Overall timeout in seconds")
    parser.add_argument("--prior-entry", type=Path, default=None, help="Previous entry for continuity")
    parser.add_argument("--json", action="store_true", help="Print the entry payload as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = JournalConfig.load(args.config)
    if args.timeout is not None:
        config.timeouts.pipeline = args.timeout

    prior_entry = None
    if args.prior_entry is not None:
        try:
            prior_entry = args.prior_entry.read_text(encoding="utf-8")
        except OSError as e:
            logging.getLogger(__name__).warning(f"Cannot read prior entry: {e}")

    pipeline = JournalPipeline(config=config, repo_path=args.repo)
    try:
        entry = asyncio.run(pipeline.run(args.commit, prior_entry=prior_entry))
    except FatalRepositoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except PipelineTimeout as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\n[interrupted]", file=sys.stderr)
        return 1

    if entry is None:
        return 0

    if args.json:
        print(json.dumps(entry.to_payload(), indent=2))
    else:
        print(render_markdown(entry))
    return 0


if __name__ == "__main__":
    sys.exit(main())
