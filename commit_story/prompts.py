"""
Prompt templates for disambiguation and narrative generation.

Guidelines are process-wide and read-only; every section prompt is composed
with them verbatim at call time.
"""

from __future__ import annotations

from dataclasses import dataclass

from .types import Session

ANTI_HALLUCINATION_GUIDELINES = """
ANTI-HALLUCINATION RULES:
- Only use information explicitly present in the provided context
- When quoting, use exact text - never paraphrase and present as quotes
- If insufficient context exists for a section, omit the section entirely
- Don't infer emotional states, motivations, or outcomes not explicitly stated
""".strip()

ACCESSIBILITY_GUIDELINES = """
EXTERNAL READER ACCESSIBILITY GUIDELINES:
- Write for someone unfamiliar with the project who has no prior context
- Use concrete language that explains real problems and solutions
- Avoid abstract buzzwords and corporate speak
- Skip internal task references like "completed task 61.2"
- Explain what was accomplished and why it matters
""".strip()

AVAILABLE_DATA_DESCRIPTION = """
AVAILABLE DATA:
- git: The code changes (unified diff, or a structural summary when the diff is very large), commit message, and the files that were modified
- chat: Developer conversations with AI assistant(s) during this development session
""".strip()


@dataclass(frozen=True)
class GenerationGuidelines:
    """Cross-cutting rules shared by every section generator."""

    anti_hallucination: str = ANTI_HALLUCINATION_GUIDELINES
    accessibility: str = ACCESSIBILITY_GUIDELINES

    def compose(self) -> str:
        return f"{self.anti_hallucination}\n\n{self.accessibility}"


DEFAULT_GUIDELINES = GenerationGuidelines()


# -----------------------------------------------------------------------------
# Summary
# -----------------------------------------------------------------------------

_OPENING_SENTENCE = (
    "Write one opening sentence that states what changed. Lead with the thing that changed as the "
    "subject, followed by a strong past-tense verb. Avoid filler adjectives like significant, notable, "
    'or meaningful. Avoid "The session..." or "The developer..." openings.'
)

_CODE_WITH_CONTEXT = (
    "Describe what changed in the code and why (not documentation files like .md, .txt, or task "
    "management files). This is usually the longest part of the summary. Include the problems solved, "
    "alternatives considered, and the reasoning behind decisions. Discussion depth and complexity matter "
    "more than code volume. Write in friendly, direct language - avoid jargon and tech-speak."
)

_DISCUSSIONS = (
    "Summarize discussions that didn't produce functional code. Length should match significance - "
    "major strategic decisions deserve detail, minor discussions can be brief or omitted."
)

_CODE_WITHOUT_CONTEXT = (
    "Describe what changed in the code (not documentation files like .md, .txt, or task management "
    "files). Keep it brief and factual - you don't have chat context to explain why. Length should match "
    "the scope of changes."
)

_DOCUMENTATION_ONLY = (
    "Is your opening sentence enough information about this commit? It probably is, since there was not "
    "much discussion between the AI and the developer. However, if there is an important detail you may "
    "take one more sentence and describe it."
)

_CHAT_ROLES = (
    'In the chat data, speaker "human" messages are from the developer and speaker "assistant" messages '
    "are from the AI. The developer's questions and insights matter most, although the overall story of "
    "the session matters too."
)


def summary_prompt(has_functional_code: bool, has_substantial_chat: bool) -> str:
    """Summary instructions, adjusted to what the context actually contains."""
    if has_substantial_chat and has_functional_code:
        step2 = f"""## Step 2: Find the Why in the Chat

{_CHAT_ROLES}

Look through the chat conversations for discussions about these specific changes. Why were they made? What problems did they solve? What alternatives were considered?

Also include important discussions and discoveries, even if they didn't result in code changes."""
    elif has_substantial_chat:
        step2 = f"""## Step 2: Find What Was Discussed

{_CHAT_ROLES}

Look through the chat conversations. What was discussed, planned, or decided? What problems were explored? What alternatives were considered?"""
    else:
        step2 = "## Step 2: Skip this step."

    instructions = _OPENING_SENTENCE
    if has_functional_code and has_substantial_chat:
        instructions += f"\n\n{_CODE_WITH_CONTEXT}\n\n{_DISCUSSIONS}"
    elif has_functional_code:
        instructions += f"\n\n{_CODE_WITHOUT_CONTEXT}"
    elif has_substantial_chat:
        instructions += f"\n\n{_DISCUSSIONS}"
    else:
        instructions += f"\n\n{_DOCUMENTATION_ONLY}"

    if not has_functional_code and not has_substantial_chat:
        step3 = """## Step 3: Write the Summary

This is a routine documentation update with minimal discussion. Write a brief factual summary.

**Important guidelines:**
- Use accurate verbs: "planned/designed/documented" for planning work, "implemented/built/coded" for functional code
- Be honest - some work is interesting, some is routine. Both deserve accurate description without inflation or minimization
- Avoid subjective qualifiers like "successfully", "significant", "major progress"
- One sentence is often enough for simple changes"""
    else:
        step3 = """## Step 3: Write the Summary

You're helping the developer summarize this session for a friend who mentors them. Acknowledge both successes and challenges honestly. Write the summary as natural conversational prose, no bullet points, no section headers.

**Important guidelines:**
- Never mention the mentor in your output.
- Use accurate verbs: "planned/designed/documented" for planning work, "implemented/built/coded" for functional code
- Be honest - some work is interesting, some is routine. Both deserve accurate description without inflation or minimization
- Avoid subjective qualifiers like "successfully", "significant", "major progress"
"""

    return f"""## Step 1: Understand the Code Changes

You are the developer's assistant, trained to write in a direct-yet-friendly tone.

Start by analyzing the git changes. What files changed? What was added, removed, or modified? Distinguish between documentation files and functional code files.

{step2}

{step3}

{instructions}

## Step 4: Output

Before you output, verify your summary is authentic - not inflated, not minimized, just honest. If it is not honest, revise it. Then output only your final narrative prose."""


# -----------------------------------------------------------------------------
# Development dialogue
# -----------------------------------------------------------------------------

DIALOGUE_PROMPT = """
Your goal is to capture authentic dialogue that shows how the development session actually unfolded, with a focus on the human developer's reasoning, decision-making, and authentic voice.

Step 1: Extract all human quotes
Collect every message from the human verbatim. Preserve original text exactly.

Step 2: Select ONLY the most interesting quotes
Select at most {max_quotes} quotes. This is a curated selection, not a comprehensive list.
It's better to have 3 great quotes than 8 mediocre ones. Pick quotes that show:
- Human reasoning, decision-making, or technical insight
- Challenges to the AI or corrections of it
- Frustration, excitement, or discovery
- Meaningful questions that led to progress
- A turning point or course correction
Discard filler, mechanical instructions, greetings, confirmations, and routine responses.

Step 3: Add AI context where useful
For each chosen human quote, include a nearby assistant message only if it helps the reader understand the exchange.
Truncate long assistant replies using [...]. Never fabricate or reword assistant messages.

Step 4: Final output
Present the selected dialogue in chronological order, separated by blank lines.
Output only the verbatim dialogue excerpts, no commentary.

Format example:
> **Human:** "Wait, why is this function returning undefined?"
> **Assistant:** "[...] That happens because the variable is declared inside the block."

> **Human:** "Actually, let's try a different approach - this is getting too complex."
""".strip()


def dialogue_prompt(max_quotes: int) -> str:
    return DIALOGUE_PROMPT.format(max_quotes=max_quotes)


# -----------------------------------------------------------------------------
# Technical decisions
# -----------------------------------------------------------------------------

TECHNICAL_DECISIONS_PROMPT = """
PURPOSE: Document technical decisions and reasoning from this development session

OUTPUT FORMAT: Use bullet point format:
- **DECISION: [Decision title]** (Implemented | Discussed only)
  - [Brief reason/phrase]
  - [Brief reason/phrase]
  Tradeoffs: [Trade-off when explicitly discussed]

Keep each reason as a brief phrase. Break long reasoning into multiple separate bullet points.

Find technical decisions discussed in the chat, then use the code changes to figure out which were actually implemented.

ANALYSIS STEPS:
1. Find technical discussions in the chat
2. Extract only explicitly stated reasoning from the chat - do not infer or assume reasoning that isn't clearly stated
3. Use the code changes to verify whether each decision was actually implemented or only discussed
4. Format output with clear evidence - each reason should be traceable to the chat conversations

If no technical decisions were discussed, return: "No significant technical decisions documented for this development session"
""".strip()


# -----------------------------------------------------------------------------
# Session disambiguation
# -----------------------------------------------------------------------------

SESSION_ANALYSIS_SYSTEM = (
    "You are analyzing AI coding assistant chat sessions to determine which ones led to a specific git "
    "commit. Be precise and follow the structured analysis format."
)

PREVIEW_CHARS = 100
RECENT_MESSAGES = 5


def build_session_analysis_prompt(
    sessions: list[Session],
    commit_message: str,
    changed_files: list[str] | tuple[str, ...],
    change_summary: str,
    commit_evidence: dict[str, bool] | None = None,
) -> str:
    """
    Four-step prompt asking which session(s) produced the commit.

    Args:
        sessions: Candidate sessions
        commit_message: The commit message
        changed_files: Files the commit touched
        change_summary: One-line change magnitude
        commit_evidence: session_id -> whether the session ran ``git commit``
    """
    commit_evidence = commit_evidence or {}
    files = ", ".join(changed_files) if changed_files else "Multiple files"

    parts = [
        f"""# Step 1: Review Available Data

Recent commit details:
**Message**: {commit_message}
**Files**: {files}
**Changes**: {change_summary}

You have conversation data from {len(sessions)} sessions (each from a different assistant tab or conversation):"""
    ]

    for index, session in enumerate(sessions, start=1):
        lines = [
            f"Session {index} ({session.session_id}):",
            f"- {len(session.messages)} total messages",
            "- Recent messages:",
        ]
        for msg in session.messages[-RECENT_MESSAGES:]:
            text = msg.text
            if not text and msg.tool_invocations:
                text = " ".join(f"[{inv.name}]" for inv in msg.tool_invocations)
            preview = (text[:PREVIEW_CHARS] + "...") if text else "[no text content]"
            lines.append(f"  - {msg.speaker.value}: {preview}")
        if commit_evidence.get(session.session_id):
            lines.append("  - Contains git commit command (strong signal)")
        parts.append("\n".join(lines))

    parts.append(
        """# Step 2: Examine Sessions

For each session above, what topics were discussed?

# Step 3: Analyze Commit

Look at the commit details to understand what was changed/implemented.

# Step 4: Make Selection

Which session(s) led to this commit? More than one session may be selected when the same work continued across sessions.

Note: If a session's last messages contain "git commit" in a Bash command, that session definitely relates to this commit.

Respond with a JSON object containing:
- key "sessionIds": an array of the session id strings shown in parentheses above
- key "reasoning": one sentence explaining the choice"""
    )
    return "\n\n".join(parts)


__all__ = [
    "ACCESSIBILITY_GUIDELINES",
    "ANTI_HALLUCINATION_GUIDELINES",
    "AVAILABLE_DATA_DESCRIPTION",
    "DEFAULT_GUIDELINES",
    "DIALOGUE_PROMPT",
    "GenerationGuidelines",
    "SESSION_ANALYSIS_SYSTEM",
    "TECHNICAL_DECISIONS_PROMPT",
    "build_session_analysis_prompt",
    "dialogue_prompt",
    "summary_prompt",
]
