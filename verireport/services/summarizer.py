"""
Conversation summarizer — condenses a transcript into an executive summary.

Output is model-generated and not deterministic; callers must not expect
identical summaries for identical transcripts.
"""

import logging
from typing import Iterable, Optional

from .llm import CompletionService

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert report writer. Create a comprehensive executive summary "
    "of the following conversation. Include key points, insights, and recommendations."
)

EMPTY_TRANSCRIPT_SUMMARY = "This conversation has no messages to summarize."
NO_SUMMARY_PLACEHOLDER = "No summary was produced for this conversation."


def build_transcript(messages: Iterable[tuple[str, str]]) -> str:
    """ROLE: content blocks separated by blank lines."""
    return "\n\n".join(f"{role.upper()}: {content}" for role, content in messages)


def build_summary_messages(transcript: str) -> list[dict]:
    return [
        {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Please create an executive summary of this conversation:\n\n{transcript}",
        },
    ]


async def summarize_conversation(
    messages: list[tuple[str, str]],
    completion: CompletionService,
    model: Optional[str] = None,
) -> str:
    """
    Summarize ordered (role, content) pairs.
    ExternalServiceError from the completion service propagates and aborts
    report generation.
    """
    if not messages:
        return EMPTY_TRANSCRIPT_SUMMARY

    transcript = build_transcript(messages)
    summary = await completion.complete(build_summary_messages(transcript), model=model)
    summary = (summary or "").strip()
    if not summary:
        logger.warning("Summarizer returned empty text for %d messages", len(messages))
        return NO_SUMMARY_PLACEHOLDER

    logger.info("Summary generated: %d messages → %d chars", len(messages), len(summary))
    return summary
