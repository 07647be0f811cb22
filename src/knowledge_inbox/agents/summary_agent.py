"""Summary agent: structured summary of fetched article content."""

from __future__ import annotations

import logging
from typing import Any

from knowledge_inbox.agents.base import AgentContext, AgentName, AgentResult
from knowledge_inbox.agents.content_agent import has_content
from knowledge_inbox.capabilities.base import Summarizer
from knowledge_inbox.capabilities.schemas import MAX_KEY_POINTS, MIN_KEY_POINTS
from knowledge_inbox.entries.models import EntryView
from knowledge_inbox.errors import CapabilityError

logger = logging.getLogger(__name__)

SUMMARY_STARTED_PROGRESS = 70
SUMMARY_DONE_PROGRESS = 90


class SummaryAgent:
    name = AgentName.SUMMARY
    output_fields: tuple[str, ...] = ("summary", "keyPoints")

    def __init__(self, *, summarizer: Summarizer) -> None:
        self._summarizer = summarizer

    def prerequisite(self, entry: EntryView) -> AgentName | None:
        if has_content(entry):
            return None
        return AgentName.CONTENT_FETCH

    def process(self, context: AgentContext) -> AgentResult:
        entry = context.entry
        if has_summary(entry.metadata):
            logger.info("Entry %s already summarized; skipping", entry.entry_id)
            return AgentResult.ok(progress=SUMMARY_DONE_PROGRESS)

        context.report_progress(SUMMARY_STARTED_PROGRESS, None)
        title = entry.metadata.get("title")
        try:
            summary = self._summarizer.summarize(
                entry.metadata["content"],
                title=title if isinstance(title, str) else None,
            )
        except CapabilityError as error:
            logger.warning("Summarization failed for entry %s: %s", entry.entry_id, error)
            return AgentResult.fail(error)

        return AgentResult.ok(summary.to_metadata(), progress=SUMMARY_DONE_PROGRESS)


def has_summary(metadata: dict[str, Any]) -> bool:
    summary = metadata.get("summary")
    key_points = metadata.get("keyPoints")
    return (
        isinstance(summary, str)
        and bool(summary.strip())
        and isinstance(key_points, list)
        and MIN_KEY_POINTS <= len(key_points) <= MAX_KEY_POINTS
    )
