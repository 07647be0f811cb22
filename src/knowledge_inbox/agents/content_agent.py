"""Content-fetch agent: downloads the article and extracts its main text."""

from __future__ import annotations

import logging

from knowledge_inbox.agents.base import AgentContext, AgentName, AgentResult
from knowledge_inbox.capabilities.base import ContentExtractor
from knowledge_inbox.entries.models import EntryView
from knowledge_inbox.errors import CapabilityError
from knowledge_inbox.storage.common import utc_now

logger = logging.getLogger(__name__)

FETCH_STARTED_PROGRESS = 30
FETCH_DONE_PROGRESS = 50


class ContentFetchAgent:
    name = AgentName.CONTENT_FETCH
    output_fields: tuple[str, ...] = (
        "content",
        "source",
        "fetchedAt",
        "description",
        "author",
        "publishedDate",
        "language",
    )

    def __init__(self, *, extractor: ContentExtractor) -> None:
        self._extractor = extractor

    def prerequisite(self, entry: EntryView) -> AgentName | None:
        return None

    def process(self, context: AgentContext) -> AgentResult:
        entry = context.entry
        if has_content(entry):
            logger.info("Entry %s already has content; skipping fetch", entry.entry_id)
            return AgentResult.ok(next_agent=AgentName.SUMMARY, progress=FETCH_DONE_PROGRESS)

        url = (entry.url or "").strip()
        if not url:
            return AgentResult.fail(
                CapabilityError("No URL provided for content fetch", transient=False),
            )

        context.report_progress(FETCH_STARTED_PROGRESS, None)
        try:
            extracted = self._extractor.fetch(url)
        except CapabilityError as error:
            logger.warning("Content fetch failed for entry %s: %s", entry.entry_id, error)
            return AgentResult.fail(error)

        data = extracted.to_metadata()
        data["source"] = url
        data["fetchedAt"] = utc_now().isoformat()
        return AgentResult.ok(data, next_agent=AgentName.SUMMARY, progress=FETCH_DONE_PROGRESS)


def has_content(entry: EntryView) -> bool:
    content = entry.metadata.get("content")
    return isinstance(content, str) and bool(content.strip())
