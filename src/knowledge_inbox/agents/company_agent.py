"""Company-research agent: wide structured profile of a company."""

from __future__ import annotations

import logging

from knowledge_inbox.agents.base import AgentContext, AgentName, AgentResult
from knowledge_inbox.capabilities.base import CompanyResearcher
from knowledge_inbox.capabilities.schemas import COMPANY_PROFILE_FIELDS
from knowledge_inbox.entries.models import EntryView
from knowledge_inbox.errors import CapabilityError

logger = logging.getLogger(__name__)

RESEARCH_STARTED_PROGRESS = 70
RESEARCH_DONE_PROGRESS = 90
COMPANY_NAME_PLACEHOLDER = "Processing company..."


class CompanyResearchAgent:
    name = AgentName.COMPANY_RESEARCH
    output_fields: tuple[str, ...] = COMPANY_PROFILE_FIELDS

    def __init__(self, *, researcher: CompanyResearcher) -> None:
        self._researcher = researcher

    def prerequisite(self, entry: EntryView) -> AgentName | None:
        return None

    def process(self, context: AgentContext) -> AgentResult:
        entry = context.entry
        if _has_profile(entry):
            logger.info("Entry %s already researched; skipping", entry.entry_id)
            return AgentResult.ok(progress=RESEARCH_DONE_PROGRESS)

        url = (entry.url or "").strip() or None
        name = company_name(entry)
        if url is None and name is None:
            return AgentResult.fail(
                CapabilityError(
                    "Neither company URL nor name provided for analysis",
                    transient=False,
                ),
            )

        context.report_progress(RESEARCH_STARTED_PROGRESS, None)
        try:
            profile = self._researcher.research(name=name, url=url)
        except CapabilityError as error:
            logger.warning("Company research failed for entry %s: %s", entry.entry_id, error)
            return AgentResult.fail(error)

        return AgentResult.ok(profile.to_metadata(), progress=RESEARCH_DONE_PROGRESS)


def company_name(entry: EntryView) -> str | None:
    value = entry.metadata.get("companyName")
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped or stripped == COMPANY_NAME_PLACEHOLDER:
        return None
    return stripped


def _has_profile(entry: EntryView) -> bool:
    return all(
        isinstance(entry.metadata.get(key), str) and entry.metadata[key].strip()
        for key in ("description", "industry", "marketPosition")
    )
