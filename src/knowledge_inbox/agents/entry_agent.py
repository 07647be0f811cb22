"""Router agent: selects the chain head for the entry type."""

from __future__ import annotations

from knowledge_inbox.agents.base import AgentContext, AgentName, AgentResult
from knowledge_inbox.agents.chains import next_in_chain
from knowledge_inbox.entries.models import EntryType, EntryView
from knowledge_inbox.errors import UnknownEntryTypeError

ROUTED_PROGRESS = 10
DEFAULT_NOTE_TITLE = "New Note"


class EntryAgent:
    name = AgentName.ENTRY
    output_fields: tuple[str, ...] = ()

    def prerequisite(self, entry: EntryView) -> AgentName | None:
        return None

    def process(self, context: AgentContext) -> AgentResult:
        entry = context.entry
        if entry.entry_type == EntryType.NOTE:
            return AgentResult.ok(
                {
                    "title": entry.metadata.get("title") or DEFAULT_NOTE_TITLE,
                    "text": entry.metadata.get("text") or "",
                },
            )

        next_agent = next_in_chain(entry.entry_type, self.name)
        if next_agent is None:
            return AgentResult.fail(UnknownEntryTypeError(str(entry.entry_type.value)))
        return AgentResult.ok(next_agent=next_agent, progress=ROUTED_PROGRESS)
