"""Fixed per-type agent graph."""

from __future__ import annotations

from knowledge_inbox.agents.base import AgentName
from knowledge_inbox.entries.models import EntryType

AGENT_CHAINS: dict[EntryType, tuple[AgentName, ...]] = {
    EntryType.NOTE: (AgentName.ENTRY,),
    EntryType.ARTICLE: (AgentName.ENTRY, AgentName.CONTENT_FETCH, AgentName.SUMMARY),
    EntryType.COMPANY: (AgentName.ENTRY, AgentName.COMPANY_RESEARCH),
}


def chain_for(entry_type: EntryType) -> tuple[AgentName, ...]:
    return AGENT_CHAINS.get(entry_type, ())


def next_in_chain(entry_type: EntryType, current: AgentName) -> AgentName | None:
    """Return the step after ``current`` for this entry type, ``None`` at the end."""

    chain = chain_for(entry_type)
    if current not in chain:
        return None
    index = chain.index(current)
    return chain[index + 1] if index + 1 < len(chain) else None
