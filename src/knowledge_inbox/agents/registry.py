"""Static agent registry: a closed map from agent name to factory."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from knowledge_inbox.agents.base import Agent, AgentName
from knowledge_inbox.agents.company_agent import CompanyResearchAgent
from knowledge_inbox.agents.content_agent import ContentFetchAgent
from knowledge_inbox.agents.entry_agent import EntryAgent
from knowledge_inbox.agents.summary_agent import SummaryAgent
from knowledge_inbox.capabilities.base import ContentExtractor, CompanyResearcher, Summarizer
from knowledge_inbox.errors import UnknownAgentError

logger = logging.getLogger(__name__)

AgentFactory = Callable[[], Agent]


class AgentRegistry:
    """Resolve agent names to lazily created, cached agent instances."""

    def __init__(self, factories: Mapping[AgentName, AgentFactory]) -> None:
        self._factories = dict(factories)
        self._instances: dict[AgentName, Agent] = {}

    def resolve(self, name: str | AgentName) -> Agent:
        agent_name = name if isinstance(name, AgentName) else AgentName.parse(name)
        if agent_name is None or agent_name not in self._factories:
            raise UnknownAgentError(str(getattr(name, "value", name)))
        agent = self._instances.get(agent_name)
        if agent is None:
            agent = self._factories[agent_name]()
            self._instances[agent_name] = agent
            logger.debug("Instantiated agent %s", agent_name.value)
        return agent

    def names(self) -> tuple[AgentName, ...]:
        return tuple(self._factories)

    def output_fields(self, names: tuple[AgentName, ...]) -> tuple[str, ...]:
        """Metadata fields written by the given agents, in first-seen order."""

        fields: dict[str, None] = {}
        for name in names:
            if name in self._factories:
                fields.update(dict.fromkeys(self.resolve(name).output_fields))
        return tuple(fields)


def build_default_registry(
    *,
    extractor: ContentExtractor,
    summarizer: Summarizer,
    researcher: CompanyResearcher,
) -> AgentRegistry:
    return AgentRegistry(
        {
            AgentName.ENTRY: EntryAgent,
            AgentName.CONTENT_FETCH: lambda: ContentFetchAgent(extractor=extractor),
            AgentName.SUMMARY: lambda: SummaryAgent(summarizer=summarizer),
            AgentName.COMPANY_RESEARCH: lambda: CompanyResearchAgent(researcher=researcher),
        },
    )
