"""Agent contract shared by the registry, the agents and the processor."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from knowledge_inbox.entries.models import EntryView


class AgentName(str, Enum):
    """Closed set of pipeline steps."""

    ENTRY = "entry-agent"
    CONTENT_FETCH = "content-fetch-agent"
    SUMMARY = "summary-agent"
    COMPANY_RESEARCH = "company-research-agent"

    @classmethod
    def parse(cls, value: str) -> AgentName | None:
        try:
            return cls(value)
        except ValueError:
            return None


ProgressReporter = Callable[[int, dict[str, Any] | None], None]


def _ignore_progress(progress: int, metadata_patch: dict[str, Any] | None) -> None:
    del progress, metadata_patch


@dataclass(slots=True)
class AgentContext:
    """Per-call input; agents keep no per-entry state of their own."""

    entry: EntryView
    user_id: str
    attempt: int = 1
    report_progress: ProgressReporter = _ignore_progress


@dataclass(slots=True)
class AgentResult:
    """Outcome of one agent invocation.

    ``data`` is merged into entry metadata on success; ``next_agent`` continues
    the chain, its absence ends it.
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    next_agent: AgentName | None = None
    progress: int | None = None
    exception: BaseException | None = None

    @classmethod
    def ok(
        cls,
        data: dict[str, Any] | None = None,
        *,
        next_agent: AgentName | None = None,
        progress: int | None = None,
    ) -> AgentResult:
        return cls(success=True, data=data or {}, next_agent=next_agent, progress=progress)

    @classmethod
    def fail(cls, error: str | BaseException) -> AgentResult:
        if isinstance(error, BaseException):
            return cls(success=False, error=str(error) or type(error).__name__, exception=error)
        return cls(success=False, error=error)


class Agent(Protocol):
    """One enrichment step."""

    name: AgentName
    output_fields: tuple[str, ...]

    def prerequisite(self, entry: EntryView) -> AgentName | None:
        """Return the step that must run first, or ``None`` when the entry is ready."""

    def process(self, context: AgentContext) -> AgentResult:
        """Run the step; capability failures are returned, not raised."""
