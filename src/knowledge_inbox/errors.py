"""Domain exceptions shared by the queue, entry store, agents and processor."""

from __future__ import annotations

from typing import Any


class PipelineError(RuntimeError):
    """Base class for pipeline errors."""


class QueueUnavailableError(PipelineError):
    """Queue transport/storage failed; caller decides whether to retry."""


class EntryNotFoundError(PipelineError):
    """Entry does not exist (or was deleted while in flight)."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Entry not found: {entry_id}")
        self.entry_id = entry_id


class StaleEntryError(PipelineError):
    """Entry version changed between read and write."""

    def __init__(self, entry_id: str, *, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Entry {entry_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version}).",
        )
        self.entry_id = entry_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class UnknownAgentError(PipelineError):
    """Agent name is not part of the registry."""

    def __init__(self, agent_name: str) -> None:
        super().__init__(f"Unknown agent: {agent_name}")
        self.agent_name = agent_name


class UnknownEntryTypeError(PipelineError):
    """Entry type has no agent chain."""

    def __init__(self, entry_type: str) -> None:
        super().__init__(f"Unknown entry type: {entry_type}")
        self.entry_type = entry_type


class CapabilityError(PipelineError):
    """External capability call failed, with a retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class SchemaValidationError(CapabilityError):
    """Capability returned structured data that does not match the expected schema."""

    def __init__(self, message: str, *, raw_payload: Any) -> None:
        super().__init__(message, transient=False)
        self.raw_payload = raw_payload
