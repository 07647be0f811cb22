"""Processor outcomes, failure classes and run counters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    CAPABILITY_TRANSIENT = "capability_transient"
    CAPABILITY_NON_RETRYABLE = "capability_non_retryable"
    SCHEMA_INVALID = "schema_invalid"
    PRECONDITION_FAILED = "precondition_failed"
    UNKNOWN_AGENT = "unknown_agent"
    UNKNOWN_ENTRY_TYPE = "unknown_entry_type"
    ENTRY_NOT_FOUND = "entry_not_found"
    UNEXPECTED_ERROR = "unexpected_error"


class MessageOutcome(str, Enum):
    """What the processor did with one leased message."""

    ADVANCED = "advanced"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRIED = "retried"
    REROUTED = "rerouted"
    DROPPED = "dropped"
    STALLED = "stalled"
    LEASE_LOST = "lease_lost"


@dataclass(slots=True)
class ProcessorRunSummary:
    """Aggregate processor counters for CLI reporting."""

    processed: int = 0
    advanced: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    rerouted: int = 0
    dropped: int = 0
    stalled: int = 0
    lease_lost: int = 0
    errors: int = 0
    idle_polls: int = 0

    def record(self, outcome: MessageOutcome) -> None:
        self.processed += 1
        field_name = outcome.value
        setattr(self, field_name, getattr(self, field_name) + 1)

    def merge(self, other: ProcessorRunSummary) -> None:
        for name in self.__slots__:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def render(self) -> str:
        return (
            f"processed={self.processed} advanced={self.advanced} "
            f"completed={self.completed} failed={self.failed} retried={self.retried} "
            f"rerouted={self.rerouted} dropped={self.dropped} stalled={self.stalled} "
            f"lease_lost={self.lease_lost} "
            f"errors={self.errors} idle_polls={self.idle_polls}"
        )
