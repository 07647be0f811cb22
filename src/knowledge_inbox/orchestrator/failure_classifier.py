"""Deterministic agent failure classification for processor retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from knowledge_inbox.errors import (
    CapabilityError,
    EntryNotFoundError,
    SchemaValidationError,
    UnknownAgentError,
    UnknownEntryTypeError,
)
from knowledge_inbox.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "service unavailable",
    "try again later",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None = None

    @property
    def retryable(self) -> bool:
        return self.failure_class == FailureClass.CAPABILITY_TRANSIENT

    def to_event_details(self, *, agent: str) -> dict[str, object]:
        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "agent": agent,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_agent_failure(  # noqa: PLR0911
    *,
    agent: str,
    error: str | None,
    exception: BaseException | None,
) -> FailureClassification:
    """Classify a failed agent result into a deterministic retry class."""

    if isinstance(exception, SchemaValidationError):
        return _classified(FailureClass.SCHEMA_INVALID, agent=agent, rule="schema_validation")
    if isinstance(exception, UnknownEntryTypeError):
        return _classified(FailureClass.UNKNOWN_ENTRY_TYPE, agent=agent, rule="unknown_entry_type")
    if isinstance(exception, UnknownAgentError):
        return _classified(FailureClass.UNKNOWN_AGENT, agent=agent, rule="unknown_agent")
    if isinstance(exception, EntryNotFoundError):
        return _classified(FailureClass.ENTRY_NOT_FOUND, agent=agent, rule="entry_not_found")
    if isinstance(exception, CapabilityError):
        if exception.transient:
            return _classified(
                FailureClass.CAPABILITY_TRANSIENT,
                agent=agent,
                rule="capability_transient_flag",
            )
        return _classified(
            FailureClass.CAPABILITY_NON_RETRYABLE,
            agent=agent,
            rule="capability_non_retryable_flag",
        )
    if isinstance(exception, TimeoutError | ConnectionError):
        return _classified(
            FailureClass.CAPABILITY_TRANSIENT,
            agent=agent,
            rule="transient_exception_type",
        )

    haystack = f"{error or ''}\n{exception or ''}".lower()
    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return _classified(
            FailureClass.CAPABILITY_TRANSIENT,
            agent=agent,
            rule="transient_pattern",
            pattern=pattern,
        )
    if exception is not None:
        return _classified(FailureClass.UNEXPECTED_ERROR, agent=agent, rule="unexpected_exception")
    return _classified(
        FailureClass.CAPABILITY_NON_RETRYABLE,
        agent=agent,
        rule="fallback_non_retryable",
    )


def _classified(
    failure_class: FailureClass,
    *,
    agent: str,
    rule: str,
    pattern: str | None = None,
) -> FailureClassification:
    return FailureClassification(
        failure_class=failure_class,
        reason_code=f"{agent}_{failure_class.value}",
        matched_rule=rule,
        matched_pattern=pattern,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
