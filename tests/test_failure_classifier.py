from __future__ import annotations

import allure

from knowledge_inbox.errors import (
    CapabilityError,
    EntryNotFoundError,
    SchemaValidationError,
    UnknownAgentError,
    UnknownEntryTypeError,
)
from knowledge_inbox.orchestrator.failure_classifier import (
    FAILURE_CLASSIFIER_VERSION,
    classify_agent_failure,
)
from knowledge_inbox.orchestrator.models import FailureClass

pytestmark = [
    allure.epic("Entry Pipeline"),
    allure.feature("Failures & Retry Policy"),
]


def test_classifier_version_is_stable() -> None:
    assert FAILURE_CLASSIFIER_VERSION == 1


def test_classifier_uses_capability_transient_flag() -> None:
    classified = classify_agent_failure(
        agent="content-fetch-agent",
        error="Failed to fetch: HTTP 503",
        exception=CapabilityError("Failed to fetch: HTTP 503", transient=True),
    )

    assert classified.failure_class == FailureClass.CAPABILITY_TRANSIENT
    assert classified.retryable
    assert classified.reason_code == "content-fetch-agent_capability_transient"


def test_classifier_non_transient_capability_error_is_not_retried() -> None:
    classified = classify_agent_failure(
        agent="content-fetch-agent",
        error="Unsupported content type",
        exception=CapabilityError("Unsupported content type", transient=False),
    )

    assert classified.failure_class == FailureClass.CAPABILITY_NON_RETRYABLE
    assert not classified.retryable


def test_classifier_schema_errors_win_over_patterns() -> None:
    classified = classify_agent_failure(
        agent="summary-agent",
        error="keyPoints timeout",
        exception=SchemaValidationError("keyPoints timeout", raw_payload={}),
    )

    assert classified.failure_class == FailureClass.SCHEMA_INVALID
    assert classified.matched_rule == "schema_validation"


def test_classifier_maps_configuration_errors() -> None:
    assert (
        classify_agent_failure(
            agent="x",
            error=None,
            exception=UnknownAgentError("x"),
        ).failure_class
        == FailureClass.UNKNOWN_AGENT
    )
    assert (
        classify_agent_failure(
            agent="entry-agent",
            error=None,
            exception=UnknownEntryTypeError("video"),
        ).failure_class
        == FailureClass.UNKNOWN_ENTRY_TYPE
    )
    assert (
        classify_agent_failure(
            agent="entry-agent",
            error=None,
            exception=EntryNotFoundError("e-1"),
        ).failure_class
        == FailureClass.ENTRY_NOT_FOUND
    )


def test_classifier_maps_builtin_network_exceptions_to_transient() -> None:
    classified = classify_agent_failure(
        agent="company-research-agent",
        error="reset",
        exception=ConnectionResetError("reset"),
    )

    assert classified.failure_class == FailureClass.CAPABILITY_TRANSIENT
    assert classified.matched_rule == "transient_exception_type"


def test_classifier_matches_transient_patterns_in_plain_errors() -> None:
    classified = classify_agent_failure(
        agent="summary-agent",
        error="Upstream said: Rate limit reached, try again later",
        exception=None,
    )

    assert classified.failure_class == FailureClass.CAPABILITY_TRANSIENT
    assert classified.matched_rule == "transient_pattern"
    assert classified.matched_pattern == "rate limit"


def test_classifier_falls_back_by_exception_presence() -> None:
    unexpected = classify_agent_failure(
        agent="summary-agent",
        error="list index out of range",
        exception=IndexError("list index out of range"),
    )
    plain = classify_agent_failure(agent="summary-agent", error="bad input", exception=None)

    assert unexpected.failure_class == FailureClass.UNEXPECTED_ERROR
    assert plain.failure_class == FailureClass.CAPABILITY_NON_RETRYABLE
    assert plain.matched_rule == "fallback_non_retryable"


def test_event_details_include_classifier_version() -> None:
    details = classify_agent_failure(
        agent="summary-agent",
        error="429",
        exception=None,
    ).to_event_details(agent="summary-agent")

    assert details == {
        "classifier_version": 1,
        "agent": "summary-agent",
        "failure_class": "capability_transient",
        "reason_code": "summary-agent_capability_transient",
        "matched_rule": "transient_pattern",
        "matched_pattern": "429",
    }
