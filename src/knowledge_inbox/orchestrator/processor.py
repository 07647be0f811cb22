"""Queue processor that drives entries through their agent chains."""

from __future__ import annotations

import logging
import math
import random
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from knowledge_inbox.agents.base import Agent, AgentContext, AgentName, AgentResult
from knowledge_inbox.agents.chains import chain_for
from knowledge_inbox.agents.registry import AgentRegistry
from knowledge_inbox.config import FAILURE_STATE_COMPLETED, ProcessorSettings
from knowledge_inbox.entries.models import COMPLETE_PROGRESS, EntryView, ProcessingState
from knowledge_inbox.entries.repository import EntryRepository
from knowledge_inbox.errors import (
    EntryNotFoundError,
    QueueUnavailableError,
    StaleEntryError,
    UnknownAgentError,
)
from knowledge_inbox.orchestrator.failure_classifier import (
    FailureClassification,
    classify_agent_failure,
)
from knowledge_inbox.orchestrator.indexing import EntryIndexer
from knowledge_inbox.orchestrator.models import (
    FailureClass,
    MessageOutcome,
    ProcessorRunSummary,
)
from knowledge_inbox.queue.base import DurableQueue
from knowledge_inbox.queue.models import QueueItem, QueueMessage

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Leases queue messages and runs the named agent on the referenced entry.

    One message is one step. After a successful step the processor merges the
    agent output into entry metadata, acknowledges the message and enqueues the
    next step, or marks the entry completed at the end of the chain.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue: DurableQueue,
        entries: EntryRepository,
        registry: AgentRegistry,
        settings: ProcessorSettings,
        visibility_timeout_seconds: int,
        user_id: str,
        indexer: EntryIndexer | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.queue = queue
        self.entries = entries
        self.registry = registry
        self.settings = settings
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.user_id = user_id
        self.indexer = indexer
        self._sleep = sleep
        self._random = random.Random()  # noqa: S311
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        self._stop_requested = True

    def run_once(self, *, user_id: str | None = None) -> ProcessorRunSummary:
        """Process at most one message from the queue."""

        summary = ProcessorRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        item = self.queue.pop_next(visibility_timeout_seconds=self.visibility_timeout_seconds)
        if item is None:
            summary.idle_polls = 1
            return summary

        outcome = self._process_item(item, user_id=user_id or self.user_id)
        summary.record(outcome)
        logger.debug(
            "Message %s entry=%s agent=%s -> %s",
            item.message_id,
            item.entry_id,
            item.agent_name,
            outcome.value,
        )
        return summary

    def run_loop(
        self,
        *,
        max_messages: int | None = None,
        max_idle_polls: int = 1,
        user_id: str | None = None,
    ) -> ProcessorRunSummary:
        """Drain the queue until idle, stopped or ``max_messages`` processed.

        Never raises: unexpected errors are logged, followed by a backoff, and
        the loop gives up after ``max_consecutive_errors`` in a row.
        """

        aggregate = ProcessorRunSummary()
        consecutive_idle = 0
        consecutive_errors = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_messages is not None and aggregate.processed >= max_messages:
                    return aggregate

                try:
                    summary = self.run_once(user_id=user_id)
                except Exception:  # noqa: BLE001
                    consecutive_errors += 1
                    aggregate.errors += 1
                    logger.exception(
                        "Queue processor iteration failed (%d/%d consecutive)",
                        consecutive_errors,
                        self.settings.max_consecutive_errors,
                    )
                    if consecutive_errors >= self.settings.max_consecutive_errors:
                        logger.error("Queue processor giving up after repeated errors")
                        return aggregate
                    self._sleep_with_stop(self.settings.error_backoff_seconds * consecutive_errors)
                    continue

                consecutive_errors = 0
                aggregate.merge(summary)
                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.settings.poll_interval_seconds)
                    continue

                consecutive_idle = 0
                if self.settings.poll_interval_seconds > 0 and max_messages is None:
                    self._sleep_with_stop(self.settings.poll_interval_seconds)

    def _process_item(self, item: QueueItem, *, user_id: str) -> MessageOutcome:
        entry = self.entries.get_entry(item.entry_id)
        if entry is None:
            logger.warning(
                "Entry %s not found; dropping message %s (%s)",
                item.entry_id,
                item.message_id,
                item.agent_name,
            )
            self._drop(item, reason=f"Entry not found: {item.entry_id}")
            return MessageOutcome.DROPPED

        run_id = item.message.run_id or entry.run_id
        if run_id != entry.run_id:
            logger.info(
                "Message %s for entry %s belongs to superseded run %s; dropping",
                item.message_id,
                entry.entry_id,
                run_id,
            )
            self._drop(item, reason=f"Superseded by run {entry.run_id}")
            return MessageOutcome.DROPPED
        if entry.processing_state.is_terminal:
            logger.info(
                "Entry %s already %s; dropping message %s (%s)",
                entry.entry_id,
                entry.processing_state.value,
                item.message_id,
                item.agent_name,
            )
            self._drop(item, reason=f"Entry already {entry.processing_state.value}")
            return MessageOutcome.DROPPED

        try:
            return self._dispatch(item, entry=entry, run_id=run_id, user_id=user_id)
        except EntryNotFoundError:
            logger.warning(
                "Entry %s deleted while processing message %s; dropping",
                entry.entry_id,
                item.message_id,
            )
            self._drop(item, reason=f"Entry not found: {entry.entry_id}")
            return MessageOutcome.DROPPED

    def _dispatch(
        self,
        item: QueueItem,
        *,
        entry: EntryView,
        run_id: str,
        user_id: str,
    ) -> MessageOutcome:
        try:
            agent = self.registry.resolve(item.agent_name)
        except UnknownAgentError as error:
            logger.error("Unknown agent %r for entry %s", item.agent_name, entry.entry_id)
            return self._fail_permanently(
                item,
                entry_id=entry.entry_id,
                run_id=run_id,
                error=str(error),
                classification=classify_agent_failure(
                    agent=item.agent_name,
                    error=str(error),
                    exception=error,
                ),
            )

        chain = chain_for(entry.entry_type)
        if agent.name not in chain:
            return self._precondition_failed(
                item,
                entry=entry,
                run_id=run_id,
                error=f"{agent.name.value} is not part of the {entry.entry_type.value} chain",
            )

        prerequisite = agent.prerequisite(entry)
        if prerequisite is not None:
            if prerequisite not in chain:
                return self._precondition_failed(
                    item,
                    entry=entry,
                    run_id=run_id,
                    error=(
                        f"{agent.name.value} requires {prerequisite.value}, "
                        f"which is not part of the {entry.entry_type.value} chain"
                    ),
                )
            return self._reroute(item, entry=entry, run_id=run_id, target=prerequisite)

        context = AgentContext(
            entry=entry,
            user_id=user_id,
            attempt=item.attempts,
            report_progress=self._progress_reporter(
                entry_id=entry.entry_id,
                run_id=run_id,
                agent_name=agent.name,
            ),
        )
        result = self._execute(agent, context)
        handle = self._handle_success if result.success else self._handle_failure
        return handle(item, agent=agent, entry_id=entry.entry_id, run_id=run_id, result=result)

    def _execute(self, agent: Agent, context: AgentContext) -> AgentResult:
        try:
            return agent.process(context)
        except EntryNotFoundError:
            raise
        except Exception as error:  # noqa: BLE001
            logger.exception(
                "Agent %s raised for entry %s",
                agent.name.value,
                context.entry.entry_id,
            )
            return AgentResult.fail(error)

    def _handle_success(
        self,
        item: QueueItem,
        *,
        agent: Agent,
        entry_id: str,
        run_id: str,
        result: AgentResult,
    ) -> MessageOutcome:
        next_agent = result.next_agent
        is_final = next_agent is None

        def write(current: EntryView) -> EntryView:
            if is_final:
                state, progress = ProcessingState.COMPLETED, COMPLETE_PROGRESS
            else:
                state = ProcessingState.PROCESSING
                progress = (
                    result.progress
                    if result.progress is not None
                    else current.processing_progress
                )
            return self.entries.update_processing_state(
                entry_id,
                state=state,
                progress=progress,
                metadata_patch=result.data,
                expected_version=current.version,
                event_type="completed" if is_final else f"{agent.name.value}:succeeded",
            )

        updated = self._write_for_run(entry_id=entry_id, run_id=run_id, write=write)
        if updated is None:
            self._drop(item, reason="Superseded by a newer run")
            return MessageOutcome.DROPPED

        if not self.queue.archive(
            item.message_id,
            result={
                "fields": sorted(key for key, value in result.data.items() if value is not None),
                "nextAgent": next_agent.value if next_agent is not None else None,
            },
            read_count=item.read_count,
        ):
            return self._lease_lost(item)
        if next_agent is None:
            logger.info("Entry %s completed after %s", entry_id, agent.name.value)
            self._index(updated)
            return MessageOutcome.COMPLETED

        try:
            self.queue.enqueue(
                QueueMessage(entry_id=entry_id, agent_name=next_agent.value, run_id=run_id),
            )
        except QueueUnavailableError as error:
            logger.error(
                "Failed to enqueue %s for entry %s after acknowledging %s: %s",
                next_agent.value,
                entry_id,
                agent.name.value,
                error,
            )
            return MessageOutcome.STALLED
        return MessageOutcome.ADVANCED

    def _handle_failure(
        self,
        item: QueueItem,
        *,
        agent: Agent,
        entry_id: str,
        run_id: str,
        result: AgentResult,
    ) -> MessageOutcome:
        error = result.error or "Unknown error"
        classification = classify_agent_failure(
            agent=agent.name.value,
            error=result.error,
            exception=result.exception,
        )
        if classification.retryable and item.attempts < self.settings.max_attempts:
            delay_seconds = self._compute_retry_delay(retry_number=item.attempts)
            if not self.queue.release(
                item.message_id,
                delay_seconds=math.ceil(delay_seconds),
                error=error,
                read_count=item.read_count,
            ):
                return self._lease_lost(item)
            logger.warning(
                "%s failed for entry %s (attempt %d/%d, %s); retrying in %.1fs: %s",
                agent.name.value,
                entry_id,
                item.attempts,
                self.settings.max_attempts,
                classification.failure_class.value,
                delay_seconds,
                error,
            )
            return MessageOutcome.RETRIED

        logger.warning(
            "%s failed for entry %s (%s): %s",
            agent.name.value,
            entry_id,
            classification.failure_class.value,
            error,
        )
        return self._fail_permanently(
            item,
            entry_id=entry_id,
            run_id=run_id,
            error=error,
            classification=classification,
        )

    def _reroute(
        self,
        item: QueueItem,
        *,
        entry: EntryView,
        run_id: str,
        target: AgentName,
    ) -> MessageOutcome:
        logger.info(
            "Entry %s is not ready for %s; rerouting to %s",
            entry.entry_id,
            item.agent_name,
            target.value,
        )
        if not self.queue.archive(
            item.message_id,
            result={"reroutedTo": target.value},
            read_count=item.read_count,
        ):
            return self._lease_lost(item)
        try:
            self.queue.enqueue(
                QueueMessage(entry_id=entry.entry_id, agent_name=target.value, run_id=run_id),
            )
        except QueueUnavailableError as error:
            logger.error(
                "Failed to enqueue %s for entry %s after rerouting: %s",
                target.value,
                entry.entry_id,
                error,
            )
            return MessageOutcome.STALLED
        return MessageOutcome.REROUTED

    def _precondition_failed(
        self,
        item: QueueItem,
        *,
        entry: EntryView,
        run_id: str,
        error: str,
    ) -> MessageOutcome:
        logger.error("Precondition failed for entry %s: %s", entry.entry_id, error)
        return self._fail_permanently(
            item,
            entry_id=entry.entry_id,
            run_id=run_id,
            error=error,
            classification=FailureClassification(
                failure_class=FailureClass.PRECONDITION_FAILED,
                reason_code=f"{item.agent_name}_{FailureClass.PRECONDITION_FAILED.value}",
                matched_rule="chain_precondition",
            ),
        )

    def _fail_permanently(
        self,
        item: QueueItem,
        *,
        entry_id: str,
        run_id: str,
        error: str,
        classification: FailureClassification,
    ) -> MessageOutcome:
        completed_on_failure = self.settings.failure_state == FAILURE_STATE_COMPLETED
        patch: dict[str, Any] = {
            "error": error,
            "processingFailed": True,
            "failureClass": classification.failure_class.value,
        }

        def write(current: EntryView) -> EntryView:
            return self.entries.update_processing_state(
                entry_id,
                state=(
                    ProcessingState.COMPLETED if completed_on_failure else ProcessingState.FAILED
                ),
                progress=(
                    COMPLETE_PROGRESS if completed_on_failure else current.processing_progress
                ),
                metadata_patch=patch,
                expected_version=current.version,
                event_type="failed",
                event_details=classification.to_event_details(agent=item.agent_name),
            )

        updated = self._write_for_run(entry_id=entry_id, run_id=run_id, write=write)
        if not self._drop(item, reason=error):
            return MessageOutcome.LEASE_LOST
        if updated is None:
            return MessageOutcome.DROPPED
        return MessageOutcome.FAILED

    def _drop(self, item: QueueItem, *, reason: str) -> bool:
        acknowledged = self.queue.drop(item.message_id, reason=reason, read_count=item.read_count)
        if not acknowledged:
            logger.warning(
                "Lease on message %s (%s) lost before drop; leaving it to the new holder",
                item.message_id,
                item.agent_name,
            )
        return acknowledged

    def _lease_lost(self, item: QueueItem) -> MessageOutcome:
        logger.warning(
            "Lease on message %s for entry %s (%s) lost; not enqueuing a follow-up",
            item.message_id,
            item.entry_id,
            item.agent_name,
        )
        return MessageOutcome.LEASE_LOST

    def _progress_reporter(
        self,
        *,
        entry_id: str,
        run_id: str,
        agent_name: AgentName,
    ) -> Callable[[int, dict[str, Any] | None], None]:
        def report(progress: int, metadata_patch: dict[str, Any] | None) -> None:
            self._write_for_run(
                entry_id=entry_id,
                run_id=run_id,
                write=lambda current: self.entries.update_processing_state(
                    entry_id,
                    state=ProcessingState.PROCESSING,
                    progress=progress,
                    metadata_patch=metadata_patch,
                    expected_version=current.version,
                    event_type=f"{agent_name.value}:progress",
                ),
            )

        return report

    def _write_for_run(
        self,
        *,
        entry_id: str,
        run_id: str,
        write: Callable[[EntryView], EntryView],
    ) -> EntryView | None:
        """Read-merge-write with version check; ``None`` when the run was superseded."""

        attempts = max(1, self.settings.stale_write_retries)
        for attempt in range(1, attempts + 1):
            current = self.entries.get_entry(entry_id)
            if current is None:
                raise EntryNotFoundError(entry_id)
            if current.run_id != run_id:
                logger.info("Entry %s moved to run %s; discarding write", entry_id, current.run_id)
                return None
            try:
                return write(current)
            except StaleEntryError:
                if attempt >= attempts:
                    raise
                logger.info(
                    "Entry %s changed concurrently; retrying write (%d/%d)",
                    entry_id,
                    attempt,
                    attempts,
                )
        return None

    def _index(self, entry: EntryView) -> None:
        if self.indexer is None:
            return
        try:
            self.indexer.index_entry(entry)
        except Exception:  # noqa: BLE001
            logger.exception("Indexing failed for entry %s", entry.entry_id)

    def _compute_retry_delay(self, *, retry_number: int) -> float:
        max_delay = min(
            self.settings.retry_max_seconds,
            self.settings.retry_base_seconds * (2 ** max(retry_number - 1, 0)),
        )
        return self._random.uniform(0, max_delay)

    def _sleep_with_stop(self, seconds: float) -> None:
        remaining = seconds
        while not self._stop_requested and remaining > 0:
            step = min(0.1, remaining)
            self._sleep(step)
            remaining -= step

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.warning("Received %s; finishing current message and stopping", name)
            self._stop_requested = True

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
