"""Use-case services for entry submission and queue draining."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from knowledge_inbox.agents.base import AgentName
from knowledge_inbox.agents.chains import chain_for
from knowledge_inbox.agents.registry import AgentRegistry, build_default_registry
from knowledge_inbox.capabilities.content import HttpContentExtractor
from knowledge_inbox.capabilities.embedder import build_embedder
from knowledge_inbox.capabilities.llm_cli import CliLlmClient
from knowledge_inbox.capabilities.research import LlmCompanyResearcher
from knowledge_inbox.capabilities.summarizer import LlmSummarizer
from knowledge_inbox.config import Settings
from knowledge_inbox.entries.models import EntryCreate, EntryEventView, EntryView, ProcessingState
from knowledge_inbox.entries.repository import EntryRepository
from knowledge_inbox.http.fetcher import PageFetcher
from knowledge_inbox.orchestrator.indexing import EntryIndexer
from knowledge_inbox.orchestrator.models import ProcessorRunSummary
from knowledge_inbox.orchestrator.processor import QueueProcessor
from knowledge_inbox.queue.models import DeliveryState, QueueItem, QueueMessage
from knowledge_inbox.queue.repository import SQLiteQueue

logger = logging.getLogger(__name__)

FAILURE_FIELDS: tuple[str, ...] = ("error", "processingFailed", "failureClass")
_ACTIVE_DELIVERY_STATES = frozenset({DeliveryState.VISIBLE, DeliveryState.LEASED})


@dataclass(slots=True)
class SubmitResult:
    """Entry snapshot after submission plus what the drain did, if it ran."""

    entry: EntryView
    enqueued: bool
    summary: ProcessorRunSummary | None = None


class PipelineService:
    """Trigger surface over the entry store, the queue and the processor."""

    def __init__(
        self,
        *,
        entries: EntryRepository,
        queue: SQLiteQueue,
        registry: AgentRegistry,
        processor: QueueProcessor,
    ) -> None:
        self.entries = entries
        self.queue = queue
        self.registry = registry
        self.processor = processor

    def init_schema(self) -> None:
        self.entries.init_schema()

    def close(self) -> None:
        self.entries.close()
        self.queue.close()

    def create_entry(self, payload: EntryCreate, *, submit: bool = True, run: bool = True) -> SubmitResult:
        """Store a new entry and, unless ``submit`` is false, queue its first step."""

        entry = self.entries.create_entry(payload)
        logger.info("Created %s entry %s", entry.entry_type.value, entry.entry_id)
        if not submit:
            return SubmitResult(entry=entry, enqueued=False)
        return self.submit_entry(entry.entry_id, run=run)

    def submit_entry(self, entry_id: str, *, run: bool = True) -> SubmitResult:
        """Queue the router step for the entry's current run and optionally drain.

        A second submit while the current run still has an active message does
        not enqueue a duplicate.
        """

        entry = self.entries.require_entry(entry_id)
        enqueued = False
        if self._has_active_message(entry):
            logger.info("Entry %s already has an active message for run %s", entry_id, entry.run_id)
        else:
            self.queue.enqueue(
                QueueMessage(
                    entry_id=entry.entry_id,
                    agent_name=AgentName.ENTRY.value,
                    run_id=entry.run_id,
                ),
            )
            enqueued = True

        summary = self.run_loop(user_id=entry.user_id) if run else None
        return SubmitResult(
            entry=self.entries.require_entry(entry_id),
            enqueued=enqueued,
            summary=summary,
        )

    def reprocess_entry(self, entry_id: str, *, run: bool = True) -> SubmitResult:
        """Start a new run from scratch; messages of the previous run become stale."""

        entry = self.entries.require_entry(entry_id)
        clear_fields = (
            *self.registry.output_fields(chain_for(entry.entry_type)[1:]),
            *FAILURE_FIELDS,
        )
        restarted = self.entries.start_run(entry_id, clear_fields=clear_fields)
        logger.info("Reprocessing entry %s under run %s", entry_id, restarted.run_id)
        return self.submit_entry(entry_id, run=run)

    def run_loop(
        self,
        *,
        user_id: str | None = None,
        max_messages: int | None = None,
        max_idle_polls: int = 1,
    ) -> ProcessorRunSummary:
        """Drain the queue; never raises."""

        return self.processor.run_loop(
            max_messages=max_messages,
            max_idle_polls=max_idle_polls,
            user_id=user_id,
        )

    def run_once(self, *, user_id: str | None = None) -> ProcessorRunSummary:
        return self.processor.run_once(user_id=user_id)

    def get_entry(self, entry_id: str) -> EntryView | None:
        return self.entries.get_entry(entry_id)

    def require_entry(self, entry_id: str) -> EntryView:
        return self.entries.require_entry(entry_id)

    def list_entries(self, *, state: ProcessingState | None = None, limit: int = 50) -> list[EntryView]:
        return self.entries.list_entries(state=state, limit=limit)

    def list_progress_events(self, entry_id: str) -> list[EntryEventView]:
        return self.entries.list_progress_events(entry_id)

    def delete_entry(self, entry_id: str) -> bool:
        """Delete the entry; its queued messages are dropped when they are popped."""

        return self.entries.delete_entry(entry_id)

    def list_queue_items(self, *, limit: int = 100) -> list[QueueItem]:
        return self.queue.peek_all(limit=limit)

    def list_queue_items_for_entry(self, entry_id: str) -> list[QueueItem]:
        return self.queue.list_for_entry(entry_id)

    def list_history(self, *, entry_id: str | None = None, limit: int = 50) -> list[QueueItem]:
        return self.queue.list_history(entry_id=entry_id, limit=limit)

    def _has_active_message(self, entry: EntryView) -> bool:
        return any(
            item.delivery_state in _ACTIVE_DELIVERY_STATES and item.message.run_id == entry.run_id
            for item in self.queue.list_for_entry(entry.entry_id)
        )


def build_pipeline(settings: Settings) -> PipelineService:
    """Wire repositories, capability providers, agents and the processor from settings."""

    settings.validate()
    entries = EntryRepository(
        settings.db_path,
        user_id=settings.user_context.user_id,
        user_name=settings.user_context.user_name,
        busy_timeout_ms=settings.queue.busy_timeout_ms,
    )
    queue = SQLiteQueue(
        settings.db_path,
        queue_name=settings.queue.queue_name,
        visibility_timeout_seconds=settings.queue.visibility_timeout_seconds,
        busy_timeout_ms=settings.queue.busy_timeout_ms,
    )
    capabilities = settings.capabilities
    llm_client = CliLlmClient(
        command_template=capabilities.llm_command_template,
        model=capabilities.llm_model,
        timeout_seconds=capabilities.llm_timeout_seconds,
        workdir=capabilities.llm_workdir,
        shutdown_requested=lambda: processor.stop_requested,
    )
    registry = build_default_registry(
        extractor=HttpContentExtractor(
            fetcher=PageFetcher(
                timeout_seconds=capabilities.http_timeout_seconds,
                max_retries=capabilities.http_max_retries,
            ),
            max_chars=capabilities.content_max_chars,
        ),
        summarizer=LlmSummarizer(client=llm_client, max_content_chars=capabilities.content_max_chars),
        researcher=LlmCompanyResearcher(client=llm_client),
    )
    indexer = None
    if settings.indexing.enabled:
        indexer = EntryIndexer(
            repository=entries,
            embedder=build_embedder(settings.indexing.model_name),
            chunk_size=settings.indexing.chunk_size,
            chunk_overlap=settings.indexing.chunk_overlap,
        )
    processor = QueueProcessor(
        queue=queue,
        entries=entries,
        registry=registry,
        settings=settings.processor,
        visibility_timeout_seconds=settings.queue.visibility_timeout_seconds,
        user_id=settings.user_context.user_id,
        indexer=indexer,
    )
    return PipelineService(entries=entries, queue=queue, registry=registry, processor=processor)
