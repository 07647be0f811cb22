"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from knowledge_inbox.agents.registry import build_default_registry
from knowledge_inbox.capabilities.base import ExtractedContent
from knowledge_inbox.capabilities.schemas import ArticleSummary, CompanyProfile
from knowledge_inbox.config import DEFAULT_LLM_COMMAND_TEMPLATE, ProcessorSettings, Settings
from knowledge_inbox.entries.repository import EntryRepository
from knowledge_inbox.orchestrator.indexing import EntryIndexer
from knowledge_inbox.orchestrator.processor import QueueProcessor
from knowledge_inbox.orchestrator.services import PipelineService
from knowledge_inbox.queue.repository import SQLiteQueue

ARTICLE_TEXT = (
    "Researchers released a new open dataset for city traffic. "
    "The dataset covers twelve cities over five years. "
    "It is intended for planning bus lanes and bike paths. "
    "Early users report faster modelling cycles."
)


class ManualClock:
    """Injectable clock for lease-expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 16, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class FakeExtractor:
    content: str = ARTICLE_TEXT
    title: str | None = "Open traffic dataset"
    errors: list[BaseException] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)

    def fetch(self, url: str) -> ExtractedContent:
        self.calls.append(url)
        if self.errors:
            raise self.errors.pop(0)
        return ExtractedContent(
            content=self.content,
            source_url=url,
            title=self.title,
            author="Jane Reporter",
            description="Traffic data for planners.",
        )


@dataclass
class FakeSummarizer:
    errors: list[BaseException] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)

    def summarize(self, content: str, *, title: str | None = None) -> ArticleSummary:
        self.calls.append(content)
        if self.errors:
            raise self.errors.pop(0)
        return ArticleSummary(
            title=title or "Untitled",
            summary="A new traffic dataset covers twelve cities. It helps planners.",
            key_points=["Twelve cities", "Five years", "Bus lanes and bike paths"],
        )


@dataclass
class FakeResearcher:
    errors: list[BaseException] = field(default_factory=list)
    calls: list[tuple[str | None, str | None]] = field(default_factory=list)

    def research(self, *, name: str | None, url: str | None) -> CompanyProfile:
        self.calls.append((name, url))
        if self.errors:
            raise self.errors.pop(0)
        return CompanyProfile(
            name=name or "Acme",
            description="Acme builds rockets for coyotes.",
            industry="Aerospace",
            key_products=["Rocket skates"],
            competitors=["Globex"],
            market_position="Niche leader.",
            market_strategy="Mail order.",
            core_technology="Solid fuel.",
            competitive_edge="Catalog reach.",
            funding_history="Bootstrapped.",
            leadership="Wile E. Coyote (customer).",
            sources=[url] if url else [],
        )


@dataclass
class PipelineHarness:
    pipeline: PipelineService
    entries: EntryRepository
    queue: SQLiteQueue
    processor: QueueProcessor
    extractor: FakeExtractor
    summarizer: FakeSummarizer
    researcher: FakeResearcher
    clock: ManualClock


PipelineFactory = Callable[..., PipelineHarness]


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "inbox.db"


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def make_pipeline(db_path: Path, clock: ManualClock) -> Iterator[PipelineFactory]:
    """Build a pipeline over fake capability providers and a manual clock."""

    created: list[PipelineHarness] = []

    def _factory(
        *,
        settings: ProcessorSettings | None = None,
        extractor_errors: list[BaseException] | None = None,
        summarizer_errors: list[BaseException] | None = None,
        researcher_errors: list[BaseException] | None = None,
        indexer_factory: Callable[[EntryRepository], EntryIndexer] | None = None,
    ) -> PipelineHarness:
        extractor = FakeExtractor(errors=list(extractor_errors or []))
        summarizer = FakeSummarizer(errors=list(summarizer_errors or []))
        researcher = FakeResearcher(errors=list(researcher_errors or []))
        entries = EntryRepository(db_path)
        entries.init_schema()
        queue = SQLiteQueue(db_path, visibility_timeout_seconds=60, clock=clock)
        registry = build_default_registry(
            extractor=extractor,
            summarizer=summarizer,
            researcher=researcher,
        )
        processor = QueueProcessor(
            queue=queue,
            entries=entries,
            registry=registry,
            settings=settings or ProcessorSettings(retry_base_seconds=0, retry_max_seconds=0),
            visibility_timeout_seconds=60,
            user_id=entries.user_id,
            indexer=indexer_factory(entries) if indexer_factory is not None else None,
            sleep=lambda _: None,
        )
        harness = PipelineHarness(
            pipeline=PipelineService(
                entries=entries,
                queue=queue,
                registry=registry,
                processor=processor,
            ),
            entries=entries,
            queue=queue,
            processor=processor,
            extractor=extractor,
            summarizer=summarizer,
            researcher=researcher,
            clock=clock,
        )
        created.append(harness)
        return harness

    yield _factory

    for harness in created:
        harness.pipeline.close()


@pytest.fixture()
def echo_agent(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Monkeypatch Settings.from_env to use the echo agent and a temp LLM workdir."""

    original_from_env = Settings.from_env

    def _patched_from_env(db_path=None):
        settings = original_from_env(db_path=db_path)
        capabilities = replace(
            settings.capabilities,
            llm_command_template=DEFAULT_LLM_COMMAND_TEMPLATE,
            llm_workdir=tmp_path / "llm",
        )
        return replace(settings, capabilities=capabilities)

    monkeypatch.setattr(Settings, "from_env", staticmethod(_patched_from_env))
