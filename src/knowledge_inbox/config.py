"""Runtime configuration for the enrichment queue, processor and capabilities."""

from __future__ import annotations

import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path

FAILURE_STATE_COMPLETED = "completed"
FAILURE_STATE_FAILED = "failed"
SUPPORTED_FAILURE_STATES = (FAILURE_STATE_COMPLETED, FAILURE_STATE_FAILED)

DEFAULT_LLM_COMMAND_TEMPLATE = (
    f"{shlex.quote(sys.executable)} -m knowledge_inbox.capabilities.echo_agent "
    "--prompt-file {prompt_file}"
)


@dataclass(slots=True)
class QueueSettings:
    """Durable queue settings."""

    queue_name: str = "entry_processing_queue"
    visibility_timeout_seconds: int = 600
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class ProcessorSettings:
    """Queue processor loop and retry policy settings."""

    poll_interval_seconds: float = 0.0
    error_backoff_seconds: float = 1.0
    max_consecutive_errors: int = 5
    max_attempts: int = 3
    retry_base_seconds: int = 5
    retry_max_seconds: int = 300
    failure_state: str = FAILURE_STATE_COMPLETED
    stale_write_retries: int = 3


@dataclass(slots=True)
class CapabilitySettings:
    """External capability provider settings."""

    http_timeout_seconds: float = 30.0
    http_max_retries: int = 2
    content_max_chars: int = 60_000
    llm_command_template: str = DEFAULT_LLM_COMMAND_TEMPLATE
    llm_model: str = "default"
    llm_timeout_seconds: int = 300
    llm_workdir: Path = Path(".knowledge_inbox/llm")

    @property
    def http_worst_case_seconds(self) -> float:
        return self.http_timeout_seconds * (max(0, self.http_max_retries) + 1)


@dataclass(slots=True)
class IndexingSettings:
    """Embedding index settings for completed entries."""

    enabled: bool = False
    model_name: str = "hashing-384"
    chunk_size: int = 3_000
    chunk_overlap: int = 400


@dataclass(slots=True)
class UserContextSettings:
    """User context settings."""

    user_id: str = "default_user"
    user_name: str = "Default User"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".knowledge_inbox.db")
    log_level: str = "WARNING"
    queue: QueueSettings = field(default_factory=QueueSettings)
    processor: ProcessorSettings = field(default_factory=ProcessorSettings)
    capabilities: CapabilitySettings = field(default_factory=CapabilitySettings)
    indexing: IndexingSettings = field(default_factory=IndexingSettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("KNOWLEDGE_INBOX_DB_PATH", ".knowledge_inbox.db")),
            log_level=os.getenv("KNOWLEDGE_INBOX_LOG_LEVEL", "WARNING").upper(),
            queue=QueueSettings(
                queue_name=os.getenv("KNOWLEDGE_INBOX_QUEUE_NAME", "entry_processing_queue"),
                visibility_timeout_seconds=int(
                    os.getenv("KNOWLEDGE_INBOX_VISIBILITY_TIMEOUT_SECONDS", "600"),
                ),
                busy_timeout_ms=int(os.getenv("KNOWLEDGE_INBOX_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            ),
            processor=ProcessorSettings(
                poll_interval_seconds=float(
                    os.getenv("KNOWLEDGE_INBOX_POLL_INTERVAL_SECONDS", "0"),
                ),
                error_backoff_seconds=float(
                    os.getenv("KNOWLEDGE_INBOX_ERROR_BACKOFF_SECONDS", "1.0"),
                ),
                max_consecutive_errors=int(
                    os.getenv("KNOWLEDGE_INBOX_MAX_CONSECUTIVE_ERRORS", "5"),
                ),
                max_attempts=int(os.getenv("KNOWLEDGE_INBOX_MAX_ATTEMPTS", "3")),
                retry_base_seconds=int(os.getenv("KNOWLEDGE_INBOX_RETRY_BASE_SECONDS", "5")),
                retry_max_seconds=int(os.getenv("KNOWLEDGE_INBOX_RETRY_MAX_SECONDS", "300")),
                failure_state=os.getenv(
                    "KNOWLEDGE_INBOX_FAILURE_STATE",
                    FAILURE_STATE_COMPLETED,
                )
                .strip()
                .lower(),
            ),
            capabilities=CapabilitySettings(
                http_timeout_seconds=float(
                    os.getenv("KNOWLEDGE_INBOX_HTTP_TIMEOUT_SECONDS", "30.0"),
                ),
                http_max_retries=int(os.getenv("KNOWLEDGE_INBOX_HTTP_MAX_RETRIES", "2")),
                content_max_chars=int(os.getenv("KNOWLEDGE_INBOX_CONTENT_MAX_CHARS", "60000")),
                llm_command_template=os.getenv(
                    "KNOWLEDGE_INBOX_LLM_COMMAND_TEMPLATE",
                    DEFAULT_LLM_COMMAND_TEMPLATE,
                ),
                llm_model=os.getenv("KNOWLEDGE_INBOX_LLM_MODEL", "default"),
                llm_timeout_seconds=int(os.getenv("KNOWLEDGE_INBOX_LLM_TIMEOUT_SECONDS", "300")),
                llm_workdir=Path(
                    os.getenv("KNOWLEDGE_INBOX_LLM_WORKDIR", ".knowledge_inbox/llm"),
                ),
            ),
            indexing=IndexingSettings(
                enabled=_env_bool("KNOWLEDGE_INBOX_INDEXING_ENABLED", default=False),
                model_name=os.getenv("KNOWLEDGE_INBOX_EMBEDDING_MODEL", "hashing-384"),
                chunk_size=int(os.getenv("KNOWLEDGE_INBOX_CHUNK_SIZE", "3000")),
                chunk_overlap=int(os.getenv("KNOWLEDGE_INBOX_CHUNK_OVERLAP", "400")),
            ),
            user_context=UserContextSettings(
                user_id=os.getenv("KNOWLEDGE_INBOX_USER_ID", "default_user"),
                user_name=os.getenv("KNOWLEDGE_INBOX_USER_NAME", "Default User"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        if self.queue.visibility_timeout_seconds <= 0:
            raise ValueError("KNOWLEDGE_INBOX_VISIBILITY_TIMEOUT_SECONDS must be > 0.")
        if self.processor.max_attempts < 1:
            raise ValueError("KNOWLEDGE_INBOX_MAX_ATTEMPTS must be >= 1.")
        if self.processor.retry_base_seconds < 0 or self.processor.retry_max_seconds < 0:
            raise ValueError("KNOWLEDGE_INBOX_RETRY_*_SECONDS must be >= 0.")
        if self.processor.failure_state not in SUPPORTED_FAILURE_STATES:
            raise ValueError(
                "KNOWLEDGE_INBOX_FAILURE_STATE must be one of "
                f"{', '.join(SUPPORTED_FAILURE_STATES)}, got {self.processor.failure_state!r}.",
            )
        if self.capabilities.llm_timeout_seconds <= 0:
            raise ValueError("KNOWLEDGE_INBOX_LLM_TIMEOUT_SECONDS must be > 0.")
        # a lease that expires mid-step lets a second worker run the same step
        lease = self.queue.visibility_timeout_seconds
        if self.capabilities.llm_timeout_seconds >= lease:
            raise ValueError(
                "KNOWLEDGE_INBOX_LLM_TIMEOUT_SECONDS must be shorter than "
                f"KNOWLEDGE_INBOX_VISIBILITY_TIMEOUT_SECONDS ({lease}s).",
            )
        if self.capabilities.http_worst_case_seconds >= lease:
            raise ValueError(
                "KNOWLEDGE_INBOX_HTTP_TIMEOUT_SECONDS x (HTTP_MAX_RETRIES + 1) must be shorter "
                f"than KNOWLEDGE_INBOX_VISIBILITY_TIMEOUT_SECONDS ({lease}s).",
            )
        if "{prompt" not in self.capabilities.llm_command_template:
            raise ValueError(
                "KNOWLEDGE_INBOX_LLM_COMMAND_TEMPLATE must include {prompt} or {prompt_file}.",
            )
        if self.indexing.chunk_overlap >= self.indexing.chunk_size:
            raise ValueError("KNOWLEDGE_INBOX_CHUNK_OVERLAP must be smaller than CHUNK_SIZE.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
