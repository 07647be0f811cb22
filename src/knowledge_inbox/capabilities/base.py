"""Capability provider contracts consumed by agents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from knowledge_inbox.capabilities.schemas import ArticleSummary, CompanyProfile


@dataclass(slots=True)
class ExtractedContent:
    """Main text and bibliographic metadata of a fetched page."""

    content: str
    source_url: str
    title: str | None = None
    author: str | None = None
    published_date: str | None = None
    description: str | None = None
    language: str | None = None

    def to_metadata(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "title": self.title,
            "author": self.author,
            "publishedDate": self.published_date,
            "description": self.description,
            "language": self.language,
        }


class ContentExtractor(Protocol):
    """Fetch a URL and extract its main text."""

    def fetch(self, url: str) -> ExtractedContent:
        """Return extracted content or raise ``CapabilityError``."""


class Summarizer(Protocol):
    """Produce a structured article summary."""

    def summarize(self, content: str, *, title: str | None = None) -> ArticleSummary:
        """Return a validated summary or raise ``CapabilityError``."""


class CompanyResearcher(Protocol):
    """Produce a structured company profile."""

    def research(self, *, name: str | None, url: str | None) -> CompanyProfile:
        """Return a validated profile or raise ``CapabilityError``."""
