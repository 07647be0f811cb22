"""Content extraction capability: page download plus trafilatura extraction."""

from __future__ import annotations

import logging

from knowledge_inbox.capabilities.base import ExtractedContent
from knowledge_inbox.errors import CapabilityError
from knowledge_inbox.http.fetcher import PageFetcher
from knowledge_inbox.http.html_extractor import extract_page_metadata, extract_text

logger = logging.getLogger(__name__)


class HttpContentExtractor:
    """Fetch an article page and return its main text with metadata."""

    def __init__(self, *, fetcher: PageFetcher, max_chars: int = 60_000) -> None:
        self._fetcher = fetcher
        self._max_chars = max_chars

    def fetch(self, url: str) -> ExtractedContent:
        page = self._fetcher.get_page(url)
        extraction = extract_text(page.html, url=page.final_url, max_chars=self._max_chars)
        if not extraction.is_success:
            raise CapabilityError(
                f"No content extracted from {url}: {extraction.error}",
                transient=False,
            )

        metadata = extract_page_metadata(page.html, url=page.final_url)
        logger.info("Extracted %d chars from %s", len(extraction.text), url)
        return ExtractedContent(
            content=extraction.text,
            source_url=url,
            title=metadata.title,
            author=metadata.author,
            published_date=metadata.published_date,
            description=metadata.description,
            language=metadata.language,
        )
