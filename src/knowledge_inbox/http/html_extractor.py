"""HTML to clean text and page metadata extraction using trafilatura."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import trafilatura

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExtractionResult:
    """Result of HTML text extraction."""

    text: str
    is_success: bool
    error: str | None = None


@dataclass(slots=True)
class PageMetadata:
    """Bibliographic fields found in the page head and markup."""

    title: str | None = None
    author: str | None = None
    published_date: str | None = None
    description: str | None = None
    language: str | None = None


def extract_text(
    html: str,
    *,
    url: str | None = None,
    include_tables: bool = True,
    max_chars: int = 0,
) -> ExtractionResult:
    """Extract main content text from HTML using trafilatura.

    Retries with recall-oriented settings when the precise pass finds nothing.
    """

    if not html or not html.strip():
        return ExtractionResult(text="", is_success=False, error="empty HTML input")

    try:
        text = trafilatura.extract(
            html,
            url=url,
            include_tables=include_tables,
            include_links=False,
            favor_precision=True,
            deduplicate=True,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("trafilatura.extract failed for %s: %s", url or "<unknown>", exc)
        text = None

    if not text:
        try:
            text = trafilatura.extract(
                html,
                url=url,
                include_tables=include_tables,
                include_links=False,
                favor_recall=True,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("trafilatura fallback failed for %s: %s", url or "<unknown>", exc)
            return ExtractionResult(text="", is_success=False, error=f"extraction failed: {exc}")

    if not text:
        return ExtractionResult(text="", is_success=False, error="no content extracted")

    if max_chars > 0 and len(text) > max_chars:
        text = text[:max_chars].rstrip()

    return ExtractionResult(text=text, is_success=True)


def extract_page_metadata(html: str, *, url: str | None = None) -> PageMetadata:
    """Read title, author, date, description and language; missing fields stay ``None``."""

    if not html or not html.strip():
        return PageMetadata()
    try:
        document = trafilatura.extract_metadata(html, default_url=url)
    except Exception as exc:  # noqa: BLE001
        logger.warning("trafilatura.extract_metadata failed for %s: %s", url or "<unknown>", exc)
        return PageMetadata()
    if document is None:
        return PageMetadata()
    return PageMetadata(
        title=_clean(document.title),
        author=_clean(document.author),
        published_date=_clean(document.date),
        description=_clean(document.description),
        language=_clean(getattr(document, "language", None)),
    )


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
