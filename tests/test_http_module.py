"""Tests for the shared HTTP module components."""

from __future__ import annotations

import httpx
import pytest

from knowledge_inbox.capabilities.content import HttpContentExtractor
from knowledge_inbox.errors import CapabilityError
from knowledge_inbox.http.fetcher import PageFetcher, is_transient_status
from knowledge_inbox.http.html_extractor import (
    ExtractionResult,
    extract_page_metadata,
    extract_text,
)

_PARAGRAPH = (
    "City planners released an open dataset describing traffic flows on every major road. "
    "Researchers combined the counts with weather records to explain congestion peaks. "
    "Transit agencies used the findings to retime buses during the morning rush hour. "
    "Residents reported shorter commutes after the new schedules took effect last spring."
)

ARTICLE_HTML = f"""\
<!DOCTYPE html>
<html lang="en">
<head>
  <title>Open Traffic Data</title>
  <meta name="author" content="Jane Doe">
  <meta name="description" content="How a city opened its traffic counts.">
  <meta property="article:published_time" content="2026-10-01">
</head>
<body>
  <article>
    <h1>Open Traffic Data</h1>
    <p>{_PARAGRAPH}</p>
    <p>{_PARAGRAPH}</p>
    <p>{_PARAGRAPH}</p>
  </article>
</body>
</html>
"""


def _fetcher(handler) -> PageFetcher:
    return PageFetcher(transport=httpx.MockTransport(handler))


class TestHtmlExtractor:
    def test_extract_from_article_html(self):
        result = extract_text(ARTICLE_HTML, url="https://example.com/traffic")
        assert result.is_success
        assert "open dataset" in result.text

    def test_extract_from_empty_html(self):
        result = extract_text("")
        assert not result.is_success
        assert result.error == "empty HTML input"

    def test_extract_with_max_chars(self):
        result = extract_text(ARTICLE_HTML, max_chars=100)
        assert isinstance(result, ExtractionResult)
        assert result.is_success
        assert len(result.text) <= 100

    def test_page_metadata(self):
        page = extract_page_metadata(ARTICLE_HTML, url="https://example.com/traffic")
        assert page.title == "Open Traffic Data"
        assert page.author == "Jane Doe"
        assert page.description == "How a city opened its traffic counts."
        assert page.published_date == "2026-10-01"

    def test_page_metadata_of_empty_html(self):
        page = extract_page_metadata("   ")
        assert page.title is None
        assert page.author is None


class TestPageFetcher:
    def test_success_follows_redirects(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "KnowledgeInboxBot" in request.headers["user-agent"]
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://example.com/page"})
            return httpx.Response(200, text="<p>ok</p>", headers={"content-type": "text/html"})

        with _fetcher(handler) as fetcher:
            page = fetcher.get_page("https://example.com/old")

        assert page.url == "https://example.com/old"
        assert page.final_url == "https://example.com/page"
        assert page.html == "<p>ok</p>"

    def test_missing_content_type_is_treated_as_html(self):
        with _fetcher(lambda request: httpx.Response(200, text="<p>ok</p>")) as fetcher:
            page = fetcher.get_page("https://example.com/page")

        assert page.html == "<p>ok</p>"

    @pytest.mark.parametrize(
        ("status_code", "transient"),
        [(500, True), (503, True), (429, True), (408, True), (404, False), (410, False)],
    )
    def test_error_status_carries_retry_hint(self, status_code: int, transient: bool):
        with (
            _fetcher(lambda request: httpx.Response(status_code)) as fetcher,
            pytest.raises(CapabilityError, match=f"HTTP {status_code}") as error,
        ):
            fetcher.get_page("https://example.com/missing")

        assert error.value.transient is transient
        assert is_transient_status(status_code) is transient

    def test_read_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with (
            _fetcher(handler) as fetcher,
            pytest.raises(CapabilityError, match="timeout") as error,
        ):
            fetcher.get_page("https://example.com/slow")

        assert error.value.transient is True

    def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with (
            _fetcher(handler) as fetcher,
            pytest.raises(CapabilityError, match="refused") as error,
        ):
            fetcher.get_page("https://example.com/down")

        assert error.value.transient is True

    def test_redirect_loop_is_not_retried(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": str(request.url)})

        with (
            _fetcher(handler) as fetcher,
            pytest.raises(CapabilityError, match="Failed to fetch") as error,
        ):
            fetcher.get_page("https://example.com/loop")

        assert error.value.transient is False


class TestHttpContentExtractor:
    def test_fetch_returns_content_and_metadata(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                text=ARTICLE_HTML,
                headers={"content-type": "text/html; charset=utf-8"},
            )

        extractor = HttpContentExtractor(fetcher=_fetcher(handler))
        extracted = extractor.fetch("https://example.com/traffic")

        assert "open dataset" in extracted.content
        assert extracted.source_url == "https://example.com/traffic"
        assert extracted.title == "Open Traffic Data"
        metadata = extracted.to_metadata()
        assert metadata["author"] == "Jane Doe"
        assert set(metadata) == {
            "content",
            "title",
            "author",
            "publishedDate",
            "description",
            "language",
        }

    @pytest.mark.parametrize(
        ("status_code", "transient"),
        [(503, True), (429, True), (404, False), (403, False)],
    )
    def test_http_status_sets_transient_flag(self, status_code: int, transient: bool):
        extractor = HttpContentExtractor(
            fetcher=_fetcher(lambda request: httpx.Response(status_code)),
        )

        with pytest.raises(CapabilityError, match=f"HTTP {status_code}") as error:
            extractor.fetch("https://example.com/article")

        assert error.value.transient is transient

    def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        extractor = HttpContentExtractor(fetcher=_fetcher(handler))

        with pytest.raises(CapabilityError, match="timeout") as error:
            extractor.fetch("https://example.com/article")

        assert error.value.transient is True

    def test_pdf_is_not_supported(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=b"%PDF-1.7",
                headers={"content-type": "application/pdf"},
            )

        extractor = HttpContentExtractor(fetcher=_fetcher(handler))

        with pytest.raises(CapabilityError, match="Unsupported content type") as error:
            extractor.fetch("https://example.com/paper.pdf")

        assert error.value.transient is False

    def test_page_without_text_is_not_retried(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="  ", headers={"content-type": "text/html"})

        extractor = HttpContentExtractor(fetcher=_fetcher(handler))

        with pytest.raises(CapabilityError, match="No content extracted") as error:
            extractor.fetch("https://example.com/blank")

        assert error.value.transient is False
