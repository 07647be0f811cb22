"""Page downloads for content extraction.

The fetcher decides whether a failed download is worth retrying. Timeouts,
dropped connections, 408/425/429 and 5xx responses are transient; other
statuses, redirect loops and non-HTML bodies are not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from knowledge_inbox.errors import CapabilityError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; KnowledgeInboxBot/1.0)"

RETRY_LATER_STATUSES = frozenset({408, 425, 429})
_SERVER_ERROR = 500
_PAGE_CONTENT_TYPES = ("html", "xml")


@dataclass(slots=True, frozen=True)
class Page:
    """Downloaded HTML page."""

    url: str
    final_url: str
    html: str


def is_transient_status(status_code: int) -> bool:
    return status_code in RETRY_LATER_STATUSES or status_code >= _SERVER_ERROR


class PageFetcher:
    """Download HTML pages, raising ``CapabilityError`` with a retry hint on failure."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent},
            # connect retries only; status-level retries go through the queue
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def get_page(self, url: str) -> Page:
        try:
            response = self._client.get(url)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout fetching %s", url)
            raise CapabilityError(f"Failed to fetch {url}: timeout", transient=True) from exc
        except httpx.TransportError as exc:
            logger.warning("Transport error fetching %s: %s", url, exc)
            raise CapabilityError(
                f"Failed to fetch {url}: {exc or type(exc).__name__}",
                transient=True,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", url, exc)
            raise CapabilityError(
                f"Failed to fetch {url}: {exc or type(exc).__name__}",
                transient=False,
            ) from exc

        if not response.is_success:
            raise CapabilityError(
                f"Failed to fetch {url}: HTTP {response.status_code}",
                transient=is_transient_status(response.status_code),
            )
        content_type = response.headers.get("content-type", "").lower()
        if content_type and not any(kind in content_type for kind in _PAGE_CONTENT_TYPES):
            raise CapabilityError(
                f"Unsupported content type for {url}: {content_type}",
                transient=False,
            )
        return Page(url=url, final_url=str(response.url), html=response.text)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> PageFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
