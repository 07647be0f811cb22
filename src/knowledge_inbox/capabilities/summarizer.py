"""Structured article summarization through the CLI LLM client."""

from __future__ import annotations

import logging

from knowledge_inbox.capabilities.llm_cli import CliLlmClient
from knowledge_inbox.capabilities.schemas import ArticleSummary

logger = logging.getLogger(__name__)

ARTICLE_SUMMARY_TASK = "article_summary"

_OUTPUT_SCHEMA_EXAMPLE = """\
{
  "title": "<article title>",
  "summary": "<3-5 sentence summary>",
  "keyPoints": ["<point>", "<point>", "<point>"],
  "author": "<author or null>",
  "publishedDate": "<publication date or null>"
}"""


class LlmSummarizer:
    """Ask the LLM for an :class:`ArticleSummary` and validate the answer."""

    def __init__(self, *, client: CliLlmClient, max_content_chars: int = 60_000) -> None:
        self._client = client
        self._max_content_chars = max_content_chars

    def summarize(self, content: str, *, title: str | None = None) -> ArticleSummary:
        prompt = build_summary_prompt(content[: self._max_content_chars], title=title)
        payload = self._client.complete_json(prompt, task=ARTICLE_SUMMARY_TASK)
        summary = ArticleSummary.from_payload(payload)
        logger.debug("Summary accepted with %d key points", len(summary.key_points))
        return summary


def build_summary_prompt(content: str, *, title: str | None) -> str:
    return (
        f"TASK: {ARTICLE_SUMMARY_TASK}\n"
        f"TITLE: {title or ''}\n"
        "\n"
        f'Analyze the following article content, titled "{title or "Untitled"}". '
        "Write a 3-5 sentence summary covering its core thesis, main arguments, "
        "supporting evidence and conclusions, and list 3-5 key points.\n"
        "Respond with only a JSON object following this schema exactly:\n"
        f"{_OUTPUT_SCHEMA_EXAMPLE}\n"
        "\n"
        "CONTENT:\n"
        f"{content}\n"
    )
