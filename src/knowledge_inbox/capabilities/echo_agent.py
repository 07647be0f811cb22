"""Local deterministic LLM stand-in for tests and offline demos.

Reads the prompt, detects the task marker and prints schema-valid JSON.
"""

from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def main(argv: list[str] | None = None) -> int:
    """Print a deterministic answer for the prompt."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file")
    parser.add_argument("--prompt")
    parser.add_argument(
        "--mode",
        choices=("ok", "invalid", "error", "rate-limit", "not-json"),
        default="ok",
    )
    args = parser.parse_args(argv)

    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text("utf-8")
    else:
        prompt = args.prompt or ""

    if args.mode == "error":
        sys.stderr.write("echo agent: unsupported request\n")
        return 2
    if args.mode == "rate-limit":
        sys.stderr.write("echo agent: 429 Too Many Requests, try again later\n")
        return 1
    if args.mode == "not-json":
        sys.stdout.write("I could not produce structured output.\n")
        return 0

    fields = _prompt_fields(prompt)
    task = fields.get("TASK", "")
    if task == "company_profile":
        payload = _company_profile(fields)
    else:
        payload = _article_summary(fields, content=_content_section(prompt))
    if args.mode == "invalid":
        payload.pop("summary", None)
        payload.pop("industry", None)
        payload["keyPoints"] = ["only one"]

    sys.stdout.write("```json\n" + json.dumps(payload, ensure_ascii=False, indent=2) + "\n```\n")
    return 0


def _prompt_fields(prompt: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in prompt.splitlines():
        if line.startswith("CONTENT:"):
            break
        key, sep, value = line.partition(":")
        if sep and key.isupper():
            fields[key.strip()] = value.strip()
    return fields


def _content_section(prompt: str) -> str:
    _, _, content = prompt.partition("\nCONTENT:\n")
    return content.strip()


def _article_summary(fields: dict[str, str], *, content: str) -> dict[str, Any]:
    sentences = [item.strip() for item in _SENTENCE_SPLIT.split(" ".join(content.split()))]
    sentences = [item for item in sentences if item]
    while len(sentences) < 3:  # noqa: PLR2004
        sentences.append(f"Point {len(sentences) + 1} of the article.")
    title = fields.get("TITLE") or sentences[0][:80]
    return {
        "title": title,
        "summary": " ".join(sentences[:3]),
        "keyPoints": [item[:200] for item in sentences[:3]],
        "author": None,
        "publishedDate": None,
    }


def _company_profile(fields: dict[str, str]) -> dict[str, Any]:
    url = fields.get("COMPANY_URL") or ""
    name = fields.get("COMPANY_NAME") or _name_from_url(url) or "Unknown Company"
    return {
        "name": name,
        "description": f"{name} builds products for its customers.",
        "industry": "Technology",
        "founded": None,
        "headquarters": None,
        "keyProducts": [f"{name} Platform"],
        "competitors": [],
        "marketPosition": "Independent vendor.",
        "marketStrategy": "Direct sales.",
        "coreTechnology": "Software.",
        "competitiveEdge": "Focused product.",
        "fundingHistory": "Not disclosed.",
        "leadership": "Not disclosed.",
        "revenueRange": None,
        "employeeCount": None,
        "sources": [url] if url else [],
    }


def _name_from_url(url: str) -> str | None:
    host = re.sub(r"^[a-z]+://", "", url.strip().lower()).split("/", 1)[0]
    host = host.removeprefix("www.")
    if not host:
        return None
    return host.split(".", 1)[0].capitalize()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
