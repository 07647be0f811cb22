"""Fixed structured-output schemas for summarization and company research."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from knowledge_inbox.errors import SchemaValidationError

logger = logging.getLogger(__name__)

MIN_KEY_POINTS = 3
MAX_KEY_POINTS = 5


@dataclass(slots=True)
class ArticleSummary:
    """Validated article summary."""

    title: str
    summary: str
    key_points: list[str]
    author: str | None = None
    published_date: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> ArticleSummary:
        """Validate an LLM payload; raise :class:`SchemaValidationError` on any mismatch."""

        data = _require_object(payload, schema="ArticleSummary")
        key_points = _require_string_list(data, "keyPoints", payload=payload)
        if not MIN_KEY_POINTS <= len(key_points) <= MAX_KEY_POINTS:
            raise _invalid(
                f"keyPoints must contain {MIN_KEY_POINTS}-{MAX_KEY_POINTS} items, "
                f"got {len(key_points)}.",
                payload,
            )
        return cls(
            title=_require_string(data, "title", payload=payload),
            summary=_require_string(data, "summary", payload=payload),
            key_points=key_points,
            author=_optional_string(data, "author", payload=payload),
            published_date=_optional_string(data, "publishedDate", payload=payload),
        )

    def to_metadata(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "summary": self.summary,
            "keyPoints": list(self.key_points),
            "author": self.author,
            "publishedDate": self.published_date,
        }


@dataclass(slots=True)
class CompanyProfile:
    """Validated company research profile."""

    name: str
    description: str
    industry: str
    key_products: list[str]
    competitors: list[str]
    market_position: str
    market_strategy: str
    core_technology: str
    competitive_edge: str
    funding_history: str
    leadership: str
    founded: str | None = None
    headquarters: str | None = None
    revenue_range: str | None = None
    employee_count: str | None = None
    sources: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> CompanyProfile:
        """Validate an LLM payload; raise :class:`SchemaValidationError` on any mismatch."""

        data = _require_object(payload, schema="CompanyProfile")
        sources = (
            _require_string_list(data, "sources", payload=payload, allow_empty=True)
            if data.get("sources") is not None
            else []
        )
        return cls(
            name=_require_string(data, "name", payload=payload),
            description=_require_string(data, "description", payload=payload),
            industry=_require_string(data, "industry", payload=payload),
            key_products=_require_string_list(
                data,
                "keyProducts",
                payload=payload,
                allow_empty=True,
            ),
            competitors=_require_string_list(
                data,
                "competitors",
                payload=payload,
                allow_empty=True,
            ),
            market_position=_require_string(data, "marketPosition", payload=payload),
            market_strategy=_require_string(data, "marketStrategy", payload=payload),
            core_technology=_require_string(data, "coreTechnology", payload=payload),
            competitive_edge=_require_string(data, "competitiveEdge", payload=payload),
            funding_history=_require_string(data, "fundingHistory", payload=payload),
            leadership=_require_string(data, "leadership", payload=payload),
            founded=_optional_string(data, "founded", payload=payload),
            headquarters=_optional_string(data, "headquarters", payload=payload),
            revenue_range=_optional_string(data, "revenueRange", payload=payload),
            employee_count=_optional_string(data, "employeeCount", payload=payload),
            sources=sources,
        )

    def to_metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "industry": self.industry,
            "founded": self.founded,
            "headquarters": self.headquarters,
            "keyProducts": list(self.key_products),
            "competitors": list(self.competitors),
            "marketPosition": self.market_position,
            "marketStrategy": self.market_strategy,
            "coreTechnology": self.core_technology,
            "competitiveEdge": self.competitive_edge,
            "fundingHistory": self.funding_history,
            "leadership": self.leadership,
            "revenueRange": self.revenue_range,
            "employeeCount": self.employee_count,
            "sources": list(self.sources),
        }


COMPANY_PROFILE_FIELDS = (
    "name",
    "description",
    "industry",
    "founded",
    "headquarters",
    "keyProducts",
    "competitors",
    "marketPosition",
    "marketStrategy",
    "coreTechnology",
    "competitiveEdge",
    "fundingHistory",
    "leadership",
    "revenueRange",
    "employeeCount",
    "sources",
)


def _invalid(message: str, payload: Any) -> SchemaValidationError:
    logger.warning("Schema validation failed: %s; raw payload: %r", message, payload)
    return SchemaValidationError(message, raw_payload=payload)


def _require_object(payload: Any, *, schema: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise _invalid(f"{schema} must be a JSON object.", payload)
    return payload


def _require_string(data: dict[str, Any], key: str, *, payload: Any) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise _invalid(f"{key} must be a non-empty string.", payload)
    return value.strip()


def _optional_string(data: dict[str, Any], key: str, *, payload: Any) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise _invalid(f"{key} must be a string or null.", payload)
    return value.strip() or None


def _require_string_list(
    data: dict[str, Any],
    key: str,
    *,
    payload: Any,
    allow_empty: bool = False,
) -> list[str]:
    value = data.get(key)
    if not isinstance(value, list):
        raise _invalid(f"{key} must be an array of strings.", payload)
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise _invalid(f"{key}[{index}] must be a non-empty string.", payload)
        items.append(item.strip())
    if not items and not allow_empty:
        raise _invalid(f"{key} must not be empty.", payload)
    return items
