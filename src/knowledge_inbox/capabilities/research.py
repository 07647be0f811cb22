"""Structured company research through the CLI LLM client."""

from __future__ import annotations

from knowledge_inbox.capabilities.llm_cli import CliLlmClient
from knowledge_inbox.capabilities.schemas import CompanyProfile
from knowledge_inbox.errors import CapabilityError

COMPANY_PROFILE_TASK = "company_profile"

_OUTPUT_SCHEMA_EXAMPLE = """\
{
  "name": "<full legal name>",
  "description": "<what the company does>",
  "industry": "<primary industry>",
  "founded": "<year or null>",
  "headquarters": "<city, country or null>",
  "keyProducts": ["<product>"],
  "competitors": ["<competitor>"],
  "marketPosition": "<market position>",
  "marketStrategy": "<market strategy>",
  "coreTechnology": "<core technology>",
  "competitiveEdge": "<competitive advantages>",
  "fundingHistory": "<funding rounds and investors>",
  "leadership": "<key executives>",
  "revenueRange": "<e.g. $1B-$5B or null>",
  "employeeCount": "<e.g. 5,000-10,000 or null>",
  "sources": ["<url>"]
}"""


class LlmCompanyResearcher:
    """Ask the LLM for a :class:`CompanyProfile` and validate the answer."""

    def __init__(self, *, client: CliLlmClient) -> None:
        self._client = client

    def research(self, *, name: str | None, url: str | None) -> CompanyProfile:
        if not name and not url:
            raise CapabilityError(
                "Neither company URL nor name provided for analysis",
                transient=False,
            )
        payload = self._client.complete_json(
            build_research_prompt(name=name, url=url),
            task=COMPANY_PROFILE_TASK,
        )
        return CompanyProfile.from_payload(payload)


def build_research_prompt(*, name: str | None, url: str | None) -> str:
    if name and url:
        subject = f"{name} ({url})."
    elif url:
        subject = f"the company found at this URL: {url}."
    else:
        subject = f"{name}."
    return (
        f"TASK: {COMPANY_PROFILE_TASK}\n"
        f"COMPANY_NAME: {name or ''}\n"
        f"COMPANY_URL: {url or ''}\n"
        "\n"
        f"Research and provide comprehensive information about {subject}\n"
        "Focus on accurate, up-to-date facts: description, industry and market position, "
        "strategy and competitive edge, core technology, key products, competitors, "
        "leadership, funding history, revenue range and employee count.\n"
        "Respond with only a JSON object following this schema exactly:\n"
        f"{_OUTPUT_SCHEMA_EXAMPLE}\n"
    )
