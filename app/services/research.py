"""Company and industry research backed by the text-generation service."""

import logging
from typing import Any

from app.models.report_models import Citation
from app.models.report_models import CompanyResearch
from app.models.report_models import Confidence
from app.models.report_models import IndustryResearch
from app.services.llm import JSONParsingError
from app.services.llm import LLMError
from app.services.llm import extract_json
from app.services.llm import generate_text
from app.services.llm import render_prompt

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Information not available"
_LIMITED_MARKERS = ("information not available", "limited information")


class ResearchError(Exception):
    """Raised when company or industry research cannot be produced."""


def _confidence(raw: Any, default: Confidence = "medium") -> Confidence:
    value = str(raw or "").strip().lower()
    if value in ("high", "medium", "low"):
        return value  # type: ignore[return-value]
    return default


async def research_company(company_name: str, context: str | None = None) -> CompanyResearch:
    """Ask the model for a company profile.

    A response that is not valid JSON is kept as a plain-text description with
    low confidence rather than discarded.

    Raises:
        ResearchError: if the text-generation call fails.
    """
    prompt = render_prompt("company_research.jinja2", company_name=company_name, context=context)
    system_prompt = render_prompt("company_research_system.jinja2")
    try:
        response = await generate_text(prompt, system_prompt=system_prompt)
    except LLMError as e:
        raise ResearchError(f"Company research failed: {e}") from e

    try:
        parsed = extract_json(response)
    except JSONParsingError:
        logger.warning("Company research for %s was not JSON, using plain text", company_name)
        parsed = None

    if not isinstance(parsed, dict):
        description = response if len(response) > 100 else NOT_AVAILABLE
        return CompanyResearch(
            company_name=company_name,
            company_description=description,
            confidence="low",
            limited_info=description == NOT_AVAILABLE,
            warnings=["Company research returned unstructured text"],
        )

    description = str(parsed.get("companyDescription") or "").strip()
    warnings: list[str] = []
    if len(description) < 50:
        warnings.append("Limited company description available")
    if not parsed.get("businessModel"):
        warnings.append("Business model information not available")
    products = [str(p) for p in parsed.get("products") or []]
    if not products:
        warnings.append("Product/service information not available")

    confidence = _confidence(parsed.get("confidence"))
    limited = not description or any(marker in description.lower() for marker in _LIMITED_MARKERS) or confidence == "low"
    if limited:
        confidence = "low"

    return CompanyResearch(
        company_name=company_name,
        company_description=description or NOT_AVAILABLE,
        business_model=str(parsed.get("businessModel") or NOT_AVAILABLE),
        products=products,
        industry=parsed.get("industry") or None,
        confidence=confidence,
        limited_info=limited,
        warnings=warnings,
    )


async def research_industry(industry: str, company_context: str | None = None) -> IndustryResearch:
    """Ask the model for an industry overview with source attributions.

    Raises:
        ResearchError: if the call fails or the response carries no overview.
    """
    prompt = render_prompt("industry_research.jinja2", industry=industry, company_context=company_context)
    system_prompt = render_prompt("industry_research_system.jinja2")
    try:
        response = await generate_text(prompt, system_prompt=system_prompt)
    except LLMError as e:
        raise ResearchError(f"Industry research failed: {e}") from e

    try:
        parsed = extract_json(response)
    except JSONParsingError:
        parsed = None

    if not isinstance(parsed, dict):
        logger.warning("Industry research for %s was not JSON, using plain text", industry)
        if not response.strip():
            raise ResearchError("Industry research returned no content")
        return IndustryResearch(industry_name=industry, overview=response.strip(), confidence="low")

    overview = str(parsed.get("overview") or "").strip()
    if not overview:
        raise ResearchError("Industry research returned no overview")

    citations = [
        Citation(text=str(c.get("text", "")), source=str(c.get("source", "")), footnote_number=index)
        for index, c in enumerate((c for c in parsed.get("citations") or [] if isinstance(c, dict)), start=1)
    ]
    drivers = [str(d) for d in parsed.get("keyDrivers") or []]

    confidence = _confidence(parsed.get("confidence"))
    if len(overview) > 200 and citations and confidence != "low":
        confidence = "high"
    elif len(overview) < 200:
        confidence = "low"

    return IndustryResearch(
        industry_name=str(parsed.get("industryName") or industry),
        overview=overview,
        outlook=str(parsed.get("outlook") or ""),
        key_drivers=drivers,
        citations=citations,
        confidence=confidence,
    )


def format_industry_with_citations(research: IndustryResearch) -> tuple[str, list[str]]:
    """Render the industry section text and its numbered footnotes."""
    parts = [research.overview]
    if research.key_drivers:
        parts.append("Key growth drivers include " + "; ".join(research.key_drivers) + ".")
    if research.outlook:
        parts.append(research.outlook)
    text = "\n\n".join(parts)

    footnotes = []
    markers = []
    for number, citation in enumerate(research.citations, start=1):
        footnotes.append(f"{number}. {citation.source}")
        markers.append(f"[{number}]")
    if markers:
        text = f"{text} {''.join(markers)}"
    return text, footnotes
