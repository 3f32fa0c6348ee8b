"""Approach and conclusion narratives for the valuation analysis section."""

import logging
from datetime import date

from app.models.db_models import ReportType
from app.models.report_models import ApproachData
from app.models.report_models import ApproachNarrative
from app.models.report_models import ApproachType
from app.services.llm import LLMError
from app.services.llm import generate_text
from app.services.llm import render_prompt

logger = logging.getLogger(__name__)

# Checked in order: the first matching rule wins.
_TYPE_KEYWORDS: list[tuple[ApproachType, tuple[str, ...]]] = [
    (ApproachType.GUIDELINE_TRANSACTION, ("transaction", "m&a", "merger")),
    (ApproachType.GUIDELINE_PUBLIC_COMPANY, ("guideline public", "public company", "gpc", "market multiple")),
    (ApproachType.INCOME_DCF, ("dcf", "discounted cash")),
    (ApproachType.INCOME_CCF, ("ccf", "capitalized cash", "capitalization of")),
    (ApproachType.BACKSOLVE, ("backsolve", "back-solve", "back solve")),
    (ApproachType.OPM, ("opm", "option pricing")),
    (ApproachType.ASSET, ("asset", "nav", "book value")),
]

_TEMPLATE_FOR_TYPE: dict[ApproachType, str] = {
    ApproachType.GUIDELINE_PUBLIC_COMPANY: "approach_guideline_public_company.jinja2",
    ApproachType.GUIDELINE_TRANSACTION: "approach_guideline_transaction.jinja2",
    ApproachType.INCOME_DCF: "approach_income.jinja2",
    ApproachType.INCOME_CCF: "approach_income.jinja2",
    ApproachType.BACKSOLVE: "approach_backsolve.jinja2",
    ApproachType.OPM: "approach_opm.jinja2",
}


class NarrativeError(Exception):
    """Raised when a narrative cannot be generated."""


def identify_approach_type(approach_name: str) -> ApproachType:
    name = approach_name.lower()
    for approach_type, keywords in _TYPE_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return approach_type
    return ApproachType.OTHER


async def generate_approach_narrative(
    approach: ApproachData,
    company_name: str,
    valuation_date: date,
    report_type: ReportType,
    concluded_value: float | None = None,
    qualitative_context: str | None = None,
    approach_type: ApproachType | None = None,
) -> ApproachNarrative:
    """Generate the narrative of one valuation approach.

    Raises:
        NarrativeError: if the model call fails or returns nothing usable.
    """
    approach_type = approach_type or identify_approach_type(approach.name)
    template = _TEMPLATE_FOR_TYPE.get(approach_type, "approach_generic.jinja2")
    prompt = render_prompt(
        template,
        approach=approach,
        company_name=company_name,
        valuation_date=valuation_date.isoformat(),
        report_type=report_type.display_name,
        concluded_value=concluded_value,
        qualitative_context=qualitative_context,
    )

    try:
        text = await generate_text(prompt, system_prompt=render_prompt("narrative_system.jinja2"))
    except LLMError as e:
        raise NarrativeError(f"Narrative for {approach.name} failed: {e}") from e
    if not text.strip():
        raise NarrativeError(f"Narrative for {approach.name} was empty")

    confidence = "high" if approach.indicated_value is not None else "medium"
    return ApproachNarrative(
        approach_key=approach_type.value,
        approach_name=approach.name,
        approach_type=approach_type,
        narrative=text.strip(),
        confidence=confidence,
    )


async def generate_conclusion_narrative(
    approaches: list[ApproachData],
    company_name: str,
    valuation_date: date,
    report_type: ReportType,
    concluded_value: float | None = None,
    dlom: float | None = None,
) -> str:
    """Generate the reconciliation narrative across all approaches.

    Raises:
        NarrativeError: if the model call fails or returns nothing usable.
    """
    prompt = render_prompt(
        "conclusion.jinja2",
        approaches=approaches,
        company_name=company_name,
        valuation_date=valuation_date.isoformat(),
        report_type=report_type.display_name,
        concluded_value=concluded_value,
        dlom=dlom,
    )
    try:
        text = await generate_text(prompt, system_prompt=render_prompt("narrative_system.jinja2"))
    except LLMError as e:
        raise NarrativeError(f"Conclusion narrative failed: {e}") from e
    if not text.strip():
        raise NarrativeError("Conclusion narrative was empty")
    return text.strip()
