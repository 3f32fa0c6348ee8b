from datetime import date
from unittest.mock import AsyncMock

import pytest

from app.models.db_models import ReportType
from app.models.report_models import ApproachData
from app.models.report_models import ApproachType
from app.services.llm import LLMError
from app.services.narrative import NarrativeError
from app.services.narrative import generate_approach_narrative
from app.services.narrative import generate_conclusion_narrative
from app.services.narrative import identify_approach_type

VALUATION_DATE = date(2025, 3, 31)


@pytest.fixture
def llm(monkeypatch):
    mock = AsyncMock(return_value="  The method indicates a value of $12.0 million.  ")
    monkeypatch.setattr("app.services.narrative.generate_text", mock)
    return mock


@pytest.fixture
def rendered(monkeypatch):
    """Record which prompt templates were rendered."""
    from app.services import narrative

    names = []
    real = narrative.render_prompt

    def _record(name, **context):
        names.append(name)
        return real(name, **context)

    monkeypatch.setattr(narrative, "render_prompt", _record)
    return names


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Guideline Public Company Method", ApproachType.GUIDELINE_PUBLIC_COMPANY),
        ("Market Multiple Approach", ApproachType.GUIDELINE_PUBLIC_COMPANY),
        ("Guideline Transaction Method", ApproachType.GUIDELINE_TRANSACTION),
        ("Precedent M&A Transactions", ApproachType.GUIDELINE_TRANSACTION),
        ("Discounted Cash Flow (DCF)", ApproachType.INCOME_DCF),
        ("Capitalized Cash Flow", ApproachType.INCOME_CCF),
        ("OPM Backsolve", ApproachType.BACKSOLVE),
        ("Option Pricing Method", ApproachType.OPM),
        ("Net Asset Value", ApproachType.ASSET),
        ("Scorecard", ApproachType.OTHER),
    ],
)
def test_identify_approach_type(name, expected):
    assert identify_approach_type(name) == expected


@pytest.mark.asyncio
async def test_approach_narrative_uses_type_specific_template(llm, rendered):
    approach = ApproachData(name="Guideline Public Company Method", indicated_value=12_000_000, weight=0.5)

    result = await generate_approach_narrative(approach, "Acme Corp", VALUATION_DATE, ReportType.FOUR09A, concluded_value=12_500_000)

    assert rendered[0] == "approach_guideline_public_company.jinja2"
    assert result.approach_key == "guideline_public_company"
    assert result.narrative == "The method indicates a value of $12.0 million."
    assert result.confidence == "high"
    prompt = llm.await_args.args[0]
    assert "Acme Corp" in prompt
    assert "$12.0 million" in prompt


@pytest.mark.asyncio
async def test_explicit_approach_type_wins_over_name(llm, rendered):
    approach = ApproachData(name="Scorecard")

    result = await generate_approach_narrative(
        approach, "Acme Corp", VALUATION_DATE, ReportType.FOUR09A, approach_type=ApproachType.BACKSOLVE
    )

    assert rendered[0] == "approach_backsolve.jinja2"
    assert result.approach_type == ApproachType.BACKSOLVE
    assert result.confidence == "medium"


@pytest.mark.asyncio
async def test_unknown_approach_uses_generic_template(llm, rendered):
    await generate_approach_narrative(ApproachData(name="Scorecard"), "Acme Corp", VALUATION_DATE, ReportType.FIFTY_NINE_SIXTY)

    assert rendered[0] == "approach_generic.jinja2"


@pytest.mark.asyncio
async def test_approach_narrative_failure_raises(llm):
    llm.side_effect = LLMError("rate limited")

    with pytest.raises(NarrativeError, match="Discounted Cash Flow"):
        await generate_approach_narrative(ApproachData(name="Discounted Cash Flow"), "Acme Corp", VALUATION_DATE, ReportType.FOUR09A)


@pytest.mark.asyncio
async def test_empty_narrative_raises(llm):
    llm.return_value = "   "

    with pytest.raises(NarrativeError, match="empty"):
        await generate_approach_narrative(ApproachData(name="Backsolve"), "Acme Corp", VALUATION_DATE, ReportType.FOUR09A)


@pytest.mark.asyncio
async def test_conclusion_narrative(llm, parsed_model):
    text = await generate_conclusion_narrative(
        parsed_model.approaches,
        "Acme Corp",
        VALUATION_DATE,
        ReportType.FOUR09A,
        concluded_value=parsed_model.concluded_value,
        dlom=parsed_model.dlom,
    )

    assert text == "The method indicates a value of $12.0 million."
    prompt = llm.await_args.args[0]
    assert "Discounted Cash Flow Method" in prompt
    assert "25.0%" in prompt


@pytest.mark.asyncio
async def test_conclusion_failure_raises(llm, parsed_model):
    llm.side_effect = LLMError("bad gateway")

    with pytest.raises(NarrativeError, match="Conclusion narrative failed"):
        await generate_conclusion_narrative(parsed_model.approaches, "Acme Corp", VALUATION_DATE, ReportType.FOUR09A)
