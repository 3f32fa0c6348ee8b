from datetime import date

import pytest

from app.models.db_models import ReportType
from app.models.report_models import Flag
from app.models.report_models import ReportContent
from app.models.report_models import SectionContent
from app.services.content_validation import summarise_validation
from app.services.content_validation import validate_content


@pytest.fixture
def content():
    return ReportContent(
        company_name="Acme Corp",
        valuation_date=date(2025, 3, 31),
        report_type=ReportType.FOUR09A,
        company_overview=SectionContent(content="Overview"),
        industry_outlook=SectionContent(content="Industry"),
        economic_outlook=SectionContent(content="Economy", source="stored"),
        valuation_analysis={"backsolve": SectionContent(content="Backsolve narrative")},
        conclusion=SectionContent(content="Conclusion"),
    )


def test_complete_content_is_valid(content):
    result = validate_content(content)

    assert result.is_valid
    assert summarise_validation(result) is None


def test_placeholder_overview_and_conclusion_are_missing(content):
    content.company_overview = SectionContent.placeholder("Company overview could not be generated")
    content.conclusion = SectionContent.placeholder("Conclusion could not be generated")

    result = validate_content(content)

    assert not result.is_valid
    assert result.missing_required == ["company_overview", "conclusion"]


def test_no_approaches_is_an_error(content):
    content.valuation_analysis = {}

    result = validate_content(content)

    assert result.errors == ["No valuation approach narratives generated"]


def test_flags_are_sorted_by_type(content):
    content.company_overview = SectionContent.placeholder("Company overview could not be generated")
    content.flags = [
        Flag(section="income_dcf", message="Narrative could not be generated", type="error"),
        Flag(section="economic_outlook", message="No outlook stored", type="missing"),
        Flag(section="company_overview", message="Could not be generated", type="missing"),
        Flag(section="industry_outlook", message="Low confidence", type="review"),
    ]

    result = validate_content(content)

    assert result.errors == ["income_dcf: Narrative could not be generated"]
    assert result.missing_required == ["company_overview", "economic_outlook"]
    assert result.review_needed == ["industry_outlook: Low confidence"]
    assert summarise_validation(result) == "Report is incomplete: 1 error(s), 2 missing section(s)"


def test_review_flags_alone_keep_content_valid(content):
    content.flags = [Flag(section="company_overview", message="Limited public information", type="review")]

    assert validate_content(content).is_valid
