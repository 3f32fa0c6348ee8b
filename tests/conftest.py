import io
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from openpyxl import Workbook

from app.core import database
from app.core.config import settings
from app.core.database import session_scope
from app.generation_logic.job_store import job_store
from app.models.db_models import Engagement
from app.models.db_models import EngagementRecord
from app.models.db_models import EngagementStatus
from app.models.db_models import ReportType
from app.models.report_models import ApproachData
from app.models.report_models import ApproachNarrative
from app.models.report_models import Citation
from app.models.report_models import CompanyResearch
from app.models.report_models import IndustryResearch
from app.models.report_models import ParsedModel
from app.services.economic_outlook import clear_outlook_cache

THREE_APPROACHES = ["guideline_public_company", "income_dcf", "backsolve"]


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Fresh SQLite database, local storage under tmp_path, no pacing delay, empty job store."""
    database.configure_database(f"sqlite:///{tmp_path / 'test.db'}")
    database.init_db()
    monkeypatch.setattr(settings, "ai_call_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "pacing_strategy", "fixed")
    monkeypatch.setattr(settings, "storage_backend", "local")
    monkeypatch.setattr(settings, "upload_base_path", tmp_path / "uploads")
    monkeypatch.setattr(settings, "economic_outlook_dir", tmp_path / "outlooks")
    monkeypatch.setattr(settings, "smtp_host", None)
    job_store.clear()
    clear_outlook_cache()
    yield
    job_store.clear()


@pytest.fixture
def make_engagement():
    """Insert an engagement row and return its snapshot."""

    def _make(**overrides) -> EngagementRecord:
        values = {
            "owner_id": "user-1",
            "owner_email": "owner@example.com",
            "report_type": ReportType.FOUR09A,
            "company_name": "Acme Corp",
            "valuation_date": date(2025, 3, 31),
            "model_file_path": "uploads/models/acme.xlsx",
            "selected_approaches": list(THREE_APPROACHES),
            "qualitative_context": "Series B closed in January.",
            "status": EngagementStatus.DRAFT,
        }
        values.update(overrides)
        with session_scope() as session:
            engagement = Engagement(**values)
            session.add(engagement)
            session.flush()
            return EngagementRecord.model_validate(engagement)

    return _make


@pytest.fixture
def load_engagement():
    """Read an engagement row synchronously, bypassing the async service layer."""

    def _load(engagement_id: str) -> EngagementRecord | None:
        with session_scope() as session:
            row = session.get(Engagement, engagement_id)
            return EngagementRecord.model_validate(row) if row else None

    return _load


@pytest.fixture
def parsed_model() -> ParsedModel:
    return ParsedModel(
        company_name="Acme Corp",
        valuation_date=date(2025, 3, 31),
        concluded_value=12_500_000.0,
        dlom=0.25,
        approaches=[
            ApproachData(name="Guideline Public Company Method", indicated_value=12_000_000.0, weight=0.5, sheet="Summary"),
            ApproachData(name="Discounted Cash Flow Method", indicated_value=13_000_000.0, weight=0.3, sheet="Summary"),
            ApproachData(name="Backsolve Method", indicated_value=12_500_000.0, weight=0.2, sheet="Summary"),
        ],
        sheet_names=["Summary"],
    )


async def _fake_narrative(approach, company_name, valuation_date, report_type, **kwargs):
    approach_type = kwargs["approach_type"]
    return ApproachNarrative(
        approach_key=approach_type.value,
        approach_name=approach.name,
        approach_type=approach_type,
        narrative=f"{company_name}: {approach.name} indicates value.",
        confidence="high",
    )


@pytest.fixture
def fake_collaborators(monkeypatch, parsed_model):
    """Replace every external collaborator of the stage executor with an AsyncMock."""
    fakes = SimpleNamespace(
        parse_model=AsyncMock(return_value=parsed_model),
        research_company=AsyncMock(
            return_value=CompanyResearch(
                company_name="Acme Corp",
                company_description="Acme Corp builds industrial automation software for mid-sized manufacturers.",
                industry="Industrial Software",
                confidence="high",
            )
        ),
        research_industry=AsyncMock(
            return_value=IndustryResearch(
                industry_name="Industrial Software",
                overview="The industrial software market " + "continues to expand steadily. " * 10,
                citations=[Citation(text="Market grew 8%", source="Industry Report 2025", footnote_number=1)],
                confidence="high",
            )
        ),
        get_outlook_for_date=AsyncMock(return_value="The U.S. economy grew modestly in the first quarter."),
        generate_approach_narrative=AsyncMock(side_effect=_fake_narrative),
        generate_conclusion_narrative=AsyncMock(return_value="The concluded value reconciles the three approaches."),
        assemble_document=AsyncMock(return_value=b"PK\x03\x04docx-bytes"),
        notify_report_failed=AsyncMock(),
        notify_report_complete=AsyncMock(),
    )
    executor = "app.generation_logic.stage_executor"
    for name in (
        "parse_model",
        "research_company",
        "research_industry",
        "get_outlook_for_date",
        "generate_approach_narrative",
        "generate_conclusion_narrative",
        "assemble_document",
        "notify_report_failed",
    ):
        monkeypatch.setattr(f"{executor}.{name}", getattr(fakes, name))
    monkeypatch.setattr("app.generation_logic.report_finalization.notify_report_complete", fakes.notify_report_complete)
    return fakes


@pytest.fixture
def workbook_bytes():
    """A small valuation model in the layout the parser understands."""

    def _make(approaches=None) -> bytes:
        wb = Workbook()
        ws = wb.active
        ws.title = "Summary"
        ws.append(["Company Name", "Acme Corp"])
        ws.append(["Valuation Date", date(2025, 3, 31)])
        ws.append([])
        ws.append(["Approach", "Indicated Value", "Weight"])
        for row in approaches or [
            ("Guideline Public Company Method", 12_000_000, 0.5),
            ("Discounted Cash Flow (DCF)", 13_000_000, 0.3),
            ("Backsolve Method", 12_500_000, 0.2),
        ]:
            ws.append(list(row))
        ws.append([])
        ws.append(["Concluded Fair Market Value", 12_500_000])
        ws.append(["DLOM", 0.25])
        bio = io.BytesIO()
        wb.save(bio)
        return bio.getvalue()

    return _make


@pytest.fixture
def sniff_workbook(monkeypatch):
    """Make content-type detection report every upload as an xlsx workbook."""
    monkeypatch.setattr(
        "app.core.validation.magic.from_buffer",
        lambda content, mime=False: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
