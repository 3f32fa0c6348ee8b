from datetime import UTC
from datetime import date
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel
from pydantic import Field

from app.models.db_models import ReportType

FlagType = Literal["error", "missing", "review"]
ContentSource = Literal["ai", "stored", "placeholder"]
Confidence = Literal["high", "medium", "low"]

CONFIDENCE_SCORES: dict[str, float] = {"high": 0.9, "medium": 0.7, "low": 0.5}


class ApproachType(str, Enum):
    GUIDELINE_PUBLIC_COMPANY = "guideline_public_company"
    GUIDELINE_TRANSACTION = "guideline_transaction"
    INCOME_DCF = "income_dcf"
    INCOME_CCF = "income_ccf"
    BACKSOLVE = "backsolve"
    OPM = "opm"
    ASSET = "asset"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return APPROACH_DISPLAY_NAMES[self]


APPROACH_DISPLAY_NAMES: dict[ApproachType, str] = {
    ApproachType.GUIDELINE_PUBLIC_COMPANY: "Guideline Public Company Method",
    ApproachType.GUIDELINE_TRANSACTION: "Guideline Transaction Method",
    ApproachType.INCOME_DCF: "Discounted Cash Flow Method",
    ApproachType.INCOME_CCF: "Capitalized Cash Flow Method",
    ApproachType.BACKSOLVE: "Backsolve Method",
    ApproachType.OPM: "Option Pricing Method",
    ApproachType.ASSET: "Asset Approach",
    ApproachType.OTHER: "Other Approach",
}


class Flag(BaseModel):
    """An item surfaced in the document and in job warnings for manual review."""

    section: str
    message: str
    type: FlagType


class SectionContent(BaseModel):
    content: str
    source: ContentSource = "ai"
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    @classmethod
    def placeholder(cls, message: str) -> "SectionContent":
        return cls(content=message, source="placeholder", confidence=0.0)

    @property
    def is_placeholder(self) -> bool:
        return self.source == "placeholder"


class Citation(BaseModel):
    text: str
    source: str
    footnote_number: int | None = None


# Parsed valuation model -----------------------------------------------------------------


class ApproachData(BaseModel):
    name: str
    indicated_value: float | None = None
    weight: float | None = None
    sheet: str | None = None


class ParsedModel(BaseModel):
    """Structured data pulled out of the uploaded valuation workbook."""

    company_name: str | None = None
    valuation_date: date | None = None
    concluded_value: float | None = None
    dlom: float | None = None
    approaches: list[ApproachData] = Field(default_factory=list)
    sheet_names: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# Research and narratives ----------------------------------------------------------------


class CompanyResearch(BaseModel):
    company_name: str
    company_description: str
    business_model: str = "Information not available"
    products: list[str] = Field(default_factory=list)
    industry: str | None = None
    confidence: Confidence = "medium"
    limited_info: bool = False
    warnings: list[str] = Field(default_factory=list)


class IndustryResearch(BaseModel):
    industry_name: str
    overview: str
    outlook: str = ""
    key_drivers: list[str] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)
    confidence: Confidence = "medium"


class ApproachNarrative(BaseModel):
    approach_key: str
    approach_name: str
    approach_type: ApproachType
    narrative: str
    confidence: Confidence = "medium"
    failed: bool = False


class ReportContent(BaseModel):
    """Everything the document assembler needs for one run."""

    company_name: str
    valuation_date: date
    report_type: ReportType

    company_overview: SectionContent
    industry_outlook: SectionContent
    economic_outlook: SectionContent
    valuation_analysis: dict[str, SectionContent] = Field(default_factory=dict)
    conclusion: SectionContent

    approach_narratives: list[ApproachNarrative] = Field(default_factory=list)
    industry_citations: list[Citation] = Field(default_factory=list)
    concluded_value: float | None = None
    dlom: float | None = None

    flags: list[Flag] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    generation_duration: float = 0.0


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    missing_required: list[str] = Field(default_factory=list)
    review_needed: list[str] = Field(default_factory=list)
