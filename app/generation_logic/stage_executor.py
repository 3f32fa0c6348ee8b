"""Runs the fixed, ordered generation pipeline for one job.

Stages: parsing_model, researching_company, researching_industry,
generating_narratives, assembling_document, saving_report, complete. A hard
failure aborts the run and marks the engagement ERROR; a soft failure replaces
the affected section with a placeholder, records a flag and a warning, and the
run continues.
"""

import logging
import time
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import date
from datetime import datetime
from typing import Any
from typing import TypeVar

from app.core.config import settings
from app.core.exceptions import HardStageError
from app.core.exceptions import SoftStageError
from app.generation_logic.engagement_state import mark_error
from app.generation_logic.job_store import JobStore
from app.generation_logic.job_store import job_store
from app.generation_logic.pacing import RateLimitedCaller
from app.generation_logic.pacing import build_pacing
from app.generation_logic.report_finalization import finalize_successful_run
from app.models.db_models import EngagementRecord
from app.models.job_models import NARRATIVES_FINAL_PROGRESS
from app.models.job_models import STAGE_CHECKPOINTS
from app.models.job_models import JobStage
from app.models.job_models import JobStatus
from app.models.report_models import CONFIDENCE_SCORES
from app.models.report_models import ApproachData
from app.models.report_models import ApproachNarrative
from app.models.report_models import ApproachType
from app.models.report_models import Citation
from app.models.report_models import Flag
from app.models.report_models import FlagType
from app.models.report_models import ParsedModel
from app.models.report_models import ReportContent
from app.models.report_models import SectionContent
from app.services.content_validation import summarise_validation
from app.services.content_validation import validate_content
from app.services.doc_builder import DocBuilderError
from app.services.doc_builder import assemble_document
from app.services.economic_outlook import get_outlook_for_date
from app.services.economic_outlook import quarter_for
from app.services.email.notify import notify_report_failed
from app.services.engagements import get_engagement
from app.services.model_parser import ModelParseError
from app.services.model_parser import parse_model
from app.services.narrative import generate_approach_narrative
from app.services.narrative import generate_conclusion_narrative
from app.services.narrative import identify_approach_type
from app.services.research import format_industry_with_citations
from app.services.research import research_company
from app.services.research import research_industry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STAGE_MESSAGES: dict[JobStage, str] = {
    JobStage.PARSING_MODEL: "Parsing valuation model...",
    JobStage.RESEARCHING_COMPANY: "Researching company information...",
    JobStage.RESEARCHING_INDUSTRY: "Analyzing industry outlook...",
    JobStage.GENERATING_NARRATIVES: "Generating valuation narratives...",
    JobStage.ASSEMBLING_DOCUMENT: "Assembling report document...",
    JobStage.SAVING_REPORT: "Saving report...",
}
FAILED_MESSAGE = "Report generation failed"
UNEXPECTED_ERROR_MESSAGE = "Report generation failed due to an internal error. Please retry or contact support."


@dataclass
class _Run:
    """Mutable state of one run. Owned by a single task, never shared."""

    job_id: str
    engagement_id: str
    caller: RateLimitedCaller
    started: float = field(default_factory=time.monotonic)
    warnings: list[str] = field(default_factory=list)
    flags: list[Flag] = field(default_factory=list)

    def flag(self, section: str, message: str, type: FlagType, warn: bool = True) -> None:
        self.flags.append(Flag(section=section, message=message, type=type))
        if warn:
            self.warnings.append(message)


class ReportPipeline:
    """Executes generation runs against a job store."""

    def __init__(self, store: JobStore = job_store, pacing_factory: Callable[[], Any] = build_pacing):
        self.store = store
        self.pacing_factory = pacing_factory

    # -- progress ------------------------------------------------------------------

    def _enter(self, run: _Run, stage: JobStage, **extra: Any) -> None:
        self.store.update(
            run.job_id,
            stage=stage,
            progress=STAGE_CHECKPOINTS[stage],
            message=_STAGE_MESSAGES[stage],
            **extra,
        )
        logger.info("[%s] Stage %s (%d%%)", run.job_id, stage.value, STAGE_CHECKPOINTS[stage])

    def _publish_warnings(self, run: _Run) -> None:
        self.store.update(run.job_id, warnings=run.warnings)

    async def _soft(self, run: _Run, section: str, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Make a paced AI call; any failure becomes a SoftStageError for *section*."""
        try:
            return await run.caller.call(fn, *args, **kwargs)
        except Exception as e:
            logger.warning("[%s] Soft failure in %s: %s", run.job_id, section, e, exc_info=True)
            raise SoftStageError(section, str(e) or e.__class__.__name__) from e

    def _degrade(self, run: _Run, err: SoftStageError, label: str) -> SectionContent:
        run.flag(err.section, f"{label} could not be generated: {err}", "error")
        self._publish_warnings(run)
        return SectionContent.placeholder(f"{label} not generated. Please complete manually.")

    # -- entry point ---------------------------------------------------------------

    async def run(self, job_id: str, engagement_id: str) -> None:
        """Execute every stage for *job_id*. Never raises: failures end up on the job."""
        run = _Run(job_id=job_id, engagement_id=engagement_id, caller=RateLimitedCaller(self.pacing_factory(), job_id))
        self._enter(run, JobStage.PARSING_MODEL, status=JobStatus.RUNNING, started_at=datetime.now(UTC))
        try:
            await self._execute(run)
        except HardStageError as e:
            await self._fail_run(run, str(e))
        except Exception:
            logger.exception("[%s] Unexpected pipeline error", job_id)
            await self._fail_run(run, UNEXPECTED_ERROR_MESSAGE)

    async def _execute(self, run: _Run) -> None:
        engagement = await get_engagement(run.engagement_id)
        if engagement is None:
            raise HardStageError("Engagement not found")
        if not engagement.model_file_path:
            raise HardStageError("No model file uploaded")

        try:
            parsed = await parse_model(engagement.model_file_path)
        except ModelParseError as e:
            raise HardStageError(f"Failed to parse model: {e}") from e
        run.warnings.extend(parsed.warnings)
        run.warnings.extend(f"Parse error: {err}" for err in parsed.errors)
        self._publish_warnings(run)

        company_name = engagement.company_name or parsed.company_name or "Unknown Company"
        valuation_date = engagement.valuation_date or parsed.valuation_date or date.today()

        self._enter(run, JobStage.RESEARCHING_COMPANY)
        company_overview, industry = await self._company_section(run, company_name, engagement.qualitative_context)

        self._enter(run, JobStage.RESEARCHING_INDUSTRY)
        industry_outlook, citations = await self._industry_section(run, industry, company_overview)
        economic_outlook = await self._economic_section(run, valuation_date)

        self._enter(run, JobStage.GENERATING_NARRATIVES)
        narratives, valuation_analysis, conclusion = await self._narrative_sections(
            run, engagement, parsed, company_name, valuation_date
        )

        content = ReportContent(
            company_name=company_name,
            valuation_date=valuation_date,
            report_type=engagement.report_type,
            company_overview=company_overview,
            industry_outlook=industry_outlook,
            economic_outlook=economic_outlook,
            valuation_analysis=valuation_analysis,
            conclusion=conclusion,
            approach_narratives=narratives,
            industry_citations=citations,
            concluded_value=parsed.concluded_value,
            dlom=parsed.dlom,
            flags=run.flags,
            warnings=run.warnings,
            generation_duration=time.monotonic() - run.started,
        )
        summary = summarise_validation(validate_content(content))
        if summary:
            run.warnings.append(summary)
            self._publish_warnings(run)

        self._enter(run, JobStage.ASSEMBLING_DOCUMENT)
        try:
            document = await assemble_document(content, run.job_id)
        except DocBuilderError as e:
            raise HardStageError(f"Document assembly failed: {e}") from e

        self._enter(run, JobStage.SAVING_REPORT)
        # The row may have been deleted while the run was in flight
        current = await get_engagement(run.engagement_id)
        if current is None:
            raise HardStageError("Engagement not found")
        await finalize_successful_run(run.job_id, current, document, run.warnings, store=self.store)
        logger.info("[%s] Run finished in %.1fs", run.job_id, time.monotonic() - run.started)

    # -- stages --------------------------------------------------------------------

    async def _company_section(
        self, run: _Run, company_name: str, context: str | None
    ) -> tuple[SectionContent, str]:
        try:
            research = await self._soft(run, "company_overview", research_company, company_name, context)
        except SoftStageError as e:
            return self._degrade(run, e, "Company overview"), settings.default_industry

        if research.limited_info:
            run.flag(
                "company_overview",
                "Limited public information found for the company; verify the overview",
                "review",
            )
        for warning in research.warnings:
            run.flag("company_overview", warning, "review", warn=False)
        self._publish_warnings(run)

        section = SectionContent(
            content=research.company_description,
            source="ai",
            confidence=CONFIDENCE_SCORES[research.confidence],
        )
        return section, research.industry or settings.default_industry

    async def _industry_section(
        self, run: _Run, industry: str, company_overview: SectionContent
    ) -> tuple[SectionContent, list[Citation]]:
        company_context = None if company_overview.is_placeholder else company_overview.content[:1000]
        try:
            research = await self._soft(run, "industry_outlook", research_industry, industry, company_context)
        except SoftStageError as e:
            return self._degrade(run, e, "Industry outlook"), []

        if research.confidence == "low":
            run.flag(
                "industry_outlook",
                "Industry research has low confidence; verify figures and sources",
                "review",
            )
            self._publish_warnings(run)
        text, _footnotes = format_industry_with_citations(research)
        return SectionContent(content=text, confidence=CONFIDENCE_SCORES[research.confidence]), research.citations

    async def _economic_section(self, run: _Run, valuation_date: date) -> SectionContent:
        quarter, year = quarter_for(valuation_date)
        text = await get_outlook_for_date(valuation_date)
        if not text:
            run.flag("economic_outlook", f"No economic outlook stored for Q{quarter} {year}", "missing")
            self._publish_warnings(run)
            return SectionContent.placeholder(f"Economic outlook for Q{quarter} {year} not available. Please insert manually.")
        return SectionContent(content=text, source="stored", confidence=1.0)

    def _plan_approaches(self, run: _Run, selected: list[str] | None, parsed: ParsedModel) -> list[tuple[ApproachType, ApproachData]]:
        found: dict[ApproachType, ApproachData] = {}
        skipped: list[str] = []
        for approach in parsed.approaches:
            approach_type = identify_approach_type(approach.name)
            if approach_type in found:
                skipped.append(approach.name)
            else:
                found[approach_type] = approach
        if skipped:
            run.warnings.append(
                f"Only the first approach of each type is narrated; not included: {', '.join(skipped)}"
            )
        if not selected:
            return list(found.items())

        plan: list[tuple[ApproachType, ApproachData]] = []
        for key in dict.fromkeys(selected):
            try:
                approach_type = ApproachType(key)
            except ValueError:
                run.warnings.append(f"Unknown valuation approach ignored: {key}")
                continue
            approach = found.get(approach_type)
            if approach is None:
                run.flag(
                    approach_type.value,
                    f"{approach_type.display_name}: no data found in the valuation model",
                    "missing",
                )
                approach = ApproachData(name=approach_type.display_name)
            plan.append((approach_type, approach))
        return plan

    async def _narrative_sections(
        self,
        run: _Run,
        engagement: EngagementRecord,
        parsed: ParsedModel,
        company_name: str,
        valuation_date: date,
    ) -> tuple[list[ApproachNarrative], dict[str, SectionContent], SectionContent]:
        plan = self._plan_approaches(run, engagement.selected_approaches, parsed)
        self._publish_warnings(run)
        narratives: list[ApproachNarrative] = []
        analysis: dict[str, SectionContent] = {}

        start = STAGE_CHECKPOINTS[JobStage.GENERATING_NARRATIVES]
        span = NARRATIVES_FINAL_PROGRESS - start
        steps = len(plan) + 1  # one per approach plus the conclusion

        for index, (approach_type, approach) in enumerate(plan, start=1):
            self.store.update(
                run.job_id,
                message=f"Generating narrative {index} of {len(plan)}: {approach.name}",
            )
            try:
                narrative = await self._soft(
                    run,
                    approach_type.value,
                    generate_approach_narrative,
                    approach,
                    company_name,
                    valuation_date,
                    engagement.report_type,
                    concluded_value=parsed.concluded_value,
                    qualitative_context=engagement.qualitative_context,
                    approach_type=approach_type,
                )
            except SoftStageError as e:
                analysis[approach_type.value] = self._degrade(run, e, approach.name)
                narratives.append(
                    ApproachNarrative(
                        approach_key=approach_type.value,
                        approach_name=approach.name,
                        approach_type=approach_type,
                        narrative="",
                        confidence="low",
                        failed=True,
                    )
                )
            else:
                narratives.append(narrative)
                analysis[approach_type.value] = SectionContent(
                    content=narrative.narrative, confidence=CONFIDENCE_SCORES[narrative.confidence]
                )
            self.store.update(run.job_id, progress=start + span * index // steps)

        self.store.update(run.job_id, message="Generating valuation conclusion...")
        approaches = [approach for _, approach in plan]
        try:
            text = await self._soft(
                run,
                "conclusion",
                generate_conclusion_narrative,
                approaches,
                company_name,
                valuation_date,
                engagement.report_type,
                concluded_value=parsed.concluded_value,
                dlom=parsed.dlom,
            )
            conclusion = SectionContent(content=text)
        except SoftStageError as e:
            conclusion = self._degrade(run, e, "Valuation conclusion")
        self.store.update(run.job_id, progress=NARRATIVES_FINAL_PROGRESS)
        return narratives, analysis, conclusion

    # -- failure -------------------------------------------------------------------

    async def _fail_run(self, run: _Run, message: str) -> None:
        """Terminal failure: job failed (progress kept), engagement ERROR, owner notified."""
        logger.error("[%s] Run failed: %s", run.job_id, message)
        self.store.update(
            run.job_id,
            status=JobStatus.FAILED,
            stage=JobStage.FAILED,
            message=FAILED_MESSAGE,
            error=message,
            warnings=run.warnings,
            completed_at=datetime.now(UTC),
        )
        try:
            await mark_error(run.engagement_id, message)
        except Exception:
            logger.exception("[%s] Could not mark engagement %s as ERROR", run.job_id, run.engagement_id)
        await notify_report_failed(run.engagement_id, message)
