import logging

from app.models.report_models import ReportContent
from app.models.report_models import ValidationResult

logger = logging.getLogger(__name__)


def validate_content(content: ReportContent) -> ValidationResult:
    """Summarise what the assembled content is missing.

    An invalid result never blocks the run: a partial report with flagged
    sections is still worth delivering.
    """
    errors: list[str] = []
    missing: list[str] = []
    review: list[str] = []

    if content.company_overview.is_placeholder:
        missing.append("company_overview")
    if content.conclusion.is_placeholder:
        missing.append("conclusion")
    if not content.valuation_analysis:
        errors.append("No valuation approach narratives generated")

    for flag in content.flags:
        if flag.type == "error":
            errors.append(f"{flag.section}: {flag.message}")
        elif flag.type == "missing":
            if flag.section not in missing:
                missing.append(flag.section)
        else:
            review.append(f"{flag.section}: {flag.message}")

    result = ValidationResult(
        is_valid=not errors and not missing,
        errors=errors,
        missing_required=missing,
        review_needed=review,
    )
    if not result.is_valid:
        logger.info("Content validation: %d error(s), %d missing section(s)", len(errors), len(missing))
    return result


def summarise_validation(result: ValidationResult) -> str | None:
    """One warning line for an invalid result, None when valid."""
    if result.is_valid:
        return None
    return f"Report is incomplete: {len(result.errors)} error(s), {len(result.missing_required)} missing section(s)"
