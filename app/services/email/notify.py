"""Report-ready and report-failed notifications.

Both entry points log and swallow every failure; they never raise into the
caller.
"""

import logging
import pathlib
from datetime import date

import jinja2

from app.core.config import settings
from app.core.exceptions import NotificationError
from app.models.db_models import EngagementRecord
from app.services.email.client import send_email
from app.services.engagements import get_engagement

logger = logging.getLogger(__name__)

TEMPLATE_DIR = pathlib.Path(__file__).parent / "templates"
env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(TEMPLATE_DIR),
    autoescape=jinja2.select_autoescape(enabled_extensions=("html.jinja2",), default_for_string=False),
    trim_blocks=True,
    lstrip_blocks=True,
)


def _format_date(value: date | None) -> str:
    if value is None:
        return "Not specified"
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def build_report_ready_email(engagement: EngagementRecord, warnings: list[str]) -> tuple[str, str, str]:
    company = engagement.company_name or "Unknown Company"
    context = {
        "company_name": company,
        "report_type": engagement.report_type.display_name,
        "valuation_date": _format_date(engagement.valuation_date),
        "dashboard_url": settings.dashboard_url,
        "warnings": warnings[: settings.max_notification_warnings],
    }
    subject = f"Your {company} Valuation Report is Ready"
    html = env.get_template("report_ready.html.jinja2").render(**context)
    text = env.get_template("report_ready.txt.jinja2").render(**context)
    return subject, html, text


def build_report_failed_email(engagement: EngagementRecord, error_message: str) -> tuple[str, str, str]:
    company = engagement.company_name or "Unknown Company"
    context = {
        "company_name": company,
        "report_type": engagement.report_type.display_name,
        "error_message": error_message,
        "dashboard_url": settings.dashboard_url,
    }
    subject = f"Report Generation Failed: {company}"
    html = env.get_template("report_failed.html.jinja2").render(**context)
    text = env.get_template("report_failed.txt.jinja2").render(**context)
    return subject, html, text


async def _recipient(engagement_id: str) -> EngagementRecord | None:
    engagement = await get_engagement(engagement_id)
    if engagement is None or not engagement.owner_email:
        logger.warning("Cannot send notification: engagement %s or owner email not found", engagement_id)
        return None
    return engagement


async def notify_report_complete(engagement_id: str, warnings: list[str] | None = None) -> None:
    try:
        engagement = await _recipient(engagement_id)
        if engagement is None:
            return
        subject, html, text = build_report_ready_email(engagement, list(warnings or []))
        await send_email(engagement.owner_email, subject, html, text)
    except (NotificationError, jinja2.TemplateError) as e:
        logger.error("Failed to send report complete notification for %s: %s", engagement_id, e)
    except Exception:
        logger.exception("Unexpected error sending report complete notification for %s", engagement_id)


async def notify_report_failed(engagement_id: str, error_message: str) -> None:
    try:
        engagement = await _recipient(engagement_id)
        if engagement is None:
            return
        subject, html, text = build_report_failed_email(engagement, error_message)
        await send_email(engagement.owner_email, subject, html, text)
    except (NotificationError, jinja2.TemplateError) as e:
        logger.error("Failed to send report failed notification for %s: %s", engagement_id, e)
    except Exception:
        logger.exception("Unexpected error sending report failed notification for %s", engagement_id)
