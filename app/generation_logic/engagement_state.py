"""Durable status transitions of an engagement.

Allowed transitions: DRAFT→PROCESSING, ERROR→PROCESSING, PROCESSING→COMPLETE,
PROCESSING→ERROR. The plain ``mark_*`` writes trust their caller; only the
launcher's claim is conditional, which is what keeps two concurrent launches
from both passing the eligibility check.
"""

import asyncio
import logging

from sqlalchemy import update

from app.core.database import session_scope
from app.models.db_models import Engagement
from app.models.db_models import EngagementStatus

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (EngagementStatus.DRAFT, EngagementStatus.ERROR)
INTERRUPTED_MESSAGE = "Generation interrupted by a server restart. Please retry."


async def update_engagement_status(engagement_id: str, status: EngagementStatus, error: str | None = None) -> None:
    """Single durable write of {status, error_message}."""

    def _sync() -> int:
        with session_scope() as session:
            result = session.execute(
                update(Engagement).where(Engagement.id == engagement_id).values(status=status, error_message=error)
            )
            return result.rowcount

    rowcount = await asyncio.to_thread(_sync)
    if rowcount == 0:
        logger.warning("Engagement %s not found while setting status %s", engagement_id, status.value)
        return
    logger.info(
        "Engagement %s status updated to %s%s",
        engagement_id,
        status.value,
        f" (error: {error})" if error else "",
    )


async def mark_processing(engagement_id: str) -> None:
    await update_engagement_status(engagement_id, EngagementStatus.PROCESSING)


async def mark_complete(engagement_id: str) -> None:
    await update_engagement_status(engagement_id, EngagementStatus.COMPLETE)


async def mark_error(engagement_id: str, message: str) -> None:
    await update_engagement_status(engagement_id, EngagementStatus.ERROR, message)


async def reset_to_draft(engagement_id: str) -> None:
    await update_engagement_status(engagement_id, EngagementStatus.DRAFT)


async def claim_for_processing(engagement_id: str) -> bool:
    """Atomically move the engagement to PROCESSING if it is DRAFT or ERROR.

    Returns True when this caller won the transition.
    """

    def _sync() -> int:
        with session_scope() as session:
            result = session.execute(
                update(Engagement)
                .where(Engagement.id == engagement_id, Engagement.status.in_(CLAIMABLE_STATUSES))
                .values(status=EngagementStatus.PROCESSING, error_message=None)
            )
            return result.rowcount

    claimed = await asyncio.to_thread(_sync) == 1
    if claimed:
        logger.info("Engagement %s claimed for processing", engagement_id)
    return claimed


async def reconcile_stuck_processing(live_engagement_ids: set[str] | frozenset[str] = frozenset()) -> int:
    """Move PROCESSING engagements without a live job to ERROR.

    Job state is process-local, so after a restart nothing will ever finish
    those runs. Returns the number of engagements reset.
    """

    def _sync() -> int:
        with session_scope() as session:
            stmt = update(Engagement).where(Engagement.status == EngagementStatus.PROCESSING)
            if live_engagement_ids:
                stmt = stmt.where(Engagement.id.not_in(live_engagement_ids))
            result = session.execute(stmt.values(status=EngagementStatus.ERROR, error_message=INTERRUPTED_MESSAGE))
            return result.rowcount

    count = await asyncio.to_thread(_sync)
    if count:
        logger.warning("Reset %d engagement(s) stuck in PROCESSING to ERROR", count)
    return count
