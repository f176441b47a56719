"""
Celery tasks for the class schedule: waitlist promotion and recurring series.
"""

import logging
from datetime import timedelta

from .celery_app import celery_app, run_with_database, settings
from ..database import get_db_session
from ..services.class_service import ClassService
from ..services.registration_service import RegistrationService
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


@celery_app.task(name="promote_waitlists_task")
def promote_waitlists_task():
    """
    Fill seats freed in scheduled classes from their waitlists.

    Runs every ``waitlist_tick_seconds``; cancellations already promote
    inline, so this catches capacity increases and failed promotions.
    """
    async def _promote():
        async with get_db_session() as session:
            promoted = await RegistrationService(session).promote_waitlists_tick()
        if promoted:
            logger.info(f"Promoted {promoted} waitlisted registrations")
        return {"promoted": promoted}

    return run_with_database(_promote)


@celery_app.task(name="generate_series_occurrences_task")
def generate_series_occurrences_task():
    """Keep every active series materialized up to the generation horizon."""
    async def _generate():
        until = utcnow().date() + timedelta(days=settings.series_generation_horizon_days)
        async with get_db_session() as session:
            created = await ClassService(session).generate_all_series(until)
        logger.info(f"Generated {created} occurrences up to {until}")
        return {"created": created, "until": until.isoformat()}

    return run_with_database(_generate)
