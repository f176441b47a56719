"""
Celery application configuration for background tasks.
"""

import asyncio

from celery import Celery
from ..config import get_settings
from ..database import close_database, init_database

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "yogaswiss",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "yogaswiss.tasks.schedule_tasks",
        "yogaswiss.tasks.finance_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Periodic tasks configuration
celery_app.conf.beat_schedule = {
    "promote-waitlists": {
        "task": "promote_waitlists_task",
        "schedule": settings.waitlist_tick_seconds,
    },
    "expire-stale-payments": {
        "task": "expire_stale_payments_task",
        "schedule": 60.0,  # Run every minute
    },
    "mark-overdue-invoices": {
        "task": "mark_overdue_invoices_task",
        "schedule": 3600.0,  # Run every hour
    },
    "expire-gift-cards": {
        "task": "expire_gift_cards_task",
        "schedule": 3600.0,
    },
    "expire-wallet-credits": {
        "task": "expire_wallet_credits_task",
        "schedule": 3600.0,
    },
    "generate-series-occurrences": {
        "task": "generate_series_occurrences_task",
        "schedule": 6 * 3600.0,  # Run every 6 hours
    },
}

celery_app.conf.timezone = "UTC"


def run_with_database(work):
    """
    Run ``work`` (an async callable) on a fresh event loop with its own engine.

    Every task gets a new loop, and asyncpg connections cannot cross loops,
    so the engine is created and disposed around each run.
    """
    async def _run():
        await init_database(create_tables=False)
        try:
            return await work()
        finally:
            await close_database()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()
