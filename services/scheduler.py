# services/scheduler.py
"""
In-process daily trigger for the reminder and expiry jobs.

Runs once a day at a fixed UTC time, so restarting the app does not fire the
jobs again. The cron endpoints stay available for external schedulers.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import Session

from core.config import settings
from core.database import engine
from services.email_service import EmailService, email_service as default_email_service
from services.expiry_sweep import run_expiry_sweep
from services.reminder_scheduler import run_subscription_reminders

logger = logging.getLogger(__name__)

DAILY_JOB_ID = "daily_billing_jobs"


def run_daily_jobs(email_service: Optional[EmailService] = None) -> Dict[str, Any]:
    """Reminders first, then the sweep, each with its own session."""
    email_service = email_service or default_email_service
    with Session(engine) as session:
        reminders = run_subscription_reminders(session, email_service)
    with Session(engine) as session:
        expiry = run_expiry_sweep(session, email_service)
    return {"reminders": reminders, "expiry": expiry}


async def run_scheduled_billing_jobs() -> None:
    """Scheduler entry point; failures are logged so the next run still happens."""
    try:
        result = await asyncio.to_thread(run_daily_jobs)
        logger.info(
            f"✅ Daily billing jobs done: {result['reminders']['reminders_sent']} reminders, "
            f"{result['expiry']['expired_count']} expired"
        )
    except Exception as e:
        logger.exception(f"❌ Daily billing jobs failed: {e}")


def build_billing_scheduler(hour: Optional[int] = None, minute: Optional[int] = None) -> AsyncIOScheduler:
    hour = settings.BILLING_SCHEDULER_HOUR if hour is None else hour
    minute = settings.BILLING_SCHEDULER_MINUTE if minute is None else minute

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_scheduled_billing_jobs,
        trigger=CronTrigger(hour=hour, minute=minute, timezone="UTC"),
        id=DAILY_JOB_ID,
        name="Subscription reminders + expiry sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def start_billing_scheduler() -> Optional[AsyncIOScheduler]:
    """Start the daily scheduler; must be called with a running event loop."""
    if not settings.ENABLE_BILLING_SCHEDULER:
        logger.info("ℹ️ Billing scheduler disabled (ENABLE_BILLING_SCHEDULER=false)")
        return None

    scheduler = build_billing_scheduler()
    scheduler.start()
    logger.info(
        f"⏰ Billing scheduler started, daily at "
        f"{settings.BILLING_SCHEDULER_HOUR:02d}:{settings.BILLING_SCHEDULER_MINUTE:02d} UTC"
    )
    return scheduler


def stop_billing_scheduler(scheduler: Optional[AsyncIOScheduler]) -> None:
    if scheduler is None or not scheduler.running:
        return
    try:
        scheduler.shutdown(wait=False)
        logger.info("✅ Billing scheduler stopped")
    except Exception as e:
        logger.error(f"❌ Error shutting down billing scheduler: {e}")
