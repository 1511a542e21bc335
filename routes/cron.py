# routes/cron.py
import logging

from fastapi import APIRouter, Depends
from sqlmodel import Session

from core.database import get_session
from core.security import verify_cron_request
from schemas.billing_schema import ExpiryReport, ReminderReport
from services.email_service import EmailService, get_email_service
from services.expiry_sweep import run_expiry_sweep
from services.reminder_scheduler import run_subscription_reminders

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Scheduled jobs"])


@router.post("/subscription-reminders", response_model=ReminderReport)
def subscription_reminders(
    caller: str = Depends(verify_cron_request),
    session: Session = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
):
    logger.info(f"⏰ Subscription reminders triggered ({caller})")
    return run_subscription_reminders(session, email_service)


@router.post("/expire-subscriptions", response_model=ExpiryReport)
def expire_subscriptions(
    caller: str = Depends(verify_cron_request),
    session: Session = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
):
    logger.info(f"⏰ Expiry sweep triggered ({caller})")
    return run_expiry_sweep(session, email_service)
