# ================================================================
# services/lifecycle_emails.py: trial / purchase / cancel / plan change mails
# ================================================================
"""
Which lifecycle email a subscription change deserves, and sending it.

Callers compare the stored row with the incoming state before they write,
and send only after their transaction is committed.
"""
import logging
import math
from enum import Enum
from typing import Optional

from sqlmodel import Session

from core.config import settings
from core.exceptions import NotFound
from models.models import Plan, Profile, SubscriptionStatus, utcnow
from services.billing_messages import (
    format_end_date,
    plan_changed_email,
    subscription_canceled_email,
    subscription_purchased_email,
    trial_started_email,
)
from services.email_service import EmailService
from services.subscription_store import get_subscription_for_user, resolve_user_email

logger = logging.getLogger(__name__)

DEFAULT_PLAN_LABEL = "Pro"
DEFAULT_OLD_PLAN_LABEL = "Free"


class LifecycleEvent(str, Enum):
    TRIAL_STARTED = "trial_started"
    SUBSCRIPTION_PURCHASED = "subscription_purchased"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PLAN_CHANGED = "plan_changed"


def detect_lifecycle_event(
    old_status: Optional[str],
    old_plan_id: Optional[int],
    status: str,
    plan_id: Optional[int],
    canceled: bool = False,
) -> Optional[LifecycleEvent]:
    """
    `old_status` is None when the user had no subscription row yet.

    A change between two known plans wins over a status change; a trial
    turning active counts as a purchase.
    """
    if old_status is None:
        if status == SubscriptionStatus.TRIALING.value:
            return LifecycleEvent.TRIAL_STARTED
        if status == SubscriptionStatus.ACTIVE.value:
            return LifecycleEvent.SUBSCRIPTION_PURCHASED
        return None

    if old_plan_id and plan_id and old_plan_id != plan_id:
        return LifecycleEvent.PLAN_CHANGED

    if old_status == status:
        return None
    if status == SubscriptionStatus.CANCELED.value or canceled:
        return LifecycleEvent.SUBSCRIPTION_CANCELED
    if status == SubscriptionStatus.ACTIVE.value and old_status == SubscriptionStatus.TRIALING.value:
        return LifecycleEvent.SUBSCRIPTION_PURCHASED
    return None


def _plan_name(session: Session, plan_id: Optional[int], fallback: str) -> str:
    plan = session.get(Plan, plan_id) if plan_id else None
    return (plan.display_name or plan.name) if plan else fallback


def send_lifecycle_email(
    session: Session,
    email_service: EmailService,
    user_id: int,
    event: LifecycleEvent,
    plan_id: Optional[int],
    old_plan_id: Optional[int] = None,
) -> bool:
    """Returns True when the email was handed to the email service."""
    try:
        to_email = resolve_user_email(session, user_id)
    except NotFound as e:
        logger.warning(f"⚠️ No {event.value} email for user {user_id}: {e}")
        return False

    profile = session.get(Profile, user_id)
    subscription = get_subscription_for_user(session, user_id)
    language = profile.language if profile else "en"
    user_name = (profile.full_name if profile else None) or to_email.split("@")[0]
    plan_name = _plan_name(session, plan_id, DEFAULT_PLAN_LABEL)

    period_end = subscription.current_period_end if subscription else None
    end_date = format_end_date(period_end, language) if period_end else ""

    if event == LifecycleEvent.TRIAL_STARTED:
        if period_end:
            trial_days = max(math.ceil((period_end - utcnow()).total_seconds() / 86400), 1)
        else:
            trial_days = settings.DEFAULT_TRIAL_DAYS
        subject, html = trial_started_email(
            user_name, plan_name, trial_days, end_date, language, settings.DASHBOARD_URL
        )
    elif event == LifecycleEvent.SUBSCRIPTION_PURCHASED:
        subject, html = subscription_purchased_email(user_name, plan_name, end_date, language, settings.BILLING_URL)
    elif event == LifecycleEvent.SUBSCRIPTION_CANCELED:
        subject, html = subscription_canceled_email(user_name, plan_name, end_date, language, settings.BILLING_URL)
    else:
        old_plan_name = _plan_name(session, old_plan_id, DEFAULT_OLD_PLAN_LABEL)
        subject, html = plan_changed_email(user_name, old_plan_name, plan_name, language, settings.BILLING_URL)

    sent = email_service.send_email(to_email, subject, html)
    if sent:
        logger.info(f"✅ {event.value} email sent to {to_email}")
    else:
        logger.warning(f"⚠️ {event.value} email to {to_email} was not delivered")
    return sent
