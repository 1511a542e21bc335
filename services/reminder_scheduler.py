# ================================================================
# services/reminder_scheduler.py: expiry reminders (1 and 3 days)
# ================================================================
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlmodel import Session

from core.config import settings
from models.models import OPEN_STATUSES, Plan, Profile, Subscription, utcnow
from services.billing_messages import expiring_email, expiring_notification, format_end_date
from services.email_service import EmailService
from services.subscription_store import (
    add_notification,
    find_notifications,
    internally_managed_subscriptions,
    resolve_user_email,
)

logger = logging.getLogger(__name__)

DEFAULT_PLAN_LABEL = "Premium"
DEFAULT_USER_NAME = "User"
REMINDER_KIND = "expiry_reminder"


def _already_reminded(session: Session, subscription: Subscription, days_left: int) -> bool:
    return bool(
        find_notifications(
            session,
            subscription.user_id,
            kind=REMINDER_KIND,
            days_left=days_left,
            period_end=subscription.current_period_end.isoformat(),
        )
    )


def _remind(session: Session, email_service: EmailService, subscription: Subscription, days_left: int) -> Optional[str]:
    profile = session.get(Profile, subscription.user_id)
    plan = session.get(Plan, subscription.plan_id) if subscription.plan_id else None

    plan_name = (plan.display_name or plan.name) if plan else DEFAULT_PLAN_LABEL
    user_name = (profile.full_name if profile else None) or DEFAULT_USER_NAME
    language = profile.language if profile else "en"
    is_trial = subscription.is_trial
    has_payment_method = bool(profile and profile.has_payment_method)

    to_email = resolve_user_email(session, subscription.user_id)

    subject, html = expiring_email(
        user_name=user_name,
        plan_name=plan_name,
        days_left=days_left,
        end_date=format_end_date(subscription.current_period_end, language),
        is_trial=is_trial,
        has_payment_method=has_payment_method,
        language=language,
        billing_url=settings.BILLING_URL,
    )
    sent = email_service.send_email(to_email, subject, html)

    # The notification also marks this window as done for this period end
    title, body = expiring_notification(days_left, is_trial, has_payment_method, language)
    add_notification(
        session,
        user_id=subscription.user_id,
        title=title,
        body=body,
        data={
            "kind": REMINDER_KIND,
            "days_left": days_left,
            "period_end": subscription.current_period_end.isoformat(),
            "is_trial": is_trial,
            "has_payment_method": has_payment_method,
        },
    )
    session.commit()

    if not sent:
        logger.warning(f"⚠️ Reminder email to {to_email} was not delivered")
        return None
    return f"{to_email} ({days_left} day{'s' if days_left != 1 else ''}, {'trial' if is_trial else 'paid'})"


def run_subscription_reminders(
    session: Session,
    email_service: EmailService,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Send reminders for internally managed trials and subscriptions ending soon.

    Two disjoint windows: (now, now+24h] gets the 1-day reminder and
    (now+24h, now+72h] the 3-day one. Rows with a Stripe subscription are
    renewed by Stripe and never reminded here. A row already reminded for the
    same window and period end is skipped, so re-running the job is safe. A
    failing row is rolled back, recorded and skipped.
    """
    now = now or utcnow()
    one_day = now + timedelta(days=1)
    three_days = now + timedelta(days=3)

    batches = [
        (1, internally_managed_subscriptions(session, OPEN_STATUSES, period_end_after=now, period_end_until=one_day)),
        (3, internally_managed_subscriptions(session, OPEN_STATUSES, period_end_after=one_day, period_end_until=three_days)),
    ]

    emails: List[str] = []
    errors: List[str] = []
    skipped = 0
    for days_left, subscriptions in batches:
        for subscription in subscriptions:
            user_id = subscription.user_id
            try:
                if _already_reminded(session, subscription, days_left):
                    logger.info(f"ℹ️ {days_left}-day reminder already sent to user {user_id}, skipping")
                    skipped += 1
                    continue
                sent = _remind(session, email_service, subscription, days_left)
            except Exception as e:
                session.rollback()
                logger.error(f"❌ {days_left}-day reminder failed for user {user_id}: {e}")
                errors.append(f"{days_left}-day reminder error for {user_id}: {e}")
                continue
            if sent:
                emails.append(sent)

    logger.info(f"✅ Subscription reminders sent: {len(emails)}, skipped: {skipped}, errors: {len(errors)}")
    return {
        "success": True,
        "reminders_sent": len(emails),
        "reminders_skipped": skipped,
        "emails": emails,
        "error_count": len(errors),
        "errors": errors[: settings.REMINDER_ERROR_LIMIT],
    }
