# ================================================================
# services/expiry_sweep.py: downgrade lapsed internal subscriptions
# ================================================================
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Session

from core.config import settings
from core.exceptions import ConfigurationError, NotFound
from models.models import OPEN_STATUSES, Plan, Profile, Subscription, SubscriptionStatus, utcnow
from services.billing_messages import expired_email, expired_notification
from services.email_service import EmailService
from services.plan_catalog import get_free_plan
from services.subscription_store import (
    add_notification,
    internally_managed_subscriptions,
    resolve_user_email,
    set_profile_plan,
    upsert_subscription,
)

logger = logging.getLogger(__name__)


def _expire(
    session: Session,
    email_service: EmailService,
    subscription: Subscription,
    free_plan: Plan,
    now: datetime,
) -> Dict[str, Any]:
    user_id = subscription.user_id
    profile = session.get(Profile, user_id)
    plan = session.get(Plan, subscription.plan_id) if subscription.plan_id else None
    plan_name = (plan.display_name or plan.name) if plan else "Unknown"
    was_trial = subscription.is_trial
    language = profile.language if profile else "en"
    user_name = (profile.full_name if profile else None) or "User"

    upsert_subscription(
        session,
        user_id,
        {
            "plan_id": free_plan.id,
            "status": SubscriptionStatus.CANCELED.value,
            "canceled_at": now,
        },
    )
    set_profile_plan(session, user_id, free_plan.id)

    title, body = expired_notification(plan_name, was_trial, language)
    add_notification(
        session,
        user_id=user_id,
        title=title,
        body=body,
        data={"plan_name": plan_name, "was_trial": was_trial},
    )
    session.commit()
    logger.info(f"✅ User {user_id} moved from {plan_name} to the free plan")

    # The downgrade stands even if the address is unknown
    try:
        to_email = resolve_user_email(session, user_id)
    except NotFound as e:
        logger.warning(f"⚠️ No expiry email for user {user_id}: {e}")
        to_email = None
    if to_email:
        subject, html = expired_email(user_name, plan_name, was_trial, language, settings.BILLING_URL)
        email_service.send_email(to_email, subject, html)

    return {
        "user_id": user_id,
        "plan_name": plan_name,
        "was_trial": was_trial,
        "user_email": to_email or "unknown",
    }


def run_expiry_sweep(
    session: Session,
    email_service: EmailService,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Downgrade internally managed trials and subscriptions whose period ended.

    Users with a Stripe customer on file are left alone; Stripe renews or
    cancels them and the webhook brings the result back.
    """
    now = now or utcnow()
    free_plan = get_free_plan(session)
    if not free_plan:
        raise ConfigurationError(f"Free plan '{settings.FREE_PLAN_NAME}' not found")
    free_plan_id = free_plan.id

    candidates = internally_managed_subscriptions(session, OPEN_STATUSES, period_end_before=now)

    expired: List[Dict[str, Any]] = []
    errors: List[str] = []
    deferred = 0
    for subscription in candidates:
        user_id = subscription.user_id
        try:
            profile = session.get(Profile, user_id)
            if profile and profile.has_payment_method:
                logger.info(f"ℹ️ User {user_id} has a Stripe customer, leaving renewal to Stripe")
                deferred += 1
                continue
            expired.append(_expire(session, email_service, subscription, session.get(Plan, free_plan_id), now))
        except Exception as e:
            session.rollback()
            logger.error(f"❌ Error expiring subscription for user {user_id}: {e}")
            errors.append(f"Error processing subscription for {user_id}: {e}")

    logger.info(f"✅ Expiry sweep: {len(expired)} expired, {deferred} deferred, {len(errors)} errors")
    return {
        "success": True,
        "expired_count": len(expired),
        "deferred_count": deferred,
        "expired": expired,
        "error_count": len(errors),
        "errors": errors[: settings.REMINDER_ERROR_LIMIT],
    }
