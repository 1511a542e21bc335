# ================================================================
# services/billing_service.py: checkout, portal and plan change
# ================================================================
import logging
from typing import Any, Dict, Optional

from sqlmodel import Session

from core.exceptions import ConfigurationError, NotFound, PreconditionFailed
from models.models import BillingCycle, Plan, Profile, SubscriptionStatus, User, utcnow
from services.email_service import EmailService
from services.lifecycle_emails import LifecycleEvent, send_lifecycle_email
from services.stripe_gateway import StripeGateway
from services.subscription_store import (
    get_subscription_for_user,
    set_profile_plan,
    stripe_period,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_PLACEHOLDER = "session_id={CHECKOUT_SESSION_ID}"


def _get_plan(session: Session, plan_id: int) -> Plan:
    plan = session.get(Plan, plan_id)
    if not plan:
        raise NotFound("Plan not found")
    return plan


def _price_for(plan: Plan, billing_cycle: BillingCycle) -> str:
    price_id = plan.stripe_price_id_for(billing_cycle)
    if not price_id:
        raise ConfigurationError(
            "Stripe not configured for this plan",
            {"hint": f"Set stripe_price_id_{BillingCycle(billing_cycle).value} for the {plan.name} plan"},
        )
    return price_id


def _with_session_placeholder(success_url: str) -> str:
    separator = "&" if "?" in success_url else "?"
    return f"{success_url}{separator}{CHECKOUT_SESSION_PLACEHOLDER}"


# ============================================================
# 💳 Checkout
# ============================================================
def create_checkout_session(
    session: Session,
    gateway: StripeGateway,
    plan_id: int,
    billing_cycle: BillingCycle,
    user_id: int,
    success_url: str,
    cancel_url: str,
) -> Dict[str, str]:
    """
    Start a subscription-mode Stripe Checkout for `plan_id`.

    The price is checked before any customer is created, so a plan without a
    price for the requested cycle never leaves a stray Stripe customer behind.
    """
    gateway.ensure_configured()

    plan = _get_plan(session, plan_id)
    price_id = _price_for(plan, billing_cycle)

    user = session.get(User, user_id)
    if not user or not user.email:
        raise NotFound("User not found")

    profile = session.get(Profile, user_id)
    customer_id = profile.stripe_customer_id if profile else None

    if not customer_id:
        customer = gateway.create_customer(email=user.email, user_id=user_id)
        customer_id = customer["id"]
        if profile is None:
            profile = Profile(id=user_id, full_name=user.full_name)
        profile.stripe_customer_id = customer_id
        profile.updated_at = utcnow()
        session.add(profile)
        session.commit()

    metadata = {
        "user_id": str(user_id),
        "plan_id": str(plan.id),
        "billing_cycle": BillingCycle(billing_cycle).value,
    }
    checkout = gateway.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=_with_session_placeholder(success_url),
        cancel_url=cancel_url,
        metadata=metadata,
        subscription_metadata=metadata,
    )
    logger.info(f"✅ Checkout session {checkout['id']} created for user {user_id} (plan {plan.name})")
    return {"url": checkout["url"], "sessionId": checkout["id"]}


# ============================================================
# 🧾 Billing portal
# ============================================================
def create_billing_portal_session(
    session: Session,
    gateway: StripeGateway,
    user_id: int,
    return_url: str,
) -> Dict[str, str]:
    gateway.ensure_configured()

    profile = session.get(Profile, user_id)
    if not profile or not profile.stripe_customer_id:
        raise PreconditionFailed("No Stripe customer found for this user")

    portal = gateway.create_portal_session(customer_id=profile.stripe_customer_id, return_url=return_url)
    return {"url": portal["url"]}


# ============================================================
# 🔁 In-place plan change
# ============================================================
def update_subscription_plan(
    session: Session,
    gateway: StripeGateway,
    user_id: int,
    plan_id: int,
    billing_cycle: BillingCycle,
    email_service: Optional[EmailService] = None,
) -> Dict[str, Any]:
    """
    Swap the price on the customer's active Stripe subscription and mirror the
    change locally. Users without a customer or an active subscription must go
    through checkout first (`requiresCheckout`).

    The plan-changed email is sent here because the webhook that follows
    finds the new plan already stored.
    """
    gateway.ensure_configured()

    profile = session.get(Profile, user_id)
    if not profile or not profile.stripe_customer_id:
        raise PreconditionFailed(
            "User does not have a Stripe customer ID. Please complete checkout first.",
            requires_checkout=True,
        )

    plan = _get_plan(session, plan_id)
    price_id = _price_for(plan, billing_cycle)

    active = gateway.list_active_subscriptions(profile.stripe_customer_id, limit=1)
    if not active:
        raise PreconditionFailed(
            "No active subscription found. Please complete checkout first.",
            requires_checkout=True,
        )

    current = active[0]
    item_id = current["items"]["data"][0]["id"]
    updated = gateway.update_subscription_price(
        subscription_id=current["id"],
        item_id=item_id,
        price_id=price_id,
        metadata={"plan_id": str(plan.id), "billing_cycle": BillingCycle(billing_cycle).value},
    )

    previous = get_subscription_for_user(session, user_id)
    old_plan_id = (previous.plan_id if previous else None) or profile.plan_id

    _, period_end = stripe_period(updated)
    upsert_subscription(
        session,
        user_id,
        {
            "plan_id": plan.id,
            "status": SubscriptionStatus.ACTIVE.value,
            "current_period_end": period_end,
            "stripe_subscription_id": updated["id"],
        },
    )
    set_profile_plan(session, user_id, plan.id)
    session.commit()
    logger.info(f"✅ Subscription updated for user {user_id} to plan {plan.name}")

    if email_service is not None and old_plan_id and old_plan_id != plan.id:
        send_lifecycle_email(
            session, email_service, user_id, LifecycleEvent.PLAN_CHANGED, plan_id=plan.id, old_plan_id=old_plan_id
        )

    return {
        "success": True,
        "message": f"Successfully upgraded to {plan.display_name}",
        "subscription": {
            "id": updated["id"],
            "status": updated["status"],
            "currentPeriodEnd": period_end.isoformat() if period_end else None,
        },
    }
