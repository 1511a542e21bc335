# ================================================================
# services/subscription_reconciler.py: Stripe events -> local state
# ================================================================
"""
Applies verified Stripe webhook events to the subscription, profile and
payment tables.

Every handler takes `(session, gateway, data_object)`, writes without
committing and returns a small dict describing what it did. `process_event`
owns the transaction and the `webhook_event` log, so an event that was
already processed is never applied twice.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional

from sqlmodel import Session, select

from core.config import settings
from core.exceptions import BillingError
from models.models import (
    PaymentStatus,
    Plan,
    SubscriptionStatus,
    User,
    WebhookEvent,
    utcnow,
)
from services.email_service import EmailService
from services.lifecycle_emails import LifecycleEvent, detect_lifecycle_event, send_lifecycle_email
from services.plan_catalog import get_free_plan
from services.stripe_gateway import StripeGateway
from services.subscription_store import (
    find_profile_by_customer,
    from_unix,
    get_subscription_for_user,
    record_payment,
    set_profile_plan,
    set_subscription_status,
    stripe_period,
    upsert_subscription,
)

logger = logging.getLogger(__name__)

# Stripe subscription status -> our status
STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PENDING,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def map_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    status = STATUS_MAP.get(stripe_status or "")
    if status is None:
        logger.warning(f"⚠️ Unknown Stripe subscription status '{stripe_status}', treating as active")
        return SubscriptionStatus.ACTIVE
    return status


# ============================================================
# 🔎 Lookups
# ============================================================
def _user_id_from_metadata(session: Session, metadata: Optional[Dict[str, Any]]) -> Optional[int]:
    raw = (metadata or {}).get("user_id")
    if not raw:
        return None
    try:
        user_id = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Ignoring non-numeric user_id metadata: {raw!r}")
        return None
    return user_id if session.get(User, user_id) else None


def resolve_user_id(session: Session, gateway: StripeGateway, customer_id: Optional[str]) -> Optional[int]:
    """
    Customer metadata `user_id` first, then the profile that stores this
    customer id. Returns None when neither resolves.
    """
    if not customer_id:
        return None

    if gateway.configured:
        try:
            customer = gateway.retrieve_customer(customer_id)
        except BillingError as e:
            logger.warning(f"⚠️ Could not load customer {customer_id}, falling back to profile lookup: {e.message}")
        else:
            user_id = _user_id_from_metadata(session, customer.get("metadata"))
            if user_id is not None:
                return user_id

    profile = find_profile_by_customer(session, customer_id)
    return profile.id if profile else None


def _first_item(stripe_subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (stripe_subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def resolve_plan(session: Session, item: Dict[str, Any]) -> Optional[Plan]:
    """
    Match a subscription item to a catalog plan.

    The price id is matched against the configured Stripe price ids first.
    Otherwise the unit amount (cents) must equal the monthly or yearly price of
    exactly one active plan; several matches are treated as unresolved.
    """
    price = item.get("price") or {}
    price_id = price.get("id")

    if price_id:
        plan = session.exec(
            select(Plan).where(
                (Plan.stripe_price_id_monthly == price_id) | (Plan.stripe_price_id_yearly == price_id)
            )
        ).first()
        if plan:
            return plan

    unit_amount = price.get("unit_amount")
    if unit_amount is None:
        logger.warning(f"⚠️ Price {price_id} has no unit amount, plan unresolved")
        return None

    active_plans = session.exec(select(Plan).where(Plan.is_active == True)).all()  # noqa: E712
    matches = [plan for plan in active_plans if plan.matches_amount(unit_amount)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        logger.warning(
            f"⚠️ Amount {unit_amount} matches several plans {[p.name for p in matches]}, plan unresolved"
        )
    else:
        logger.warning(f"⚠️ No plan matches price {price_id} / amount {unit_amount}")
    return None


# ============================================================
# 🧩 Handlers
# ============================================================
def handle_checkout_completed(session: Session, gateway: StripeGateway, checkout: Dict[str, Any]) -> Dict[str, Any]:
    metadata = checkout.get("metadata") or {}
    user_id = metadata.get("user_id")
    plan_id = metadata.get("plan_id")
    if not user_id or not plan_id:
        logger.error("❌ Missing metadata in checkout session")
        return {"action": "ignored", "reason": "missing_metadata"}

    # The subscription itself arrives with customer.subscription.created
    logger.info(f"✅ Checkout completed for user {user_id}, plan {plan_id}")
    return {"action": "logged", "user_id": user_id, "plan_id": plan_id}


def handle_subscription_upsert(
    session: Session, gateway: StripeGateway, stripe_subscription: Dict[str, Any]
) -> Dict[str, Any]:
    user_id = resolve_user_id(session, gateway, stripe_subscription.get("customer"))
    if user_id is None:
        logger.error(f"❌ Could not find user for subscription {stripe_subscription.get('id')}")
        return {"action": "skipped", "reason": "user_not_found"}

    status = map_status(stripe_subscription.get("status"))
    plan = resolve_plan(session, _first_item(stripe_subscription))
    period_start, period_end = stripe_period(stripe_subscription)
    canceled_at = from_unix(stripe_subscription.get("canceled_at"))

    previous = get_subscription_for_user(session, user_id)
    old_status = previous.status if previous else None
    old_plan_id = previous.plan_id if previous else None

    values: Dict[str, Any] = {
        "status": status.value,
        "current_period_start": period_start or utcnow(),
        "current_period_end": period_end,
        "stripe_subscription_id": stripe_subscription.get("id"),
        "cancel_at_period_end": bool(stripe_subscription.get("cancel_at_period_end")),
        "canceled_at": canceled_at,
    }
    if plan:
        values["plan_id"] = plan.id

    upsert_subscription(session, user_id, values)
    if plan:
        set_profile_plan(session, user_id, plan.id)
    else:
        logger.warning(f"⚠️ Subscription for user {user_id} stored without a plan")

    plan_id = plan.id if plan else old_plan_id
    lifecycle = detect_lifecycle_event(old_status, old_plan_id, status.value, plan_id, canceled=canceled_at is not None)

    logger.info(f"✅ Updated subscription for user {user_id}: {status.value}")
    result = {
        "action": "subscription_upserted",
        "user_id": user_id,
        "status": status.value,
        "plan_id": plan.id if plan else None,
        "plan_resolved": plan is not None,
    }
    if lifecycle:
        result["lifecycle"] = {"event": lifecycle.value, "plan_id": plan_id, "old_plan_id": old_plan_id}
    return result


def handle_subscription_deleted(
    session: Session, gateway: StripeGateway, stripe_subscription: Dict[str, Any]
) -> Dict[str, Any]:
    profile = find_profile_by_customer(session, stripe_subscription.get("customer"))
    if not profile:
        logger.error("❌ Could not find user for canceled subscription")
        return {"action": "skipped", "reason": "user_not_found"}

    previous = get_subscription_for_user(session, profile.id)
    already_canceled = previous is not None and previous.status == SubscriptionStatus.CANCELED.value
    old_plan_id = previous.plan_id if previous else None

    values: Dict[str, Any] = {
        "status": SubscriptionStatus.CANCELED.value,
        "canceled_at": utcnow(),
    }
    free_plan = get_free_plan(session)
    if free_plan:
        values["plan_id"] = free_plan.id
    else:
        logger.error(f"❌ Free plan '{settings.FREE_PLAN_NAME}' missing, user {profile.id} keeps plan")

    upsert_subscription(session, profile.id, values)
    if free_plan:
        set_profile_plan(session, profile.id, free_plan.id)

    logger.info(f"✅ Subscription canceled for user {profile.id}")
    result = {
        "action": "subscription_canceled",
        "user_id": profile.id,
        "plan_id": free_plan.id if free_plan else None,
    }
    if not already_canceled:
        # Named after the plan the user had, not the free fallback
        result["lifecycle"] = {
            "event": LifecycleEvent.SUBSCRIPTION_CANCELED.value,
            "plan_id": old_plan_id,
            "old_plan_id": old_plan_id,
        }
    return result


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """Older payloads carry `subscription`; newer ones nest it under `parent`."""
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get("id")
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def _record_invoice(session: Session, invoice: Dict[str, Any], status: PaymentStatus, amount_field: str):
    if not invoice_subscription_id(invoice):
        return None, {"action": "skipped", "reason": "no_subscription"}

    profile = find_profile_by_customer(session, invoice.get("customer"))
    if not profile:
        logger.warning(f"⚠️ No user for customer {invoice.get('customer')}, invoice {invoice.get('id')} ignored")
        return None, {"action": "skipped", "reason": "user_not_found"}

    local = get_subscription_for_user(session, profile.id)
    currency = (invoice.get("currency") or settings.DEFAULT_CURRENCY).upper()
    payment = record_payment(
        session,
        user_id=profile.id,
        status=status.value,
        amount=(invoice.get(amount_field) or 0) / 100,
        currency=currency,
        stripe_invoice_id=invoice.get("id"),
        subscription_id=local.id if local else None,
    )
    return profile.id, {
        "action": f"payment_{status.value}",
        "user_id": profile.id,
        "recorded": payment is not None,
    }


def handle_payment_succeeded(session: Session, gateway: StripeGateway, invoice: Dict[str, Any]) -> Dict[str, Any]:
    user_id, result = _record_invoice(session, invoice, PaymentStatus.SUCCEEDED, "amount_paid")
    if user_id is not None:
        logger.info(
            f"✅ Payment succeeded for user {user_id}: {(invoice.get('amount_paid') or 0) / 100} {invoice.get('currency')}"
        )
    return result


def handle_payment_failed(session: Session, gateway: StripeGateway, invoice: Dict[str, Any]) -> Dict[str, Any]:
    user_id, result = _record_invoice(session, invoice, PaymentStatus.FAILED, "amount_due")
    if user_id is not None:
        set_subscription_status(session, user_id, SubscriptionStatus.PAST_DUE)
        logger.info(f"⚠️ Payment failed for user {user_id}, subscription marked past_due")
    return result


EVENT_HANDLERS: Dict[str, Callable[[Session, StripeGateway, Dict[str, Any]], Dict[str, Any]]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_upsert,
    "customer.subscription.updated": handle_subscription_upsert,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.payment_failed": handle_payment_failed,
}


# ============================================================
# 📬 Entry point
# ============================================================
def process_event(
    session: Session,
    gateway: StripeGateway,
    event: Dict[str, Any],
    email_service: Optional[EmailService] = None,
) -> Dict[str, Any]:
    """
    Apply one verified event inside a single transaction.

    Handler exceptions roll back the event's writes, are recorded on the
    `webhook_event` row and then re-raised to the caller. Lifecycle emails go
    out after the commit, and only when an `email_service` is given.
    """
    event_id = event.get("id")
    event_type = event.get("type")
    logger.info(f"📩 Stripe webhook event: {event_type} ({event_id})")

    record = None
    if event_id:
        record = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == event_id)).first()
        if record and record.processed:
            logger.info(f"ℹ️ Event {event_id} already processed, skipping")
            return {"action": "duplicate", "duplicate": True}
        if record is None:
            record = WebhookEvent(
                stripe_event_id=event_id,
                event_type=event_type or "unknown",
                payload=json.dumps(event),
            )
            session.add(record)
            session.commit()

    handler = EVENT_HANDLERS.get(event_type)
    try:
        if handler is None:
            logger.info(f"ℹ️ Unhandled event type: {event_type}")
            result = {"action": "ignored", "reason": "unhandled_event_type"}
        else:
            result = handler(session, gateway, (event.get("data") or {}).get("object") or {})
    except Exception as e:
        session.rollback()
        logger.exception(f"❌ Error handling {event_type} ({event_id}): {e}")
        if record is not None:
            record.processing_error = str(e)
            session.add(record)
            session.commit()
        raise

    if record is not None:
        record.processed = True
        record.processing_error = None
        session.add(record)
    session.commit()

    lifecycle = result.get("lifecycle")
    if lifecycle and email_service is not None:
        # The event is committed; a mail failure must not turn into a retry
        try:
            send_lifecycle_email(
                session,
                email_service,
                result["user_id"],
                LifecycleEvent(lifecycle["event"]),
                plan_id=lifecycle.get("plan_id"),
                old_plan_id=lifecycle.get("old_plan_id"),
            )
        except Exception as e:
            logger.exception(f"❌ Lifecycle email for user {result['user_id']} failed: {e}")
    return result
