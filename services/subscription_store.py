# ================================================================
# services/subscription_store.py: storage contract for billing state
# ================================================================
"""
Storage helpers the reconciler, the gateway operations and the daily jobs
share. Subscription writes go through a single INSERT ... ON CONFLICT
statement keyed by user; payments and notifications are only ever inserted.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from core.exceptions import ConfigurationError, NotFound
from models.models import (
    InternalBilling,
    Notification,
    NotificationType,
    Payment,
    Profile,
    Subscription,
    SubscriptionStatus,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    """Stripe epoch seconds -> aware UTC datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def stripe_period(stripe_subscription: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    (start, end) of a Stripe subscription's current period.

    Newer API versions drop the top-level fields and carry the period on each
    subscription item; the first item is used then.
    """
    start = stripe_subscription.get("current_period_start")
    end = stripe_subscription.get("current_period_end")
    if start is None or end is None:
        items = (stripe_subscription.get("items") or {}).get("data") or []
        item = items[0] if items else {}
        start = item.get("current_period_start") if start is None else start
        end = item.get("current_period_end") if end is None else end
    return from_unix(start), from_unix(end)


# ============================================================
# SUBSCRIPTIONS
# ============================================================
def get_subscription_for_user(session: Session, user_id: int) -> Optional[Subscription]:
    statement = (
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return session.exec(statement).first()


def upsert_subscription(session: Session, user_id: int, values: Dict[str, Any]) -> Subscription:
    """
    Insert or update the user's single subscription row in one statement.

    `values` maps column names to new values; columns not named keep their
    stored value on update. The caller owns the commit.
    """
    insert = _DIALECT_INSERTS.get(session.get_bind().dialect.name)
    if insert is None:
        raise ConfigurationError(
            f"Atomic subscription upsert is not supported on {session.get_bind().dialect.name}"
        )

    now = utcnow()
    table = Subscription.__table__
    insert_values = {
        "status": SubscriptionStatus.ACTIVE.value,
        "current_period_start": now,
        "cancel_at_period_end": False,
        "created_at": now,
        **values,
        "user_id": user_id,
        "updated_at": now,
    }
    update_values = {**values, "updated_at": now}

    statement = (
        insert(table)
        .values(**insert_values)
        .on_conflict_do_update(index_elements=[table.c.user_id], set_=update_values)
    )
    session.execute(statement)
    return get_subscription_for_user(session, user_id)


def set_subscription_status(session: Session, user_id: int, status: SubscriptionStatus) -> int:
    """Single-statement status change; returns the number of rows touched."""
    result = session.execute(
        update(Subscription)
        .where(Subscription.user_id == user_id)
        .values(status=status.value, updated_at=utcnow())
    )
    return result.rowcount


def internally_managed_subscriptions(
    session: Session,
    statuses: Iterable[str],
    period_end_after: Optional[datetime] = None,
    period_end_until: Optional[datetime] = None,
    period_end_before: Optional[datetime] = None,
) -> List[Subscription]:
    """
    Rows the daily jobs may act on: no Stripe subscription attached.

    `period_end_after` is exclusive, `period_end_until` inclusive and
    `period_end_before` exclusive.
    """
    statement = select(Subscription).where(
        Subscription.stripe_subscription_id == None,  # noqa: E711
        Subscription.status.in_(list(statuses)),
        Subscription.current_period_end != None,  # noqa: E711
    )
    if period_end_after is not None:
        statement = statement.where(Subscription.current_period_end > period_end_after)
    if period_end_until is not None:
        statement = statement.where(Subscription.current_period_end <= period_end_until)
    if period_end_before is not None:
        statement = statement.where(Subscription.current_period_end < period_end_before)

    rows = session.exec(statement.order_by(Subscription.current_period_end, Subscription.id)).all()
    return [row for row in rows if isinstance(row.management, InternalBilling)]


# ============================================================
# PROFILES / USERS
# ============================================================
def find_profile_by_customer(session: Session, customer_id: Optional[str]) -> Optional[Profile]:
    if not customer_id:
        return None
    return session.exec(select(Profile).where(Profile.stripe_customer_id == customer_id)).first()


def set_profile_plan(session: Session, user_id: int, plan_id: int) -> None:
    session.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(plan_id=plan_id, updated_at=utcnow())
    )


def resolve_user_email(session: Session, user_id: int) -> str:
    user = session.get(User, user_id)
    if not user or not user.email:
        raise NotFound(f"No email address found for user {user_id}")
    return user.email


# ============================================================
# APPEND-ONLY LEDGERS
# ============================================================
def record_payment(
    session: Session,
    user_id: int,
    status: str,
    amount: float,
    currency: str,
    stripe_invoice_id: Optional[str],
    subscription_id: Optional[int] = None,
) -> Optional[Payment]:
    """
    Append a ledger row unless this invoice already has one with this status.
    Returns None for a duplicate delivery.
    """
    if stripe_invoice_id:
        existing = session.exec(
            select(Payment).where(
                Payment.stripe_invoice_id == stripe_invoice_id,
                Payment.status == status,
            )
        ).first()
        if existing:
            logger.info(f"ℹ️ Payment for invoice {stripe_invoice_id} ({status}) already recorded")
            return None

    payment = Payment(
        user_id=user_id,
        subscription_id=subscription_id,
        amount=amount,
        currency=currency,
        status=status,
        stripe_invoice_id=stripe_invoice_id,
    )
    session.add(payment)
    return payment


def add_notification(
    session: Session,
    user_id: int,
    title: str,
    body: Optional[str],
    data: Dict[str, Any],
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=NotificationType.SYSTEM.value,
        title=title,
        body=body,
        data=data,
    )
    session.add(notification)
    return notification


def find_notifications(session: Session, user_id: int, **data_matches: Any) -> List[Notification]:
    """User's notifications whose `data` carries every given key/value."""
    rows = session.exec(select(Notification).where(Notification.user_id == user_id)).all()
    return [
        row for row in rows
        if all((row.data or {}).get(key) == value for key, value in data_matches.items())
    ]
