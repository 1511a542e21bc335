# models/models.py
from typing import Optional, List, Dict, Any, Union
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint, Column, JSON, DateTime
from sqlalchemy.types import TypeDecorator
from pydantic import EmailStr


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Stores UTC and always hands back aware datetimes.

    SQLite keeps no offset, so values are normalised to UTC on the way in and
    re-tagged on the way out. Naive values are rejected.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime {value!r} cannot be stored; use utcnow()")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ============================================================
# ENUMS
# ============================================================
class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PENDING = "pending"


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class NotificationType(str, Enum):
    SYSTEM = "system"


class Language(str, Enum):
    EN = "en"
    LT = "lt"


# Statuses the daily jobs look at; everything else is already settled.
OPEN_STATUSES = (SubscriptionStatus.TRIALING.value, SubscriptionStatus.ACTIVE.value)


# ============================================================
# BILLING MANAGEMENT VARIANTS
# ============================================================
@dataclass(frozen=True)
class InternalBilling:
    """Trial or manual subscription tracked only in our database."""
    trial_end: Optional[datetime]


@dataclass(frozen=True)
class ExternalBilling:
    """Subscription owned by Stripe; status and period come from webhooks."""
    gateway_subscription_id: str


BillingManagement = Union[InternalBilling, ExternalBilling]


# ============================================================
# PLAN CATALOG
# ============================================================
class Plan(SQLModel, table=True):
    __tablename__ = "plan"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=50, unique=True, nullable=False, index=True)
    display_name: str = Field(max_length=100)

    # Pricing (major currency units)
    price_monthly: float = Field(default=0.0)
    price_yearly: float = Field(default=0.0)
    stripe_price_id_monthly: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_price_id_yearly: Optional[str] = Field(default=None, max_length=255, index=True)

    # Features & limits (None = unlimited)
    features: Optional[str] = Field(default=None)
    project_limit: Optional[int] = Field(default=None)
    task_limit: Optional[int] = Field(default=None)

    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    subscriptions: List["Subscription"] = Relationship(back_populates="plan")

    def stripe_price_id_for(self, billing_cycle: Union[BillingCycle, str]) -> Optional[str]:
        if BillingCycle(billing_cycle) == BillingCycle.YEARLY:
            return self.stripe_price_id_yearly
        return self.stripe_price_id_monthly

    def matches_amount(self, unit_amount: int) -> bool:
        """True if a Stripe amount in cents equals the monthly or yearly price."""
        return unit_amount in (
            int(round((self.price_monthly or 0) * 100)),
            int(round((self.price_yearly or 0) * 100)),
        )


# ============================================================
# USER (auth provider directory, read-only here)
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"
    id: Optional[int] = Field(default=None, primary_key=True)
    email: EmailStr = Field(index=True, max_length=100, nullable=False)
    full_name: Optional[str] = Field(default=None, max_length=100)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


# ============================================================
# PROFILE
# ============================================================
class Profile(SQLModel, table=True):
    __tablename__ = "profile"
    id: int = Field(foreign_key="user.id", primary_key=True)
    full_name: Optional[str] = Field(default=None, max_length=100)
    language: str = Field(default=Language.EN.value, max_length=5)

    plan_id: Optional[int] = Field(default=None, foreign_key="plan.id", index=True)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)

    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def has_payment_method(self) -> bool:
        return bool(self.stripe_customer_id)


# ============================================================
# SUBSCRIPTION (one row per user)
# ============================================================
class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, unique=True, index=True)
    plan_id: Optional[int] = Field(default=None, foreign_key="plan.id", index=True)

    status: str = Field(default=SubscriptionStatus.TRIALING.value, max_length=20, index=True)
    current_period_start: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    current_period_end: Optional[datetime] = Field(default=None, index=True, sa_type=UTCDateTime)

    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    plan: Optional["Plan"] = Relationship(back_populates="subscriptions")

    @property
    def management(self) -> BillingManagement:
        if self.stripe_subscription_id:
            return ExternalBilling(gateway_subscription_id=self.stripe_subscription_id)
        return InternalBilling(trial_end=self.current_period_end)

    @property
    def is_trial(self) -> bool:
        return self.status == SubscriptionStatus.TRIALING.value


# ============================================================
# PAYMENT LEDGER (append-only)
# ============================================================
class Payment(SQLModel, table=True):
    __tablename__ = "payment"
    __table_args__ = (UniqueConstraint("stripe_invoice_id", "status", name="uq_payment_invoice_status"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    subscription_id: Optional[int] = Field(default=None, foreign_key="subscription.id", index=True)

    amount: float = Field(default=0.0)
    currency: str = Field(default="EUR", max_length=3)
    status: str = Field(max_length=20)
    stripe_invoice_id: Optional[str] = Field(default=None, max_length=255, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


# ============================================================
# NOTIFICATION (append-only)
# ============================================================
class Notification(SQLModel, table=True):
    __tablename__ = "notification"
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    type: str = Field(default=NotificationType.SYSTEM.value, max_length=20)
    title: str = Field(max_length=200)
    body: Optional[str] = Field(default=None, max_length=1000)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


# ============================================================
# WEBHOOK EVENT LOG
# ============================================================
class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_event"
    id: Optional[int] = Field(default=None, primary_key=True)
    stripe_event_id: str = Field(unique=True, index=True, max_length=255)
    event_type: str = Field(max_length=100, index=True)

    payload: str = Field()
    processed: bool = Field(default=False)
    processing_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


# ============================================================
# DEFAULT PLAN CATALOG (constant)
# ============================================================
DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "name": "free",
        "display_name": "Free",
        "price_monthly": 0.0,
        "price_yearly": 0.0,
        "project_limit": 3,
        "task_limit": 100,
    },
    {
        "name": "pro",
        "display_name": "Pro",
        "price_monthly": 9.99,
        "price_yearly": 99.0,
        "project_limit": 25,
        "task_limit": None,
    },
    {
        "name": "business",
        "display_name": "Business",
        "price_monthly": 29.99,
        "price_yearly": 299.0,
        "project_limit": None,
        "task_limit": None,
    },
]


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "Plan",
    "User",
    "Profile",
    "Subscription",
    "Payment",
    "Notification",
    "WebhookEvent",
    "SubscriptionStatus",
    "PaymentStatus",
    "BillingCycle",
    "NotificationType",
    "Language",
    "InternalBilling",
    "ExternalBilling",
    "BillingManagement",
    "OPEN_STATUSES",
    "DEFAULT_PLANS",
    "UTCDateTime",
    "utcnow",
]
