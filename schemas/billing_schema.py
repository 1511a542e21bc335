# billing_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

from models.models import BillingCycle


# ---------------------------
# Plans
# ---------------------------
class PlanRead(BaseModel):
    id: int
    name: str
    display_name: str
    price_monthly: float
    price_yearly: float
    stripe_price_id_monthly: Optional[str]
    stripe_price_id_yearly: Optional[str]
    features: Optional[str]
    project_limit: Optional[int]
    task_limit: Optional[int]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Subscription
# ---------------------------
class SubscriptionRead(BaseModel):
    id: int
    user_id: int
    plan_id: Optional[int]
    status: str
    current_period_start: datetime
    current_period_end: Optional[datetime]
    stripe_subscription_id: Optional[str]
    cancel_at_period_end: bool
    canceled_at: Optional[datetime]
    management: str = Field(..., description="'internal' or 'external'")
    days_left: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Checkout / Portal / Update (camelCase on the wire)
# ---------------------------
class CheckoutSessionRequest(BaseModel):
    plan_id: int = Field(..., alias="planId")
    billing_cycle: BillingCycle = Field(default=BillingCycle.MONTHLY, alias="billingCycle")
    user_id: int = Field(..., alias="userId")
    success_url: str = Field(..., alias="successUrl")
    cancel_url: str = Field(..., alias="cancelUrl")

    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionResponse(BaseModel):
    url: str
    session_id: str = Field(..., alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class PortalSessionRequest(BaseModel):
    user_id: int = Field(..., alias="userId")
    return_url: str = Field(..., alias="returnUrl")

    model_config = ConfigDict(populate_by_name=True)


class PortalSessionResponse(BaseModel):
    url: str


class UpdateSubscriptionRequest(BaseModel):
    user_id: int = Field(..., alias="userId")
    plan_id: int = Field(..., alias="planId")
    billing_cycle: BillingCycle = Field(default=BillingCycle.MONTHLY, alias="billingCycle")

    model_config = ConfigDict(populate_by_name=True)


class UpdatedSubscription(BaseModel):
    id: str
    status: str
    current_period_end: Optional[str] = Field(default=None, alias="currentPeriodEnd")

    model_config = ConfigDict(populate_by_name=True)


class UpdateSubscriptionResponse(BaseModel):
    success: bool
    message: str
    subscription: UpdatedSubscription


# ---------------------------
# Scheduled job reports
# ---------------------------
class ReminderReport(BaseModel):
    success: bool
    reminders_sent: int
    reminders_skipped: int = 0
    emails: List[str]
    error_count: int
    errors: List[str]


class ExpiredEntry(BaseModel):
    user_id: int
    plan_name: str
    was_trial: bool
    user_email: str


class ExpiryReport(BaseModel):
    success: bool
    expired_count: int
    deferred_count: int
    expired: List[ExpiredEntry]
    error_count: int
    errors: List[str]
