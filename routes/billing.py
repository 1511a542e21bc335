# routes/billing.py
from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from core.database import get_session
from core.exceptions import NotFound
from models.models import ExternalBilling, utcnow
from schemas.billing_schema import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlanRead,
    PortalSessionRequest,
    PortalSessionResponse,
    SubscriptionRead,
    UpdateSubscriptionRequest,
    UpdateSubscriptionResponse,
)
from services import billing_service
from services.email_service import EmailService, get_email_service
from services.plan_catalog import list_active_plans
from services.stripe_gateway import StripeGateway, get_gateway
from services.subscription_store import get_subscription_for_user

router = APIRouter(prefix="/billing", tags=["Billing"])


# -------------------------
# Plans & subscription status
# -------------------------
@router.get("/plans", response_model=List[PlanRead])
def get_plans(session: Session = Depends(get_session)):
    """Active plans, cheapest first."""
    return list_active_plans(session)


@router.get("/subscriptions/{user_id}", response_model=SubscriptionRead)
def get_subscription(user_id: int, session: Session = Depends(get_session)):
    subscription = get_subscription_for_user(session, user_id)
    if not subscription:
        raise NotFound(f"No subscription found for user {user_id}")

    days_left = None
    if subscription.current_period_end:
        days_left = max((subscription.current_period_end - utcnow()).days, 0)

    return SubscriptionRead(
        **subscription.model_dump(),
        management="external" if isinstance(subscription.management, ExternalBilling) else "internal",
        days_left=days_left,
    )


# -------------------------
# Stripe Checkout / Portal / Plan change
# -------------------------
@router.post("/checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    data: CheckoutSessionRequest,
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_gateway),
):
    return billing_service.create_checkout_session(
        session,
        gateway,
        plan_id=data.plan_id,
        billing_cycle=data.billing_cycle,
        user_id=data.user_id,
        success_url=data.success_url,
        cancel_url=data.cancel_url,
    )


@router.post("/portal-session", response_model=PortalSessionResponse)
def create_portal_session(
    data: PortalSessionRequest,
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_gateway),
):
    return billing_service.create_billing_portal_session(
        session, gateway, user_id=data.user_id, return_url=data.return_url
    )


@router.post("/update-subscription", response_model=UpdateSubscriptionResponse)
def update_subscription(
    data: UpdateSubscriptionRequest,
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_gateway),
    email_service: EmailService = Depends(get_email_service),
):
    """Change plan in place; answers 400 with requiresCheckout when checkout is needed first."""
    return billing_service.update_subscription_plan(
        session,
        gateway,
        user_id=data.user_id,
        plan_id=data.plan_id,
        billing_cycle=data.billing_cycle,
        email_service=email_service,
    )
