# routes/webhooks.py
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.database import get_session
from services.email_service import EmailService, get_email_service
from services.stripe_gateway import StripeGateway, get_gateway
from services.subscription_reconciler import process_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session: Session = Depends(get_session),
    gateway: StripeGateway = Depends(get_gateway),
    email_service: EmailService = Depends(get_email_service),
):
    """Handle Stripe webhook events for subscriptions and invoices."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    # SignatureInvalid / ConfigurationError go to the app's BillingError handler
    event = gateway.construct_event(payload, sig_header)
    event_type = event.get("type")

    try:
        result = await run_in_threadpool(process_event, session, gateway, event, email_service)
    except Exception as e:
        logger.error(f"❌ Error processing webhook event {event_type}: {e}")
        return JSONResponse(status_code=400, content={"error": str(e)})

    if result.get("duplicate"):
        return {"received": True, "duplicate": True}
    return {"received": True}
