# ================================================================
# services/stripe_gateway.py: thin Stripe client (no retries)
# ================================================================
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from core.config import settings
from core.exceptions import ConfigurationError, SignatureInvalid, TransientUpstream

logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Request/response wrapper around the Stripe customer, checkout, subscription
    and billing-portal APIs. The secret key is passed on every call so the
    module-level `stripe.api_key` is never mutated.
    """

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str] = None,
        api_version: Optional[str] = None,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ConfigurationError(
                "Stripe is not configured",
                {"hint": "Set STRIPE_SECRET_KEY in the environment"},
            )

    def _options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    def _call(self, operation: str, func, *args, **kwargs):
        self.ensure_configured()
        try:
            return func(*args, **kwargs, **self._options())
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe {operation} failed: {e}")
            raise TransientUpstream(f"Stripe {operation} failed: {e.user_message or str(e)}")

    # ------------------------
    # Customers
    # ------------------------
    def create_customer(self, email: str, user_id: int):
        customer = self._call(
            "customer creation",
            stripe.Customer.create,
            email=email,
            metadata={"user_id": str(user_id)},
        )
        logger.info(f"✅ Created Stripe customer {customer['id']} for user {user_id}")
        return customer

    def retrieve_customer(self, customer_id: str):
        return self._call("customer lookup", stripe.Customer.retrieve, customer_id)

    # ------------------------
    # Checkout & portal
    # ------------------------
    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        subscription_metadata: Dict[str, str],
    ):
        return self._call(
            "checkout session creation",
            stripe.checkout.Session.create,
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": subscription_metadata},
        )

    def create_portal_session(self, customer_id: str, return_url: str):
        return self._call(
            "billing portal session creation",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    # ------------------------
    # Subscriptions
    # ------------------------
    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[Any]:
        result = self._call(
            "subscription listing",
            stripe.Subscription.list,
            customer=customer_id,
            status="active",
            limit=limit,
        )
        return list(result["data"])

    def update_subscription_price(
        self,
        subscription_id: str,
        item_id: str,
        price_id: str,
        metadata: Dict[str, str],
    ):
        return self._call(
            "subscription update",
            stripe.Subscription.modify,
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="create_prorations",
            metadata=metadata,
        )

    # ------------------------
    # Webhooks
    # ------------------------
    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe signature and return the event as a plain dict.
        Raises SignatureInvalid for a missing/bad signature or malformed payload.
        """
        if not sig_header:
            raise SignatureInvalid("Missing stripe-signature header")
        if not self.webhook_secret:
            raise ConfigurationError("Webhook secret not configured")

        try:
            stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=self.webhook_secret)
        except ValueError as e:
            logger.warning(f"❌ Invalid webhook payload: {e}")
            raise SignatureInvalid("Invalid payload")
        except stripe.SignatureVerificationError as e:
            logger.warning(f"❌ Invalid webhook signature: {e}")
            raise SignatureInvalid("Invalid signature")

        return json.loads(payload)


# ============================================================
# ✅ Dependency: gateway built from settings
# ============================================================
def get_gateway() -> StripeGateway:
    return StripeGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        api_version=settings.STRIPE_API_VERSION,
    )
