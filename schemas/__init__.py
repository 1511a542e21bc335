from .billing_schema import (
    PlanRead, SubscriptionRead,
    CheckoutSessionRequest, CheckoutSessionResponse,
    PortalSessionRequest, PortalSessionResponse,
    UpdateSubscriptionRequest, UpdateSubscriptionResponse, UpdatedSubscription,
    ReminderReport, ExpiryReport, ExpiredEntry,
)

__all__ = [
    # Plans / subscription
    "PlanRead", "SubscriptionRead",

    # Gateway operations
    "CheckoutSessionRequest", "CheckoutSessionResponse",
    "PortalSessionRequest", "PortalSessionResponse",
    "UpdateSubscriptionRequest", "UpdateSubscriptionResponse", "UpdatedSubscription",

    # Scheduled job reports
    "ReminderReport", "ExpiryReport", "ExpiredEntry",
]
