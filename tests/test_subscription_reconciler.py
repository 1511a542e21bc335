# tests/test_subscription_reconciler.py
"""
Tests for applying Stripe events to local subscription state.
"""
import time
from datetime import datetime, timezone

import pytest
from sqlmodel import select

from models.models import Payment, Plan, Profile, Subscription, SubscriptionStatus, WebhookEvent
from services import subscription_reconciler
from services.lifecycle_emails import LifecycleEvent, detect_lifecycle_event
from services.subscription_reconciler import (
    invoice_subscription_id,
    map_status,
    process_event,
    resolve_plan,
)


# =============================================================================
# Helpers
# =============================================================================


def stripe_subscription(
    customer="cus_123",
    status="active",
    price_id="price_unknown",
    unit_amount=999,
    sub_id="sub_123",
    cancel_at_period_end=False,
):
    now = int(time.time())
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": now,
        "current_period_end": now + 30 * 24 * 3600,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": None,
        "items": {"data": [{"id": "si_1", "price": {"id": price_id, "unit_amount": unit_amount}}]},
    }


def invoice(customer="cus_123", invoice_id="in_1", subscription="sub_123", amount=999, currency="eur"):
    return {
        "id": invoice_id,
        "object": "invoice",
        "customer": customer,
        "subscription": subscription,
        "amount_paid": amount,
        "amount_due": amount,
        "currency": currency,
    }


def event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture
def customer(make_user, plans):
    """User with a Stripe customer on file, currently on the free plan."""
    return make_user(email="payer@example.com", customer_id="cus_123", plan=plans["free"])


# =============================================================================
# Status mapping & plan resolution
# =============================================================================


class TestStatusMapping:
    """Stripe statuses map onto the internal state machine."""

    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.TRIALING),
            ("unpaid", SubscriptionStatus.PAST_DUE),
            ("incomplete", SubscriptionStatus.PENDING),
            ("incomplete_expired", SubscriptionStatus.CANCELED),
        ],
    )
    def test_known_statuses(self, stripe_status, expected):
        assert map_status(stripe_status) == expected

    def test_unknown_status_maps_to_active(self):
        assert map_status("paused_forever") == SubscriptionStatus.ACTIVE
        assert map_status(None) == SubscriptionStatus.ACTIVE


class TestResolvePlan:
    """Price id first, then unambiguous amount matching."""

    def test_matches_configured_price_id(self, session, plans):
        plans["business"].stripe_price_id_yearly = "price_business_yearly"
        session.add(plans["business"])
        session.commit()

        plan = resolve_plan(session, {"price": {"id": "price_business_yearly", "unit_amount": 1}})
        assert plan.name == "business"

    def test_monthly_price_matches_cents(self, session, plans):
        plan = resolve_plan(session, {"price": {"id": "price_x", "unit_amount": 999}})
        assert plan.name == "pro"

    def test_yearly_price_matches_cents(self, session, plans):
        plan = resolve_plan(session, {"price": {"id": "price_x", "unit_amount": 29900}})
        assert plan.name == "business"

    def test_ambiguous_amount_is_unresolved(self, session, plans):
        session.add(Plan(name="pro_plus", display_name="Pro Plus", price_monthly=9.99, price_yearly=120.0))
        session.commit()

        assert resolve_plan(session, {"price": {"id": "price_x", "unit_amount": 999}}) is None

    def test_unknown_amount_is_unresolved(self, session, plans):
        assert resolve_plan(session, {"price": {"id": "price_x", "unit_amount": 12345}}) is None

    def test_inactive_plans_do_not_match_by_amount(self, session, plans):
        plans["pro"].is_active = False
        session.add(plans["pro"])
        session.commit()

        assert resolve_plan(session, {"price": {"id": "price_x", "unit_amount": 999}}) is None


# =============================================================================
# Subscription created / updated
# =============================================================================


class TestSubscriptionUpsert:

    def test_creates_row_and_mirrors_plan(self, session, gateway, customer, plans):
        result = process_event(session, gateway, event("customer.subscription.created", stripe_subscription()))

        assert result["plan_resolved"] is True
        rows = session.exec(select(Subscription).where(Subscription.user_id == customer.id)).all()
        assert len(rows) == 1
        assert rows[0].status == "active"
        assert rows[0].plan_id == plans["pro"].id
        assert rows[0].stripe_subscription_id == "sub_123"
        assert session.get(Profile, customer.id).plan_id == plans["pro"].id

    def test_repeated_events_leave_one_row_with_last_state(self, session, gateway, customer, plans):
        process_event(session, gateway, event("customer.subscription.created", stripe_subscription(), "evt_1"))
        process_event(
            session,
            gateway,
            event(
                "customer.subscription.updated",
                stripe_subscription(status="past_due", unit_amount=2999, cancel_at_period_end=True),
                "evt_2",
            ),
        )

        rows = session.exec(select(Subscription).where(Subscription.user_id == customer.id)).all()
        assert len(rows) == 1
        assert rows[0].status == "past_due"
        assert rows[0].plan_id == plans["business"].id
        assert rows[0].cancel_at_period_end is True

    def test_unresolved_plan_keeps_stored_plan(self, session, gateway, customer, plans, make_subscription):
        make_subscription(customer, plans["pro"], status=SubscriptionStatus.ACTIVE, stripe_subscription_id="sub_123")

        result = process_event(
            session, gateway, event("customer.subscription.updated", stripe_subscription(unit_amount=4242))
        )

        assert result["plan_resolved"] is False
        row = session.exec(select(Subscription).where(Subscription.user_id == customer.id)).one()
        assert row.plan_id == plans["pro"].id
        assert session.get(Profile, customer.id).plan_id == plans["free"].id

    def test_user_resolved_from_customer_metadata(self, session, gateway, make_user, plans):
        user = make_user(email="meta@example.com")
        gateway.retrieve_customer.return_value = {"id": "cus_999", "metadata": {"user_id": str(user.id)}}

        process_event(session, gateway, event("customer.subscription.created", stripe_subscription(customer="cus_999")))

        row = session.exec(select(Subscription).where(Subscription.user_id == user.id)).one()
        assert row.status == "active"

    def test_period_read_from_items_on_newer_payloads(self, session, gateway, customer, plans):
        payload = stripe_subscription()
        period_start = payload.pop("current_period_start")
        period_end = payload.pop("current_period_end")
        payload["items"]["data"][0].update(current_period_start=period_start, current_period_end=period_end)

        process_event(session, gateway, event("customer.subscription.created", payload))

        row = session.exec(select(Subscription).where(Subscription.user_id == customer.id)).one()
        assert row.current_period_end == datetime.fromtimestamp(period_end, tz=timezone.utc)
        assert row.current_period_start == datetime.fromtimestamp(period_start, tz=timezone.utc)

    def test_unknown_customer_is_noop(self, session, gateway, plans):
        result = process_event(
            session, gateway, event("customer.subscription.created", stripe_subscription(customer="cus_nobody"))
        )

        assert result["reason"] == "user_not_found"
        assert session.exec(select(Subscription)).all() == []


# =============================================================================
# Subscription deleted
# =============================================================================


class TestSubscriptionDeleted:

    def test_moves_row_and_profile_to_free_plan(self, session, gateway, customer, plans, make_subscription):
        make_subscription(customer, plans["pro"], status=SubscriptionStatus.ACTIVE, stripe_subscription_id="sub_123")

        process_event(session, gateway, event("customer.subscription.deleted", stripe_subscription(status="canceled")))

        row = session.exec(select(Subscription).where(Subscription.user_id == customer.id)).one()
        assert row.status == "canceled"
        assert row.plan_id == plans["free"].id
        assert row.canceled_at is not None
        assert session.get(Profile, customer.id).plan_id == plans["free"].id

    def test_unknown_customer_is_noop(self, session, gateway, plans):
        result = process_event(
            session, gateway, event("customer.subscription.deleted", stripe_subscription(customer="cus_nobody"))
        )
        assert result["action"] == "skipped"
        assert session.exec(select(Subscription)).all() == []


# =============================================================================
# Invoices
# =============================================================================


class TestInvoices:

    def test_payment_failed_records_payment_and_sets_past_due(
        self, session, gateway, customer, plans, make_subscription
    ):
        make_subscription(customer, plans["pro"], status=SubscriptionStatus.ACTIVE, stripe_subscription_id="sub_123")

        process_event(session, gateway, event("invoice.payment_failed", invoice()))

        payments = session.exec(select(Payment)).all()
        assert len(payments) == 1
        assert payments[0].status == "failed"
        assert payments[0].amount == pytest.approx(9.99)
        assert payments[0].currency == "EUR"
        row = session.exec(select(Subscription).where(Subscription.user_id == customer.id)).one()
        assert row.status == "past_due"

    def test_payment_failed_for_unknown_customer_inserts_nothing(self, session, gateway, plans):
        process_event(session, gateway, event("invoice.payment_failed", invoice(customer="cus_nobody")))
        assert session.exec(select(Payment)).all() == []

    def test_payment_succeeded_is_recorded_once(self, session, gateway, customer, plans):
        process_event(session, gateway, event("invoice.payment_succeeded", invoice(), "evt_a"))
        # Same invoice delivered under a new event id
        result = process_event(session, gateway, event("invoice.payment_succeeded", invoice(), "evt_b"))

        assert result["recorded"] is False
        payments = session.exec(select(Payment)).all()
        assert len(payments) == 1
        assert payments[0].status == "succeeded"

    def test_invoice_without_subscription_is_skipped(self, session, gateway, customer, plans):
        result = process_event(session, gateway, event("invoice.payment_succeeded", invoice(subscription=None)))
        assert result["reason"] == "no_subscription"
        assert session.exec(select(Payment)).all() == []


    def test_payment_failed_with_subscription_under_parent(
        self, session, gateway, customer, plans, make_subscription
    ):
        make_subscription(customer, plans["pro"], status=SubscriptionStatus.ACTIVE, stripe_subscription_id="sub_123")
        payload = invoice(subscription=None)
        del payload["subscription"]
        payload["parent"] = {"type": "subscription_details", "subscription_details": {"subscription": "sub_123"}}

        result = process_event(session, gateway, event("invoice.payment_failed", payload))

        assert result["action"] == "payment_failed"
        assert len(session.exec(select(Payment)).all()) == 1
        row = session.exec(select(Subscription).where(Subscription.user_id == customer.id)).one()
        assert row.status == "past_due"

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"subscription": "sub_1"}, "sub_1"),
            ({"subscription": {"id": "sub_2", "object": "subscription"}}, "sub_2"),
            ({"parent": {"subscription_details": {"subscription": "sub_3"}}}, "sub_3"),
            ({"parent": {"type": "quote_details", "quote_details": {}}}, None),
            ({}, None),
        ],
    )
    def test_invoice_subscription_id_shapes(self, payload, expected):
        assert invoice_subscription_id(payload) == expected


# =============================================================================
# Event log
# =============================================================================


class TestProcessEvent:

    def test_already_processed_event_is_skipped(self, session, gateway, customer, plans):
        process_event(session, gateway, event("invoice.payment_failed", invoice(), "evt_dup"))
        result = process_event(session, gateway, event("invoice.payment_failed", invoice(), "evt_dup"))

        assert result["duplicate"] is True
        assert len(session.exec(select(Payment)).all()) == 1

    def test_unhandled_event_is_marked_processed(self, session, gateway, plans):
        result = process_event(session, gateway, event("customer.created", {"id": "cus_1"}, "evt_other"))

        assert result["action"] == "ignored"
        record = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_other")).one()
        assert record.processed is True

    def test_handler_error_rolls_back_and_is_recorded(self, session, gateway, customer, plans, monkeypatch):
        def failing_handler(session, gateway, obj):
            session.add(Payment(user_id=customer.id, amount=1.0, currency="EUR", status="failed"))
            session.flush()
            raise RuntimeError("boom")

        monkeypatch.setitem(subscription_reconciler.EVENT_HANDLERS, "invoice.payment_failed", failing_handler)

        with pytest.raises(RuntimeError):
            process_event(session, gateway, event("invoice.payment_failed", invoice(), "evt_fail"))

        assert session.exec(select(Payment)).all() == []
        record = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_fail")).one()
        assert record.processed is False
        assert record.processing_error == "boom"


# =============================================================================
# Lifecycle emails
# =============================================================================


class TestDetectLifecycleEvent:

    @pytest.mark.parametrize(
        "old_status,old_plan,status,plan,canceled,expected",
        [
            (None, None, "trialing", 2, False, LifecycleEvent.TRIAL_STARTED),
            (None, None, "active", 2, False, LifecycleEvent.SUBSCRIPTION_PURCHASED),
            (None, None, "pending", 2, False, None),
            ("trialing", 2, "active", 2, False, LifecycleEvent.SUBSCRIPTION_PURCHASED),
            ("active", 2, "canceled", 2, False, LifecycleEvent.SUBSCRIPTION_CANCELED),
            ("trialing", 2, "active", 2, True, LifecycleEvent.SUBSCRIPTION_CANCELED),
            ("active", 2, "active", 3, False, LifecycleEvent.PLAN_CHANGED),
            ("trialing", 2, "active", 3, False, LifecycleEvent.PLAN_CHANGED),
            ("active", None, "active", 3, False, None),
            ("active", 2, "active", 2, False, None),
            ("active", 2, "past_due", 2, False, None),
        ],
    )
    def test_transitions(self, old_status, old_plan, status, plan, canceled, expected):
        assert detect_lifecycle_event(old_status, old_plan, status, plan, canceled=canceled) == expected


class TestLifecycleEmails:

    def test_new_trial_sends_trial_started(self, session, gateway, email_sender, customer, plans):
        process_event(
            session, gateway, event("customer.subscription.created", stripe_subscription(status="trialing")),
            email_sender,
        )

        to_email, subject, html = email_sender.send_email.call_args.args
        assert to_email == "payer@example.com"
        assert subject == "Your 30-day trial has started!"
        assert "Your Pro trial is now active." in html

    def test_internal_trial_turning_active_sends_purchase(
        self, session, gateway, email_sender, customer, plans, make_subscription
    ):
        make_subscription(customer, plans["pro"], status=SubscriptionStatus.TRIALING)

        process_event(session, gateway, event("customer.subscription.created", stripe_subscription()), email_sender)

        _, subject, html = email_sender.send_email.call_args.args
        assert subject == "Subscription activated: Pro"
        assert "Next billing:" in html

    def test_price_change_sends_plan_changed(self, session, gateway, email_sender, customer, plans, make_subscription):
        make_subscription(customer, plans["pro"], status=SubscriptionStatus.ACTIVE, stripe_subscription_id="sub_123")

        process_event(
            session, gateway, event("customer.subscription.updated", stripe_subscription(unit_amount=2999)),
            email_sender,
        )

        _, subject, html = email_sender.send_email.call_args.args
        assert subject == "Subscription changed to Business"
        assert "from Pro to Business" in html

    def test_deleted_subscription_names_the_lost_plan(
        self, session, gateway, email_sender, customer, plans, make_subscription
    ):
        make_subscription(customer, plans["pro"], status=SubscriptionStatus.ACTIVE, stripe_subscription_id="sub_123")

        process_event(
            session, gateway, event("customer.subscription.deleted", stripe_subscription(status="canceled"), "evt_del"),
            email_sender,
        )
        process_event(
            session, gateway, event("customer.subscription.deleted", stripe_subscription(status="canceled"), "evt_del2"),
            email_sender,
        )

        email_sender.send_email.assert_called_once()
        _, subject, html = email_sender.send_email.call_args.args
        assert subject == "Subscription canceled"
        assert "Your Pro subscription has been canceled." in html

    def test_unchanged_state_and_redelivery_send_nothing_new(
        self, session, gateway, email_sender, customer, plans
    ):
        created = event("customer.subscription.created", stripe_subscription(), "evt_new")
        process_event(session, gateway, created, email_sender)
        process_event(session, gateway, created, email_sender)
        process_event(session, gateway, event("customer.subscription.updated", stripe_subscription(), "evt_same"), email_sender)

        email_sender.send_email.assert_called_once()

    def test_email_failure_does_not_fail_the_event(self, session, gateway, email_sender, customer, plans):
        email_sender.send_email.side_effect = RuntimeError("smtp down")

        result = process_event(
            session, gateway, event("customer.subscription.created", stripe_subscription(), "evt_mail"), email_sender
        )

        assert result["action"] == "subscription_upserted"
        record = session.exec(select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_mail")).one()
        assert record.processed is True

    def test_user_name_is_html_escaped(self, session, gateway, email_sender, make_user, plans):
        make_user(email="eve@example.com", full_name="<b>Eve</b>", customer_id="cus_eve")

        process_event(
            session, gateway, event("customer.subscription.created", stripe_subscription(customer="cus_eve")),
            email_sender,
        )

        _, _, html = email_sender.send_email.call_args.args
        assert "&lt;b&gt;Eve&lt;/b&gt;" in html
        assert "<b>Eve</b>" not in html
