"""Webhook parsing and reconciliation against the entitlement store."""

import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from guildhall.shared.exceptions import PaymentProcessorError
from guildhall.web.billing import normalize_status, subscription_from_stripe, tier_for_interval
from guildhall.web.models import AuditAction, EntitlementRecord
from guildhall.web.webhooks import (
    CheckoutCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnrecognizedEvent,
    WebhookReconciler,
    parse_event,
)

from mocks import GUILD_ID, USER_ID, checkout_completed, stripe_event


@pytest.fixture
def reconciler(entitlements, payments) -> WebhookReconciler:
    return WebhookReconciler(entitlements, payments)


async def all_records(session):
    result = await session.execute(select(EntitlementRecord))
    return result.scalars().all()


class TestParseEvent:
    def test_checkout_completed(self):
        parsed = parse_event(checkout_completed())

        assert parsed == CheckoutCompleted(
            subscription_id="sub_123", customer_id="cus_test", guild_id=GUILD_ID, user_id=USER_ID
        )

    def test_subscription_events(self):
        assert parse_event(
            stripe_event("customer.subscription.updated", {"id": "sub_1", "status": "past_due"})
        ) == SubscriptionUpdated("sub_1", "past_due")
        assert parse_event(
            stripe_event("customer.subscription.deleted", {"id": "sub_1"})
        ) == SubscriptionDeleted("sub_1")

    def test_invoice_events_find_subscription(self):
        assert parse_event(
            stripe_event("invoice.payment_succeeded", {"subscription": "sub_1"})
        ) == InvoicePaid("sub_1")
        nested = {"parent": {"subscription_details": {"subscription": "sub_2"}}}
        assert parse_event(stripe_event("invoice.payment_failed", nested)) == InvoicePaymentFailed("sub_2")

    def test_unknown_type_falls_through(self):
        assert parse_event(stripe_event("customer.created", {})) == UnrecognizedEvent("customer.created")


class TestBillingHelpers:
    def test_status_aliases(self):
        assert normalize_status("unpaid") == "past_due"
        assert normalize_status("incomplete_expired") == "canceled"
        assert normalize_status("active") == "active"

    def test_tier_follows_interval(self):
        assert tier_for_interval("month") == "monthly"

    def test_period_end_falls_back_to_first_item(self):
        period_end = int(datetime(2030, 1, 1, tzinfo=timezone.utc).timestamp())
        subscription = subscription_from_stripe(
            {
                "id": "sub_1",
                "status": "active",
                "customer": "cus_1",
                "items": {
                    "data": [
                        {"current_period_end": period_end, "price": {"recurring": {"interval": "month"}}}
                    ]
                },
            }
        )

        assert subscription.current_period_end == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert subscription.interval == "month"

    def test_missing_period_end_is_an_error(self):
        with pytest.raises(PaymentProcessorError):
            subscription_from_stripe({"id": "sub_1", "status": "active"})


class TestReconciler:
    async def test_checkout_creates_one_monthly_record(self, session, reconciler, payments, audit):
        payments.add_subscription("sub_123", status="active", interval="month")

        await reconciler.handle(checkout_completed())

        records = await all_records(session)
        assert len(records) == 1
        assert records[0].tier == "monthly"
        assert records[0].status == "active"
        assert records[0].guild_id == GUILD_ID
        assert records[0].user_id == USER_ID
        assert len(await audit.get_logs(GUILD_ID, action=AuditAction.PREMIUM_ACTIVATED)) == 1

    async def test_checkout_mirrors_processor_status(self, session, reconciler, payments):
        payments.add_subscription("sub_123", status="trialing")

        await reconciler.handle(checkout_completed())

        assert (await all_records(session))[0].status == "trialing"

    @pytest.mark.parametrize("missing", ["guild_id", "user_id", "subscription_id"])
    async def test_incomplete_checkout_is_dropped(self, session, reconciler, payments, missing, caplog):
        payments.add_subscription("sub_123")

        with caplog.at_level(logging.ERROR, logger="guildhall.web.webhooks"):
            await reconciler.handle(checkout_completed(**{missing: None}))

        assert await all_records(session) == []
        assert any(
            record.levelno == logging.ERROR and "Dropping checkout.session.completed" in record.getMessage()
            for record in caplog.records
        )

    async def test_status_updates_follow_the_subscription(self, session, reconciler, payments, entitlements):
        payments.add_subscription("sub_123")
        await reconciler.handle(checkout_completed())

        await reconciler.handle(stripe_event("invoice.payment_failed", {"subscription": "sub_123"}))
        assert not await entitlements.is_guild_active(GUILD_ID)

        await reconciler.handle(stripe_event("invoice.payment_succeeded", {"subscription": "sub_123"}))
        assert await entitlements.is_guild_active(GUILD_ID)

        await reconciler.handle(
            stripe_event("customer.subscription.updated", {"id": "sub_123", "status": "past_due"})
        )
        assert not await entitlements.is_guild_active(GUILD_ID)

    async def test_deleted_subscription_cancels(self, session, reconciler, payments, audit):
        payments.add_subscription("sub_123")
        await reconciler.handle(checkout_completed())

        await reconciler.handle(stripe_event("customer.subscription.deleted", {"id": "sub_123"}))

        records = await all_records(session)
        assert records[0].status == "canceled"
        canceled = await audit.get_logs(GUILD_ID, action=AuditAction.PREMIUM_CANCELED)
        assert canceled[0].details["reason"] == "subscription_deleted"

    async def test_unrecognized_events_change_nothing(self, session, reconciler):
        parsed = await reconciler.handle(stripe_event("charge.refunded", {"id": "ch_1"}))

        assert isinstance(parsed, UnrecognizedEvent)
        assert await all_records(session) == []

