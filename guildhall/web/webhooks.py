"""Stripe webhook reconciliation.

Verified Stripe events are parsed into typed event objects and folded into
entitlement transitions. Unrecognized or malformed events are logged and
dropped; Stripe's retry policy is the only redelivery mechanism.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from guildhall.web.billing import PaymentProcessor, stripe_field, tier_for_interval
from guildhall.web.crud import EntitlementOperations

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutCompleted:
    subscription_id: Optional[str]
    customer_id: Optional[str]
    guild_id: Optional[str]
    user_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionUpdated:
    subscription_id: str
    status: str


@dataclass(frozen=True)
class SubscriptionDeleted:
    subscription_id: str


@dataclass(frozen=True)
class InvoicePaid:
    subscription_id: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentFailed:
    subscription_id: Optional[str]


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_type: str


WebhookEvent = Union[
    CheckoutCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaid,
    InvoicePaymentFailed,
    UnrecognizedEvent,
]


def _invoice_subscription(invoice: Any) -> Optional[str]:
    subscription = stripe_field(invoice, "subscription")
    if subscription is None:
        # Newer API versions nest the subscription under parent details
        details = stripe_field(stripe_field(invoice, "parent"), "subscription_details")
        subscription = stripe_field(details, "subscription")
    if subscription is not None and not isinstance(subscription, str):
        subscription = stripe_field(subscription, "id")
    return subscription


def parse_event(event: Mapping[str, Any]) -> WebhookEvent:
    """Turn a verified Stripe event into a typed webhook event."""
    event_type = stripe_field(event, "type", "")
    obj = stripe_field(stripe_field(event, "data"), "object", {})

    if event_type == "checkout.session.completed":
        metadata = stripe_field(obj, "metadata", {})
        return CheckoutCompleted(
            subscription_id=stripe_field(obj, "subscription"),
            customer_id=stripe_field(obj, "customer"),
            guild_id=stripe_field(metadata, "guildId"),
            user_id=stripe_field(metadata, "userId"),
        )
    if event_type == "customer.subscription.updated":
        return SubscriptionUpdated(
            subscription_id=stripe_field(obj, "id"),
            status=stripe_field(obj, "status"),
        )
    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(subscription_id=stripe_field(obj, "id"))
    if event_type == "invoice.payment_succeeded":
        return InvoicePaid(subscription_id=_invoice_subscription(obj))
    if event_type == "invoice.payment_failed":
        return InvoicePaymentFailed(subscription_id=_invoice_subscription(obj))
    return UnrecognizedEvent(event_type=event_type)


class WebhookReconciler:
    """Applies webhook events to the entitlement store."""

    def __init__(self, entitlements: EntitlementOperations, payments: PaymentProcessor):
        self.entitlements = entitlements
        self.payments = payments

    async def handle(self, event: Mapping[str, Any]) -> WebhookEvent:
        """Parse and apply one Stripe event.

        Returns:
            The parsed event, for logging by the caller

        Raises:
            PaymentProcessorError: If activating a checkout can't reach Stripe
            DatabaseOperationError: If the store write fails
        """
        parsed = parse_event(event)

        if isinstance(parsed, CheckoutCompleted):
            await self._checkout_completed(parsed)
        elif isinstance(parsed, SubscriptionUpdated):
            await self.entitlements.update_status(parsed.subscription_id, parsed.status)
        elif isinstance(parsed, SubscriptionDeleted):
            await self.entitlements.cancel(parsed.subscription_id, "subscription_deleted")
        elif isinstance(parsed, InvoicePaid):
            if parsed.subscription_id:
                await self.entitlements.update_status(parsed.subscription_id, "active")
        elif isinstance(parsed, InvoicePaymentFailed):
            if parsed.subscription_id:
                await self.entitlements.update_status(parsed.subscription_id, "past_due")
        else:
            logger.info(f"Unhandled Stripe event type: {parsed.event_type}")

        return parsed

    async def _checkout_completed(self, event: CheckoutCompleted) -> None:
        missing = [
            name for name, value in (
                ("subscription", event.subscription_id),
                ("customer", event.customer_id),
                ("guildId", event.guild_id),
                ("userId", event.user_id),
            )
            if not value
        ]
        if missing:
            logger.error(f"Dropping checkout.session.completed without {', '.join(missing)}")
            return

        subscription = await self.payments.retrieve_subscription(event.subscription_id)
        tier = tier_for_interval(subscription.interval)
        await self.entitlements.activate(
            subscription_id=event.subscription_id,
            customer_id=event.customer_id,
            user_id=event.user_id,
            guild_id=event.guild_id,
            tier=tier,
        )
