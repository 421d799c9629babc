"""Payment processor interface and its Stripe implementation.

The entitlement store and webhook reconciler only talk to the
``PaymentProcessor`` protocol, so tests can substitute an in-memory fake.
The Stripe SDK is synchronous; every call is moved off the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol

import stripe

from guildhall.shared.exceptions import PaymentProcessorError, WebhookSignatureError

logger = logging.getLogger(__name__)

# Stripe statuses that have no direct counterpart in EntitlementStatus
_STATUS_ALIASES = {
    "unpaid": "past_due",
    "paused": "past_due",
    "incomplete_expired": "canceled",
}


def normalize_status(status: str) -> str:
    """Map a Stripe subscription status onto the stored status set."""
    return _STATUS_ALIASES.get(status, status)


def tier_for_interval(interval: Optional[str]) -> str:
    """Monthly prices grant the monthly tier; anything else is lifetime."""
    return "monthly" if interval == "month" else "lifetime"


def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a Stripe object or plain mapping."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


@dataclass
class ProcessorSubscription:
    """Authoritative subscription state fetched from the processor."""
    id: str
    status: str
    customer_id: Optional[str]
    current_period_end: datetime
    interval: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckoutSession:
    """Hosted checkout session returned to the dashboard."""
    id: str
    url: str


class PaymentProcessor(Protocol):
    """Narrow interface over the payment processor."""

    async def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        """Fetch a subscription.

        Raises:
            PaymentProcessorError: If the processor call fails
        """
        ...

    async def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription immediately.

        Raises:
            PaymentProcessorError: If the processor call fails
        """
        ...

    async def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        """Create a hosted subscription checkout session.

        Raises:
            PaymentProcessorError: If the processor call fails
        """
        ...

    def construct_event(self, payload: bytes, signature: str) -> Mapping[str, Any]:
        """Verify a webhook signature and return the event.

        Returns:
            Mapping with ``id``, ``type`` and ``data.object``

        Raises:
            WebhookSignatureError: If the payload or signature is invalid
        """
        ...


def subscription_from_stripe(obj: Any) -> ProcessorSubscription:
    """Convert a Stripe subscription object into a ProcessorSubscription."""
    items = stripe_field(stripe_field(obj, "items"), "data", [])
    first_item = items[0] if items else None

    # Newer API versions only report the period end on subscription items
    period_end = stripe_field(obj, "current_period_end")
    if period_end is None:
        period_end = stripe_field(first_item, "current_period_end")
    if period_end is None:
        raise PaymentProcessorError(
            f"Subscription {stripe_field(obj, 'id')} has no current period end"
        )

    recurring = stripe_field(stripe_field(first_item, "price"), "recurring")
    metadata = stripe_field(obj, "metadata", {})

    return ProcessorSubscription(
        id=stripe_field(obj, "id"),
        status=normalize_status(stripe_field(obj, "status", "incomplete")),
        customer_id=stripe_field(obj, "customer"),
        current_period_end=datetime.fromtimestamp(int(period_end), tz=timezone.utc),
        interval=stripe_field(recurring, "interval"),
        metadata=dict(metadata) if metadata else {},
    )


class StripeGateway:
    """Stripe implementation of PaymentProcessor.

    The API key is passed per request instead of through the global
    ``stripe.api_key`` so several gateways can coexist in one process.
    """

    def __init__(self, secret_key: str, webhook_secret: str) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    async def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        try:
            subscription = await asyncio.to_thread(
                stripe.Subscription.retrieve,
                subscription_id,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise PaymentProcessorError(
                f"Failed to retrieve subscription {subscription_id}: {e}"
            ) from e
        return subscription_from_stripe(subscription)

    async def cancel_subscription(self, subscription_id: str) -> None:
        try:
            await asyncio.to_thread(
                stripe.Subscription.cancel,
                subscription_id,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise PaymentProcessorError(
                f"Failed to cancel subscription {subscription_id}: {e}"
            ) from e
        logger.info(f"Canceled Stripe subscription {subscription_id}")

    async def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.secret_key,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Failed to create checkout session: {e}") from e
        return CheckoutSession(id=session["id"], url=session["url"])

    def construct_event(self, payload: bytes, signature: str) -> Mapping[str, Any]:
        if not self.webhook_secret:
            raise WebhookSignatureError("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}") from e

        return {
            "id": event["id"],
            "type": event["type"],
            "data": {"object": event["data"]["object"]},
        }
