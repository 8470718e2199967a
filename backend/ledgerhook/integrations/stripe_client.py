"""Stripe API client for billing operations.

This module provides a clean interface to Stripe API,
handling all direct Stripe interactions without business logic.
"""

import json
from typing import Optional

import stripe

from ledgerhook.core.config import settings
from ledgerhook.core.exceptions import ExternalServiceError
from ledgerhook.schemas.billing_event import SubscriptionPayload


class StripeClient:
    """Client for Stripe API operations."""

    def __init__(
        self,
        webhook_secret: str,
        api_key: Optional[str] = None,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        """Initialize Stripe client.

        Args:
            webhook_secret: Signing secret of the webhook endpoint
            api_key: Secret API key; without it only signature verification is available
            tolerance: Maximum accepted age of a signature timestamp, in seconds
        """
        self.webhook_secret = webhook_secret
        self.api_key = api_key
        self.tolerance = tolerance

    @property
    def api_enabled(self) -> bool:
        """Whether outbound API calls can be made."""
        return bool(self.api_key)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> str:
        """Verify the ``Stripe-Signature`` header of a webhook request.

        Stripe signs ``"{timestamp}.{body}"`` with HMAC-SHA256; the library recomputes the
        signature, compares it in constant time and rejects timestamps outside the tolerance.

        Args:
            payload: Raw request body
            signature: Value of the Stripe-Signature header

        Returns:
            str: The verified body, decoded as UTF-8

        Raises:
            ValueError: If the body is not UTF-8 or the signature does not verify
        """
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValueError(f"Invalid webhook payload: {e}") from e

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid webhook signature: {e}") from e

        return body

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionPayload:
        """Fetch a subscription from Stripe.

        Used when an invoice references a subscription that is not known locally and carries
        no metadata of its own.

        Raises:
            ExternalServiceError: If the API is not configured or the call fails
        """
        if not self.api_enabled:
            raise ExternalServiceError(
                service_name="Stripe",
                message="Stripe API key is not configured",
            )

        try:
            subscription = await stripe.Subscription.retrieve_async(
                subscription_id, api_key=self.api_key
            )
        except stripe.StripeError as e:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to retrieve subscription: {str(e)}",
            ) from e

        return SubscriptionPayload.model_validate(json.loads(str(subscription)))


# Singleton instance
stripe_client = StripeClient(
    webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    api_key=settings.STRIPE_SECRET_KEY,
    tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
)
