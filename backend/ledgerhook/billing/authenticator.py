"""Event authenticator.

Turns a raw webhook request into a typed ``BillingEvent``, or refuses it. Stateless.
"""

import json
from typing import Optional

from pydantic import ValidationError

from ledgerhook.core.exceptions import AuthenticationError
from ledgerhook.integrations.stripe_client import StripeClient, stripe_client
from ledgerhook.schemas.billing_event import BillingEvent


class EventAuthenticator:
    """Verify webhook signatures and deserialize the envelope."""

    def __init__(self, client: Optional[StripeClient] = None):
        """Initialize the authenticator.

        Args:
            client: Stripe client holding the webhook secret; defaults to the configured one
        """
        self.client = client or stripe_client

    def authenticate(self, payload: bytes, signature: Optional[str]) -> BillingEvent:
        """Authenticate and parse one webhook delivery.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the Stripe-Signature header

        Returns:
            BillingEvent: The verified event. For event types with a payload model the
                payload has also been validated against it.

        Raises:
            AuthenticationError: If the signature is missing or wrong, or the body is not a
                well-formed event. Such a delivery must not be retried.
        """
        if not signature:
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            body = self.client.verify_webhook_signature(payload, signature)
        except ValueError as e:
            raise AuthenticationError(str(e)) from e

        try:
            envelope = json.loads(body)
        except json.JSONDecodeError as e:
            raise AuthenticationError(f"Webhook payload is not JSON: {e}") from e

        if not isinstance(envelope, dict):
            raise AuthenticationError("Webhook payload is not a JSON object")

        try:
            event = BillingEvent.model_validate(envelope)
            event.typed_payload()
        except (ValidationError, ValueError) as e:
            raise AuthenticationError(f"Malformed {envelope.get('type')} event: {e}") from e

        return event


event_authenticator = EventAuthenticator()
