"""Stripe webhook signature verification over the raw request body."""

import logging

import stripe
from pydantic import ValidationError

from billing_sync.billing.errors import SignatureError
from billing_sync.schemas.stripe import StripeEventEnvelope

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class SignatureVerifier:
    """Authenticates inbound payloads with the endpoint's signing secret."""

    def __init__(self, secret: str, tolerance: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self._secret = secret
        self._tolerance = tolerance

    def verify(self, payload: bytes, sig_header: str | None) -> StripeEventEnvelope:
        """Verify ``sig_header`` against the unparsed ``payload`` and parse the envelope.

        Any failure raises :class:`SignatureError` with a generic message;
        the reason is only logged at debug level.
        """
        if not self._secret or not sig_header:
            logger.debug("Missing webhook secret or stripe-signature header")
            raise SignatureError("Invalid signature")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.debug("Webhook payload is not valid UTF-8")
            raise SignatureError("Invalid signature") from e

        try:
            stripe.WebhookSignature.verify_header(body, sig_header, self._secret, self._tolerance)
        except stripe.SignatureVerificationError as e:
            logger.debug("Signature verification failed: %s", e)
            raise SignatureError("Invalid signature") from e

        try:
            return StripeEventEnvelope.model_validate_json(body)
        except ValidationError as e:
            logger.debug("Signed payload is not a Stripe event envelope: %s", e)
            raise SignatureError("Invalid signature") from e
