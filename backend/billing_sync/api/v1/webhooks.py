"""Stripe webhook endpoint — receives and reconciles Stripe events."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from billing_sync.api.deps import get_reconciler
from billing_sync.billing.errors import SignatureError
from billing_sync.billing.reconciler import BillingReconciler
from billing_sync.schemas.webhooks import WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    reconciler: BillingReconciler = Depends(get_reconciler),
) -> WebhookAck:
    """Receive and reconcile a Stripe webhook event.

    Only an unauthenticated payload is rejected (400). Every parsed event is
    acknowledged with 200, including ignored, skipped and failed ones, so
    Stripe does not redeliver events that cannot succeed on retry.
    """
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature
    try:
        event = reconciler.verify(payload, sig_header)
    except SignatureError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e

    # 3. Reconcile
    result = await reconciler.handle_event(event)
    return WebhookAck(
        status=result.outcome.value,
        event_id=result.event_id,
        event_type=result.event_type,
    )
