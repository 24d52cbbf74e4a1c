"""Pydantic v2 response schemas for webhook endpoints."""

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Acknowledgment returned to Stripe for every authenticated event."""

    received: bool = True
    status: str  # processed, ignored, skipped, failed
    event_id: str
    event_type: str
