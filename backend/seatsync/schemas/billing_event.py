"""Billing event schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from seatsync.core.shared_models import WebhookOutcome


class BillingEventCreate(BaseModel):
    """Billing event creation schema, written before dispatch."""

    provider: str
    external_event_id: str = Field(..., max_length=255)
    event_type: str
    organization_id: Optional[UUID] = None
    payload: dict[str, Any]


class BillingEvent(BillingEventCreate):
    """Billing event ledger entry."""

    model_config = {"from_attributes": True}

    id: UUID
    processed_at: Optional[datetime] = None
    outcome: Optional[WebhookOutcome] = None
    error_detail: Optional[str] = None
    created_at: datetime
    modified_at: datetime
