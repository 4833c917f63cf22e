"""Request and response schemas of the billing, webhook and cron endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from seatsync.core.shared_models import BillingType, ChargeTiming, WebhookDeliveryStatus
from seatsync.schemas.subscription import Subscription


class ProrationPreviewRequest(BaseModel):
    """Request a proration preview for a new seat count."""

    new_quantity: int = Field(..., ge=1, description="Seat count to preview")


class ProrationBreakdown(BaseModel):
    """Prorated charge for a seat change on a quantity-based subscription."""

    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal = Field(..., description="Charge in major currency units, never negative")
    days_remaining: int = Field(..., alias="daysRemaining")
    total_days: int = Field(..., alias="totalDays")
    seats_added: int = Field(..., alias="seatsAdded")
    per_seat_price: Decimal = Field(..., alias="perSeatPrice")
    currency: str
    message: str

    @field_serializer("amount", "per_seat_price")
    def serialize_money(self, value: Decimal) -> float:
        """Money is sent as a JSON number."""
        return float(value)


class ProrationPreviewResponse(BaseModel):
    """Proration preview. ``applicable`` is false for usage-based subscriptions."""

    applicable: bool
    billing_type: BillingType
    current_seats: int
    new_quantity: int
    proration: Optional[ProrationBreakdown] = None
    message: Optional[str] = None


class SeatQuantityUpdateRequest(BaseModel):
    """Change the seat count immediately."""

    new_quantity: int = Field(..., ge=1, description="New seat count")
    invoice_immediately: bool = Field(
        True, description="Charge prorated seats now instead of on the next invoice"
    )


class ScheduleSeatChangeRequest(BaseModel):
    """Defer a seat change to a later date, by default the next renewal."""

    new_quantity: int = Field(..., ge=1, description="Seat count to apply later")
    effective_at: Optional[datetime] = Field(
        None, description="When the change applies; defaults to the end of the billing period"
    )


class SeatChangeResponse(BaseModel):
    """Result of a seat change."""

    subscription: Subscription
    billing_type: BillingType
    previous_seats: int
    charged_at: ChargeTiming
    proration: Optional[ProrationBreakdown] = None
    message: str


class PendingSeatChangeResponse(BaseModel):
    """State of the deferred seat change after scheduling or cancelling it."""

    subscription: Subscription
    pending_seats: Optional[int] = None
    pending_effective_at: Optional[datetime] = None
    message: str


class WebhookAck(BaseModel):
    """Acknowledgement returned to the billing provider."""

    status: WebhookDeliveryStatus
    event_id: str
    event_type: str
    outcome: Optional[str] = None
    detail: Optional[str] = None


class PendingChangeRunResult(BaseModel):
    """Outcome for one subscription in a pending-change run."""

    subscription_id: UUID
    applied: bool
    previous_seats: Optional[int] = None
    new_seats: Optional[int] = None
    error: Optional[str] = None


class PendingChangeRunResponse(BaseModel):
    """Response of the pending-change cron endpoint."""

    success: bool
    processed: int
    failed: int
    message: str
    results: list[PendingChangeRunResult] = Field(default_factory=list)


class ReconciliationRunResult(BaseModel):
    """Comparison of one subscription against the provider."""

    subscription_id: UUID
    organization_id: UUID
    billing_type: BillingType
    store_seats: int
    expected_seats: int
    provider_seats: Optional[int] = None
    matches: Optional[bool] = None
    error: Optional[str] = None


class ReconciliationRunResponse(BaseModel):
    """Response of the reconciliation cron endpoint."""

    success: bool
    checked: int
    matches: int
    mismatches: int
    failed: int
    message: str
    results: list[ReconciliationRunResult] = Field(default_factory=list)


class WebhookRetryRunResponse(BaseModel):
    """Response of the failed-webhook retry cron endpoint."""

    success: bool
    processed: int
    failed: int
    message: str
    results: list[WebhookAck] = Field(default_factory=list)
