"""Schemas for the application."""

from .billing import (
    PendingChangeRunResponse,
    PendingChangeRunResult,
    PendingSeatChangeResponse,
    ProrationBreakdown,
    ProrationPreviewRequest,
    ProrationPreviewResponse,
    ReconciliationRunResponse,
    ReconciliationRunResult,
    ScheduleSeatChangeRequest,
    SeatChangeResponse,
    SeatQuantityUpdateRequest,
    WebhookAck,
    WebhookRetryRunResponse,
)
from .billing_event import BillingEvent, BillingEventCreate
from .subscription import (
    Subscription,
    SubscriptionCreate,
    SubscriptionInDBBase,
    SubscriptionUpdate,
)
from .webhook import WebhookData, WebhookMeta, WebhookPayload

# flake8: noqa: F401
