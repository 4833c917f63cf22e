"""Shared models for the backend."""

from enum import Enum


class BillingType(str, Enum):
    """How seats of a subscription are billed.

    Only the seat manager branches on this value.
    """

    QUANTITY_BASED = "quantity_based"  # yearly, seat count is the provider quantity
    USAGE_BASED = "usage_based"  # monthly, seat count is reported as usage
    LEGACY = "legacy"  # unrecognized product variant


class SubscriptionStatus(str, Enum):
    """Subscription status enum, mirrors the provider's status values."""

    ON_TRIAL = "on_trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    UNPAID = "unpaid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


LIVE_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.ON_TRIAL,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.PAUSED,
)


class ChargeTiming(str, Enum):
    """When a seat change is billed."""

    IMMEDIATELY = "immediately"
    END_OF_PERIOD = "end_of_period"


class WebhookOutcome(str, Enum):
    """What the webhook ingestor decided for a processed event."""

    APPLIED = "applied"
    STALE = "stale"
    IGNORED = "ignored"


class WebhookDeliveryStatus(str, Enum):
    """Result of a single webhook delivery."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
