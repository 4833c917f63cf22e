"""Detects drift between stored seat counts and what the provider bills.

Read-only: mismatches are reported and logged, never corrected here. The
provider's webhooks or an administrator resolve them.
"""

from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import crud, schemas
from seatsync.core.logging import ContextualLogger, logger
from seatsync.core.shared_models import BillingType
from seatsync.platform.billing.seat_manager import SeatManager


@dataclass
class ReconciliationOutcome:
    """Comparison of one subscription."""

    subscription_id: UUID
    organization_id: UUID
    billing_type: BillingType
    store_seats: int
    expected_seats: int
    provider_seats: Optional[int] = None
    error: Optional[str] = None

    @property
    def matches(self) -> Optional[bool]:
        """Whether the provider bills the expected seats; None when it could not be read."""
        if self.provider_seats is None:
            return None
        return self.provider_seats == self.expected_seats


@dataclass
class ReconciliationSummary:
    """Totals of one reconciliation run."""

    results: list[ReconciliationOutcome] = field(default_factory=list)

    @property
    def checked(self) -> int:
        """Number of subscriptions compared."""
        return len(self.results)

    @property
    def matches(self) -> int:
        """Number of subscriptions where store and provider agree."""
        return sum(1 for result in self.results if result.matches is True)

    @property
    def mismatches(self) -> list[ReconciliationOutcome]:
        """Subscriptions whose stored seats differ from the provider."""
        return [result for result in self.results if result.matches is False]

    @property
    def failures(self) -> list[ReconciliationOutcome]:
        """Subscriptions the provider could not be asked about."""
        return [result for result in self.results if result.error is not None]


class SubscriptionReconciler:
    """Compares every live subscription with the provider."""

    def __init__(self, seat_manager: SeatManager):
        """Initialize the reconciler."""
        self.seat_manager = seat_manager

    async def reconcile(
        self, db: AsyncSession, *, log: Optional[ContextualLogger] = None
    ) -> ReconciliationSummary:
        """Check each live subscription that has a provider subscription item.

        Raises:
            SQLAlchemyError: If the subscriptions cannot be queried
        """
        log = (log or logger).with_context(job="reconcile_subscriptions")
        rows = await crud.subscription.get_live_with_provider_item(db)
        subscriptions = [
            schemas.Subscription.model_validate(row, from_attributes=True) for row in rows
        ]

        summary = ReconciliationSummary()
        for subscription in subscriptions:
            outcome = ReconciliationOutcome(
                subscription_id=subscription.id,
                organization_id=subscription.organization_id,
                billing_type=subscription.billing_type,
                store_seats=subscription.current_seats,
                expected_seats=self._expected_seats(subscription),
            )
            try:
                outcome.provider_seats = await self.seat_manager.get_provider_seats(subscription)
            except Exception as e:
                log.error(f"Could not read provider seats for subscription {subscription.id}: {e}")
                outcome.error = str(e)

            if outcome.matches is False:
                log.with_context(
                    subscription_id=str(subscription.id),
                    organization_id=str(subscription.organization_id),
                ).error(
                    f"Seat mismatch: store has {outcome.store_seats}, provider bills "
                    f"{outcome.provider_seats}, expected {outcome.expected_seats} "
                    f"({subscription.billing_type.value})"
                )
            summary.results.append(outcome)

        log.info(
            f"Reconciled {summary.checked} subscription(s): {summary.matches} match, "
            f"{len(summary.mismatches)} mismatch, {len(summary.failures)} failed"
        )
        return summary

    @staticmethod
    def _expected_seats(subscription: schemas.Subscription) -> int:
        """Seats the provider should bill.

        A scheduled change of a quantity-based subscription is committed with
        the provider before it is due, so the provider holds the pending count.
        """
        if (
            BillingType(subscription.billing_type) != BillingType.USAGE_BASED
            and subscription.pending_seats is not None
        ):
            return subscription.pending_seats
        return subscription.current_seats
