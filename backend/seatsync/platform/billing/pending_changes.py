"""Applies deferred seat changes once they are due.

Run from the pending-changes cron endpoint. Each subscription is handled on
its own: a failure is logged and reported, and the run moves on.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import crud, schemas
from seatsync.core.datetime_utils import utc_now_naive
from seatsync.core.logging import ContextualLogger, logger
from seatsync.platform.billing.seat_manager import SeatManager


@dataclass
class PendingChangeOutcome:
    """What happened to one due pending change."""

    subscription_id: UUID
    applied: bool
    previous_seats: Optional[int] = None
    new_seats: Optional[int] = None
    error: Optional[str] = None


@dataclass
class PendingChangeSummary:
    """Totals of one applier run."""

    processed: int = 0
    applied: int = 0
    results: list[PendingChangeOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[PendingChangeOutcome]:
        """Outcomes of the changes that could not be applied."""
        return [result for result in self.results if not result.applied]


class PendingChangeApplier:
    """Promotes due pending seat changes through the seat manager."""

    def __init__(self, seat_manager: SeatManager):
        """Initialize the applier."""
        self.seat_manager = seat_manager

    async def apply_due_pending_changes(
        self,
        db: AsyncSession,
        now: Optional[datetime] = None,
        *,
        log: Optional[ContextualLogger] = None,
    ) -> PendingChangeSummary:
        """Apply every pending change whose effective date has passed.

        Args:
            db: Database session
            now: Reference time, naive UTC; defaults to the current time
            log: Optional contextual logger

        Returns:
            PendingChangeSummary with one result per due subscription

        Raises:
            SQLAlchemyError: If the due changes cannot be queried
        """
        now = now or utc_now_naive()
        log = (log or logger).with_context(job="apply_pending_subscription_changes")

        rows = await crud.subscription.get_due_pending_changes(db, now=now)
        due = [schemas.Subscription.model_validate(row, from_attributes=True) for row in rows]
        summary = PendingChangeSummary()
        if not due:
            log.info("No pending subscription changes are due")
            return summary

        log.info(f"Applying {len(due)} due pending subscription change(s)")
        for subscription in due:
            summary.processed += 1
            try:
                result = await self.seat_manager.promote_pending_change(
                    db, subscription, now=now, log=log
                )
            except Exception as e:
                await db.rollback()
                log.error(
                    f"Failed to apply pending change for subscription {subscription.id}: {e}",
                    exc_info=True,
                )
                summary.results.append(
                    PendingChangeOutcome(
                        subscription_id=subscription.id,
                        applied=False,
                        previous_seats=subscription.current_seats,
                        new_seats=subscription.pending_seats,
                        error=str(e),
                    )
                )
                continue

            summary.applied += 1
            summary.results.append(
                PendingChangeOutcome(
                    subscription_id=subscription.id,
                    applied=True,
                    previous_seats=result.previous_seats,
                    new_seats=result.subscription.current_seats,
                )
            )

        log.info(
            f"Pending change run finished: {summary.applied} applied, "
            f"{len(summary.failures)} failed"
        )
        return summary
