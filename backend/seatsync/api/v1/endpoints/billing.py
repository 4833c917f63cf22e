"""API endpoints for seat changes of an organization's subscription.

Handlers stay thin: they resolve the organization's live subscription, run the
occupancy check for decreases and delegate to the seat manager.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync import schemas
from seatsync.api import deps
from seatsync.api.context import ApiContext
from seatsync.api.router import TrailingSlashRouter
from seatsync.core.exceptions import NotApplicableError, ValidationError
from seatsync.core.shared_models import BillingType
from seatsync.platform.billing.occupancy import SeatOccupancy
from seatsync.platform.billing.proration import ProrationDetails
from seatsync.platform.billing.seat_manager import SeatManager

router = TrailingSlashRouter()


def _breakdown(details: Optional[ProrationDetails]) -> Optional[schemas.ProrationBreakdown]:
    if details is None:
        return None
    return schemas.ProrationBreakdown(**asdict(details))


async def _check_occupancy(
    db: AsyncSession,
    occupancy: SeatOccupancy,
    subscription: schemas.Subscription,
    new_quantity: int,
) -> None:
    """Refuse a decrease below the seats the organization already occupies."""
    if new_quantity >= subscription.current_seats:
        return
    occupied = await occupancy.count_occupied_seats(db, subscription.organization_id)
    if new_quantity < occupied:
        raise ValidationError(
            f"Cannot reduce to {new_quantity} seats: {occupied} seats are occupied by members "
            "and pending invitations"
        )


@router.get("/subscription", response_model=schemas.Subscription)
async def get_subscription(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    seat_manager: SeatManager = Depends(deps.get_seat_manager),
) -> schemas.Subscription:
    """Get the organization's live subscription.

    Args:
        db: Database session
        ctx: API context
        seat_manager: Seat manager

    Returns:
        The stored subscription, including any pending seat change
    """
    return await seat_manager.get_active_subscription(db, ctx.organization_id)


@router.post("/proration-preview", response_model=schemas.ProrationPreviewResponse)
async def preview_proration(
    request: schemas.ProrationPreviewRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    seat_manager: SeatManager = Depends(deps.get_seat_manager),
) -> schemas.ProrationPreviewResponse:
    """Preview the charge of changing to ``new_quantity`` seats now.

    Nothing is changed. Usage-based subscriptions answer ``applicable=false``
    since their seats are billed at the end of the period.

    Args:
        request: Requested seat count
        db: Database session
        ctx: API context
        seat_manager: Seat manager

    Returns:
        Proration preview
    """
    subscription = await seat_manager.get_active_subscription(db, ctx.organization_id)
    try:
        details = await seat_manager.preview_proration(
            db, subscription.id, request.new_quantity
        )
    except NotApplicableError as e:
        return schemas.ProrationPreviewResponse(
            applicable=False,
            billing_type=BillingType(e.billing_type),
            current_seats=subscription.current_seats,
            new_quantity=request.new_quantity,
            message=e.message,
        )

    return schemas.ProrationPreviewResponse(
        applicable=True,
        billing_type=subscription.billing_type,
        current_seats=subscription.current_seats,
        new_quantity=request.new_quantity,
        proration=_breakdown(details),
        message=details.message,
    )


@router.post("/update-subscription-quantity", response_model=schemas.SeatChangeResponse)
async def update_subscription_quantity(
    request: schemas.SeatQuantityUpdateRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    seat_manager: SeatManager = Depends(deps.get_seat_manager),
    occupancy: SeatOccupancy = Depends(deps.get_seat_occupancy),
) -> schemas.SeatChangeResponse:
    """Change the seat count immediately.

    Increases on quantity-based plans are prorated; decreases are never
    credited. Usage-based plans report the new count as usage.

    Args:
        request: New seat count and invoicing preference
        db: Database session
        ctx: API context
        seat_manager: Seat manager
        occupancy: Occupied-seat source used to validate decreases

    Returns:
        The updated subscription and how the change is billed
    """
    subscription = await seat_manager.get_active_subscription(db, ctx.organization_id)
    await _check_occupancy(db, occupancy, subscription, request.new_quantity)

    result = await seat_manager.change_seats(
        db,
        subscription.id,
        request.new_quantity,
        invoice_immediately=request.invoice_immediately,
        log=ctx.logger,
    )
    return schemas.SeatChangeResponse(
        subscription=result.subscription,
        billing_type=result.billing_type,
        previous_seats=result.previous_seats,
        charged_at=result.charged_at,
        proration=_breakdown(result.proration),
        message=result.message,
    )


@router.post("/schedule-seat-change", response_model=schemas.PendingSeatChangeResponse)
async def schedule_seat_change(
    request: schemas.ScheduleSeatChangeRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    seat_manager: SeatManager = Depends(deps.get_seat_manager),
    occupancy: SeatOccupancy = Depends(deps.get_seat_occupancy),
) -> schemas.PendingSeatChangeResponse:
    """Schedule a seat change, by default for the next renewal.

    Args:
        request: Seat count and optional effective date
        db: Database session
        ctx: API context
        seat_manager: Seat manager
        occupancy: Occupied-seat source used to validate decreases

    Returns:
        The subscription with its pending change
    """
    subscription = await seat_manager.get_active_subscription(db, ctx.organization_id)
    await _check_occupancy(db, occupancy, subscription, request.new_quantity)

    updated = await seat_manager.schedule_seat_change(
        db, subscription.id, request.new_quantity, request.effective_at, log=ctx.logger
    )
    return schemas.PendingSeatChangeResponse(
        subscription=updated,
        pending_seats=updated.pending_seats,
        pending_effective_at=updated.pending_effective_at,
        message=(
            f"Seat count changes to {updated.pending_seats} on "
            f"{updated.pending_effective_at.isoformat()}"
        ),
    )


@router.delete("/pending-seat-change", response_model=schemas.PendingSeatChangeResponse)
async def cancel_pending_seat_change(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    seat_manager: SeatManager = Depends(deps.get_seat_manager),
) -> schemas.PendingSeatChangeResponse:
    """Cancel the scheduled seat change.

    Args:
        db: Database session
        ctx: API context
        seat_manager: Seat manager

    Returns:
        The subscription without a pending change
    """
    subscription = await seat_manager.get_active_subscription(db, ctx.organization_id)
    updated = await seat_manager.cancel_pending_change(db, subscription.id, log=ctx.logger)
    return schemas.PendingSeatChangeResponse(
        subscription=updated,
        message="Pending seat change cancelled",
    )
