"""Dependencies that are used in the API endpoints."""

import hmac
import uuid
from typing import Optional

from fastapi import Depends, Header, Request

from seatsync.api.context import ApiContext
from seatsync.core.config import settings
from seatsync.core.exceptions import AuthenticationError
from seatsync.core.logging import ContextualLogger, logger
from seatsync.db.session import get_db
from seatsync.integrations.lemonsqueezy_client import LemonSqueezyClient, lemonsqueezy_client
from seatsync.platform.billing.occupancy import SeatOccupancy, UnconfiguredSeatOccupancy
from seatsync.platform.billing.pending_changes import PendingChangeApplier
from seatsync.platform.billing.reconciliation import SubscriptionReconciler
from seatsync.platform.billing.seat_manager import SeatManager

__all__ = [
    "get_db",
    "get_context",
    "get_logger",
    "get_billing_client",
    "get_seat_manager",
    "get_seat_occupancy",
    "get_pending_change_applier",
    "get_reconciler",
    "require_cron_secret",
]


def _parse_organization_id(x_organization_id: Optional[str]) -> uuid.UUID:
    if not x_organization_id:
        raise AuthenticationError("Organization context required (X-Organization-ID header)")
    try:
        return uuid.UUID(x_organization_id)
    except ValueError as e:
        raise AuthenticationError(f"Invalid organization id: {x_organization_id}") from e


async def get_context(
    request: Request,
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-ID"),
) -> ApiContext:
    """Create the API context for the request.

    Authentication happens in front of this service; the gateway forwards the
    caller's organization in the ``X-Organization-ID`` header.

    Args:
    ----
        request (Request): The FastAPI request object.
        x_organization_id (Optional[str]): Organization the request acts on.

    Returns:
    -------
        ApiContext: Context with the organization and a bound logger.

    Raises:
    ------
        AuthenticationError: If the header is missing or not a UUID.
    """
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    organization_id = _parse_organization_id(x_organization_id)

    base_logger = logger.with_context(
        request_id=request_id,
        organization_id=str(organization_id),
        auth_method="header",
        context_base="api",
    )
    return ApiContext(
        request_id=request_id,
        organization_id=organization_id,
        auth_method="header",
        logger=base_logger,
    )


async def get_logger(request: Request) -> ContextualLogger:
    """Logger bound to the request id, for endpoints without an organization."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return logger.with_context(request_id=request_id, context_base="api")


def get_billing_client() -> Optional[LemonSqueezyClient]:
    """Configured provider client, or None when no API key is set."""
    return lemonsqueezy_client


def get_seat_manager(
    client: Optional[LemonSqueezyClient] = Depends(get_billing_client),
) -> SeatManager:
    """Seat manager bound to the provider client."""
    return SeatManager(client)


def get_seat_occupancy(request: Request) -> SeatOccupancy:
    """Occupancy source registered on the application state."""
    occupancy = getattr(request.app.state, "seat_occupancy", None)
    return occupancy or UnconfiguredSeatOccupancy()


def get_pending_change_applier(
    seat_manager: SeatManager = Depends(get_seat_manager),
) -> PendingChangeApplier:
    """Pending-change applier sharing the request's seat manager."""
    return PendingChangeApplier(seat_manager)


def get_reconciler(seat_manager: SeatManager = Depends(get_seat_manager)) -> SubscriptionReconciler:
    """Reconciler sharing the request's seat manager."""
    return SubscriptionReconciler(seat_manager)


async def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Authorize a scheduler call with the ``Authorization: Bearer <CRON_SECRET>`` header.

    Raises:
        AuthenticationError: If no secret is configured or the token does not match
    """
    if not settings.CRON_SECRET:
        raise AuthenticationError("Cron endpoints are disabled: CRON_SECRET is not set")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Missing bearer token")
    if not hmac.compare_digest(token.strip().encode(), settings.CRON_SECRET.encode()):
        raise AuthenticationError("Invalid cron secret")
