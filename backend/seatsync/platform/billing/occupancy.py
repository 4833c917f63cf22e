"""Occupied-seat source.

Active members and pending invitations live in the host application, so the
count is provided by a collaborator the application registers at startup.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.exceptions import InvalidStateError


class SeatOccupancy(ABC):
    """Counts the seats an organization currently occupies."""

    @abstractmethod
    async def count_occupied_seats(self, db: AsyncSession, organization_id: UUID) -> int:
        """Return active members plus pending invitations of the organization."""


class UnconfiguredSeatOccupancy(SeatOccupancy):
    """Placeholder used when the host application registered no occupancy source.

    Seat decreases cannot be checked against occupancy without it, so they are refused.
    """

    async def count_occupied_seats(self, db: AsyncSession, organization_id: UUID) -> int:
        """Refuse to answer."""
        raise InvalidStateError(
            "Seat occupancy source is not configured; seat reductions cannot be validated"
        )


class StaticSeatOccupancy(SeatOccupancy):
    """Occupancy from a fixed mapping, for local development and tests."""

    def __init__(self, counts: dict[UUID, int], default: int = 0):
        """Initialize with per-organization counts."""
        self.counts = dict(counts)
        self.default = default

    async def count_occupied_seats(self, db: AsyncSession, organization_id: UUID) -> int:
        """Look the organization up in the mapping."""
        return self.counts.get(organization_id, self.default)
