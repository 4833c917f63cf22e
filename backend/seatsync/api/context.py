"""Request context injected into the billing endpoints."""

from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from seatsync.core.logging import ContextualLogger


class ApiContext(BaseModel):
    """Context of one API request.

    Carries the request id, the organization the request acts on and a logger
    already bound to both.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request_id: str
    organization_id: UUID
    auth_method: str  # "header"
    auth_metadata: Optional[Dict[str, Any]] = None

    logger: ContextualLogger

    def __str__(self) -> str:
        """String representation for logging."""
        return (
            f"ApiContext(request_id={self.request_id[:8]}..., "
            f"method={self.auth_method}, org={self.organization_id})"
        )

    def to_serializable_dict(self) -> Dict[str, Any]:
        """Convert to a serializable dictionary."""
        return {
            "request_id": self.request_id,
            "organization_id": str(self.organization_id),
            "auth_method": self.auth_method,
            "auth_metadata": self.auth_metadata,
        }
