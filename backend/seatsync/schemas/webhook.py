"""Lemon Squeezy webhook payload schemas.

Only the fields the ingestor reads are declared; everything else in the
payload is kept through ``extra="allow"`` and stored verbatim in the ledger.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookMeta(BaseModel):
    """The ``meta`` object of a webhook payload."""

    model_config = ConfigDict(extra="allow")

    event_name: str
    event_id: Optional[str] = None
    test_mode: bool = False
    custom_data: Optional[dict[str, Any]] = None


class WebhookData(BaseModel):
    """The JSON:API ``data`` object of a webhook payload."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    type: str
    id: str
    attributes: dict[str, Any] = Field(default_factory=dict)


class WebhookPayload(BaseModel):
    """A complete webhook payload."""

    model_config = ConfigDict(extra="allow")

    meta: WebhookMeta
    data: WebhookData
