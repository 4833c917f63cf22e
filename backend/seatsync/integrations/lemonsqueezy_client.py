"""Lemon Squeezy API client for seat billing operations.

This module provides a thin interface to the Lemon Squeezy JSON:API,
handling all direct provider interactions without business logic. Calls are
never retried here; the caller decides what a failure means.
"""

import hashlib
import hmac
from typing import Any, Optional

import httpx

from seatsync.core.config import settings
from seatsync.core.exceptions import (
    ProviderRejectedError,
    ProviderUnavailableError,
    WebhookSignatureError,
)
from seatsync.core.logging import logger

SERVICE_NAME = "Lemon Squeezy"
JSON_API_CONTENT_TYPE = "application/vnd.api+json"


def verify_webhook_signature(payload: bytes, signature_header: Optional[str], secret: str) -> None:
    """Verify the ``X-Signature`` header of a webhook delivery.

    The header carries the hex HMAC-SHA256 of the raw request body, keyed
    with the webhook signing secret. A ``sha256=`` prefix is accepted.

    Args:
        payload: Raw request body, exactly as received
        signature_header: Value of the ``X-Signature`` header
        secret: Webhook signing secret

    Raises:
        WebhookSignatureError: If the secret is unset, the header is missing,
            or the signature does not match
    """
    if not secret:
        raise WebhookSignatureError("Webhook signing secret is not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing webhook signature")

    signature = signature_header.strip()
    if signature.lower().startswith("sha256="):
        signature = signature[len("sha256=") :]

    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected.encode(), signature.lower().encode()):
        raise WebhookSignatureError()


class LemonSqueezyClient:
    """Client for Lemon Squeezy API operations."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.lemonsqueezy.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Lemon Squeezy API key
            base_url: API base URL
            timeout: Timeout for a single request, in seconds
            transport: Optional httpx transport, used by tests
        """
        if not api_key:
            raise ValueError("Lemon Squeezy API key is required")

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Accept": JSON_API_CONTENT_TYPE,
                "Content-Type": JSON_API_CONTENT_TYPE,
                "Authorization": f"Bearer {api_key}",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send one request and map failures to provider errors.

        Raises:
            ProviderUnavailableError: On network errors, timeouts, 5xx and unreadable bodies
            ProviderRejectedError: On 4xx responses
        """
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(
                service_name=SERVICE_NAME, message=f"Request timed out: {method} {path}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                service_name=SERVICE_NAME, message=f"Request failed: {method} {path}: {e}"
            ) from e

        if response.status_code >= 500:
            raise ProviderUnavailableError(
                service_name=SERVICE_NAME,
                message=f"{method} {path} returned {response.status_code}",
            )
        if response.status_code >= 400:
            errors = self._extract_errors(response)
            logger.warning(
                f"{SERVICE_NAME} rejected {method} {path} with {response.status_code}: {errors}"
            )
            raise ProviderRejectedError(SERVICE_NAME, response.status_code, errors)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError(
                service_name=SERVICE_NAME, message=f"Unreadable response from {method} {path}"
            ) from e

    @staticmethod
    def _extract_errors(response: httpx.Response) -> list[dict[str, Any]]:
        """Read the JSON:API ``errors`` array, falling back to the raw body."""
        try:
            body = response.json()
        except ValueError:
            return [{"status": str(response.status_code), "detail": response.text[:500]}]
        errors = body.get("errors") if isinstance(body, dict) else None
        if isinstance(errors, list) and errors:
            return errors
        return [{"status": str(response.status_code), "detail": str(body)[:500]}]

    # Subscription operations

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Retrieve a subscription resource (the JSON:API ``data`` object)."""
        body = await self._request("GET", f"/subscriptions/{subscription_id}")
        return body.get("data", {})

    async def get_subscription_item(self, subscription_item_id: str) -> dict[str, Any]:
        """Retrieve a subscription item resource (the JSON:API ``data`` object)."""
        body = await self._request("GET", f"/subscription-items/{subscription_item_id}")
        return body.get("data", {})

    async def update_subscription_quantity(
        self,
        subscription_item_id: str,
        quantity: int,
        *,
        prorate: bool = True,
        invoice_immediately: bool = False,
    ) -> dict[str, Any]:
        """Set the quantity of a quantity-billed subscription item.

        Args:
            subscription_item_id: Provider subscription item id
            quantity: New seat count
            prorate: Charge or credit the remainder of the current period
            invoice_immediately: Invoice the prorated amount now instead of on the next renewal

        Returns:
            The updated subscription item resource
        """
        body = await self._request(
            "PATCH",
            f"/subscription-items/{subscription_item_id}",
            json={
                "data": {
                    "type": "subscription-items",
                    "id": str(subscription_item_id),
                    "attributes": {
                        "quantity": quantity,
                        "invoice_immediately": invoice_immediately,
                        "disable_prorations": not prorate,
                    },
                }
            },
        )
        return body.get("data", {})

    # Usage operations

    async def create_usage_record(
        self,
        subscription_item_id: str,
        quantity: int,
        *,
        action: str = "set",
        description: Optional[str] = None,
    ) -> dict[str, Any]:
        """Report usage for a usage-billed subscription item.

        Args:
            subscription_item_id: Provider subscription item id
            quantity: Usage quantity, the seat count for seat billing
            action: ``set`` replaces the period's usage, ``increment`` adds to it
            description: Optional note stored with the record

        Returns:
            The created usage record resource
        """
        if action not in ("set", "increment"):
            raise ValueError(f"Unsupported usage record action: {action}")

        attributes: dict[str, Any] = {"quantity": quantity, "action": action}
        if description:
            attributes["description"] = description

        body = await self._request(
            "POST",
            "/usage-records",
            json={
                "data": {
                    "type": "usage-records",
                    "attributes": attributes,
                    "relationships": {
                        "subscription-item": {
                            "data": {"type": "subscription-items", "id": str(subscription_item_id)}
                        }
                    },
                }
            },
        )
        return body.get("data", {})

    async def get_current_usage(self, subscription_item_id: str) -> dict[str, Any]:
        """Retrieve the usage of the current period (``period_start``, ``quantity``, ...)."""
        body = await self._request(
            "GET", f"/subscription-items/{subscription_item_id}/current-usage"
        )
        return body.get("meta", {})

    async def list_usage_records(self, subscription_item_id: str) -> list[dict[str, Any]]:
        """List usage records reported for a subscription item."""
        body = await self._request(
            "GET",
            "/usage-records",
            params={"filter[subscription_item_id]": str(subscription_item_id)},
        )
        return list(body.get("data", []))


def create_lemonsqueezy_client() -> Optional[LemonSqueezyClient]:
    """Build the client from settings, or None when no API key is configured."""
    if not settings.lemonsqueezy_enabled:
        return None
    return LemonSqueezyClient(
        settings.LEMONSQUEEZY_API_KEY,
        base_url=settings.LEMONSQUEEZY_API_URL,
        timeout=settings.LEMONSQUEEZY_TIMEOUT_SECONDS,
    )


lemonsqueezy_client = create_lemonsqueezy_client()
