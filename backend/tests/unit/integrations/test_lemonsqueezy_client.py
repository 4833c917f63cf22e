"""Unit tests for the Lemon Squeezy client, using an httpx mock transport."""

import hashlib
import hmac
import json

import httpx
import pytest

from seatsync.core.exceptions import (
    ProviderRejectedError,
    ProviderUnavailableError,
    WebhookSignatureError,
)
from seatsync.integrations.lemonsqueezy_client import (
    JSON_API_CONTENT_TYPE,
    LemonSqueezyClient,
    verify_webhook_signature,
)

BASE_URL = "https://api.lemonsqueezy.test/v1"


def make_client(handler) -> LemonSqueezyClient:
    """Client whose requests are answered by ``handler``."""
    return LemonSqueezyClient(
        "test_api_key",
        base_url=BASE_URL,
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    """Request shapes sent to the provider."""

    async def test_update_subscription_quantity(self):
        """Quantity updates PATCH the subscription item with proration flags."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"data": {"type": "subscription-items", "id": "77", "attributes": {}}}
            )

        client = make_client(handler)
        data = await client.update_subscription_quantity(
            "77", 12, prorate=False, invoice_immediately=False
        )
        await client.aclose()

        assert data["id"] == "77"
        assert seen["method"] == "PATCH"
        assert seen["path"] == "/v1/subscription-items/77"
        assert seen["headers"]["Authorization"] == "Bearer test_api_key"
        assert seen["headers"]["Accept"] == JSON_API_CONTENT_TYPE
        assert seen["body"]["data"]["attributes"] == {
            "quantity": 12,
            "invoice_immediately": False,
            "disable_prorations": True,
        }

    async def test_create_usage_record(self):
        """Usage records reference the subscription item through a relationship."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"data": {"type": "usage-records", "id": "5"}})

        client = make_client(handler)
        await client.create_usage_record("77", 11, description="Seat count changed to 11")
        await client.aclose()

        body = seen["body"]["data"]
        assert seen["path"] == "/v1/usage-records"
        assert body["attributes"] == {
            "quantity": 11,
            "action": "set",
            "description": "Seat count changed to 11",
        }
        assert body["relationships"]["subscription-item"]["data"] == {
            "type": "subscription-items",
            "id": "77",
        }

    async def test_create_usage_record_rejects_unknown_action(self):
        """Only set and increment are valid usage actions."""
        client = make_client(lambda request: httpx.Response(201, json={}))

        with pytest.raises(ValueError):
            await client.create_usage_record("77", 1, action="replace")
        await client.aclose()

    async def test_get_current_usage_returns_meta(self):
        """Current usage is reported in the document's meta object."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/subscription-items/77/current-usage"
            return httpx.Response(200, json={"meta": {"quantity": 9, "interval_unit": "month"}})

        client = make_client(handler)
        usage = await client.get_current_usage("77")
        await client.aclose()

        assert usage["quantity"] == 9

    async def test_list_usage_records_filters_by_item(self):
        """Usage records are listed through the subscription item filter."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/usage-records"
            assert request.url.params["filter[subscription_item_id]"] == "77"
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"type": "usage-records", "id": "1", "attributes": {"quantity": 4}},
                        {"type": "usage-records", "id": "2", "attributes": {"quantity": 6}},
                    ]
                },
            )

        client = make_client(handler)
        records = await client.list_usage_records("77")
        await client.aclose()

        assert [record["id"] for record in records] == ["1", "2"]


class TestErrorMapping:
    """Provider failures become typed errors; nothing is retried."""

    async def test_client_error_is_rejected(self):
        """4xx responses carry the JSON:API errors."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                422,
                json={"errors": [{"status": "422", "detail": "The quantity must be at least 1."}]},
            )

        client = make_client(handler)
        with pytest.raises(ProviderRejectedError) as exc_info:
            await client.update_subscription_quantity("77", 0)
        await client.aclose()

        assert exc_info.value.status_code == 422
        assert exc_info.value.message == "The quantity must be at least 1."
        assert exc_info.value.retryable is False
        assert len(calls) == 1

    async def test_server_error_is_unavailable(self):
        """5xx responses are retryable by the caller."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="upstream down")

        client = make_client(handler)
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await client.get_subscription("1")
        await client.aclose()

        assert exc_info.value.retryable is True
        assert len(calls) == 1

    async def test_timeout_is_unavailable(self):
        """Timeouts map to ProviderUnavailableError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)
        with pytest.raises(ProviderUnavailableError, match="timed out"):
            await client.get_subscription_item("77")
        await client.aclose()

    async def test_unreadable_body_is_unavailable(self):
        """A 2xx response that is not JSON cannot be trusted."""
        client = make_client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ProviderUnavailableError):
            await client.get_subscription("1")
        await client.aclose()

    def test_api_key_is_required(self):
        """The client cannot be built without credentials."""
        with pytest.raises(ValueError):
            LemonSqueezyClient("")


class TestWebhookSignature:
    """HMAC verification of webhook bodies."""

    body = b'{"meta": {"event_name": "subscription_updated"}}'

    def _sign(self, secret: str = "secret") -> str:
        return hmac.new(secret.encode(), self.body, hashlib.sha256).hexdigest()

    def test_valid_signature(self):
        """A matching digest passes, with or without the sha256= prefix."""
        verify_webhook_signature(self.body, self._sign(), "secret")
        verify_webhook_signature(self.body, f"sha256={self._sign()}", "secret")

    @pytest.mark.parametrize(
        "signature, secret",
        [(None, "secret"), ("", "secret"), ("0" * 64, "secret"), ("ünïcode", "secret")],
    )
    def test_invalid_signature(self, signature, secret):
        """Missing or wrong signatures are rejected."""
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(self.body, signature, secret)

    def test_signature_with_other_secret(self):
        """A digest made with another secret is rejected."""
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(self.body, self._sign("other"), "secret")

    def test_unconfigured_secret(self):
        """Without a signing secret nothing verifies."""
        with pytest.raises(WebhookSignatureError):
            verify_webhook_signature(self.body, self._sign(), "")
