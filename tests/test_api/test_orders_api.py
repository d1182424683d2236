"""
Test suite for the order endpoints.

Covers authentication, order placement, the fulfilment transitions exposed
over HTTP, cancellation and the structured error bodies produced for
lifecycle and validation failures.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi import status
from httpx import AsyncClient

ORDERS_URL = "/api/v1/orders"


def order_payload(marketplace, quantity: int = 3, **overrides) -> dict:
    payload = {
        "items": [{"product_id": str(marketplace.rice.id), "quantity": quantity}],
        "payment_method": "cash_on_delivery",
        "delivery_method": "pickup",
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Authentication
# ============================================================================


class TestOrderAuthentication:
    """Test that order endpoints require a valid bearer token."""

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, async_client: AsyncClient, marketplace):
        response = await async_client.post(ORDERS_URL, json=order_payload(marketplace))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Could not validate credentials"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_garbage_token_rejected(self, async_client: AsyncClient):
        response = await async_client.get(
            ORDERS_URL, headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


# ============================================================================
# Placement
# ============================================================================


class TestCreateOrder:
    """Test order placement over HTTP."""

    @pytest.mark.asyncio
    async def test_create_order(self, async_client: AsyncClient, marketplace, auth_headers):
        response = await async_client.post(
            ORDERS_URL,
            json=order_payload(marketplace),
            headers=auth_headers(marketplace.buyer),
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["status"] == "pending"
        assert data["payment_status"] == "pending"
        assert data["buyer_id"] == str(marketplace.buyer.id)
        assert data["seller_id"] == str(marketplace.seller.id)
        assert Decimal(data["total_amount"]) == Decimal("450.00")
        assert data["currency"] == "LKR"
        assert data["order_number"].startswith("AGR")
        assert len(data["items"]) == 1
        assert data["items"][0]["product_name"] == marketplace.rice.name

    @pytest.mark.asyncio
    async def test_insufficient_stock_returns_error_body(
        self, async_client: AsyncClient, marketplace, auth_headers
    ):
        response = await async_client.post(
            ORDERS_URL,
            json=order_payload(marketplace, quantity=11),
            headers=auth_headers(marketplace.buyer),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        data = response.json()
        assert data["error"] == "validation_failed"
        assert "Available: 10" in data["message"]
        assert "request_id" in data

    @pytest.mark.asyncio
    async def test_unknown_product_rejected(
        self, async_client: AsyncClient, marketplace, auth_headers
    ):
        payload = {"items": [{"product_id": str(uuid4()), "quantity": 1}]}

        response = await async_client.post(
            ORDERS_URL, json=payload, headers=auth_headers(marketplace.buyer)
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "validation_failed"

    @pytest.mark.asyncio
    async def test_delivery_requires_address(
        self, async_client: AsyncClient, marketplace, auth_headers
    ):
        response = await async_client.post(
            ORDERS_URL,
            json=order_payload(marketplace, delivery_method="local_delivery"),
            headers=auth_headers(marketplace.buyer),
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        data = response.json()
        assert data["error"] == "request_validation_failed"
        assert data["details"]

    @pytest.mark.asyncio
    async def test_unknown_fields_rejected(
        self, async_client: AsyncClient, marketplace, auth_headers
    ):
        response = await async_client.post(
            ORDERS_URL,
            json=order_payload(marketplace, total_amount="1.00"),
            headers=auth_headers(marketplace.buyer),
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


# ============================================================================
# Transitions and cancellation
# ============================================================================


class TestOrderTransitions:
    """Test status changes requested through the API."""

    @pytest.fixture
    async def order_id(self, async_client: AsyncClient, marketplace, auth_headers) -> str:
        """Place an order as the buyer and return its id."""
        response = await async_client.post(
            ORDERS_URL,
            json=order_payload(marketplace),
            headers=auth_headers(marketplace.buyer),
        )
        assert response.status_code == status.HTTP_201_CREATED
        return response.json()["id"]

    @pytest.mark.asyncio
    async def test_seller_confirms_order(
        self, async_client: AsyncClient, marketplace, auth_headers, order_id
    ):
        response = await async_client.post(
            f"{ORDERS_URL}/{order_id}/transitions",
            json={"status": "confirmed", "note": "Packed tomorrow"},
            headers=auth_headers(marketplace.seller),
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["seller_notes"] == "Packed tomorrow"

    @pytest.mark.asyncio
    async def test_skipping_ahead_is_invalid_transition(
        self, async_client: AsyncClient, marketplace, auth_headers, order_id
    ):
        response = await async_client.post(
            f"{ORDERS_URL}/{order_id}/transitions",
            json={"status": "delivered"},
            headers=auth_headers(marketplace.seller),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "invalid_transition"

        current = await async_client.get(
            f"{ORDERS_URL}/{order_id}", headers=auth_headers(marketplace.buyer)
        )
        assert current.json()["status"] == "pending"

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(
        self, async_client: AsyncClient, marketplace, auth_headers, order_id
    ):
        response = await async_client.post(
            f"{ORDERS_URL}/{order_id}/transitions",
            json={"status": "teleported"},
            headers=auth_headers(marketplace.seller),
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_stranger_cannot_view_order(
        self, async_client: AsyncClient, marketplace, auth_headers, order_id
    ):
        response = await async_client.get(
            f"{ORDERS_URL}/{order_id}", headers=auth_headers(marketplace.farmer)
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_buyer_cancels_order(
        self, async_client: AsyncClient, marketplace, auth_headers, order_id
    ):
        response = await async_client.post(
            f"{ORDERS_URL}/{order_id}/cancel",
            json={"reason": "Ordered by mistake"},
            headers=auth_headers(marketplace.buyer),
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "Ordered by mistake"
        assert data["cancelled_at"] is not None

        again = await async_client.post(
            f"{ORDERS_URL}/{order_id}/cancel",
            json={},
            headers=auth_headers(marketplace.buyer),
        )
        assert again.status_code == status.HTTP_400_BAD_REQUEST
        assert again.json()["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_list_orders_scoped_to_buyer(
        self, async_client: AsyncClient, marketplace, auth_headers, order_id
    ):
        mine = await async_client.get(ORDERS_URL, headers=auth_headers(marketplace.buyer))
        theirs = await async_client.get(ORDERS_URL, headers=auth_headers(marketplace.farmer))

        assert [order["id"] for order in mine.json()] == [order_id]
        assert theirs.json() == []

    @pytest.mark.asyncio
    async def test_missing_order_is_not_found(
        self, async_client: AsyncClient, marketplace, auth_headers
    ):
        response = await async_client.get(
            f"{ORDERS_URL}/{uuid4()}", headers=auth_headers(marketplace.admin)
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
