from decimal import Decimal

import pytest

from backoffice.services.payout_resolver import create_payout_exception

ORDERS = "/api/external/orders"


def _order(product, **overrides):
    body = {
        "productId": product.id,
        "customerName": "Maria Lopez",
        "customerPhone": "+54 9 11 2345-6789",
        "quantity": 2,
        "city": "CABA",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_create_order(client, affiliate, product):
    response = await client.post(ORDERS, json=_order(product), headers={"X-API-Key": "aff-key-1"})

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    order = body["order"]
    assert order["orderNumber"].startswith("ORD-")
    assert order["status"] == "pending"
    assert Decimal(order["value"]) == Decimal("200.00")
    assert Decimal(order["payout"]) == Decimal("40.00")

    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert "X-RateLimit-Reset" in response.headers
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_publisher_override_sets_payout(client, db_session, affiliate, product):
    await create_payout_exception(
        db_session, product_id=product.id, user_id=affiliate.id, publisher_id="PUB1", payout_amount=Decimal("45.00")
    )

    response = await client.post(
        ORDERS, json=_order(product, publisherId="PUB1", quantity=1), headers={"X-API-Key": "aff-key-1"}
    )
    assert response.status_code == 201
    assert Decimal(response.json()["order"]["payout"]) == Decimal("45.00")


@pytest.mark.asyncio
async def test_same_phone_same_day_is_rejected(client, affiliate, other_affiliate, product):
    first = await client.post(ORDERS, json=_order(product), headers={"X-API-Key": "aff-key-1"})
    order_number = first.json()["order"]["orderNumber"]

    # Different spelling of the same number
    again = await client.post(
        ORDERS, json=_order(product, customerPhone="011 2345-6789"), headers={"X-API-Key": "aff-key-1"}
    )
    assert again.status_code == 409
    body = again.json()
    assert body["success"] is False
    assert body["error"] == "DUPLICATE_LEAD"
    assert body["duplicateOf"]["orderNumber"] == order_number
    assert body["duplicateOf"]["status"] == "pending"
    assert body["duplicateOf"]["sameAffiliate"] is True

    other = await client.post(ORDERS, json=_order(product), headers={"X-API-Key": "aff-key-2"})
    assert other.status_code == 409
    assert other.json()["duplicateOf"]["sameAffiliate"] is False


@pytest.mark.asyncio
async def test_missing_api_key(client, product):
    response = await client.post(ORDERS, json=_order(product))
    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_unknown_api_key(client, affiliate, product):
    response = await client.post(ORDERS, json=_order(product), headers={"X-API-Key": "nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_inactive_affiliate(client, inactive_affiliate, product):
    response = await client.post(ORDERS, json=_order(product), headers={"X-API-Key": "aff-key-pending"})
    assert response.status_code == 403
    assert response.json()["error"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_unknown_product(client, affiliate, product):
    response = await client.post(ORDERS, json=_order(product, productId=9999), headers={"X-API-Key": "aff-key-1"})
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_unusable_phone(client, affiliate, product):
    response = await client.post(
        ORDERS, json=_order(product, customerPhone="ab-cd-ef"), headers={"X-API-Key": "aff-key-1"}
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "INVALID_PHONE"
    assert body["field"] == "customerPhone"


@pytest.mark.asyncio
async def test_malformed_body(client, affiliate, product):
    body = _order(product)
    del body["customerName"]

    response = await client.post(ORDERS, json=body, headers={"X-API-Key": "aff-key-1"})
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
    assert response.json()["errors"]
    assert response.headers["X-RateLimit-Remaining"] == "9"


@pytest.mark.asyncio
async def test_product_without_payout_is_a_server_fault(client, affiliate, product_without_payout):
    response = await client.post(
        ORDERS, json=_order(product_without_payout), headers={"X-API-Key": "aff-key-1"}
    )
    assert response.status_code == 500
    assert response.json()["error"] == "NO_PAYOUT_CONFIGURED"
    assert "productId" not in response.json()
    assert response.headers["X-RateLimit-Limit"] == "10"


@pytest.mark.asyncio
async def test_order_status(client, affiliate, other_affiliate, product):
    created = await client.post(ORDERS, json=_order(product), headers={"X-API-Key": "aff-key-1"})
    order_number = created.json()["order"]["orderNumber"]

    response = await client.get(f"{ORDERS}/{order_number}/status", headers={"X-API-Key": "aff-key-1"})
    assert response.status_code == 200
    assert response.json()["order"]["orderNumber"] == order_number
    assert response.json()["order"]["status"] == "pending"

    # Another affiliate's order reads as missing
    response = await client.get(f"{ORDERS}/{order_number}/status", headers={"X-API-Key": "aff-key-2"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_ingestion_rate_limit(client, affiliate, product):
    headers = {"X-API-Key": "aff-key-1"}
    for _ in range(10):
        response = await client.get(f"{ORDERS}/ORD-MISSING/status", headers=headers)
        assert response.status_code == 404

    response = await client.post(ORDERS, json=_order(product), headers=headers)
    assert response.status_code == 429
    body = response.json()
    assert body["error"] == "RATE_LIMIT_EXCEEDED"
    assert 1 <= body["retryAfter"] <= 60
    assert response.headers["Retry-After"] == str(body["retryAfter"])
    assert response.headers["X-RateLimit-Remaining"] == "0"

    # Limits are per key
    other = await client.get(f"{ORDERS}/ORD-MISSING/status", headers={"X-API-Key": "aff-key-2"})
    assert other.status_code != 429


@pytest.mark.asyncio
async def test_error_responses_keep_rate_limit_headers(client, affiliate, product):
    headers = {"X-API-Key": "aff-key-1"}
    created = await client.post(ORDERS, json=_order(product), headers=headers)
    assert created.headers["X-RateLimit-Remaining"] == "9"

    duplicate = await client.post(ORDERS, json=_order(product), headers=headers)
    assert duplicate.status_code == 409
    assert duplicate.headers["X-RateLimit-Limit"] == "10"
    assert duplicate.headers["X-RateLimit-Remaining"] == "8"
    assert "X-RateLimit-Reset" in duplicate.headers

    missing = await client.get(f"{ORDERS}/ORD-NOPE/status", headers=headers)
    assert missing.status_code == 404
    assert missing.headers["X-RateLimit-Remaining"] == "7"

    unknown_product = await client.post(ORDERS, json=_order(product, productId=9999), headers=headers)
    assert unknown_product.status_code == 404
    assert unknown_product.headers["X-RateLimit-Remaining"] == "6"
