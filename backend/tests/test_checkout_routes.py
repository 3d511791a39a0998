"""
Checkout routes: request shape, health check, structured errors (error_code, message, request_id).
checkout_service is mocked so no Stripe or DB is required.
"""
import pytest
from unittest.mock import AsyncMock, patch

from models import CheckoutItem
from services.errors import ConfigurationError, NotFound, ValidationFailed


SESSION_BODY = {
    "items": [{"serviceId": "power-of-attorney", "optionKeys": ["base", "signature"], "extraCopies": 0}],
    "idempotencyKey": "idem-1",
    "submissionId": "sub-1",
    "failureUrl": "https://notary.example/payment-cancelled",
}


def test_health_check_returns_ok_without_stripe(client):
    with patch("routes.checkout.checkout_service") as svc:
        svc.create_checkout_session = AsyncMock()
        response = client.post("/api/checkout/session", json={"test": True})
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    svc.create_checkout_session.assert_not_awaited()


def test_session_created_with_totals(client):
    with patch("routes.checkout.checkout_service") as svc:
        svc.create_checkout_session = AsyncMock(return_value={
            "url": "https://checkout.stripe.com/c/pay/cs_1",
            "session_id": "cs_1",
            "idempotency_key": "idem-1",
            "quote": {"subtotal_cents": 8400, "tax_cents": 1764, "total_cents": 10164},
        })
        response = client.post("/api/checkout/session", json=SESSION_BODY)

    assert response.status_code == 200
    assert response.json() == {
        "url": "https://checkout.stripe.com/c/pay/cs_1",
        "sessionId": "cs_1",
        "subtotalCents": 8400,
        "vatCents": 1764,
        "totalCents": 10164,
    }
    kwargs = svc.create_checkout_session.call_args.kwargs
    assert kwargs["items"][0]["service_slug"] == "power-of-attorney"
    assert kwargs["items"][0]["option_keys"] == ["base", "signature"]
    assert kwargs["idempotency_key"] == "idem-1"
    assert kwargs["cancel_url"] == "https://notary.example/payment-cancelled"


def test_cart_quantity_is_not_forwarded_to_pricing(client):
    body = {**SESSION_BODY, "items": [{**SESSION_BODY["items"][0], "quantity": 3}]}
    with patch("routes.checkout.checkout_service") as svc:
        svc.create_checkout_session = AsyncMock(return_value={
            "url": "https://checkout.stripe.com/c/pay/cs_1",
            "session_id": "cs_1",
            "quote": {"subtotal_cents": 8400, "tax_cents": 1764, "total_cents": 10164},
        })
        response = client.post("/api/checkout/session", json=body)

    assert response.status_code == 200
    assert response.json()["totalCents"] == 10164
    assert "quantity" not in svc.create_checkout_session.call_args.kwargs["items"][0]
    assert "quantity" not in CheckoutItem.model_validate({"serviceId": "apostille", "quantity": 3}).model_dump()


def test_missing_stripe_key_is_500_server_misconfigured(client):
    with patch("routes.checkout.checkout_service") as svc:
        svc.create_checkout_session = AsyncMock(side_effect=ConfigurationError("Payment processor is not configured"))
        response = client.post("/api/checkout/session", json=SESSION_BODY)
    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["error_code"] == "SERVER_MISCONFIGURED"
    assert len(detail["request_id"]) == 36


def test_unknown_service_is_400(client):
    with patch("routes.checkout.checkout_service") as svc:
        svc.create_checkout_session = AsyncMock(side_effect=ValidationFailed("Unknown service", error_code="UNKNOWN_SERVICE"))
        response = client.post("/api/checkout/session", json=SESSION_BODY)
    assert response.status_code == 400
    assert response.json()["detail"]["error_code"] == "UNKNOWN_SERVICE"


def test_verify_requires_session_id(client):
    response = client.post("/api/checkout/verify", json={})
    assert response.status_code == 422
    assert response.json()["request_id"]


def test_verify_unknown_session_is_404(client):
    with patch("routes.checkout.checkout_service") as svc:
        svc.verify_checkout_session = AsyncMock(side_effect=NotFound("Checkout session not found", error_code="SESSION_NOT_FOUND"))
        response = client.post("/api/checkout/verify", json={"sessionId": "cs_nope"})
    assert response.status_code == 404
    assert response.json()["detail"]["error_code"] == "SESSION_NOT_FOUND"


def test_verify_passes_result_through(client):
    with patch("routes.checkout.checkout_service") as svc:
        svc.verify_checkout_session = AsyncMock(return_value={"paid": False, "reason": "Payment status: unpaid"})
        response = client.post("/api/checkout/verify", json={"sessionId": "cs_1"})
    assert response.status_code == 200
    assert response.json()["paid"] is False
    svc.verify_checkout_session.assert_awaited_once_with("cs_1")


def test_refund_requires_staff(client, client_headers):
    assert client.post("/api/checkout/refund", json={"sessionId": "cs_1"}).status_code == 401
    assert client.post("/api/checkout/refund", json={"sessionId": "cs_1"}, headers=client_headers).status_code == 403


def test_refund_as_staff(client, staff_headers):
    with patch("routes.checkout.checkout_service") as svc:
        svc.create_refund = AsyncMock(return_value={"ok": True, "refund": {"refundId": "re_1"}})
        response = client.post(
            "/api/checkout/refund",
            json={"sessionId": "cs_1", "amountCents": 500, "idempotencyKey": "rf-1"},
            headers=staff_headers,
        )
    assert response.status_code == 200
    kwargs = svc.create_refund.call_args.kwargs
    assert kwargs["amount_cents"] == 500
    assert kwargs["idempotency_key"] == "rf-1"
    assert kwargs["actor_id"] == "pu-staff"
