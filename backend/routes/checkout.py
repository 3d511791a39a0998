"""Checkout Routes - Stripe hosted checkout for wizard orders.

Endpoints:
- POST /api/checkout/session - Create a payment session ({test: true} is a health check)
- POST /api/checkout/verify - Verify a returned session, record the paid order
- POST /api/checkout/refund - Staff: refund a paid session or payment intent
"""
from fastapi import APIRouter, Depends
import logging

from middleware import require_staff
from models import CheckoutSessionRequest, RefundRequest, VerifySessionRequest
from services.checkout_service import checkout_service
from services.errors import OrchestrationError
from utils.http_errors import http_error, new_request_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.post("/session")
async def create_checkout_session(body: CheckoutSessionRequest):
    """
    Price the selection server-side and return the hosted checkout URL.

    Retrying with the same idempotencyKey (or within the same 30 second
    window without one) returns the same Stripe session.
    """
    if body.test:
        return {"ok": True}

    request_id = new_request_id()
    items = [
        {
            "service_slug": item.service_slug,
            "option_keys": item.option_keys,
            "add_on_ids": item.add_on_ids,
            "extra_copies": item.extra_copies,
        }
        for item in body.items
    ]
    try:
        session = await checkout_service.create_checkout_session(
            items=items,
            idempotency_key=body.idempotency_key,
            submission_id=body.submission_id,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            user_email=body.user_email,
            user_id=body.user_id,
        )
    except OrchestrationError as e:
        raise http_error(e, request_id, "create checkout session")

    quote = session["quote"]
    return {
        "url": session["url"],
        "sessionId": session["session_id"],
        "subtotalCents": quote["subtotal_cents"],
        "vatCents": quote["tax_cents"],
        "totalCents": quote["total_cents"],
    }


@router.post("/verify")
async def verify_checkout_session(body: VerifySessionRequest):
    request_id = new_request_id()
    try:
        return await checkout_service.verify_checkout_session(body.session_id)
    except OrchestrationError as e:
        raise http_error(e, request_id, "verify checkout session")


@router.post("/refund")
async def refund(body: RefundRequest, user: dict = Depends(require_staff)):
    request_id = new_request_id()
    try:
        return await checkout_service.create_refund(
            session_id=body.session_id,
            payment_intent_id=body.payment_intent_id,
            amount_cents=body.amount_cents,
            reason=body.reason,
            idempotency_key=body.idempotency_key,
            actor_id=user.get("portal_user_id") or user.get("sub"),
            actor_role=user.get("role"),
        )
    except OrchestrationError as e:
        raise http_error(e, request_id, "refund")
