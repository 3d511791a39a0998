"""Checkout Service - Stripe hosted checkout for notarization orders.

This service handles:
- Creating one-off payment sessions from a priced wizard selection
- Verifying a returned session and recording the paid order
- Refunds against a paid session or payment intent

Key Principles:
- Prices always come from the catalog via the pricing engine, never from the client
- Every session request carries an idempotency key; without a client key it is
  derived from the service slug and a 30 second time bucket
- Session metadata carries everything verification needs, so verifying does not
  read the submission
- payment_orders.session_id is unique; repeated verification never duplicates a record
"""
import hashlib
import logging
import os
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

import stripe
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import database
from models import AuditAction, PaymentOrder, RefundRecord, UserRole
from services.catalog import get_service
from services.errors import ConfigurationError, NotFound, UpstreamError, ValidationFailed
from services.pricing import PriceQuote, price_selection
from services.submission_service import mark_submission_completed
from utils.audit import create_audit_log
from utils.public_app_url import get_checkout_redirect_urls

logger = logging.getLogger(__name__)

IDEMPOTENCY_WINDOW_SECONDS = 30
PAYMENT_METHOD_TYPES = ["card", "bancontact", "eps"]
REFUND_REASONS = {"requested_by_customer", "duplicate", "fraudulent"}


def _stripe_key() -> str:
    return (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def derive_idempotency_key(service_slug: str, client_key: Optional[str] = None, now: Optional[float] = None) -> str:
    """
    Client key if given, else a key stable for one 30 second bucket.

    Two requests for the same service inside one bucket share a key and so
    resolve to the same Stripe session; the next bucket gets a fresh key.
    """
    if client_key and client_key.strip():
        return client_key.strip()
    ts = time.time() if now is None else now
    bucket = int(ts // IDEMPOTENCY_WINDOW_SECONDS)
    digest = hashlib.sha256(f"{service_slug}:{bucket}".encode()).hexdigest()
    return f"ck_{digest[:32]}"


def build_line_items(quote: PriceQuote) -> List[Dict[str, Any]]:
    """Stripe price_data line items for a quote, VAT as its own line so the charge equals the total."""
    items = [
        {
            "price_data": {
                "currency": quote.currency,
                "product_data": {"name": li.label},
                "unit_amount": li.unit_amount,
            },
            "quantity": li.quantity,
        }
        for li in quote.line_items
    ]
    if quote.tax > 0:
        items.append({
            "price_data": {
                "currency": quote.currency,
                "product_data": {"name": "VAT"},
                "unit_amount": quote.tax,
            },
            "quantity": 1,
        })
    return items


def build_metadata(quote: PriceQuote, cal_link: Optional[str], submission_id: Optional[str]) -> Dict[str, str]:
    """Stripe metadata values must be strings."""
    metadata = {
        "serviceSlug": quote.service_slug,
        "calLink": cal_link or "",
        "subtotalCents": str(quote.subtotal),
        "vatCents": str(quote.tax),
        "totalCents": str(quote.total),
        "optionKeys": ",".join(quote.option_keys),
        "addOnIds": ",".join(quote.add_on_keys),
        "extraCopies": str(quote.extra_copies),
    }
    if submission_id:
        metadata["submissionId"] = submission_id
    return metadata


class CheckoutService:
    """Stripe checkout operations for the order wizard."""

    def _require_key(self) -> None:
        key = _stripe_key()
        if not key:
            raise ConfigurationError("Payment processor is not configured")
        stripe.api_key = key

    def _bind_customer(self, user_email: Optional[str]) -> Optional[str]:
        """One Stripe customer per email per day. Failure leaves checkout unbound."""
        if not user_email:
            return None
        email = str(user_email).lower()
        try:
            customer = stripe.Customer.create(
                email=email,
                idempotency_key=f"cust_{email}_{datetime.now(timezone.utc).strftime('%Y-%m-%d')}",
            )
            logger.info(f"Using Stripe customer {customer.id} for {email}")
            return customer.id
        except stripe.error.StripeError as e:
            logger.error(f"Customer create failed (continuing without): {e}")
            return None

    async def create_checkout_session(
        self,
        items: List[Dict[str, Any]],
        idempotency_key: Optional[str] = None,
        submission_id: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        user_email: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Price the first item and request a hosted Stripe payment session.

        Args:
            items: [{service_slug, option_keys, add_on_ids, extra_copies}]; only the first is priced
            idempotency_key: caller key; derived from slug + time bucket when absent
            submission_id: linked submission, completed on verification

        Returns:
            Dict with url, session_id and the idempotency key used

        Raises:
            ConfigurationError: Stripe key missing
            ValidationFailed: no items, unknown service, invalid selection
            UpstreamError: Stripe rejected or failed the request
        """
        self._require_key()

        if not items:
            raise ValidationFailed("No items provided")
        first = items[0]
        service_slug = first.get("service_slug")
        service = get_service(service_slug)
        if not service:
            logger.info(f"Unknown service slug received: {service_slug}")
            raise ValidationFailed("Unknown service", error_code="UNKNOWN_SERVICE")

        quote = price_selection(
            service,
            first.get("option_keys") or [],
            first.get("add_on_ids") or [],
            first.get("extra_copies") or 0,
        )

        key = derive_idempotency_key(service["slug"], idempotency_key, now=now)
        try:
            success, cancel = get_checkout_redirect_urls(success_url, cancel_url)
        except ValueError as e:
            raise ConfigurationError(str(e))

        customer_id = self._bind_customer(user_email)

        session_params = {
            "mode": "payment",
            "line_items": build_line_items(quote),
            "success_url": success,
            "cancel_url": cancel,
            "payment_method_types": PAYMENT_METHOD_TYPES,
            "metadata": build_metadata(quote, service.get("cal_booking_link"), submission_id),
        }
        if customer_id:
            session_params["customer"] = customer_id
        else:
            session_params["customer_creation"] = "always"
            if user_email:
                session_params["customer_email"] = str(user_email).lower()
        if user_id:
            session_params["client_reference_id"] = str(user_id)

        try:
            session = stripe.checkout.Session.create(**session_params, idempotency_key=key)
        except stripe.error.StripeError as e:
            logger.error(f"Checkout create error for {service['slug']}: {e}")
            raise UpstreamError("Failed to create checkout session", error_code="CHECKOUT_SESSION_FAILED")

        logger.info(f"Created Stripe session {session.id} for {service['slug']} total={quote.total} key={key}")
        await create_audit_log(
            action=AuditAction.CHECKOUT_SESSION_CREATED,
            client_email=str(user_email).lower() if user_email else None,
            resource_type="checkout_session",
            resource_id=session.id,
            metadata={"service_slug": service["slug"], "total_cents": quote.total, "submission_id": submission_id},
        )
        return {
            "url": session.url,
            "session_id": session.id,
            "idempotency_key": key,
            "quote": quote.to_dict(),
        }

    def _retrieve_session(self, session_id: str, expand: List[str]):
        try:
            return stripe.checkout.Session.retrieve(session_id, expand=expand)
        except stripe.error.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise NotFound("Checkout session not found", error_code="SESSION_NOT_FOUND")
            logger.error(f"Session retrieve rejected for {session_id}: {e}")
            raise UpstreamError("Failed to verify session", error_code="VERIFY_SESSION_FAILED")
        except stripe.error.StripeError as e:
            logger.error(f"Session verify error for {session_id}: {e}")
            raise UpstreamError("Failed to verify session", error_code="VERIFY_SESSION_FAILED")

    async def verify_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """
        Verify a returned session. Safe to call repeatedly for one session id.

        paid is exactly payment_status == "paid". Only a paid session is recorded;
        a failed write is logged and does not change the answer.

        Raises:
            ConfigurationError: Stripe key missing
            NotFound: session id unknown to Stripe
            UpstreamError: Stripe failure
        """
        self._require_key()
        if not session_id:
            raise ValidationFailed("sessionId is required")

        session = self._retrieve_session(session_id, ["line_items", "payment_intent"])

        payment_status = _get(session, "payment_status")
        paid = payment_status == "paid"
        amount = _get(session, "amount_total")
        currency = _get(session, "currency") or "eur"
        details = _get(session, "customer_details")
        customer_email = _get(details, "email") or _get(session, "customer_email")
        customer_name = _get(details, "name")
        metadata = _get(session, "metadata") or {}
        service_slug = _get(metadata, "serviceSlug")
        cal_link = _get(metadata, "calLink") or None
        submission_id = _get(metadata, "submissionId") or None

        line_items = _get(_get(session, "line_items"), "data") or []
        items = []
        for li in line_items:
            qty = _get(li, "quantity") or 1
            price = _get(li, "price")
            amount_cents = _get(li, "amount_total")
            if not isinstance(amount_cents, int):
                amount_cents = (_get(price, "unit_amount") or 0) * qty
            items.append({
                "name": _get(li, "description"),
                "qty": qty,
                "priceId": _get(price, "id") or "",
                "amountCents": amount_cents,
            })

        total_cents = _int_or_none(_get(metadata, "totalCents"))
        if total_cents is None and isinstance(amount, int):
            total_cents = amount

        result = {
            "paid": paid,
            "amount": amount,
            "currency": currency,
            "customer": {"email": customer_email, "name": customer_name},
            "items": items,
            "subtotalCents": _int_or_none(_get(metadata, "subtotalCents")),
            "vatCents": _int_or_none(_get(metadata, "vatCents")),
            "totalCents": total_cents,
            "calLink": cal_link,
            "reason": None,
        }

        if not paid:
            intent = _get(session, "payment_intent")
            last_error = _get(intent, "last_payment_error") if not isinstance(intent, str) else None
            result["reason"] = _get(last_error, "message") or f"Payment status: {payment_status}"
            logger.info(f"Session {session_id} not paid: {result['reason']}")
            return result

        order = PaymentOrder(
            session_id=session_id,
            submission_id=submission_id,
            amount=(amount / 100) if isinstance(amount, int) else None,
            amount_cents=amount if isinstance(amount, int) else None,
            currency=currency,
            customer_email=customer_email.lower() if customer_email else None,
            service_slug=service_slug,
            cal_link=cal_link,
        )
        order_id = await self._record_paid_order(order)
        result["orderId"] = order_id

        if submission_id:
            await mark_submission_completed(submission_id, session_id, order_id)

        logger.info(f"Verify response: paid={paid}, amount={amount}, currency={currency}, calLink={cal_link or 'none'}")
        return result

    async def _record_paid_order(self, order: PaymentOrder) -> Optional[str]:
        """Insert-if-absent keyed on session_id. Returns the stored order id, or None on failure."""
        db = database.get_db()
        doc = order.model_dump()
        try:
            result = await db.payment_orders.update_one(
                {"session_id": order.session_id},
                {"$setOnInsert": doc},
                upsert=True,
            )
        except DuplicateKeyError:
            # Concurrent verification won the insert
            result = None
        except PyMongoError as e:
            logger.error(f"DB write failed for paid session {order.session_id}: {e}")
            return None

        if result is not None and result.upserted_id is not None:
            logger.info(f"Recorded paid order {order.order_id} for session {order.session_id}")
            await create_audit_log(
                action=AuditAction.PAYMENT_CONFIRMED,
                client_email=order.customer_email,
                resource_type="payment_order",
                resource_id=order.order_id,
                metadata={"session_id": order.session_id, "amount_cents": order.amount_cents},
            )
            return order.order_id

        try:
            existing = await db.payment_orders.find_one({"session_id": order.session_id}, {"_id": 0, "order_id": 1})
        except PyMongoError as e:
            logger.error(f"Failed to read paid order for session {order.session_id}: {e}")
            return None
        return existing.get("order_id") if existing else None

    async def create_refund(
        self,
        session_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_role: Optional[UserRole] = None,
    ) -> Dict[str, Any]:
        """
        Refund a paid session or payment intent, fully or by amount_cents.

        The paid order stays untouched; the refund is appended to refunds.
        Only a caller-supplied idempotency_key dedupes retries, so two partial
        refunds of the same amount are two refunds.
        """
        self._require_key()
        if not session_id and not payment_intent_id:
            raise ValidationFailed("sessionId or paymentIntentId is required")
        if reason and reason not in REFUND_REASONS:
            raise ValidationFailed(f"reason must be one of {', '.join(sorted(REFUND_REASONS))}")

        if not payment_intent_id:
            session = self._retrieve_session(session_id, ["payment_intent"])
            intent = _get(session, "payment_intent")
            payment_intent_id = intent if isinstance(intent, str) else _get(intent, "id")
            if not payment_intent_id:
                logger.error(f"Refund: no payment_intent found for session {session_id}")
                raise ValidationFailed("Missing payment_intent for refund", error_code="PAYMENT_INTENT_MISSING")

        params: Dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_cents:
            params["amount"] = int(amount_cents)
        if reason:
            params["reason"] = reason

        try:
            if idempotency_key:
                refund = stripe.Refund.create(**params, idempotency_key=idempotency_key)
            else:
                refund = stripe.Refund.create(**params)
        except stripe.error.StripeError as e:
            logger.error(f"Refund failed for payment_intent {payment_intent_id}: {e}")
            raise UpstreamError("Failed to create refund", error_code="REFUND_FAILED")

        logger.info(f"Refund created: {refund.id} for payment_intent {payment_intent_id}")
        record = RefundRecord(
            refund_id=refund.id,
            session_id=session_id,
            payment_intent_id=payment_intent_id,
            amount_cents=_get(refund, "amount"),
            currency=_get(refund, "currency"),
            reason=reason,
            status=_get(refund, "status") or "pending",
            requested_by=actor_id,
        )
        replayed = False
        try:
            await database.get_db().refunds.insert_one(record.model_dump())
        except DuplicateKeyError:
            # Same idempotency key retried; Stripe returned the existing refund
            replayed = True
            logger.info(f"Refund {refund.id} already recorded")
        except PyMongoError as e:
            logger.error(f"Failed to record refund {refund.id}: {e}")

        if not replayed:
            await create_audit_log(
                action=AuditAction.PAYMENT_REFUNDED,
                actor_role=actor_role,
                actor_id=actor_id,
                resource_type="refund",
                resource_id=refund.id,
                metadata={"session_id": session_id, "payment_intent_id": payment_intent_id, "amount_cents": record.amount_cents},
            )
        return {
            "ok": True,
            "replayed": replayed,
            "refund": {
                "refundId": record.refund_id,
                "paymentIntentId": payment_intent_id,
                "amountCents": record.amount_cents,
                "currency": record.currency,
                "status": record.status,
                "reason": reason,
            },
        }


checkout_service = CheckoutService()
