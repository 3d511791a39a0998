"""
Canonical public frontend base URL for Stripe checkout redirects.
Use get_checkout_redirect_urls() for success/cancel URLs; no other code should build frontend links directly.
"""
import os
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Stripe substitutes the session id into this placeholder on redirect
CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def get_public_app_url(for_redirects: bool = False) -> str:
    """
    Return normalized public frontend base URL (no trailing slash).
    Fallback order: FRONTEND_PUBLIC_URL, PUBLIC_APP_URL, FRONTEND_URL, VERCEL_URL (as https), RENDER_EXTERNAL_URL.

    Rules:
    - Result is stripped and trailing slash removed.
    - Outside localhost, https is enforced.
    - If for_redirects=True and the only URL available is localhost in production,
      raises ValueError so checkout does not send customers to a dead host.
    """
    raw = (
        (os.getenv("FRONTEND_PUBLIC_URL") or "").strip()
        or (os.getenv("PUBLIC_APP_URL") or "").strip()
        or (os.getenv("FRONTEND_URL") or "").strip()
        or ""
    )
    if not raw and os.getenv("VERCEL_URL"):
        raw = f"https://{os.getenv('VERCEL_URL', '').strip()}"
    if not raw and os.getenv("RENDER_EXTERNAL_URL"):
        raw = (os.getenv("RENDER_EXTERNAL_URL") or "").strip()
    raw = (raw or "").strip().rstrip("/")
    if not raw:
        raw = "http://localhost:3000"
    if raw.startswith("http://") and "localhost" not in raw:
        raw = "https://" + raw.split("://", 1)[1]
    if for_redirects and "localhost" in raw.lower():
        env = (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "").strip().lower()
        if env in ("production", "prod"):
            raise ValueError(
                "FRONTEND_PUBLIC_URL must be your public frontend URL in production (no localhost). "
                "Set FRONTEND_PUBLIC_URL=https://<your-frontend-domain>"
            )
    return raw


def get_checkout_redirect_urls(
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Resolve Stripe success/cancel URLs.

    Caller-supplied URLs win, then STRIPE_SUCCESS_URL / STRIPE_CANCEL_URL, then
    {public app}/post-checkout?session_id={CHECKOUT_SESSION_ID} and {public app}/payment-cancelled.
    """
    success = (success_url or os.getenv("STRIPE_SUCCESS_URL") or "").strip()
    cancel = (cancel_url or os.getenv("STRIPE_CANCEL_URL") or "").strip()
    if not success or not cancel:
        base = get_public_app_url(for_redirects=True)
        if not success:
            success = f"{base}/post-checkout?session_id={CHECKOUT_SESSION_PLACEHOLDER}"
        if not cancel:
            cancel = f"{base}/payment-cancelled"
    return success, cancel
