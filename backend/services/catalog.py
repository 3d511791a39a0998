"""
Service Catalog - static notarization service definitions.

Server-authoritative: checkout prices are always taken from here, never from
the client payload. Amounts are in cents.
"""
import os
from decimal import Decimal
from typing import Dict, Any, Optional


DEFAULT_CURRENCY = "eur"

# VAT applied to the subtotal of every checkout
TAX_RATE = Decimal(os.getenv("CHECKOUT_TAX_RATE", "0.21"))

DEFAULT_BOOKING_LINK = "https://cal.com/notarette/remote-notarization-meeting"


def _service(slug: str, name: str, price_cents: int, turnaround: str, booking_link: Optional[str] = None) -> Dict[str, Any]:
    return {
        "slug": slug,
        "name": name,
        "price_cents": price_cents,
        "currency": DEFAULT_CURRENCY,
        "turnaround_time": turnaround,
        "cal_booking_link": booking_link or DEFAULT_BOOKING_LINK,
    }


SERVICE_CATALOG: Dict[str, Dict[str, Any]] = {
    s["slug"]: s for s in [
        _service("power-of-attorney", "Power of Attorney", 3500, "2-4 hours"),
        _service(
            "certified-copy-document", "Certified Copy of Document", 3500, "1-2 hours",
            "https://cal.com/notarette/certified-copy-of-document-meeting",
        ),
        _service("certified-copy-passport-id", "Certified Copy of Passport/ID", 3500, "1-2 hours"),
        _service("company-formation-documents", "Company Formation Documents", 3500, "2-4 hours"),
        _service("apostille-services", "Apostille Services", 3500, "3-5 business days"),
        _service("document-translation-notarization", "Document Translation & Notarization", 3500, "1-2 business days"),
        _service("real-estate-document-notarization", "Real Estate Document Notarization", 3500, "2-4 hours"),
        _service("estate-planning-document-notarization", "Estate Planning Document Notarization", 3500, "2-4 hours"),
        _service("passport", "Passport", 3500, "1-2 hours"),
        _service("diplomas-and-degrees", "Diplomas and Degrees", 3500, "1-2 hours"),
        _service("academic-transcripts", "Academic Transcripts", 3500, "1-2 hours"),
        _service("bank-statements", "Bank Statements", 3500, "1-2 hours"),
        _service("deeds-of-title-transfer", "Deeds of Title Transfer", 3500, "2-4 hours"),
        _service("board-and-shareholder-resolutions", "Board and Shareholder Resolutions", 3500, "2-4 hours"),
        _service("sale-and-purchase-agreements", "Sale and Purchase Agreements", 3500, "2-4 hours"),
    ]
}


# Service-selection step. "base" is priced at the service's own price.
SERVICE_OPTIONS: Dict[str, Dict[str, Any]] = {
    "base": {
        "key": "base",
        "name": "Certified Copy",
        "description": "Official service with notary seal",
        "price_cents": None,
    },
    "signature": {
        "key": "signature",
        "name": "Signature Notarization",
        "description": "Verify and notarize signatures",
        "price_cents": 4900,
    },
    "true-content": {
        "key": "true-content",
        "name": "True Content Verification",
        "description": "Verify document authenticity",
        "price_cents": 3900,
    },
}

# Add-ons step
ADD_ONS: Dict[str, Dict[str, Any]] = {
    "courier": {
        "key": "courier",
        "name": "Courier Delivery",
        "description": "Physical delivery within 3 business days",
        "price_cents": 1500,
        "allows_extra_copies": True,
    },
    "apostille": {
        "key": "apostille",
        "name": "Apostille Service",
        "description": "International authentication for Hague Convention countries",
        "price_cents": 8900,
    },
    "express": {
        "key": "express",
        "name": "Express 24h Processing",
        "description": "Priority processing within 24 hours",
        "price_cents": 2500,
    },
}

EXTRA_COPY_PRICE_CENTS = 1500


def get_service(slug: Optional[str]) -> Optional[Dict[str, Any]]:
    """Look up a catalog entry by slug. Returns None for unknown slugs."""
    if not slug:
        return None
    return SERVICE_CATALOG.get(slug)


def option_price(service: Dict[str, Any], option_key: str) -> int:
    option = SERVICE_OPTIONS[option_key]
    if option["price_cents"] is None:
        return service["price_cents"]
    return option["price_cents"]


def get_catalog() -> Dict[str, Any]:
    """Public catalog payload for the wizard UI."""
    return {
        "services": list(SERVICE_CATALOG.values()),
        "options": list(SERVICE_OPTIONS.values()),
        "add_ons": list(ADD_ONS.values()),
        "extra_copy_price_cents": EXTRA_COPY_PRICE_CENTS,
        "tax_rate": str(TAX_RATE),
    }
