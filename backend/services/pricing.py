"""
Pricing Engine - deterministic line items and totals for a checkout selection.

Pure functions only: no database, no clock, no randomness. The same selection
always yields the same quote, which is what makes checkout retries idempotent.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, List, Iterable, Optional

from services.catalog import (
    ADD_ONS,
    EXTRA_COPY_PRICE_CENTS,
    SERVICE_OPTIONS,
    TAX_RATE,
    option_price,
)
from services.errors import ValidationFailed


@dataclass(frozen=True)
class LineItem:
    key: str
    label: str
    unit_amount: int
    quantity: int = 1

    @property
    def amount(self) -> int:
        return self.unit_amount * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "unit_amount": self.unit_amount,
            "quantity": self.quantity,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class PriceQuote:
    service_slug: str
    currency: str
    line_items: List[LineItem] = field(default_factory=list)
    subtotal: int = 0
    tax: int = 0
    total: int = 0
    option_keys: List[str] = field(default_factory=list)
    add_on_keys: List[str] = field(default_factory=list)
    extra_copies: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_slug": self.service_slug,
            "currency": self.currency,
            "line_items": [li.to_dict() for li in self.line_items],
            "subtotal_cents": self.subtotal,
            "tax_cents": self.tax,
            "total_cents": self.total,
            "option_keys": list(self.option_keys),
            "add_on_keys": list(self.add_on_keys),
            "extra_copies": self.extra_copies,
        }


def calculate_tax(subtotal_cents: int, rate: Decimal = TAX_RATE) -> int:
    """Round half up at cent resolution: 8400 * 0.21 -> 1764."""
    return int((Decimal(subtotal_cents) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _ordered_keys(selected: Iterable[str], registry: Dict[str, Any], kind: str) -> List[str]:
    """Validate keys against a catalog registry and return them in catalog order."""
    chosen = set(selected or [])
    unknown = sorted(chosen - set(registry.keys()))
    if unknown:
        raise ValidationFailed(
            f"Unknown {kind}: {', '.join(unknown)}",
            error_code="INVALID_SELECTION",
        )
    return [key for key in registry if key in chosen]


def price_selection(
    service: Dict[str, Any],
    option_keys: Optional[Iterable[str]],
    add_on_keys: Optional[Iterable[str]] = None,
    extra_copies: int = 0,
    tax_rate: Decimal = TAX_RATE,
) -> PriceQuote:
    """
    Price a selection against a catalog service entry.

    Line item order: selected options, extra copies, add-ons; options and
    add-ons follow catalog order regardless of input order. Extra copies are
    billed only when an add-on that allows them (courier) is selected.

    Raises:
        ValidationFailed: unknown keys, empty option selection, negative copies
    """
    if extra_copies is None:
        extra_copies = 0
    if extra_copies < 0:
        raise ValidationFailed("extraCopies must be zero or greater", error_code="INVALID_SELECTION")

    options = _ordered_keys(option_keys, SERVICE_OPTIONS, "service option")
    if not options:
        raise ValidationFailed("At least one service option must be selected", error_code="EMPTY_SELECTION")
    add_ons = _ordered_keys(add_on_keys, ADD_ONS, "add-on")

    line_items: List[LineItem] = []
    for key in options:
        label = service["name"] if key == "base" else SERVICE_OPTIONS[key]["name"]
        line_items.append(LineItem(key=key, label=label, unit_amount=option_price(service, key)))

    copies_billable = any(ADD_ONS[key].get("allows_extra_copies") for key in add_ons)
    billed_copies = extra_copies if copies_billable else 0
    if billed_copies > 0:
        line_items.append(LineItem(
            key="extra-copies",
            label="Extra Certified Copies",
            unit_amount=EXTRA_COPY_PRICE_CENTS,
            quantity=billed_copies,
        ))

    for key in add_ons:
        line_items.append(LineItem(key=key, label=ADD_ONS[key]["name"], unit_amount=ADD_ONS[key]["price_cents"]))

    subtotal = sum(li.amount for li in line_items)
    tax = calculate_tax(subtotal, tax_rate)

    return PriceQuote(
        service_slug=service["slug"],
        currency=service["currency"],
        line_items=line_items,
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        option_keys=options,
        add_on_keys=add_ons,
        extra_copies=billed_copies,
    )
