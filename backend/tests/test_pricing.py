"""Pricing engine: line item order, extra copies, VAT rounding, selection validation."""
from decimal import Decimal

import pytest

from services.catalog import get_service
from services.errors import ValidationFailed
from services.pricing import calculate_tax, price_selection


@pytest.fixture
def poa():
    return get_service("power-of-attorney")


def test_base_plus_signature_totals(poa):
    quote = price_selection(poa, ["base", "signature"])
    assert quote.subtotal == 8400
    assert quote.tax == 1764
    assert quote.total == 10164
    assert [li.key for li in quote.line_items] == ["base", "signature"]
    assert quote.line_items[0].label == "Power of Attorney"
    assert quote.line_items[0].unit_amount == 3500


def test_options_follow_catalog_order_regardless_of_input(poa):
    quote = price_selection(poa, ["true-content", "base"], ["express", "courier"])
    assert [li.key for li in quote.line_items] == ["base", "true-content", "courier", "express"]
    assert quote.option_keys == ["base", "true-content"]
    assert quote.add_on_keys == ["courier", "express"]


def test_extra_copies_billed_between_options_and_add_ons_with_courier(poa):
    quote = price_selection(poa, ["base"], ["courier"], extra_copies=2)
    keys = [li.key for li in quote.line_items]
    assert keys == ["base", "extra-copies", "courier"]
    copies = quote.line_items[1]
    assert copies.quantity == 2
    assert copies.amount == 3000
    assert quote.subtotal == 3500 + 3000 + 1500
    assert quote.extra_copies == 2


def test_extra_copies_ignored_without_courier(poa):
    quote = price_selection(poa, ["base"], ["apostille"], extra_copies=3)
    assert "extra-copies" not in [li.key for li in quote.line_items]
    assert quote.extra_copies == 0
    assert quote.subtotal == 3500 + 8900


def test_empty_option_selection_rejected(poa):
    with pytest.raises(ValidationFailed) as exc:
        price_selection(poa, [])
    assert exc.value.error_code == "EMPTY_SELECTION"
    assert exc.value.status_code == 400


def test_unknown_keys_rejected(poa):
    with pytest.raises(ValidationFailed) as exc:
        price_selection(poa, ["base", "gold-plated"])
    assert exc.value.error_code == "INVALID_SELECTION"
    with pytest.raises(ValidationFailed):
        price_selection(poa, ["base"], ["teleport"])


def test_negative_extra_copies_rejected(poa):
    with pytest.raises(ValidationFailed):
        price_selection(poa, ["base"], ["courier"], extra_copies=-1)


def test_same_selection_same_quote(poa):
    a = price_selection(poa, ["base", "signature"], ["courier"], 1)
    b = price_selection(poa, ["signature", "base"], ["courier"], 1)
    assert a.to_dict() == b.to_dict()


def test_tax_rounds_half_up():
    assert calculate_tax(8400, Decimal("0.21")) == 1764
    # 250 * 0.21 = 52.5 -> 53
    assert calculate_tax(250, Decimal("0.21")) == 53
    assert calculate_tax(0, Decimal("0.21")) == 0


def test_quote_to_dict_exposes_cents(poa):
    d = price_selection(poa, ["base"]).to_dict()
    assert d["subtotal_cents"] == 3500
    assert d["tax_cents"] == 735
    assert d["total_cents"] == 4235
    assert d["currency"] == "eur"
    assert d["line_items"][0]["amount"] == 3500
