"""
Tests for invoice arithmetic and the billing-counter draft.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from backend import ShopSettings
from billing import (InvalidInput, InvoiceDraft, compute_tax, line_total,
                     next_invoice_number, parse_price, parse_quantity,
                     round_half_away, validate_invoice)
from models import Product


@pytest.fixture
def sofa():
    return Product(id='p-sofa', name='Verona Leather Sofa', sku='SOFA-VERONA-3S',
                   price=89999, cost=55000, stock_qty=4)


@pytest.fixture
def chair():
    return Product(id='p-chair', name='Vienna Accent Chair', sku='CHAIR-VIENNA-AC',
                   price=24999, cost=12000, stock_qty=8)


def assert_consistent(draft):
    subtotal, tax, total = draft.totals()
    assert subtotal == sum(l.total for l in draft.lines)
    assert total == subtotal + tax
    for l in draft.lines:
        assert l.total == line_total(l.quantity, l.price)


@pytest.mark.parametrize("value,expected", [
    (Decimal('2.5'), 3), (Decimal('-2.5'), -3), (Decimal('2.49'), 2), ('32399.64', 32400), (7, 7),
])
def test_round_half_away(value, expected):
    assert round_half_away(value) == expected


def test_gst_rounding_example():
    assert compute_tax(179998, True) == 32400
    assert compute_tax(179998, False) == 0
    # 0.18 * 25 = 4.5 rounds up, not to even
    assert compute_tax(25, True) == 5


def test_parse_quantity():
    assert parse_quantity("3") == 3
    assert parse_quantity(2.0) == 2
    for bad in (-1, 0, "x", "1.5", True, float('nan')):
        with pytest.raises(InvalidInput):
            parse_quantity(bad)


def test_parse_price():
    assert parse_price("1999") == 1999
    assert parse_price(10.5) == 11
    with pytest.raises(InvalidInput):
        parse_price(-5)


def test_add_same_product_twice_increments_quantity(sofa):
    draft = InvoiceDraft(customer_id='c1', gst_enabled=True)
    draft.add_product(sofa)
    draft.add_product(sofa)

    assert len(draft.lines) == 1
    line = draft.lines[0]
    assert line.quantity == 2
    assert line.total == 179998
    assert draft.subtotal == 179998
    assert draft.tax == 32400
    assert draft.total == 212398


def test_gst_off(sofa):
    draft = InvoiceDraft(customer_id='c1', gst_enabled=False)
    draft.add_product(sofa)
    assert draft.tax == 0
    assert draft.total == draft.subtotal == 89999


def test_new_line_copies_price_snapshot(sofa):
    draft = InvoiceDraft()
    line = draft.add_product(sofa)
    assert (line.product_id, line.name, line.quantity, line.price) == (sofa.id, sofa.name, 1, 89999)


def test_negative_quantity_is_ignored(sofa):
    draft = InvoiceDraft()
    line = draft.add_product(sofa)
    draft.set_quantity(line.id, 3)
    assert draft.set_quantity(line.id, -2) is False
    assert draft.lines[0].quantity == 3
    assert draft.lines[0].total == 3 * 89999


def test_malformed_entries_are_ignored(sofa):
    draft = InvoiceDraft()
    line = draft.add_product(sofa)
    assert draft.set_quantity(line.id, "two") is False
    assert draft.set_price(line.id, "") is False
    assert draft.set_price(line.id, -100) is False
    assert draft.lines[0].quantity == 1
    assert draft.lines[0].price == 89999


def test_price_override_recomputes_line(sofa, chair):
    draft = InvoiceDraft(gst_enabled=True)
    line = draft.add_product(sofa)
    draft.add_product(chair)
    assert draft.set_price(line.id, 80000)
    draft.set_quantity(line.id, 2)

    assert draft.lines[0].total == 160000
    assert draft.subtotal == 160000 + 24999
    assert_consistent(draft)


def test_totals_hold_after_every_mutation(sofa, chair):
    draft = InvoiceDraft(customer_id='c1')
    steps = [
        lambda: draft.add_product(sofa),
        lambda: draft.add_product(chair),
        lambda: draft.add_product(sofa),
        lambda: draft.set_quantity(draft.lines[1].id, 5),
        lambda: draft.set_price(draft.lines[0].id, "12345.5"),
        lambda: draft.set_quantity(draft.lines[0].id, -1),
        lambda: draft.remove_line(draft.lines[1].id),
    ]
    for step in steps:
        step()
        assert_consistent(draft)


def test_unknown_line_is_noop(sofa):
    draft = InvoiceDraft()
    draft.add_product(sofa)
    assert draft.set_quantity('missing', 4) is False
    assert draft.remove_line('missing') is False
    assert len(draft.lines) == 1


def test_to_invoice_requires_customer_and_lines(sofa):
    draft = InvoiceDraft()
    assert draft.to_invoice() is None
    draft.add_product(sofa)
    assert draft.to_invoice() is None
    draft.customer_id = 'c1'

    now = datetime(2026, 10, 19, 10, 30, tzinfo=timezone.utc)
    invoice = draft.to_invoice(invoice_number='ZAVINO-20261019-001', now=now)
    assert invoice.id is None
    assert invoice.status == 'unpaid'
    assert invoice.date == '2026-10-19T10:30:00+00:00'
    assert (invoice.subtotal, invoice.tax, invoice.total) == draft.totals()
    validate_invoice(invoice)

    # later edits to the draft do not leak into the built invoice
    draft.set_quantity(draft.lines[0].id, 9)
    assert invoice.items[0].quantity == 1


def test_from_settings_uses_configured_rate(sofa):
    settings = ShopSettings(store_name='Zavino Furniture', store_address='Mumbai', gstin='X',
                            gst_enabled=True, gst_percent=12, upi_id='', invoice_prefix='ZAVINO',
                            low_stock_threshold=5, stale_time=60)
    draft = InvoiceDraft.from_settings(settings, customer_id='c1')
    draft.add_product(sofa)
    assert draft.tax == round_half_away(Decimal(89999) * Decimal('0.12'))


def test_next_invoice_number():
    assert next_invoice_number([], today=date(2026, 10, 19)) == 'ZAVINO-20261019-001'
    assert next_invoice_number([object()] * 11, today=date(2026, 1, 2), prefix='SHOP') == 'SHOP-20260102-012'
