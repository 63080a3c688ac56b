from dataclasses import replace

from models import (Customer, CustomerPatch, Invoice, InvoiceItem, Product,
                    empty_customer, is_valid_phone, merge_customer)


def test_product_record_uses_stored_field_names():
    product = Product(id='p1', name='Sofa', sku='S1', price=100, cost=50, stock_qty=3)
    rec = product.to_record()
    assert rec['stockQty'] == 3
    assert rec['imageUrl'] == ''
    assert Product.from_record(rec) == product


def test_invoice_record_roundtrip_with_items():
    item = InvoiceItem(id='l1', product_id='p1', name='Sofa', quantity=2, price=100, total=200)
    invoice = Invoice(id='i1', customer_id='c1', date='2026-10-19T10:00:00+00:00', status='paid',
                      subtotal=200, tax=36, total=236, items=[item])
    rec = invoice.to_record()
    assert rec['customerId'] == 'c1'
    assert rec['items'][0]['productId'] == 'p1'
    assert Invoice.from_record(rec) == invoice


def test_display_number_falls_back_to_id_prefix():
    invoice = Invoice(id='0123456789abcdef', customer_id='c1', date='2026-10-19', status='paid',
                      subtotal=0, tax=0, total=0)
    assert invoice.display_number == '01234567'
    invoice = replace(invoice, invoice_number='ZAVINO-20261019-001')
    assert invoice.display_number == 'ZAVINO-20261019-001'


def test_merge_patch_overrides_only_set_fields():
    existing = Customer('c1', 'Arjun Mehta', '+91 98765 43210', 'Bandra West')
    merged = merge_customer(existing, CustomerPatch(id='c1', phone='+91 91234 56789'))
    assert merged == Customer('c1', 'Arjun Mehta', '+91 91234 56789', 'Bandra West')


def test_merge_empty_string_is_an_override():
    existing = Customer('c1', 'Arjun Mehta', '+91 98765 43210', 'Bandra West')
    assert merge_customer(existing, CustomerPatch(address='')).address == ''


def test_merge_onto_empty_default():
    merged = merge_customer(empty_customer('new'), CustomerPatch(name='Priya'))
    assert merged == Customer('new', 'Priya', '', '')


def test_is_valid_phone():
    assert is_valid_phone('+91 98765 43210')
    assert is_valid_phone('9876543210')
    assert is_valid_phone('+91-9876543210')
    assert not is_valid_phone('12345')
    assert not is_valid_phone('5876543210')
    assert not is_valid_phone('')
