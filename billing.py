import logging
from collections import namedtuple
from dataclasses import replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from models import Invoice, InvoiceItem, new_id

logger = logging.getLogger(__name__)

GST_RATE = Decimal('0.18')

Totals = namedtuple('Totals', ['subtotal', 'tax', 'total'])


class InvalidInput(ValueError):
    """A quantity or price entry that cannot be applied."""


# ==========================================
# 1. ARITHMETIC
# ==========================================
def _to_decimal(value):
    if isinstance(value, bool):
        raise InvalidInput(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidInput(f"not a number: {value!r}") from None
    if not d.is_finite():
        raise InvalidInput(f"not a finite number: {value!r}")
    return d


def round_half_away(value):
    """Round to whole paise, halves going away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(_to_decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def parse_quantity(value, minimum=1):
    d = _to_decimal(value)
    if d != d.to_integral_value():
        raise InvalidInput(f"quantity must be a whole number: {value!r}")
    qty = int(d)
    if qty < minimum:
        raise InvalidInput(f"quantity must be at least {minimum}: {value!r}")
    return qty


def parse_price(value):
    # Fractional paise are rounded on entry so stored prices stay integral.
    d = _to_decimal(value)
    if d < 0:
        raise InvalidInput(f"price cannot be negative: {value!r}")
    return round_half_away(d)


def line_total(quantity, price):
    return max(0, round_half_away(Decimal(quantity) * Decimal(price)))


def compute_tax(subtotal, gst_enabled, rate=GST_RATE):
    if not gst_enabled:
        return 0
    return round_half_away(Decimal(subtotal) * rate)


def compute_totals(items, gst_enabled, rate=GST_RATE):
    subtotal = sum(item.total for item in items)
    tax = compute_tax(subtotal, gst_enabled, rate)
    return Totals(subtotal, tax, subtotal + tax)


def validate_invoice(invoice):
    """Raise InvalidInput unless the invoice's stored figures add up."""
    for item in invoice.items:
        if item.quantity < 1 or item.price < 0:
            raise InvalidInput(f"line {item.id} has quantity {item.quantity} and price {item.price}")
        if item.total != line_total(item.quantity, item.price):
            raise InvalidInput(f"line {item.id} total {item.total} != {item.quantity} x {item.price}")
    if invoice.subtotal != sum(item.total for item in invoice.items):
        raise InvalidInput(f"subtotal {invoice.subtotal} does not match its lines")
    if invoice.total != invoice.subtotal + invoice.tax:
        raise InvalidInput(f"total {invoice.total} != {invoice.subtotal} + {invoice.tax}")


def next_invoice_number(invoices, today=None, prefix='ZAVINO'):
    today = today or datetime.now(timezone.utc).date()
    return f"{prefix}-{today:%Y%m%d}-{len(invoices) + 1:03d}"


# ==========================================
# 2. INVOICE DRAFT
# ==========================================
class InvoiceDraft:
    """Invoice being composed at the billing counter.

    Lines are the only state; subtotal, tax and total are always derived from
    them. Bad entries (negative or malformed quantity/price) are dropped and the
    previous value kept, so mutators report success as a bool rather than raise.
    """

    def __init__(self, customer_id='', gst_enabled=True, gst_rate=GST_RATE):
        self.customer_id = customer_id
        self.gst_enabled = gst_enabled
        self.gst_rate = gst_rate
        self.lines = []

    @classmethod
    def from_settings(cls, settings, customer_id=''):
        rate = Decimal(settings.gst_percent) / 100
        return cls(customer_id=customer_id, gst_enabled=settings.gst_enabled, gst_rate=rate)

    def _find(self, line_id):
        for idx, line in enumerate(self.lines):
            if line.id == line_id:
                return idx, line
        return None, None

    def find_product_line(self, product_id):
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def add_product(self, product):
        existing = self.find_product_line(product.id)
        if existing is not None:
            self.set_quantity(existing.id, existing.quantity + 1)
            return self.find_product_line(product.id)
        line = InvoiceItem(id=new_id(), product_id=product.id, name=product.name,
                           quantity=1, price=product.price, total=line_total(1, product.price))
        self.lines.append(line)
        return line

    def set_quantity(self, line_id, value):
        idx, line = self._find(line_id)
        if line is None:
            return False
        try:
            qty = parse_quantity(value)
        except InvalidInput as e:
            logger.debug("Ignoring quantity for line %s: %s", line_id, e)
            return False
        self.lines[idx] = replace(line, quantity=qty, total=line_total(qty, line.price))
        return True

    def set_price(self, line_id, value):
        idx, line = self._find(line_id)
        if line is None:
            return False
        try:
            price = parse_price(value)
        except InvalidInput as e:
            logger.debug("Ignoring price for line %s: %s", line_id, e)
            return False
        self.lines[idx] = replace(line, price=price, total=line_total(line.quantity, price))
        return True

    def remove_line(self, line_id):
        before = len(self.lines)
        self.lines = [l for l in self.lines if l.id != line_id]
        return len(self.lines) < before

    def totals(self):
        return compute_totals(self.lines, self.gst_enabled, self.gst_rate)

    @property
    def subtotal(self):
        return self.totals().subtotal

    @property
    def tax(self):
        return self.totals().tax

    @property
    def total(self):
        return self.totals().total

    def is_ready(self):
        return bool(self.customer_id) and bool(self.lines)

    def to_invoice(self, invoice_number=None, now=None, status='unpaid'):
        if not self.is_ready():
            return None
        now = now or datetime.now(timezone.utc)
        subtotal, tax, total = self.totals()
        return Invoice(
            id=None,
            invoice_number=invoice_number,
            customer_id=self.customer_id,
            date=now.isoformat(),
            status=status,
            subtotal=subtotal,
            tax=tax,
            total=total,
            items=tuple(self.lines),
        )

    def clear(self):
        self.lines = []
