import re
import uuid
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

# ==========================================
# 1. ENTITIES
# ==========================================
# Money is always integer paise. Stored records keep the field names of the
# shop's original record layout (stockQty, imageUrl, ...) so CSV backups and
# existing data files stay readable.

INVOICE_STATUSES = ('draft', 'unpaid', 'paid', 'overdue', 'cancelled')
PENDING_STATUSES = ('unpaid', 'overdue')

PHONE_PATTERN = re.compile(r'^(\+91[\s-]?)?[6-9]\d{9}$')


def new_id():
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    sku: str
    price: int
    cost: int
    stock_qty: int
    image_url: str = ''

    def to_record(self):
        return {
            'id': self.id,
            'name': self.name,
            'sku': self.sku,
            'price': self.price,
            'cost': self.cost,
            'stockQty': self.stock_qty,
            'imageUrl': self.image_url,
        }

    @classmethod
    def from_record(cls, rec):
        return cls(
            id=rec['id'],
            name=rec.get('name', ''),
            sku=rec.get('sku', ''),
            price=int(rec.get('price', 0)),
            cost=int(rec.get('cost', 0)),
            stock_qty=int(rec.get('stockQty', 0)),
            image_url=rec.get('imageUrl') or '',
        )


@dataclass(frozen=True)
class Customer:
    id: str
    name: str = ''
    phone: str = ''
    address: str = ''

    def to_record(self):
        return {'id': self.id, 'name': self.name, 'phone': self.phone, 'address': self.address}

    @classmethod
    def from_record(cls, rec):
        return cls(
            id=rec['id'],
            name=rec.get('name', ''),
            phone=rec.get('phone', ''),
            address=rec.get('address', ''),
        )


@dataclass(frozen=True)
class InvoiceItem:
    id: str
    product_id: str
    name: str
    quantity: int
    price: int
    total: int

    def to_record(self):
        return {
            'id': self.id,
            'productId': self.product_id,
            'name': self.name,
            'quantity': self.quantity,
            'price': self.price,
            'total': self.total,
        }

    @classmethod
    def from_record(cls, rec):
        return cls(
            id=rec['id'],
            product_id=rec['productId'],
            name=rec.get('name', ''),
            quantity=int(rec['quantity']),
            price=int(rec['price']),
            total=int(rec['total']),
        )


@dataclass(frozen=True)
class Invoice:
    id: Optional[str]
    customer_id: str
    date: str
    status: str
    subtotal: int
    tax: int
    total: int
    items: Tuple[InvoiceItem, ...] = field(default_factory=tuple)
    invoice_number: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'items', tuple(self.items))

    @property
    def display_number(self):
        return self.invoice_number or (self.id or '')[:8]

    def to_record(self):
        return {
            'id': self.id,
            'invoiceNumber': self.invoice_number,
            'customerId': self.customer_id,
            'date': self.date,
            'status': self.status,
            'subtotal': self.subtotal,
            'tax': self.tax,
            'total': self.total,
            'items': [item.to_record() for item in self.items],
        }

    @classmethod
    def from_record(cls, rec):
        return cls(
            id=rec['id'],
            invoice_number=rec.get('invoiceNumber'),
            customer_id=rec.get('customerId', ''),
            date=rec['date'],
            status=rec.get('status', 'unpaid'),
            subtotal=int(rec.get('subtotal', 0)),
            tax=int(rec.get('tax', 0)),
            total=int(rec.get('total', 0)),
            items=tuple(InvoiceItem.from_record(i) for i in rec.get('items', [])),
        )


# ==========================================
# 2. CUSTOMER PATCH & MERGE
# ==========================================
@dataclass
class CustomerPatch:
    """Partial customer update. ``None`` means "leave the stored value alone"."""
    id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


def empty_customer(customer_id):
    return Customer(id=customer_id)


def merge_customer(existing, patch):
    """Apply ``patch`` over ``existing``; patch fields win when set."""
    changes = {}
    for attr in ('name', 'phone', 'address'):
        value = getattr(patch, attr)
        if value is not None:
            changes[attr] = value
    return replace(existing, **changes)


def is_valid_phone(phone):
    """Check an Indian mobile number (optional +91) for the customer form.

    The store saves whatever phone it is given; this is for the UI to call
    before ``upsert_customer``.
    """
    if not phone:
        return False
    return PHONE_PATTERN.match(phone.replace(' ', '')) is not None
