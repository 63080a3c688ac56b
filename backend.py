import json
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace

from billing import InvalidInput, parse_quantity, validate_invoice
from models import (Customer, CustomerPatch, Invoice, Product, empty_customer,
                    merge_customer, new_id)

logger = logging.getLogger(__name__)


class StorageUnavailable(Exception):
    """The on-device database could not be opened, read or written."""


class NotFound(KeyError):
    """An identifier did not resolve to a stored record."""


# ==========================================
# 1. DOCUMENT STORE
# ==========================================
class DocumentStore:
    DB_NAME = "zavino-furniture-shop.db"
    VERSION = "1.0"
    NAMESPACES = ('products', 'customers', 'invoices', 'settings')

    def __init__(self, db_path=None):
        self.db_path = db_path or os.environ.get("ZAVINO_DB_PATH", self.DB_NAME)
        self.init_db()

    @contextmanager
    def session(self):
        conn = None
        try:
            conn = sqlite3.connect(self.db_path)
            yield conn.cursor()
            conn.commit()
        except sqlite3.Error as e:
            logger.error("Storage failure on %s", self.db_path, exc_info=True)
            raise StorageUnavailable(f"{self.db_path}: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def init_db(self):
        with self.session() as cursor:
            # One table per entity class, each a plain key -> JSON document map
            for ns in self.NAMESPACES:
                cursor.execute(f'''CREATE TABLE IF NOT EXISTS {ns} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )''')
            cursor.execute('''CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )''')
            cursor.execute("INSERT OR IGNORE INTO meta (key, value) VALUES ('version', ?)", (self.VERSION,))
            for k, v in SETTINGS_DEFAULTS.items():
                cursor.execute("INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)", (k, json.dumps(v)))

            cursor.execute("SELECT value FROM meta WHERE key='version'")
            stored = cursor.fetchone()[0]
        if stored != self.VERSION:
            logger.warning("Store %s was initialised with version %s, running %s", self.db_path, stored, self.VERSION)

    def _table(self, namespace):
        if namespace not in self.NAMESPACES:
            raise ValueError(f"Unknown namespace: {namespace}")
        return namespace

    def version(self):
        with self.session() as cursor:
            cursor.execute("SELECT value FROM meta WHERE key='version'")
            return cursor.fetchone()[0]

    def put(self, namespace, key, value):
        table = self._table(namespace)
        with self.session() as cursor:
            cursor.execute(f"INSERT OR REPLACE INTO {table} (key, value) VALUES (?, ?)", (key, json.dumps(value)))

    def get(self, namespace, key):
        table = self._table(namespace)
        with self.session() as cursor:
            cursor.execute(f"SELECT value FROM {table} WHERE key=?", (key,))
            row = cursor.fetchone()
        return json.loads(row[0]) if row else None

    def list_all(self, namespace):
        table = self._table(namespace)
        with self.session() as cursor:
            cursor.execute(f"SELECT value FROM {table}")
            rows = cursor.fetchall()
        return [json.loads(r[0]) for r in rows]

    def items(self, namespace):
        table = self._table(namespace)
        with self.session() as cursor:
            cursor.execute(f"SELECT key, value FROM {table}")
            rows = cursor.fetchall()
        return {k: json.loads(v) for k, v in rows}

    def remove(self, namespace, key):
        table = self._table(namespace)
        with self.session() as cursor:
            cursor.execute(f"DELETE FROM {table} WHERE key=?", (key,))

    def count(self, namespace):
        table = self._table(namespace)
        with self.session() as cursor:
            cursor.execute(f"SELECT count(*) FROM {table}")
            return cursor.fetchone()[0]


# ==========================================
# 2. SEED DATA & SETTINGS DEFAULTS
# ==========================================
SETTINGS_DEFAULTS = {
    'store_name': 'Zavino Furniture',
    'store_address': 'Mumbai, Maharashtra',
    'gstin': '27AAACZ1234A1Z5',
    'gst_enabled': True,
    'gst_percent': 18,
    'upi_id': 'zavino@okaxis',
    'invoice_prefix': 'ZAVINO',
    'low_stock_threshold': 5,
    'stale_time': 60,
}

STARTER_PRODUCTS = [
    ('Verona Leather Sofa', 'SOFA-VERONA-3S', 89999, 55000, 4,
     'https://images.pexels.com/photos/1866149/pexels-photo-1866149.jpeg'),
    ('Oslo Fabric Sectional', 'SOFA-OSLO-L', 109999, 70000, 2,
     'https://images.pexels.com/photos/1571453/pexels-photo-1571453.jpeg'),
    ('Milan Dining Table (6-Seater)', 'TABLE-MILAN-6', 45999, 28000, 6,
     'https://images.pexels.com/photos/37347/office-freelancer-computer-business-37347.jpeg'),
    ('Zurich Coffee Table', 'TABLE-ZURICH-CT', 18999, 9000, 10,
     'https://images.pexels.com/photos/1643383/pexels-photo-1643383.jpeg'),
    ('Vienna Accent Chair', 'CHAIR-VIENNA-AC', 24999, 12000, 8,
     'https://images.pexels.com/photos/1866140/pexels-photo-1866140.jpeg'),
]

STARTER_CUSTOMERS = [
    ('Arjun Mehta', '+91 98765 43210', 'Bandra West, Mumbai, Maharashtra'),
    ('Priya Sharma', '+91 91234 56789', 'HSR Layout, Bengaluru, Karnataka'),
    ('Kavita & Co Interiors', '+91 99887 66554', 'Koregaon Park, Pune, Maharashtra'),
]


def seed_products_if_empty(store):
    # Check-then-insert is not atomic; fine for a single local agent.
    if store.count('products') > 0:
        return 0
    for name, sku, price, cost, stock, image in STARTER_PRODUCTS:
        product = Product(id=new_id(), name=name, sku=sku, price=price, cost=cost,
                          stock_qty=stock, image_url=image)
        store.put('products', product.id, product.to_record())
    logger.info("Seeded %d starter products", len(STARTER_PRODUCTS))
    return len(STARTER_PRODUCTS)


def seed_customers_if_empty(store):
    if store.count('customers') > 0:
        return 0
    for name, phone, address in STARTER_CUSTOMERS:
        customer = Customer(id=new_id(), name=name, phone=phone, address=address)
        store.put('customers', customer.id, customer.to_record())
    logger.info("Seeded %d starter customers", len(STARTER_CUSTOMERS))
    return len(STARTER_CUSTOMERS)


# ==========================================
# 3. QUERY CACHE
# ==========================================
def is_fresh(fetched_at, now, stale_time):
    """True while a listing fetched at ``fetched_at`` may still be served."""
    if fetched_at is None:
        return False
    return (now - fetched_at) < stale_time


@dataclass
class CacheEntry:
    data: list
    fetched_at: float


class QueryCache:
    STALE_TIME = 60

    def __init__(self, stale_time=STALE_TIME, clock=time.monotonic):
        self.stale_time = stale_time
        self.clock = clock
        self._entries = {}

    def fetch(self, key, loader):
        entry = self._entries.get(key)
        if entry is not None and is_fresh(entry.fetched_at, self.clock(), self.stale_time):
            logger.debug("Cache hit for %s", key)
            return list(entry.data)
        logger.debug("Cache miss for %s", key)
        data = loader()
        self._entries[key] = CacheEntry(data=list(data), fetched_at=self.clock())
        return list(data)

    def invalidate(self, key):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def __contains__(self, key):
        return key in self._entries


# ==========================================
# 4. REPOSITORIES
# ==========================================
def _check_non_negative(product):
    for attr in ('price', 'cost', 'stock_qty'):
        value = getattr(product, attr)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidInput(f"{attr} must be a non-negative integer, got {value!r}")


class ProductRepository:
    NAMESPACE = 'products'

    def __init__(self, store, cache):
        self.store = store
        self.cache = cache

    def _load(self):
        seed_products_if_empty(self.store)
        return [Product.from_record(r) for r in self.store.list_all(self.NAMESPACE)]

    def list_products(self):
        return self.cache.fetch(self.NAMESPACE, self._load)

    def get_product(self, product_id):
        rec = self.store.get(self.NAMESPACE, product_id)
        if rec is None:
            raise NotFound(product_id)
        return Product.from_record(rec)

    def add_product(self, fields):
        data = dict(fields)
        product = Product(id=data.pop('id', None) or new_id(), **data)
        _check_non_negative(product)
        self.store.put(self.NAMESPACE, product.id, product.to_record())
        self.cache.invalidate(self.NAMESPACE)
        logger.info("Added product %s (%s)", product.id, product.sku)
        return product

    def update_product(self, product):
        # Full replace; last write wins on the same id.
        _check_non_negative(product)
        self.store.put(self.NAMESPACE, product.id, product.to_record())
        self.cache.invalidate(self.NAMESPACE)
        logger.info("Updated product %s", product.id)
        return product

    def adjust_stock(self, product_id, new_qty):
        current = self.get_product(product_id)
        try:
            qty = parse_quantity(new_qty, minimum=0)
        except InvalidInput as e:
            logger.debug("Ignoring stock entry for %s: %s", product_id, e)
            return current
        return self.update_product(replace(current, stock_qty=qty))

    def remove_product(self, product_id):
        self.store.remove(self.NAMESPACE, product_id)
        self.cache.invalidate(self.NAMESPACE)
        logger.info("Removed product %s", product_id)


class CustomerRepository:
    NAMESPACE = 'customers'

    def __init__(self, store, cache):
        self.store = store
        self.cache = cache

    def _load(self):
        seed_customers_if_empty(self.store)
        return [Customer.from_record(r) for r in self.store.list_all(self.NAMESPACE)]

    def list_customers(self):
        return self.cache.fetch(self.NAMESPACE, self._load)

    def get_customer(self, customer_id):
        rec = self.store.get(self.NAMESPACE, customer_id)
        if rec is None:
            raise NotFound(customer_id)
        return Customer.from_record(rec)

    def upsert_customer(self, patch):
        if isinstance(patch, dict):
            patch = CustomerPatch(**patch)
        customer_id = patch.id or new_id()
        try:
            existing = self.get_customer(customer_id)
        except NotFound:
            existing = empty_customer(customer_id)
        customer = merge_customer(existing, patch)
        self.store.put(self.NAMESPACE, customer.id, customer.to_record())
        self.cache.invalidate(self.NAMESPACE)
        logger.info("Saved customer %s", customer.id)
        return customer


class InvoiceRepository:
    NAMESPACE = 'invoices'

    def __init__(self, store, cache):
        self.store = store
        self.cache = cache

    def _load(self):
        # Never seeded: a new shop starts with no invoices.
        return [Invoice.from_record(r) for r in self.store.list_all(self.NAMESPACE)]

    def list_invoices(self):
        return self.cache.fetch(self.NAMESPACE, self._load)

    def get_invoice(self, invoice_id):
        rec = self.store.get(self.NAMESPACE, invoice_id)
        if rec is None:
            raise NotFound(invoice_id)
        return Invoice.from_record(rec)

    def save_invoice(self, invoice):
        validate_invoice(invoice)
        if not invoice.id:
            invoice = replace(invoice, id=new_id())
        self.store.put(self.NAMESPACE, invoice.id, invoice.to_record())
        self.cache.invalidate(self.NAMESPACE)
        logger.info("Saved invoice %s total=%d status=%s", invoice.display_number, invoice.total, invoice.status)
        return invoice


@dataclass(frozen=True)
class ShopSettings:
    store_name: str
    store_address: str
    gstin: str
    gst_enabled: bool
    gst_percent: int
    upi_id: str
    invoice_prefix: str
    low_stock_threshold: int
    stale_time: int


TRUE_WORDS = ('true', '1', 'yes', 'on')
FALSE_WORDS = ('false', '0', 'no', 'off')


def coerce_setting(key, value):
    """Convert ``value`` to the type of the setting's default or raise InvalidInput."""
    default = SETTINGS_DEFAULTS[key]
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        word = str(value).strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
        raise InvalidInput(f"{key} must be true or false, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise InvalidInput(f"{key} must be a whole number, got {value!r}")
        try:
            number = int(str(value).strip())
        except ValueError:
            raise InvalidInput(f"{key} must be a whole number, got {value!r}") from None
        if number < 0:
            raise InvalidInput(f"{key} cannot be negative, got {value!r}")
        return number
    if not isinstance(value, str):
        raise InvalidInput(f"{key} must be text, got {value!r}")
    return value


def read_setting(key, raw):
    # Values written before settings were type-checked may be malformed.
    if raw is None:
        return SETTINGS_DEFAULTS[key]
    try:
        return coerce_setting(key, raw)
    except InvalidInput:
        logger.warning("Stored setting %s=%r is invalid, using default", key, raw)
        return SETTINGS_DEFAULTS[key]


class SettingsRepository:
    NAMESPACE = 'settings'

    def __init__(self, store, cache):
        self.store = store
        self.cache = cache

    def _load(self):
        return [self.store.items(self.NAMESPACE)]

    def get_settings(self):
        stored = self.cache.fetch(self.NAMESPACE, self._load)[0]
        values = {f.name: read_setting(f.name, stored.get(f.name)) for f in fields(ShopSettings)}
        return ShopSettings(**values)

    def update_setting(self, key, value):
        if key not in SETTINGS_DEFAULTS:
            raise KeyError(key)
        value = coerce_setting(key, value)
        self.store.put(self.NAMESPACE, key, value)
        self.cache.invalidate(self.NAMESPACE)
        logger.info("Setting %s updated", key)
        return value


# ==========================================
# 5. SHOP FACADE
# ==========================================
class Shop:
    """Entry point for the UI: cache-aware listings and mutating accessors.

    Bad user entries on the stock-adjustment path are ignored and the stored
    record returned. ``add_product``, ``update_product`` and ``save_invoice``
    instead raise ``billing.InvalidInput`` for negative or non-integer money
    and stock, or for invoice figures that do not add up, so the UI must
    catch it there. Storage failures raise ``StorageUnavailable`` from every
    call and leave the cache untouched.
    """

    def __init__(self, db_path=None, cache=None, clock=time.monotonic):
        self.store = DocumentStore(db_path)
        if cache is None:
            stale_time = read_setting('stale_time', self.store.get('settings', 'stale_time'))
            cache = QueryCache(stale_time=stale_time, clock=clock)
        self.cache = cache
        self.products = ProductRepository(self.store, cache)
        self.customers = CustomerRepository(self.store, cache)
        self.invoices = InvoiceRepository(self.store, cache)
        self.config = SettingsRepository(self.store, cache)

    # Listings
    def list_products(self):
        return self.products.list_products()

    def list_customers(self):
        return self.customers.list_customers()

    def list_invoices(self):
        return self.invoices.list_invoices()

    def get_invoice(self, invoice_id):
        return self.invoices.get_invoice(invoice_id)

    def settings(self):
        return self.config.get_settings()

    # Mutations
    def add_product(self, fields):
        return self.products.add_product(fields)

    def update_product(self, product):
        return self.products.update_product(product)

    def adjust_stock(self, product_id, new_qty):
        return self.products.adjust_stock(product_id, new_qty)

    def remove_product(self, product_id):
        self.products.remove_product(product_id)

    def upsert_customer(self, patch):
        return self.customers.upsert_customer(patch)

    def save_invoice(self, invoice):
        return self.invoices.save_invoice(invoice)
