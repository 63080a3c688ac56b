import datetime
import logging
import os
from urllib.parse import quote

import pandas as pd
import qrcode
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from backend import NotFound
from models import empty_customer

logger = logging.getLogger(__name__)

PRODUCT_BACKUP_COLUMNS = ['id', 'name', 'sku', 'price_paise', 'cost_paise', 'stockQty', 'imageUrl']
CUSTOMER_BACKUP_COLUMNS = ['id', 'name', 'phone', 'address']
INVOICE_BACKUP_COLUMNS = ['id', 'invoiceNumber', 'customerId', 'date', 'status',
                          'subtotal_paise', 'tax_paise', 'total_paise']


def format_inr(paise, symbol='₹'):
    return f"{symbol}{paise / 100:,.2f}"


# ==========================================
# 1. CSV BACKUPS
# ==========================================
def products_frame(products):
    return pd.DataFrame(
        [(p.id, p.name, p.sku, p.price, p.cost, p.stock_qty, p.image_url) for p in products],
        columns=PRODUCT_BACKUP_COLUMNS,
    )


def customers_frame(customers):
    return pd.DataFrame(
        [(c.id, c.name, c.phone, c.address) for c in customers],
        columns=CUSTOMER_BACKUP_COLUMNS,
    )


def invoices_frame(invoices):
    return pd.DataFrame(
        [(i.id, i.invoice_number or '', i.customer_id, i.date, i.status, i.subtotal, i.tax, i.total)
         for i in invoices],
        columns=INVOICE_BACKUP_COLUMNS,
    )


def inventory_frame(products):
    """Inventory sheet in rupees, as shown on the inventory page."""
    return pd.DataFrame({
        'Name': [p.name for p in products],
        'SKU': [p.sku for p in products],
        'Price (₹)': [f"{p.price / 100:.2f}" for p in products],
        'Cost (₹)': [f"{p.cost / 100:.2f}" for p in products],
        'Stock Qty': [p.stock_qty for p in products],
    })


def export_inventory_csv(shop, path="zavino-inventory.csv"):
    inventory_frame(shop.list_products()).to_csv(path, index=False, encoding="utf-8")
    return path


def export_backup(shop, directory="."):
    """Write product, customer and invoice backups; returns the file paths."""
    frames = {
        "zavino-products.csv": products_frame(shop.list_products()),
        "zavino-customers.csv": customers_frame(shop.list_customers()),
        "zavino-invoices.csv": invoices_frame(shop.list_invoices()),
    }
    paths = []
    for filename, df in frames.items():
        path = os.path.join(directory, filename)
        df.to_csv(path, index=False, encoding="utf-8")
        paths.append(path)
    logger.info("Exported backup to %s", directory)
    return paths


# ==========================================
# 2. UPI QR & INVOICE PDF
# ==========================================
def upi_payload(upi_id, store_name, amount_paise, note="Bill Payment"):
    return (f"upi://pay?pa={upi_id}&pn={quote(store_name)}&am={amount_paise / 100:.2f}"
            f"&cu=INR&tn={quote(note)}")


def upi_qr_image(upi_id, store_name, amount_paise, note="Bill Payment"):
    return qrcode.make(upi_payload(upi_id, store_name, amount_paise, note)).get_image()


def generate_upi_qr(upi_id, store_name, amount_paise, note="Bill Payment", path="temp_qr.png"):
    upi_qr_image(upi_id, store_name, amount_paise, note).save(path)
    return path


def _cell(pdf, w, text, border=0, newline=False, align='L'):
    if newline:
        pdf.cell(w, 8, text, border=border, align=align, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    else:
        pdf.cell(w, 8, text, border=border, align=align)


def generate_invoice_pdf(invoice, customer, settings, path=None):
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", 'B', 16)
    _cell(pdf, 0, settings.store_name, newline=True, align='C')
    pdf.set_font("Helvetica", size=9)
    _cell(pdf, 0, f"GSTIN: {settings.gstin} - {settings.store_address}", newline=True, align='C')
    pdf.ln(4)

    pdf.set_font("Helvetica", size=10)
    _cell(pdf, 100, f"Invoice: {invoice.display_number}", newline=True)
    _cell(pdf, 100, f"Date: {invoice.date[:10]}", newline=True)
    _cell(pdf, 100, f"Status: {invoice.status}", newline=True)
    _cell(pdf, 100, f"Customer: {customer.name}", newline=True)
    _cell(pdf, 100, f"Phone: {customer.phone}", newline=True)
    if customer.address:
        _cell(pdf, 100, f"Address: {customer.address}", newline=True)
    pdf.ln(4)

    pdf.set_font("Helvetica", 'B', 10)
    _cell(pdf, 90, "Item", 1)
    _cell(pdf, 20, "Qty", 1, align='R')
    _cell(pdf, 40, "Price", 1, align='R')
    _cell(pdf, 40, "Total", 1, newline=True, align='R')
    pdf.set_font("Helvetica", size=10)
    for item in invoice.items:
        _cell(pdf, 90, item.name, 1)
        _cell(pdf, 20, str(item.quantity), 1, align='R')
        _cell(pdf, 40, format_inr(item.price, 'Rs. '), 1, align='R')
        _cell(pdf, 40, format_inr(item.total, 'Rs. '), 1, newline=True, align='R')

    pdf.ln(4)
    _cell(pdf, 150, "Subtotal")
    _cell(pdf, 40, format_inr(invoice.subtotal, 'Rs. '), newline=True, align='R')
    _cell(pdf, 150, f"GST ({settings.gst_percent}%)")
    _cell(pdf, 40, format_inr(invoice.tax, 'Rs. '), newline=True, align='R')
    pdf.set_font("Helvetica", 'B', 12)
    _cell(pdf, 150, "Total")
    _cell(pdf, 40, format_inr(invoice.total, 'Rs. '), newline=True, align='R')

    if invoice.status in ('unpaid', 'overdue') and settings.upi_id:
        qr = upi_qr_image(settings.upi_id, settings.store_name, invoice.total,
                          note=f"Invoice {invoice.display_number}")
        pdf.ln(4)
        pdf.image(qr, w=40)

    if path is None:
        path = f"{invoice.display_number}_{int(datetime.datetime.now().timestamp())}.pdf"
    pdf.output(path)
    logger.info("Wrote invoice PDF %s", path)
    return path


def export_invoice_pdf(shop, invoice_id, path=None):
    invoice = shop.get_invoice(invoice_id)
    try:
        customer = shop.customers.get_customer(invoice.customer_id)
    except NotFound:
        # customerId is advisory; print with a blank customer block
        customer = empty_customer(invoice.customer_id)
    return generate_invoice_pdf(invoice, customer, shop.settings(), path=path)
