from datetime import datetime, timezone

import numpy as np
import pandas as pd

from models import PENDING_STATUSES

LOW_STOCK_THRESHOLD = 5
LOW_STOCK_FILTER_MAX = 3
RECENT_LIMIT = 5
MONTHS_SHOWN = 6

INVOICE_COLUMNS = ['id', 'customer_id', 'date', 'status', 'total']


# ==========================================
# 1. FRAME BUILDERS
# ==========================================
def _invoice_frame(invoices):
    df = pd.DataFrame(
        [(inv.id, inv.customer_id, inv.date, inv.status, inv.total) for inv in invoices],
        columns=INVOICE_COLUMNS,
    )
    df['total'] = df['total'].astype('int64')
    # Invoice dates are ISO strings; naive ones are taken as UTC.
    df['when'] = pd.to_datetime(df['date'], utc=True, format='ISO8601')
    return df


def _today(today):
    return today or datetime.now(timezone.utc).date()


# ==========================================
# 2. DASHBOARD ROLLUPS
# ==========================================
def todays_sales(invoices, today=None):
    df = _invoice_frame(invoices)
    if df.empty:
        return 0
    mask = (df['when'].dt.date == _today(today)) & (df['status'] == 'paid')
    return int(df.loc[mask, 'total'].sum())


def pending_receivables(invoices):
    df = _invoice_frame(invoices)
    return int(df.loc[df['status'].isin(PENDING_STATUSES), 'total'].sum())


def low_stock_count(products, threshold=LOW_STOCK_THRESHOLD):
    stock = np.array([p.stock_qty for p in products], dtype=np.int64)
    return int(np.count_nonzero(stock < threshold))


def recent_invoices(invoices, limit=RECENT_LIMIT):
    if not invoices:
        return []
    df = _invoice_frame(invoices)
    order = df.sort_values('when', ascending=False, kind='stable').index[:limit]
    return [invoices[i] for i in order]


def monthly_sales(invoices, months=MONTHS_SHOWN):
    """Invoice totals per calendar month (``YYYY-MM``), oldest first, last ``months`` only."""
    df = _invoice_frame(invoices)
    if df.empty:
        return pd.DataFrame({'month': pd.Series(dtype=str), 'total': pd.Series(dtype='int64')})
    df['month'] = df['when'].dt.strftime('%Y-%m')
    series = df.groupby('month')['total'].sum().sort_index().tail(months)
    return series.reset_index()


def customer_stats(customers, invoices):
    """Per customer: everything they were invoiced, and what is still outstanding."""
    base = pd.DataFrame(
        [(c.id, c.name, c.phone, c.address) for c in customers],
        columns=['id', 'name', 'phone', 'address'],
    )
    if not invoices:
        base['total_spent'] = 0
        base['pending_balance'] = 0
        return base
    df = _invoice_frame(invoices)
    df['pending'] = np.where(df['status'].isin(PENDING_STATUSES), df['total'], 0)
    per_customer = df.groupby('customer_id').agg(total_spent=('total', 'sum'), pending_balance=('pending', 'sum'))

    stats = base.merge(per_customer, how='left', left_on='id', right_index=True)
    stats[['total_spent', 'pending_balance']] = stats[['total_spent', 'pending_balance']].fillna(0).astype('int64')
    return stats.reset_index(drop=True)


def dashboard_summary(products, invoices, today=None, low_stock_threshold=LOW_STOCK_THRESHOLD):
    return {
        'todays_sales': todays_sales(invoices, today),
        'pending_receivables': pending_receivables(invoices),
        'low_stock_count': low_stock_count(products, low_stock_threshold),
        'recent_invoices': recent_invoices(invoices),
        'monthly_sales': monthly_sales(invoices),
    }


# ==========================================
# 3. INVENTORY & REPORTS
# ==========================================
def search_products(products, term='', low_stock_only=False, limit=None):
    term = (term or '').strip().lower()
    results = []
    for p in products:
        if term and term not in p.name.lower() and term not in p.sku.lower():
            continue
        if low_stock_only and p.stock_qty > LOW_STOCK_FILTER_MAX:
            continue
        results.append(p)
    return results[:limit] if limit is not None else results


def top_selling_products(invoices, limit=5):
    rows = [
        (item.product_id, item.name, item.quantity, item.total)
        for inv in invoices if inv.status not in ('draft', 'cancelled')
        for item in inv.items
    ]
    df = pd.DataFrame(rows, columns=['product_id', 'name', 'quantity', 'revenue'])
    if df.empty:
        return df
    top = df.groupby('product_id').agg(name=('name', 'last'), quantity=('quantity', 'sum'), revenue=('revenue', 'sum'))
    top = top.sort_values(['quantity', 'revenue'], ascending=False).head(limit)
    return top.reset_index()


def forecast_monthly_sales(series, periods=3):
    """Linear trend over a monthly series; ``None`` with fewer than two months."""
    if len(series) < 2:
        return None
    X = np.arange(len(series))
    y = series['total'].to_numpy(dtype=float)
    poly = np.poly1d(np.polyfit(X, y, 1))

    future_X = np.arange(len(series), len(series) + periods)
    projected = np.clip(np.round(poly(future_X)), 0, None).astype('int64')
    last = pd.Period(series['month'].iloc[-1], freq='M')
    months = [(last + i).strftime('%Y-%m') for i in range(1, periods + 1)]
    return pd.DataFrame({'month': months, 'projected': projected})


# ==========================================
# 4. ANALYTICS ENGINE
# ==========================================
class AnalyticsEngine:
    def __init__(self, shop):
        self.shop = shop

    def get_dashboard(self, today=None):
        threshold = self.shop.settings().low_stock_threshold
        return dashboard_summary(self.shop.list_products(), self.shop.list_invoices(), today, threshold)

    def get_customer_stats(self):
        return customer_stats(self.shop.list_customers(), self.shop.list_invoices())

    def get_monthly_sales(self, months=MONTHS_SHOWN):
        return monthly_sales(self.shop.list_invoices(), months)

    def get_top_selling_products(self, limit=5):
        return top_selling_products(self.shop.list_invoices(), limit)

    def get_sales_forecast(self, periods=3):
        return forecast_monthly_sales(self.get_monthly_sales(), periods)

    def search_inventory(self, term='', low_stock_only=False, limit=None):
        return search_products(self.shop.list_products(), term, low_stock_only, limit)
