"""
Pytest fixtures for the shop core: a throwaway SQLite file and a clock the
tests can move forward by hand.
"""

import pytest

from backend import QueryCache, Shop


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "shop.db")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def shop(db_path, clock):
    return Shop(db_path=db_path, clock=clock)


@pytest.fixture
def sofa(shop):
    return shop.add_product({
        'name': 'Verona Leather Sofa', 'sku': 'SOFA-VERONA-3S',
        'price': 89999, 'cost': 55000, 'stock_qty': 4,
    })


@pytest.fixture
def cache(clock):
    return QueryCache(stale_time=60, clock=clock)
