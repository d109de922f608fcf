"""Pytest configuration and fixtures"""
import os

import pytest

# Set test environment variables
os.environ.setdefault("CART_API_URL", "https://cart.test/api")
os.environ.setdefault("CART_TAX_RATE", "0.08")
os.environ.setdefault("CART_SHIPPING_FEE", "10.00")
os.environ.setdefault("CART_CURRENCY", "USD")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from storefront.cart.models import LineItem  # noqa: E402
from storefront.config import get_settings  # noqa: E402

from fakes import FakeRemoteCart, make_item  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached; drop the cache around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def item_a() -> LineItem:
    """Sample line: headphones, one unit at 100.00"""
    return make_item("prod-a", 1, "100.00", name="Wireless ANC Headphones", color="White", size="One Size")


@pytest.fixture
def item_b() -> LineItem:
    """Sample line: office chair, two units at 50.00"""
    return make_item("prod-b", 2, "50.00", name="Ergonomic Office Chair", color="Grey", size="Large")


@pytest.fixture
def remote() -> FakeRemoteCart:
    """Remote cart that parks every call until the test resolves it"""
    return FakeRemoteCart()
