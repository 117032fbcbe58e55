"""Pytest configuration and fixtures"""
import os

import pytest
import pytest_asyncio

# Set test environment variables
os.environ.setdefault("MOMENTCART_ENV", "test")
os.environ.pop("UPSTASH_REDIS_REST_URL", None)
os.environ.pop("UPSTASH_REDIS_REST_TOKEN", None)

from momentcart.cart.service import CartManager  # noqa: E402
from momentcart.cart.storage import CartStorage  # noqa: E402
from momentcart.config import CartConfig  # noqa: E402
from momentcart.db import MemoryStore  # noqa: E402
from tests.factories import NOW, make_event  # noqa: E402


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def config():
    return CartConfig(checkout_delay_seconds=0.0, max_retries=1, retry_delay=0.0)


@pytest.fixture
def sample_event():
    return make_event()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def session_store():
    return MemoryStore()


@pytest.fixture
def storage(store, session_store, config, clock):
    return CartStorage(store, session_store=session_store, config=config, clock=clock)


@pytest_asyncio.fixture
async def manager(storage, config, clock):
    cart_manager = CartManager(storage, config=config, clock=clock)
    await cart_manager.initialize()
    return cart_manager
