"""Shared fixtures."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fakes import FakeDatabase, FakeListingManager, FakePaymentGateway, FakeTransactionStore
from transactions import TransactionManager


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def listing_store(db):
    return FakeListingManager(db)


@pytest.fixture
def tx_store(db):
    return FakeTransactionStore(db)


@pytest.fixture
def manager(db, gateway, listing_store, tx_store):
    """TransactionManager wired to in-memory collaborators."""
    return TransactionManager(
        pool=db,
        payments=gateway,
        listings=listing_store,
        store=tx_store,
        record_noop_status_events=False,
        platform_fee_rate=Decimal('0.05'),
        pix_key='pix@marketplace.test',
        pending_payment_expiration_minutes=30,
    )


@pytest.fixture
def mock_conn():
    """asyncpg-like connection whose calls can be inspected."""
    conn = MagicMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value='UPDATE 1')

    transaction = MagicMock()
    transaction.__aenter__ = AsyncMock(return_value=transaction)
    transaction.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=transaction)
    return conn


@pytest.fixture
def mock_pool(mock_conn):
    """Pool whose acquire() yields mock_conn."""
    acquire = MagicMock()
    acquire.__aenter__ = AsyncMock(return_value=mock_conn)
    acquire.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire = MagicMock(return_value=acquire)
    return pool
