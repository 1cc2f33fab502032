"""
Pytest configuration and shared fixtures for stocklot tests.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

os.environ.setdefault('FLASK_ENV', 'testing')

from stocklot import create_app  # noqa: E402
from stocklot.extensions import db  # noqa: E402
from stocklot.models import Batch, BatchSource, BatchStatus, Product, Warehouse  # noqa: E402


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'STOCK_LOCK_TIMEOUT_SECONDS': 2.0,
        'STOCK_STORE_TIMEOUT_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def app_context(app):
    """Provide an application context for tests that need it."""
    with app.app_context():
        yield


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def make_product(sku='SKU-1', name='Test Product', **kwargs):
    product = Product(sku=sku, name=name, **kwargs)
    db.session.add(product)
    db.session.commit()
    return product


def make_warehouse(code='WH-1', name='Test Warehouse', capacity=1000, **kwargs):
    warehouse = Warehouse(code=code, name=name, capacity=capacity, current_utilization=0, **kwargs)
    db.session.add(warehouse)
    db.session.commit()
    return warehouse


def make_batch(product, warehouse, quantity, received, *, unit_cost='1.00', expiry=None,
               batch_number=None, status=BatchStatus.ACTIVE, original=None):
    """Insert a batch with explicit dates and keep the warehouse counter in step."""
    batch = Batch(
        product_id=product.id,
        warehouse_id=warehouse.id,
        batch_number=batch_number or f'TEST-{product.id}-{warehouse.id}-{received:%Y%m%d%H%M}',
        quantity_remaining=quantity,
        original_quantity=original or quantity or 1,
        unit_cost=Decimal(unit_cost),
        received_date=received,
        expiry_date=expiry,
        status=status,
        source_type=BatchSource.PURCHASE,
    )
    db.session.add(batch)
    if status is BatchStatus.ACTIVE:
        warehouse.current_utilization = (warehouse.current_utilization or 0) + quantity
    db.session.commit()
    return batch


@pytest.fixture
def product(app_context):
    return make_product()


@pytest.fixture
def warehouse(app_context):
    return make_warehouse()


@pytest.fixture
def two_batches(product, warehouse):
    """Batch A (100 @ 2024-01-01) and Batch B (50 @ 2024-01-05)."""
    batch_a = make_batch(product, warehouse, 100, utc(2024, 1, 1), unit_cost='2.00', batch_number='A')
    batch_b = make_batch(product, warehouse, 50, utc(2024, 1, 5), unit_cost='3.00', batch_number='B')
    return batch_a, batch_b


def reload(model, pk):
    """Fetch a fresh copy of a row, bypassing the identity map."""
    db.session.expire_all()
    return db.session.get(model, pk)


def plus_days(value, days):
    return value + timedelta(days=days)
