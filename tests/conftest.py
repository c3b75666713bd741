"""Shared fixtures: a file-backed SQLite database per test and a recording Redis stub."""

import json
import os
import tempfile

os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(prefix="order-service-"), "api.db"),
)

import pytest

from order_service import stock
from order_service.db import create_engine, create_schema, create_session_factory


class RecordingRedis:
    """publish() だけを記録する Redis の代役"""

    def __init__(self):
        self.messages = []

    async def publish(self, channel, message):
        self.messages.append((channel, json.loads(message)))
        return 1

    def event_types(self):
        return [m["event_type"] for _, m in self.messages]


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def run(session_factory):
    """Run ``fn(session, *args)`` in a fresh session, like one request."""

    async def _run(fn, *args, **kwargs):
        async with session_factory() as session:
            return await fn(session, *args, **kwargs)

    return _run


@pytest.fixture
def make_product(run):
    async def _make(name="Widget", price="100.00", stock_quantity=10, category="general"):
        async def create(session):
            product = await stock.create_product(
                session, name, price, stock_quantity=stock_quantity, category=category
            )
            await session.commit()
            return product

        return await run(create)

    return _make


@pytest.fixture
def stock_of(run):
    async def _stock_of(product_id):
        product = await run(stock.get_product, product_id)
        return product["stock_quantity"]

    return _stock_of
