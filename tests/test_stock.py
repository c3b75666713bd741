from decimal import Decimal

import pytest

from order_service import stock
from order_service.errors import InsufficientStock, InvalidInput, ProductNotFound


async def test_create_and_get_product(make_product, run):
    created = await make_product(name="Keyboard", price="49.90", stock_quantity=3)
    product = await run(stock.get_product, created["id"])
    assert product["name"] == "Keyboard"
    assert product["price"] == Decimal("49.90")
    assert product["stock_quantity"] == 3


async def test_get_missing_product(run):
    assert await run(stock.get_product, 999) is None
    with pytest.raises(ProductNotFound):
        await run(stock.require_product, 999)


async def test_adjust_stock_both_directions(make_product, run, stock_of):
    product = await make_product(stock_quantity=5)

    async def adjust(session, delta):
        result = await stock.adjust_stock(session, product["id"], delta)
        await session.commit()
        return result

    assert (await run(adjust, -5))["stock_quantity"] == 0
    assert (await run(adjust, 2))["stock_quantity"] == 2
    assert await stock_of(product["id"]) == 2


async def test_adjust_stock_never_goes_negative(make_product, run, stock_of):
    product = await make_product(stock_quantity=4)

    with pytest.raises(InsufficientStock) as exc_info:
        await run(stock.adjust_stock, product["id"], -5)

    assert exc_info.value.available == 4
    assert exc_info.value.requested == 5
    assert await stock_of(product["id"]) == 4


async def test_adjust_stock_unknown_product(run):
    with pytest.raises(ProductNotFound):
        await run(stock.adjust_stock, 42, -1)


async def test_create_product_rejects_negative_values(run):
    with pytest.raises(InvalidInput):
        await run(stock.create_product, "Bad", "-1", 1)
    with pytest.raises(InvalidInput):
        await run(stock.create_product, "Bad", "1", -1)


async def test_get_products_and_list(make_product, run):
    a = await make_product(name="A")
    b = await make_product(name="B")
    found = await run(stock.get_products, [a["id"], b["id"], 999])
    assert set(found) == {a["id"], b["id"]}
    listed = await run(stock.list_products)
    assert [p["name"] for p in listed] == ["A", "B"]
