import pytest

from order_service import commands, queries
from order_service.errors import InvalidInput, OrderNotFound


@pytest.fixture
async def three_orders(make_product, run, redis):
    product = await make_product(price="10.00", stock_quantity=100)
    ids = []
    for qty in (1, 2, 3):
        order = await run(
            commands.place_order, redis, [{"product_id": product["id"], "quantity": qty}]
        )
        ids.append(order["id"])
    await run(commands.update_order_status, redis, ids[1], "Completed")
    return ids


async def test_list_newest_first_with_total(three_orders, run):
    page = await run(queries.list_orders, skip=0, take=10)

    assert page["total"] == 3
    assert page["skip"] == 0
    assert page["take"] == 10
    assert [o["id"] for o in page["items"]] == list(reversed(three_orders))


async def test_total_independent_of_window(three_orders, run):
    page = await run(queries.list_orders, skip=1, take=1)

    assert page["total"] == 3
    assert [o["id"] for o in page["items"]] == [three_orders[1]]


async def test_status_filter(three_orders, run):
    pending = await run(queries.list_orders, status="Pending")
    completed = await run(queries.list_orders, status="Completed")

    assert pending["total"] == 2
    assert {o["id"] for o in pending["items"]} == {three_orders[0], three_orders[2]}
    assert completed["total"] == 1
    assert completed["items"][0]["id"] == three_orders[1]


async def test_list_defaults(run):
    page = await run(queries.list_orders)
    assert page == {"items": [], "total": 0, "skip": 0, "take": 10}


@pytest.mark.parametrize("kwargs", [{"skip": -1}, {"take": 0}, {"status": "Shipped"}])
async def test_list_rejects_bad_arguments(run, kwargs):
    with pytest.raises(InvalidInput):
        await run(queries.list_orders, **kwargs)


async def test_get_order_includes_product_snapshot(three_orders, run):
    order = await run(queries.get_order, three_orders[0])

    assert order["items"][0]["quantity"] == 1
    assert order["items"][0]["product"]["stock_quantity"] == 94


async def test_get_missing_order(run):
    with pytest.raises(OrderNotFound) as exc_info:
        await run(queries.get_order, 777)
    assert exc_info.value.order_id == 777
