"""
Order Service — クエリハンドラ (CQRS の Read 側)

注文は作成日時の降順で返す。明細には現在の商品情報（product）を添える。
購入時の単価は price_at_purchase に固定されているので、
商品価格が後から変わっても注文の金額は変わらない。
"""

from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import stock
from .aggregate import OrderAggregate, OrderStatus, parse_status
from .config import ORDER_PAGE_SIZE
from .errors import InvalidInput, OrderNotFound
from .schema import order_items, orders


async def _load_items(session: AsyncSession, order_ids: list[int]) -> dict[int, list]:
    if not order_ids:
        return {}
    result = await session.execute(
        select(order_items)
        .where(order_items.c.order_id.in_(order_ids))
        .order_by(order_items.c.id)
    )
    grouped = defaultdict(list)
    for row in result.fetchall():
        grouped[row.order_id].append(row)
    return grouped


async def _build_aggregates(session: AsyncSession, order_rows) -> list[OrderAggregate]:
    items_by_order = await _load_items(session, [row.id for row in order_rows])
    product_ids = {
        item.product_id for rows in items_by_order.values() for item in rows
    }
    products_by_id = await stock.get_products(session, product_ids)
    return [
        OrderAggregate.from_rows(row, items_by_order.get(row.id, []), products_by_id)
        for row in order_rows
    ]


async def load_order(
    session: AsyncSession,
    order_id: int,
    for_update: bool = False,
) -> OrderAggregate:
    """注文集約を読み込む。for_update=True なら対応する DB では行ロックを取る。"""
    stmt = select(orders).where(orders.c.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    row = result.fetchone()
    if not row:
        raise OrderNotFound(order_id)
    aggregates = await _build_aggregates(session, [row])
    return aggregates[0]


async def get_order(session: AsyncSession, order_id: int) -> dict:
    agg = await load_order(session, order_id)
    return agg.to_dict()


async def list_orders(
    session: AsyncSession,
    skip: int = 0,
    take: int = ORDER_PAGE_SIZE,
    status: OrderStatus | str | None = None,
) -> dict:
    """
    注文一覧をページ単位で返す。

    total はページングとは無関係に、フィルタに合致する全件数。
    """
    if skip < 0:
        raise InvalidInput(f"skip must be >= 0: {skip}")
    if take < 1:
        raise InvalidInput(f"take must be >= 1: {take}")

    conditions = []
    if status is not None:
        conditions.append(orders.c.status == parse_status(status).value)

    total = (
        await session.execute(select(func.count()).select_from(orders).where(*conditions))
    ).scalar_one()

    result = await session.execute(
        select(orders)
        .where(*conditions)
        .order_by(orders.c.created_at.desc(), orders.c.id.desc())
        .offset(skip)
        .limit(take)
    )
    aggregates = await _build_aggregates(session, result.fetchall())

    return {
        "items": [agg.to_dict() for agg in aggregates],
        "total": total,
        "skip": skip,
        "take": take,
    }
