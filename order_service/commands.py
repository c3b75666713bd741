"""
Order Service — コマンドハンドラ (CQRS の Write 側)

1 コマンド = 1 トランザクション。在庫の引き当て・解放、注文テーブルの更新、
イベントストアへの追記を同じトランザクションで行い、コミット後に
Redis Pub/Sub でイベントを発行する。

途中で失敗した場合はロールバックするので、一部の商品だけ在庫が
減ったまま残ることはない。

状態更新と削除は「現在のステータスが読んだ値のままなら書き込む」
条件付き UPDATE / DELETE で行う。競合した場合は読み直して再試行する。
これにより同じ注文の在庫解放が二重に走ることはない。
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy import delete, insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import event_store, queries, stock
from .aggregate import OrderAggregate, OrderStatus, parse_status
from .config import ORDER_MAX_RETRIES
from .errors import (
    ConcurrentModification,
    InsufficientStock,
    InvalidInput,
    OrderServiceError,
    ProductNotFound,
)
from .events import (
    OrderPlaced,
    OrderRemoved,
    OrderStatusChanged,
    PlacedLine,
    ReservedLine,
    StockReleased,
    StockReserved,
    publish_events,
)
from .pricing import calculate_total
from .schema import order_items, orders

logger = logging.getLogger(__name__)

AGGREGATE_TYPE = "Order"


def _validate_items(items) -> list[tuple[int, int]]:
    if not items:
        raise InvalidInput("items must not be empty")
    lines = []
    for item in items:
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if product_id is None or quantity is None:
            raise InvalidInput(f"each item needs product_id and quantity: {item!r}")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidInput(
                f"quantity must be a positive integer (product {product_id}): {quantity!r}"
            )
        lines.append((product_id, quantity))
    return lines


def _group_by_product(lines: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """同じ商品の数量を合算し、商品 id 昇順に並べる（ロック順序を固定する）。"""
    totals: dict[int, int] = defaultdict(int)
    for product_id, quantity in lines:
        totals[product_id] += quantity
    return sorted(totals.items())


async def _release(session: AsyncSession, order_id: int, lines: list[ReservedLine]) -> None:
    for line in lines:
        try:
            await stock.adjust_stock(session, line.product_id, line.quantity)
        except ProductNotFound:
            # 商品が商品管理側で削除済みなら戻し先が無い
            logger.warning(
                "Order %s: product %s no longer exists, %s units not returned",
                order_id, line.product_id, line.quantity,
            )


async def place_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    items,
) -> dict:
    """
    注文作成コマンド

    1. 在庫を事前チェック（リクエスト順。存在しない商品・在庫不足を早期に返す）
    2. 条件付き UPDATE で在庫を引き当て（ここが本当の判定）
    3. 引き当て時点の単価をスナップショットして合計金額を計算
    4. 注文・明細・イベントを書き込んでコミット
    5. Redis Pub/Sub でイベントを発行
    """
    lines = _validate_items(items)
    now = datetime.now(timezone.utc)

    try:
        for product_id, quantity in lines:
            product = await stock.require_product(session, product_id)
            if quantity > product["stock_quantity"]:
                raise InsufficientStock(product_id, product["stock_quantity"], quantity)

        prices = {}
        for product_id, quantity in _group_by_product(lines):
            product = await stock.adjust_stock(session, product_id, -quantity)
            prices[product_id] = product["price"]

        total_price = calculate_total((prices[pid], qty) for pid, qty in lines)

        result = await session.execute(
            insert(orders).values(
                status=OrderStatus.PENDING.value,
                total_price=total_price,
                created_at=now,
                updated_at=now,
            )
        )
        order_id = result.inserted_primary_key[0]

        await session.execute(
            insert(order_items),
            [
                {
                    "order_id": order_id,
                    "product_id": pid,
                    "quantity": qty,
                    "price_at_purchase": prices[pid],
                }
                for pid, qty in lines
            ],
        )

        events = [
            OrderPlaced(
                order_id=order_id,
                total_price=total_price,
                items=[
                    PlacedLine(product_id=pid, quantity=qty, price_at_purchase=prices[pid])
                    for pid, qty in lines
                ],
                timestamp=now,
            ),
            StockReserved(
                order_id=order_id,
                lines=[
                    ReservedLine(product_id=pid, quantity=qty)
                    for pid, qty in _group_by_product(lines)
                ],
                timestamp=now,
            ),
        ]
        await event_store.append_events(session, order_id, AGGREGATE_TYPE, events)

        agg = await queries.load_order(session, order_id)
        await session.commit()
    except OrderServiceError as e:
        await session.rollback()
        logger.warning("Order placement rejected: %s", e)
        raise
    except Exception:
        await session.rollback()
        raise

    logger.info("Order %s placed: total=%s items=%d", order_id, total_price, len(lines))
    await publish_events(redis, events)
    return agg.to_dict()


async def update_order_status(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: int,
    status,
) -> dict:
    """
    注文ステータス更新コマンド

    Cancelled への遷移時のみ在庫を解放する。同じステータスの再適用は
    何もしない（在庫も二重に戻さない）。
    """
    new_status = parse_status(status)

    for attempt in range(1, ORDER_MAX_RETRIES + 1):
        try:
            agg = await queries.load_order(session, order_id, for_update=True)
            if not agg.plan_transition(new_status):
                await session.commit()
                return agg.to_dict()

            now = datetime.now(timezone.utc)
            result = await session.execute(
                update(orders)
                .where(orders.c.id == order_id)
                .where(orders.c.status == agg.status.value)
                .values(status=new_status.value, updated_at=now)
            )
            if result.rowcount == 0:
                await session.rollback()
                logger.info(
                    "Order %s changed concurrently, retrying (attempt %d)",
                    order_id, attempt,
                )
                continue

            events = [
                OrderStatusChanged(
                    order_id=order_id,
                    previous_status=agg.status.value,
                    status=new_status.value,
                    timestamp=now,
                )
            ]
            if agg.releases_stock_on(new_status):
                lines = agg.reserved_lines()
                await _release(session, order_id, lines)
                events.append(
                    StockReleased(
                        order_id=order_id, lines=lines, reason="cancelled", timestamp=now
                    )
                )
            await event_store.append_events(session, order_id, AGGREGATE_TYPE, events)

            updated = await queries.load_order(session, order_id)
            await session.commit()
        except OrderServiceError as e:
            await session.rollback()
            logger.warning("Status update of order %s rejected: %s", order_id, e)
            raise
        except Exception:
            await session.rollback()
            raise

        logger.info(
            "Order %s status changed: %s -> %s",
            order_id, agg.status.value, new_status.value,
        )
        await publish_events(redis, events)
        return updated.to_dict()

    raise ConcurrentModification(order_id)


async def remove_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: int,
) -> dict:
    """
    注文削除コマンド

    キャンセル済みでなければ、削除と同じトランザクションで在庫を解放する。
    戻り値は削除前の注文。
    """
    for attempt in range(1, ORDER_MAX_RETRIES + 1):
        try:
            agg: OrderAggregate = await queries.load_order(session, order_id, for_update=True)
            snapshot = agg.to_dict()

            result = await session.execute(
                delete(orders)
                .where(orders.c.id == order_id)
                .where(orders.c.status == agg.status.value)
            )
            if result.rowcount == 0:
                await session.rollback()
                logger.info(
                    "Order %s changed concurrently, retrying removal (attempt %d)",
                    order_id, attempt,
                )
                continue
            await session.execute(
                delete(order_items).where(order_items.c.order_id == order_id)
            )

            now = datetime.now(timezone.utc)
            events = [
                OrderRemoved(
                    order_id=order_id, previous_status=agg.status.value, timestamp=now
                )
            ]
            if agg.holds_reservation:
                lines = agg.reserved_lines()
                await _release(session, order_id, lines)
                events.append(
                    StockReleased(
                        order_id=order_id, lines=lines, reason="removed", timestamp=now
                    )
                )
            await event_store.append_events(session, order_id, AGGREGATE_TYPE, events)
            await session.commit()
        except OrderServiceError as e:
            await session.rollback()
            logger.warning("Removal of order %s rejected: %s", order_id, e)
            raise
        except Exception:
            await session.rollback()
            raise

        logger.info("Order %s removed (was %s)", order_id, agg.status.value)
        await publish_events(redis, events)
        return snapshot

    raise ConcurrentModification(order_id)
