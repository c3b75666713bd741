"""
Order Service — イベント定義

注文と在庫引き当てに関して発生した事実(イベント)を定義する。
イベントは過去形で命名し、不変(immutable)として扱う。

コミット後に Redis Pub/Sub の order_events チャネルへ発行する。
"""

import json
import logging
from datetime import datetime
from decimal import Decimal

import redis.asyncio as aioredis
from pydantic import BaseModel

from .config import ORDER_EVENTS_CHANNEL

logger = logging.getLogger(__name__)


class ReservedLine(BaseModel):
    product_id: int
    quantity: int


class PlacedLine(BaseModel):
    product_id: int
    quantity: int
    price_at_purchase: Decimal


class OrderPlaced(BaseModel):
    """注文が作成された（在庫は引き当て済み）"""
    order_id: int
    total_price: Decimal
    items: list[PlacedLine]
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """注文ステータスが変わった"""
    order_id: int
    previous_status: str
    status: str
    timestamp: datetime


class OrderRemoved(BaseModel):
    """注文が削除された"""
    order_id: int
    previous_status: str
    timestamp: datetime


class StockReserved(BaseModel):
    """注文のために在庫が引き当てられた"""
    order_id: int
    lines: list[ReservedLine]
    timestamp: datetime


class StockReleased(BaseModel):
    """注文の引き当てが解放された（キャンセル・削除）"""
    order_id: int
    lines: list[ReservedLine]
    reason: str
    timestamp: datetime


def event_type_of(event: BaseModel) -> str:
    return type(event).__name__


async def publish_event(redis: aioredis.Redis | None, event: BaseModel) -> None:
    """
    イベントを Redis に発行する。

    DB はコミット済みなので、発行に失敗しても注文の変更は取り消さない。
    """
    if redis is None:
        return
    try:
        await redis.publish(
            ORDER_EVENTS_CHANNEL,
            json.dumps(
                {
                    "event_type": event_type_of(event),
                    "data": event.model_dump(mode="json"),
                },
                default=str,
            ),
        )
    except Exception:
        logger.exception("Failed to publish %s", event_type_of(event))


async def publish_events(redis: aioredis.Redis | None, events: list[BaseModel]) -> None:
    for event in events:
        await publish_event(redis, event)
