"""
Order Service — FastAPI エントリーポイント

CQRS パターンに従い、Command (POST/PATCH/DELETE) と Query (GET) を分離。
入力値の検証はここ（境界）で行い、ドメイン例外は HTTP ステータスに変換する。
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import commands, event_store, queries, stock
from .aggregate import OrderStatus
from .config import DATABASE_URL, DB_ECHO, LOG_LEVEL, ORDER_PAGE_SIZE, REDIS_URL
from .db import create_engine, create_schema, create_session_factory
from .errors import (
    ConcurrentModification,
    InsufficientStock,
    InvalidInput,
    InvalidTransition,
    NotFoundError,
    OrderServiceError,
)

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, echo=DB_ECHO)
async_session = create_session_factory(engine)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    await create_schema(engine)
    if REDIS_URL:
        redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    else:
        logger.info("REDIS_URL is not set, order events will not be published")
    yield
    if redis_pool is not None:
        await redis_pool.aclose()
        redis_pool = None
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Error Mapping ────────────────────────────────

ERROR_STATUS = (
    (NotFoundError, 404),
    (InsufficientStock, 409),
    (InvalidTransition, 409),
    (ConcurrentModification, 409),
    (InvalidInput, 400),
)


@app.exception_handler(OrderServiceError)
async def handle_order_service_error(request: Request, exc: OrderServiceError):
    status_code = next(
        (code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ── Request Models ───────────────────────────────

class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class CreateOrderRequest(BaseModel):
    items: list[OrderItemRequest] = Field(min_length=1)


class UpdateOrderRequest(BaseModel):
    status: OrderStatus


# ── Command Endpoints (Write 側) ─────────────────

@app.post("/orders", status_code=201)
async def cmd_place_order(req: CreateOrderRequest):
    """注文作成コマンド（在庫の引き当てを含む）"""
    async with async_session() as session:
        return await commands.place_order(
            session, redis_pool, [item.model_dump() for item in req.items]
        )


@app.patch("/orders/{order_id}")
async def cmd_update_order(order_id: int, req: UpdateOrderRequest):
    """注文ステータス更新コマンド（Cancelled なら在庫を解放）"""
    async with async_session() as session:
        return await commands.update_order_status(
            session, redis_pool, order_id, req.status
        )


@app.delete("/orders/{order_id}")
async def cmd_remove_order(order_id: int):
    """注文削除コマンド（未キャンセルなら在庫を解放してから削除）"""
    async with async_session() as session:
        return await commands.remove_order(session, redis_pool, order_id)


# ── Query Endpoints (Read 側) ────────────────────

@app.get("/orders")
async def query_list_orders(
    skip: int = Query(0, ge=0),
    take: int = Query(ORDER_PAGE_SIZE, ge=1),
    status: OrderStatus | None = None,
):
    async with async_session() as session:
        return await queries.list_orders(session, skip=skip, take=take, status=status)


@app.get("/orders/{order_id}")
async def query_get_order(order_id: int):
    async with async_session() as session:
        return await queries.get_order(session, order_id)


@app.get("/products")
async def query_list_products():
    """商品と現在の在庫数（参照のみ）"""
    async with async_session() as session:
        return await stock.list_products(session)


@app.get("/products/{product_id}")
async def query_get_product(product_id: int):
    async with async_session() as session:
        return await stock.require_product(session, product_id)


# ── Event Store (監査・デバッグ用) ───────────────

@app.get("/events")
async def get_all_events():
    async with async_session() as session:
        return await event_store.load_all_events(session)


@app.get("/events/{aggregate_id}")
async def get_aggregate_events(aggregate_id: str):
    async with async_session() as session:
        return await event_store.load_events(session, aggregate_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
