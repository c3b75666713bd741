"""
Order Service — 在庫ストア (Product Stock Store)

商品の CRUD は商品管理側の責務。ここでは注文エンジンが必要とする
狭いインターフェースだけを提供する。

在庫の増減は adjust_stock の条件付き UPDATE 1 文で行う:

    UPDATE products
    SET stock_quantity = stock_quantity + :delta
    WHERE id = :id AND stock_quantity + :delta >= 0

「確認してから減らす」を 1 文にまとめることで、同時実行時でも
在庫が負になることはない。コミットは呼び出し側のトランザクションに任せる。
"""

from datetime import datetime, timezone

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InsufficientStock, InvalidInput, ProductNotFound
from .pricing import as_decimal
from .schema import products


def _row_to_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "category": row.category,
        "price": as_decimal(row.price),
        "stock_quantity": row.stock_quantity,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def get_product(session: AsyncSession, product_id: int) -> dict | None:
    result = await session.execute(
        select(products).where(products.c.id == product_id)
    )
    row = result.fetchone()
    if not row:
        return None
    return _row_to_dict(row)


async def require_product(session: AsyncSession, product_id: int) -> dict:
    product = await get_product(session, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


async def get_products(session: AsyncSession, product_ids) -> dict[int, dict]:
    """複数商品をまとめて取得する。存在しない id は結果に含まれない。"""
    ids = set(product_ids)
    if not ids:
        return {}
    result = await session.execute(
        select(products).where(products.c.id.in_(ids))
    )
    return {row.id: _row_to_dict(row) for row in result.fetchall()}


async def list_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(select(products).order_by(products.c.id))
    return [_row_to_dict(row) for row in result.fetchall()]


async def adjust_stock(session: AsyncSession, product_id: int, delta: int) -> dict:
    """
    在庫数を delta だけ増減する（負 = 引き当て、正 = 解放）。

    負にしようとした場合は InsufficientStock、商品が無ければ ProductNotFound。
    戻り値は更新後の商品（同じトランザクション内で読み直したもの）。
    """
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id)
        .where(products.c.stock_quantity + delta >= 0)
        .values(
            stock_quantity=products.c.stock_quantity + delta,
            updated_at=datetime.now(timezone.utc),
        )
    )
    product = await get_product(session, product_id)
    if result.rowcount == 0:
        if product is None:
            raise ProductNotFound(product_id)
        raise InsufficientStock(product_id, product["stock_quantity"], -delta)
    return product


async def create_product(
    session: AsyncSession,
    name: str,
    price,
    stock_quantity: int = 0,
    category: str = "general",
) -> dict:
    """商品を登録する（シードデータ・テスト用。コミットは呼び出し側）。"""
    price = as_decimal(price)
    if price < 0 or stock_quantity < 0:
        raise InvalidInput("price and stock_quantity must not be negative")
    now = datetime.now(timezone.utc)
    result = await session.execute(
        insert(products).values(
            name=name,
            category=category,
            price=price,
            stock_quantity=stock_quantity,
            created_at=now,
            updated_at=now,
        )
    )
    return await require_product(session, result.inserted_primary_key[0])
