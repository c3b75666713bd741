"""
Order Service — イベントストア

注文テーブルと同じトランザクションでイベントを追記する。
バージョン番号による楽観的ロックで同時書き込みを防ぐ。
"""

import json
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .events import event_type_of
from .schema import event_store


async def append_event(
    session: AsyncSession,
    aggregate_id,
    aggregate_type: str,
    event: BaseModel,
    expected_version: int,
) -> int:
    """
    イベントをストアに追記する。

    expected_version で楽観的ロックを実現:
    同じ aggregate_id + version の組み合わせが既に存在すると
    UNIQUE 制約違反で失敗する → 競合を検知できる。
    """
    new_version = expected_version + 1
    await session.execute(
        insert(event_store).values(
            aggregate_id=str(aggregate_id),
            aggregate_type=aggregate_type,
            event_type=event_type_of(event),
            event_data=json.dumps(event.model_dump(mode="json"), default=str),
            version=new_version,
            created_at=datetime.now(timezone.utc),
        )
    )
    return new_version


async def current_version(session: AsyncSession, aggregate_id, aggregate_type: str) -> int:
    result = await session.execute(
        select(func.max(event_store.c.version)).where(
            event_store.c.aggregate_id == str(aggregate_id),
            event_store.c.aggregate_type == aggregate_type,
        )
    )
    return result.scalar() or 0


async def append_events(
    session: AsyncSession,
    aggregate_id,
    aggregate_type: str,
    events: list[BaseModel],
) -> int:
    version = await current_version(session, aggregate_id, aggregate_type)
    for event in events:
        version = await append_event(session, aggregate_id, aggregate_type, event, version)
    return version


def _row_to_dict(row) -> dict:
    return {
        "aggregate_id": row.aggregate_id,
        "aggregate_type": row.aggregate_type,
        "event_type": row.event_type,
        "event_data": json.loads(row.event_data)
        if isinstance(row.event_data, str)
        else row.event_data,
        "version": row.version,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def load_events(session: AsyncSession, aggregate_id) -> list[dict]:
    """指定した集約の全イベントをバージョン順に読み出す。"""
    result = await session.execute(
        select(event_store)
        .where(event_store.c.aggregate_id == str(aggregate_id))
        .order_by(event_store.c.aggregate_type, event_store.c.version)
    )
    return [_row_to_dict(row) for row in result.fetchall()]


async def load_all_events(session: AsyncSession) -> list[dict]:
    """すべてのイベントを時系列順に返す（監査・デバッグ用）。"""
    result = await session.execute(
        select(event_store).order_by(event_store.c.created_at, event_store.c.id)
    )
    return [_row_to_dict(row) for row in result.fetchall()]
