"""
Order Service — 注文集約 (Order Aggregate)

注文 1 件とその明細を保持し、ステータス遷移の可否と
在庫解放が必要かどうかを判断する。DB には触らない。
"""

from collections import defaultdict
from decimal import Decimal
from enum import Enum

from .errors import InvalidInput, InvalidTransition
from .events import ReservedLine
from .pricing import as_decimal


class OrderStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidInput(f"unknown order status: {value!r}") from None


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.CANCELLED: frozenset(),
}


class OrderAggregate:
    """
    注文集約

    状態遷移:
        Pending   → Completed  (在庫は作成時に引き当て済みなので変化なし)
        Pending   → Cancelled  (在庫を解放)
        Completed → Cancelled  (在庫を解放)
    """

    def __init__(self) -> None:
        self.id: int | None = None
        self.status: OrderStatus = OrderStatus.PENDING
        self.total_price: Decimal = Decimal("0")
        self.created_at = None
        self.updated_at = None
        self.items: list[dict] = []

    @property
    def holds_reservation(self) -> bool:
        return self.status is not OrderStatus.CANCELLED

    def plan_transition(self, new_status: OrderStatus) -> bool:
        """
        遷移を検証する。変化があれば True、同じステータスなら False。
        遷移表に無い遷移は InvalidTransition。
        """
        new_status = parse_status(new_status)
        if new_status is self.status:
            return False
        if new_status not in TRANSITIONS[self.status]:
            raise InvalidTransition(self.id, self.status.value, new_status.value)
        return True

    def releases_stock_on(self, new_status: OrderStatus) -> bool:
        return self.holds_reservation and parse_status(new_status) is OrderStatus.CANCELLED

    def reserved_lines(self) -> list[ReservedLine]:
        """商品ごとに数量をまとめ、商品 id 昇順で返す（ロック順序を固定するため）。"""
        totals: dict[int, int] = defaultdict(int)
        for item in self.items:
            totals[item["product_id"]] += item["quantity"]
        return [
            ReservedLine(product_id=pid, quantity=qty)
            for pid, qty in sorted(totals.items())
        ]

    @classmethod
    def from_rows(cls, order_row, item_rows, products_by_id: dict | None = None) -> "OrderAggregate":
        agg = cls()
        agg.id = order_row.id
        agg.status = OrderStatus(order_row.status)
        agg.total_price = as_decimal(order_row.total_price)
        agg.created_at = order_row.created_at
        agg.updated_at = order_row.updated_at
        products_by_id = products_by_id or {}
        agg.items = [
            {
                "id": row.id,
                "product_id": row.product_id,
                "quantity": row.quantity,
                "price_at_purchase": as_decimal(row.price_at_purchase),
                "product": products_by_id.get(row.product_id),
            }
            for row in item_rows
        ]
        return agg

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "total_price": self.total_price,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "items": [dict(item) for item in self.items],
        }
