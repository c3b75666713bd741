"""
Order Service — ドメイン例外

エンジンは例外を送出するだけで、HTTP ステータスへの変換は main.py が行う。
"""


class OrderServiceError(Exception):
    """注文サービスの全例外の基底クラス"""

    code = "order_service_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class NotFoundError(OrderServiceError):
    code = "not_found"


class ProductNotFound(NotFoundError):
    code = "product_not_found"

    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class OrderNotFound(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id: int) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class InsufficientStock(OrderServiceError):
    """在庫不足（クライアント側で数量を直せば成功しうる）"""

    code = "insufficient_stock"

    def __init__(self, product_id: int, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available={available}, requested={requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            product_id=self.product_id,
            available=self.available,
            requested=self.requested,
        )
        return data


class InvalidInput(OrderServiceError):
    code = "invalid_input"


class InvalidTransition(OrderServiceError):
    code = "invalid_transition"

    def __init__(self, order_id: int, current: str, requested: str) -> None:
        super().__init__(
            f"Order {order_id} cannot move from {current} to {requested}"
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested


class ConcurrentModification(OrderServiceError):
    """再試行しても楽観ロックの競合が解消しなかった"""

    code = "concurrent_modification"

    def __init__(self, order_id: int) -> None:
        super().__init__(f"Order {order_id} was modified concurrently")
        self.order_id = order_id

