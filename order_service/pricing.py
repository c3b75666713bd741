"""
Order Service — 価格計算

純粋関数のみ。Decimal で計算するので浮動小数点の丸め誤差は入らない。
"""

from collections.abc import Iterable
from decimal import Decimal

from .errors import InvalidInput


def as_decimal(value) -> Decimal:
    """DB ドライバごとの差（Decimal / float / int / str）を吸収する。"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def line_subtotal(unit_price, quantity: int) -> Decimal:
    price = as_decimal(unit_price)
    if price < 0:
        raise InvalidInput(f"unit price must not be negative: {price}")
    if quantity < 0:
        raise InvalidInput(f"quantity must not be negative: {quantity}")
    return price * quantity


def calculate_total(lines: Iterable[tuple]) -> Decimal:
    """(unit_price, quantity) の列から合計金額を求める。"""
    return sum(
        (line_subtotal(price, qty) for price, qty in lines),
        Decimal("0"),
    )
