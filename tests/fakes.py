"""Test doubles shared by the cart tests."""
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from storefront.cart.models import LineItem, LineKey, StockStatus
from storefront.cart.remote import RemoteCartClient



@dataclass
class RemoteCall:
    """One call received by FakeRemoteCart; resolve it from the test."""
    op: str
    key: Optional[LineKey]
    quantity: Optional[int]
    future: asyncio.Future = field(repr=False)

    def succeed(self, result=None) -> None:
        self.future.set_result(result)

    def fail(self, error: Exception) -> None:
        self.future.set_exception(error)


class FakeRemoteCart(RemoteCartClient):
    """
    Scripted remote cart.

    Manual mode (default): every call parks on a future the test resolves,
    so responses can be delivered in any order.
    Auto mode: calls apply to an in-memory server cart at once; queued
    errors in ``failures`` are raised first, one per call.
    """

    def __init__(self, auto: bool = False, catalog: Optional[Dict[LineKey, LineItem]] = None):
        self.auto = auto
        self.calls: List[RemoteCall] = []
        self.failures: List[Exception] = []
        self.server: Dict[LineKey, LineItem] = {}
        self.catalog = catalog or {}
        self.stock_limit: Dict[LineKey, int] = {}

    async def _dispatch(self, op: str, key: Optional[LineKey], quantity: Optional[int]):
        call = RemoteCall(op, key, quantity, asyncio.get_running_loop().create_future())
        self.calls.append(call)
        if not self.auto:
            return await call.future
        if self.failures:
            raise self.failures.pop(0)
        return self._apply(op, key, quantity)

    def _apply(self, op, key, quantity):
        if op == "list":
            return list(self.server.values())
        if op == "remove":
            self.server.pop(key, None)
            return None
        base = self.server.get(key) or self.catalog[key]
        limit = self.stock_limit.get(key)
        if limit is not None:
            quantity = min(quantity, limit)
        self.server[key] = base.with_quantity(quantity)
        return self.server[key]

    def ops(self) -> List[str]:
        return [call.op for call in self.calls]

    async def list(self):
        return await self._dispatch("list", None, None)

    async def add(self, key, quantity):
        return await self._dispatch("add", key, quantity)

    async def update_quantity(self, key, quantity):
        return await self._dispatch("update", key, quantity)

    async def remove(self, key):
        return await self._dispatch("remove", key, None)


async def spin(times: int = 10) -> None:
    """Let scheduled sync tasks run until they park on the fake remote."""
    for _ in range(times):
        await asyncio.sleep(0)


def make_item(
    product_id: str = "prod-a",
    quantity: int = 1,
    unit_price: str = "100.00",
    variant_key: str = "",
    stock_status: StockStatus = StockStatus.IN_STOCK,
    stock_count: int = 50,
    **kwargs,
) -> LineItem:
    return LineItem(
        product_id=product_id,
        quantity=quantity,
        unit_price=Decimal(unit_price),
        variant_key=variant_key,
        stock_status=stock_status,
        stock_count=stock_count,
        **kwargs,
    )


