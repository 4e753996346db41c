import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional

from dispatchkit.errors import NotFound
from dispatchkit.models import Order, Shop, ShopOrderLine


class OrderStore(ABC):
    """
    The order-management side the engine writes back to. Owned by the
    surrounding application; the engine only links assignments, records
    assignees and looks up who to notify.
    """

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_shop(self, shop_id: str) -> Optional[Shop]:
        pass

    @abstractmethod
    async def link_assignment(self, order_id: str, shop_order_id: str, assignment_id: str) -> None:
        pass

    @abstractmethod
    async def set_assignee(self, order_id: str, shop_order_id: str, courier_id: str) -> None:
        pass

    @abstractmethod
    async def set_status(self, order_id: str, shop_order_id: str, status: str) -> None:
        pass

    @abstractmethod
    async def handle_for_user(self, user_id: str) -> Optional[str]:
        """Live push handle of a customer or shop owner, if connected."""
        pass


class MemoryOrderStore(OrderStore):
    """Dictionary-backed order store for tests and embedding."""

    def __init__(self):
        self.orders: Dict[str, Order] = {}
        self.shops: Dict[str, Shop] = {}
        self.user_handles: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def add_order(self, order: Order) -> None:
        async with self._lock:
            self.orders[order.id] = order

    async def add_shop(self, shop: Shop) -> None:
        async with self._lock:
            self.shops[shop.id] = shop

    async def set_user_handle(self, user_id: str, handle: Optional[str]) -> None:
        async with self._lock:
            if handle:
                self.user_handles[user_id] = handle
            else:
                self.user_handles.pop(user_id, None)

    def _line(self, order_id: str, shop_order_id: str) -> ShopOrderLine:
        order = self.orders.get(order_id)
        line = order.line(shop_order_id) if order else None
        if line is None:
            raise NotFound(f"shop order {shop_order_id} of order {order_id} not found")
        return line

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            order = self.orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    async def get_shop(self, shop_id: str) -> Optional[Shop]:
        return self.shops.get(shop_id)

    async def link_assignment(self, order_id: str, shop_order_id: str, assignment_id: str) -> None:
        async with self._lock:
            self._line(order_id, shop_order_id).assignment_id = assignment_id

    async def set_assignee(self, order_id: str, shop_order_id: str, courier_id: str) -> None:
        async with self._lock:
            self._line(order_id, shop_order_id).assignee = courier_id

    async def set_status(self, order_id: str, shop_order_id: str, status: str) -> None:
        async with self._lock:
            self._line(order_id, shop_order_id).status = status

    async def handle_for_user(self, user_id: str) -> Optional[str]:
        return self.user_handles.get(user_id)
