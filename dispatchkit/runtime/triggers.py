from typing import Dict, Optional

from dispatchkit.errors import NotFound
from dispatchkit.models import Assignment, DispatchResult, Order, Shop, ShopOrderLine
from dispatchkit.runtime.coordinator import DispatchCoordinator
from dispatchkit.settings import settings
from dispatchkit.utils.logging import get_logger

logger = get_logger("DispatchTriggers")

OUT_FOR_DELIVERY = "out of delivery"


class DispatchTriggers:
    """
    Entry points called by the order-management layer. Maps each business
    event onto the coordinator with the radius that event calls for.
    """
    def __init__(self, coordinator: DispatchCoordinator,
                 wide_radius_m: Optional[float] = None,
                 narrow_radius_m: Optional[float] = None):
        self.coordinator = coordinator
        self.orders = coordinator.orders
        self.wide_radius_m = wide_radius_m or settings.WIDE_RADIUS_M
        self.narrow_radius_m = narrow_radius_m or settings.NARROW_RADIUS_M

    async def _shop_for(self, line: ShopOrderLine) -> Shop:
        shop = await self.orders.get_shop(line.shop_id)
        if shop is None:
            raise NotFound(f"shop {line.shop_id} not found")
        return shop

    async def on_order_confirmed_for_delivery(self, order: Order) -> Dict[str, DispatchResult]:
        """Pay-on-delivery order placed or payment confirmed: dispatch every line wide."""
        results = {}
        for line in order.lines:
            shop = await self._shop_for(line)
            results[line.id] = await self.coordinator.dispatch(order, line, shop, self.wide_radius_m)
        return results

    async def on_shop_marked_out_for_delivery(self, order: Order, line: ShopOrderLine) -> Optional[DispatchResult]:
        """
        Shop handed the line over. Re-dispatch with the narrow radius unless
        the line already has an assignment; the customer gets a status push
        either way.
        """
        await self.orders.set_status(order.id, line.id, OUT_FOR_DELIVERY)

        result = None
        existing = line.assignment_id or await self.coordinator.ledger.find_for_line(order.id, line.id)
        if existing is None:
            shop = await self._shop_for(line)
            result = await self.coordinator.dispatch(order, line, shop, self.narrow_radius_m)
            if result.no_candidates:
                logger.info(f"Order {order.id} line {line.id} is out for delivery with no courier available")

        await self.coordinator.notify_user(order.customer_id, "update-status", {
            "orderId": order.id,
            "shopId": line.shop_id,
            "status": OUT_FOR_DELIVERY,
        })
        return result

    async def on_courier_accept_request(self, assignment_id: str, courier_id: str) -> Assignment:
        return await self.coordinator.resolve_acceptance(assignment_id, courier_id)

    async def on_delivery_confirmed(self, order: Order, line: ShopOrderLine, courier_id: str) -> Optional[Assignment]:
        return await self.coordinator.resolve_completion(order, line, courier_id)
