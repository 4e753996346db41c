import asyncio
from typing import Any, Dict, List, Optional

from dispatchkit.directory.interfaces import CourierDirectory
from dispatchkit.errors import DispatchError, NotFound
from dispatchkit.gateway.interfaces import NotificationGateway
from dispatchkit.ledger.interfaces import AssignmentLedger
from dispatchkit.models import Assignment, Courier, DispatchResult, Order, Shop, ShopOrderLine
from dispatchkit.orders import OrderStore
from dispatchkit.runtime.candidates import CandidateFinder
from dispatchkit.utils.logging import get_logger
from dispatchkit.utils.metrics import MetricsManager
from dispatchkit.utils.tracing import get_tracer

logger = get_logger("DispatchCoordinator")


def offer_payload(assignment: Assignment, order: Order, line: ShopOrderLine, shop: Shop) -> Dict[str, Any]:
    """The job description a courier sees in a newAssignment push or their offer list."""
    return {
        "assignmentId": assignment.id,
        "orderId": order.id,
        "shopName": shop.name,
        "deliveryAddress": order.delivery_address.model_dump(),
        "items": [
            {"name": item.name, "quantity": item.quantity, "price": item.price}
            for item in line.items
        ],
        "subtotal": line.subtotal,
    }


class DispatchCoordinator:
    """
    Orchestrates dispatch, acceptance and completion.

    The only component with side effects outside the ledger: it pushes
    notifications and writes back to the order store. Ledger errors
    propagate unchanged; push failures are logged and dropped.

    Attributes:
        directory (CourierDirectory): Courier positions and handles.
        ledger (AssignmentLedger): Assignment records.
        gateway (NotificationGateway): Push channel.
        orders (OrderStore): Order-management write-back.
    """
    def __init__(self, directory: CourierDirectory, ledger: AssignmentLedger,
                 gateway: NotificationGateway, orders: OrderStore,
                 finder: Optional[CandidateFinder] = None):
        self.directory = directory
        self.ledger = ledger
        self.gateway = gateway
        self.orders = orders
        self.finder = finder or CandidateFinder(directory, ledger)
        self.tracer = get_tracer("dispatchkit.coordinator")

        metrics = MetricsManager()
        self.dispatch_attempts = metrics.counter("dispatch_attempts_total")
        self.no_candidates = metrics.counter("dispatch_no_candidates_total")
        self.accepted_total = metrics.counter("assignments_accepted_total")
        self.rejected_total = metrics.counter("accept_rejected_total")
        self.completed_total = metrics.counter("deliveries_completed_total")
        self.push_failures = metrics.counter("notifications_failed_total")

    async def notify(self, handle: Optional[str], event: str, payload: Dict[str, Any]) -> bool:
        """Best-effort push. Returns False instead of raising."""
        if not handle:
            return False
        try:
            await self.gateway.push(handle, event, payload)
            return True
        except Exception as e:
            self.push_failures.inc()
            logger.warning(f"Push of '{event}' to {handle} failed: {e}")
            return False

    async def notify_user(self, user_id: Optional[str], event: str, payload: Dict[str, Any]) -> bool:
        if not user_id:
            return False
        try:
            handle = await self.orders.handle_for_user(user_id)
        except Exception as e:
            self.push_failures.inc()
            logger.warning(f"Handle lookup for user {user_id} failed: {e}")
            return False
        return await self.notify(handle, event, payload)

    async def _shop_owner(self, shop_id: str) -> Optional[str]:
        try:
            shop = await self.orders.get_shop(shop_id)
        except Exception as e:
            logger.warning(f"Shop lookup for {shop_id} failed: {e}")
            return None
        return shop.owner_id if shop else None

    async def dispatch(self, order: Order, line: ShopOrderLine, shop: Shop, radius_m: float) -> DispatchResult:
        """
        Broadcast one shop's part of an order to free couriers within
        ``radius_m`` of the delivery address.

        Returns a result with ``no_candidates`` set when nobody was free;
        no assignment is created in that case.
        Raises NotFound when the order store does not hold the line, before
        anything is written.
        """
        with self.tracer.start_as_current_span("dispatch") as span:
            span.set_attribute("order.id", order.id)
            span.set_attribute("dispatch.radius_m", radius_m)
            self.dispatch_attempts.inc()

            stored = await self.orders.get_order(order.id)
            if stored is None or stored.line(line.id) is None:
                raise NotFound(f"shop order {line.id} of order {order.id} not found")

            candidates = await self.finder.find_available(order.delivery_address.coordinate, radius_m)
            if not candidates:
                self.no_candidates.inc()
                logger.info(f"No free couriers within {radius_m:.0f}m for order {order.id} line {line.id}")
                return DispatchResult()

            assignment = await self.ledger.create(order.id, line.id, shop.id, [c.id for c in candidates])
            await self.orders.link_assignment(order.id, line.id, assignment.id)
            span.set_attribute("assignment.id", assignment.id)

            payload = offer_payload(assignment, order, line, shop)
            sent = await asyncio.gather(*[
                self.notify(courier.handle, "newAssignment", {"sentTo": courier.id, **payload})
                for courier in candidates
            ])
            logger.info(
                f"Assignment {assignment.id} for order {order.id} broadcast to "
                f"{len(candidates)} couriers ({sum(sent)} reached)"
            )
            return DispatchResult(assignment=assignment, candidates=candidates)

    async def resolve_acceptance(self, assignment_id: str, courier_id: str) -> Assignment:
        """
        First atomic accept wins. NotFound, AlreadyResolved, CourierBusy and
        InvalidInput from the ledger reach the caller as-is.
        """
        with self.tracer.start_as_current_span("resolve_acceptance") as span:
            span.set_attribute("assignment.id", assignment_id)
            span.set_attribute("courier.id", courier_id)
            try:
                assignment = await self.ledger.accept(assignment_id, courier_id)
            except DispatchError as e:
                self.rejected_total.inc()
                logger.info(f"Courier {courier_id} could not accept {assignment_id}: {e}")
                raise

            await self.orders.set_assignee(assignment.order_id, assignment.shop_order_id, courier_id)
            self.accepted_total.inc()
            logger.info(f"Assignment {assignment_id} accepted by courier {courier_id}")
            return assignment

    async def resolve_completion(self, order: Order, line: ShopOrderLine, courier_id: str) -> Optional[Assignment]:
        """
        Close the courier's assignment for this line and tell the shop owner
        and the customer. A repeated call completes nothing and sends nothing.
        """
        with self.tracer.start_as_current_span("resolve_completion") as span:
            span.set_attribute("order.id", order.id)
            completed = await self.ledger.complete(order.id, line.id, courier_id)
            if completed is None:
                logger.debug(f"Nothing to complete for order {order.id} line {line.id} courier {courier_id}")
                return None

            self.completed_total.inc()
            logger.info(f"Order {order.id} line {line.id} delivered by courier {courier_id}")

            await self.notify_user(await self._shop_owner(line.shop_id), "orderDelivered", {
                "orderId": order.id,
                "shopOrderId": line.id,
                "message": "Order has been delivered successfully!",
            })
            await self.notify_user(order.customer_id, "orderDelivered", {
                "orderId": order.id,
                "shopOrderId": line.id,
                "message": "Your order has been delivered!",
            })
            return completed

    async def pending_offers(self, courier_id: str) -> List[Dict[str, Any]]:
        """Open broadcasts for a courier, shaped like the push payload."""
        offers = []
        for assignment in await self.ledger.find_active_for_courier(courier_id):
            order = await self.orders.get_order(assignment.order_id)
            line = order.line(assignment.shop_order_id) if order else None
            shop = await self.orders.get_shop(assignment.shop_id)
            if order is None or line is None or shop is None:
                logger.warning(f"Assignment {assignment.id} refers to a missing order or shop")
                continue
            offers.append(offer_payload(assignment, order, line, shop))
        return offers

    async def current_job(self, courier_id: str) -> Optional[Dict[str, Any]]:
        """The courier's accepted assignment with both ends' locations."""
        assignment = await self.ledger.find_accepted_for_courier(courier_id)
        if assignment is None:
            return None
        order = await self.orders.get_order(assignment.order_id)
        line = order.line(assignment.shop_order_id) if order else None
        if order is None or line is None:
            return None

        courier: Optional[Courier] = await self.directory.get(courier_id)
        position = courier.position if courier else None
        address = order.delivery_address
        return {
            "assignmentId": assignment.id,
            "orderId": order.id,
            "customerId": order.customer_id,
            "shopOrder": line.model_dump(),
            "deliveryAddress": address.model_dump(),
            "deliveryBoyLocation": {
                "lat": position.latitude if position else None,
                "lon": position.longitude if position else None,
            },
            "customerLocation": {"lat": address.latitude, "lon": address.longitude},
        }
