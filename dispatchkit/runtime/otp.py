import secrets
from typing import Optional

from dispatchkit.errors import InvalidInput, OtpRejected
from dispatchkit.models import Assignment, Order, ShopOrderLine
from dispatchkit.runtime.codes import CodeStore
from dispatchkit.runtime.coordinator import DispatchCoordinator
from dispatchkit.settings import settings
from dispatchkit.utils.logging import get_logger

logger = get_logger("DeliveryCodeIssuer")

DELIVERED = "delivered"


class DeliveryCodeIssuer:
    """
    Handover check at the door: the customer receives a 4-digit code and
    the courier must enter it before the delivery is completed.
    """
    def __init__(self, coordinator: DispatchCoordinator, store: CodeStore,
                 ttl_seconds: Optional[int] = None):
        self.coordinator = coordinator
        self.store = store
        self.ttl_seconds = ttl_seconds or settings.OTP_TTL_SECONDS

    @staticmethod
    def _key(order: Order, line: ShopOrderLine) -> str:
        return f"{order.id}:{line.id}"

    async def issue(self, order: Order, line: ShopOrderLine) -> str:
        code = str(1000 + secrets.randbelow(9000))
        await self.store.save(self._key(order, line), code, self.ttl_seconds)
        await self.coordinator.notify_user(order.customer_id, "deliveryOtp", {
            "orderId": order.id,
            "shopOrderId": line.id,
            "otp": code,
            "expiresIn": self.ttl_seconds,
        })
        logger.info(f"Issued delivery code for order {order.id} line {line.id}")
        return code

    async def verify(self, order: Order, line: ShopOrderLine, courier_id: str, code: str) -> Optional[Assignment]:
        """
        Check the code, mark the line delivered and complete the assignment.
        Raises InvalidInput when the courier does not hold the line and
        OtpRejected for a wrong or expired code. Neither consumes the code.
        """
        assignment = await self.coordinator.ledger.find_for_line(order.id, line.id)
        if assignment is None or assignment.assignee != courier_id:
            raise InvalidInput(f"courier {courier_id} is not delivering order {order.id} line {line.id}")

        key = self._key(order, line)
        expected = await self.store.get(key)
        if expected is None or not secrets.compare_digest(expected, code):
            logger.info(f"Rejected delivery code for order {order.id} line {line.id}")
            raise OtpRejected(f"bad delivery code for order {order.id} line {line.id}")

        completed = await self.coordinator.resolve_completion(order, line, courier_id)
        if completed is None:
            return None

        await self.store.delete(key)
        await self.coordinator.orders.set_status(order.id, line.id, DELIVERED)
        return completed
