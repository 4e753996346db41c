from typing import Optional

from dispatchkit.directory.interfaces import CourierDirectory
from dispatchkit.errors import NotFound
from dispatchkit.gateway.interfaces import NotificationGateway
from dispatchkit.models import Coordinate, Courier
from dispatchkit.utils.logging import get_logger

logger = get_logger("PresenceTracker")


class PresenceTracker:
    """
    Translates socket-layer events (identify, location heartbeat,
    disconnect) into directory updates.
    """
    def __init__(self, directory: CourierDirectory, gateway: NotificationGateway):
        self.directory = directory
        self.gateway = gateway

    async def identify(self, courier_id: str, handle: str) -> Courier:
        courier = await self.directory.get(courier_id)
        if courier is None:
            raise NotFound(f"courier {courier_id} not found")

        if courier.position is not None:
            return await self.directory.update_position(courier_id, courier.position, handle)

        # No fix yet: remember the channel, position arrives with the first heartbeat
        courier = courier.model_copy(update={"handle": handle, "online": True})
        await self.directory.register(courier)
        return courier

    async def update_location(self, courier_id: str, latitude: float, longitude: float,
                              handle: Optional[str] = None) -> Courier:
        courier = await self.directory.update_position(
            courier_id, Coordinate(longitude=longitude, latitude=latitude), handle
        )
        try:
            await self.gateway.broadcast("updateDeliveryLocation", {
                "deliveryBoyId": courier_id,
                "latitude": latitude,
                "longitude": longitude,
            })
        except Exception as e:
            logger.warning(f"Location broadcast for {courier_id} failed: {e}")
        return courier

    async def disconnect(self, handle: str) -> Optional[Courier]:
        courier = await self.directory.mark_unreachable(handle)
        if courier:
            logger.debug(f"Courier {courier.id} went offline")
        return courier
