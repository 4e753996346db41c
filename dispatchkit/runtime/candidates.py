from typing import List

from dispatchkit.directory.interfaces import CourierDirectory
from dispatchkit.ledger.interfaces import AssignmentLedger
from dispatchkit.models import Coordinate, Courier
from dispatchkit.utils.logging import get_logger

logger = get_logger("CandidateFinder")


class CandidateFinder:
    """
    Nearby couriers minus the ones tied to an accepted assignment.
    Being a candidate on an open broadcast does not make a courier busy.
    """
    def __init__(self, directory: CourierDirectory, ledger: AssignmentLedger):
        self.directory = directory
        self.ledger = ledger

    async def find_available(self, delivery_coordinate: Coordinate, radius_m: float) -> List[Courier]:
        nearby = await self.directory.find_within_radius(delivery_coordinate, radius_m)
        if not nearby:
            return []

        busy = await self.ledger.busy_couriers(c.id for c in nearby)
        available = [c for c in nearby if c.id not in busy]
        logger.debug(
            f"{len(nearby)} couriers within {radius_m:.0f}m of "
            f"({delivery_coordinate.latitude}, {delivery_coordinate.longitude}), {len(busy)} busy"
        )
        return available
