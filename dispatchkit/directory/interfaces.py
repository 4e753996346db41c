from abc import ABC, abstractmethod
from typing import List, Optional

from dispatchkit.models import Coordinate, Courier


class CourierDirectory(ABC):
    """
    Live position and reachability per courier.

    The account store decides who exists: ``register`` seeds a courier,
    heartbeats only ever update known ones.
    """

    @abstractmethod
    async def register(self, courier: Courier) -> None:
        """Add or replace a courier account."""
        pass

    @abstractmethod
    async def get(self, courier_id: str) -> Optional[Courier]:
        pass

    @abstractmethod
    async def update_position(self, courier_id: str, coordinate: Coordinate,
                              handle: Optional[str] = None) -> Courier:
        """
        Record a heartbeat. Marks the courier online and remembers the
        handle when one is supplied. Raises NotFound for unknown ids.
        """
        pass

    @abstractmethod
    async def mark_unreachable(self, handle_or_courier_id: str) -> Optional[Courier]:
        """Clear the handle and set offline. Unknown keys are a no-op."""
        pass

    @abstractmethod
    async def find_within_radius(self, center: Coordinate, radius_m: float) -> List[Courier]:
        """
        All couriers within ``radius_m`` metres of ``center``, nearest first.
        The online flag is not consulted.
        """
        pass
