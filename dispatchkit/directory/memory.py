import asyncio
from typing import Dict, List, Optional

from dispatchkit.directory.interfaces import CourierDirectory
from dispatchkit.errors import NotFound
from dispatchkit.geo import distance_m
from dispatchkit.models import Coordinate, Courier


class MemoryCourierDirectory(CourierDirectory):
    """
    In-memory directory. Proximity is a linear haversine scan, fine for
    tests and single-process deployments.
    """
    def __init__(self):
        self._couriers: Dict[str, Courier] = {}
        self._by_handle: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def register(self, courier: Courier) -> None:
        async with self._lock:
            previous = self._couriers.get(courier.id)
            if previous and previous.handle and previous.handle != courier.handle:
                self._by_handle.pop(previous.handle, None)
            self._couriers[courier.id] = courier.model_copy()
            if courier.handle:
                self._by_handle[courier.handle] = courier.id

    async def get(self, courier_id: str) -> Optional[Courier]:
        async with self._lock:
            courier = self._couriers.get(courier_id)
            return courier.model_copy() if courier else None

    async def update_position(self, courier_id: str, coordinate: Coordinate,
                              handle: Optional[str] = None) -> Courier:
        async with self._lock:
            courier = self._couriers.get(courier_id)
            if courier is None:
                raise NotFound(f"courier {courier_id} not found")

            courier.position = coordinate
            courier.online = True
            if handle:
                if courier.handle and courier.handle != handle:
                    self._by_handle.pop(courier.handle, None)
                courier.handle = handle
                self._by_handle[handle] = courier_id
            return courier.model_copy()

    async def mark_unreachable(self, handle_or_courier_id: str) -> Optional[Courier]:
        async with self._lock:
            courier_id = self._by_handle.pop(handle_or_courier_id, handle_or_courier_id)
            courier = self._couriers.get(courier_id)
            if courier is None:
                return None

            if courier.handle:
                self._by_handle.pop(courier.handle, None)
            courier.handle = None
            courier.online = False
            return courier.model_copy()

    async def find_within_radius(self, center: Coordinate, radius_m: float) -> List[Courier]:
        async with self._lock:
            hits = []
            for courier in self._couriers.values():
                if courier.position is None:
                    continue
                dist = distance_m(center, courier.position)
                if dist <= radius_m:
                    hits.append((dist, courier.model_copy()))

        hits.sort(key=lambda pair: pair[0])
        return [courier for _, courier in hits]
