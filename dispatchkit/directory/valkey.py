from typing import Dict, List, Optional

from dispatchkit.connectors.valkey import ValkeyConnector
from dispatchkit.directory.interfaces import CourierDirectory
from dispatchkit.errors import NotFound
from dispatchkit.models import Coordinate, Courier
from dispatchkit.settings import settings


class ValkeyCourierDirectory(CourierDirectory):
    """
    Directory backed by Valkey.

    Keys:
    - {prefix}:couriers:geo       GEO set of courier positions
    - {prefix}:courier:<id>       HASH full_name, mobile, handle, online
    - {prefix}:handles            HASH handle -> courier id
    """
    def __init__(self, connector: ValkeyConnector, prefix: Optional[str] = None):
        self.connector = connector
        self.prefix = prefix or settings.KEY_PREFIX
        self.geo_key = f"{self.prefix}:couriers:geo"
        self.handles_key = f"{self.prefix}:handles"

    def _courier_key(self, courier_id: str) -> str:
        return f"{self.prefix}:courier:{courier_id}"

    @staticmethod
    def _decode(courier_id: str, fields: Dict[str, str],
                position: Optional[Coordinate]) -> Courier:
        return Courier(
            id=courier_id,
            position=position,
            handle=fields.get("handle") or None,
            online=fields.get("online") == "1",
            full_name=fields.get("full_name", ""),
            mobile=fields.get("mobile") or None,
        )

    async def register(self, courier: Courier) -> None:
        client = self.connector.get_client()
        await client.hset(self._courier_key(courier.id), mapping={
            "full_name": courier.full_name,
            "mobile": courier.mobile or "",
            "handle": courier.handle or "",
            "online": "1" if courier.online else "0",
        })
        if courier.handle:
            await client.hset(self.handles_key, courier.handle, courier.id)
        if courier.position:
            await client.geoadd(self.geo_key, [courier.position.longitude, courier.position.latitude, courier.id])

    async def get(self, courier_id: str) -> Optional[Courier]:
        client = self.connector.get_client()
        fields = await client.hgetall(self._courier_key(courier_id))
        if not fields:
            return None
        position = None
        coords = await client.geopos(self.geo_key, courier_id)
        if coords and coords[0]:
            lon, lat = coords[0]
            position = Coordinate(longitude=float(lon), latitude=float(lat))
        return self._decode(courier_id, fields, position)

    async def update_position(self, courier_id: str, coordinate: Coordinate,
                              handle: Optional[str] = None) -> Courier:
        client = self.connector.get_client()
        key = self._courier_key(courier_id)
        if not await client.exists(key):
            raise NotFound(f"courier {courier_id} not found")

        await client.geoadd(self.geo_key, [coordinate.longitude, coordinate.latitude, courier_id])
        update = {"online": "1"}
        if handle:
            previous = await client.hget(key, "handle")
            if previous and previous != handle:
                await client.hdel(self.handles_key, previous)
            update["handle"] = handle
            await client.hset(self.handles_key, handle, courier_id)
        await client.hset(key, mapping=update)

        fields = await client.hgetall(key)
        return self._decode(courier_id, fields, coordinate)

    async def mark_unreachable(self, handle_or_courier_id: str) -> Optional[Courier]:
        client = self.connector.get_client()
        courier_id = await client.hget(self.handles_key, handle_or_courier_id) or handle_or_courier_id
        key = self._courier_key(courier_id)
        fields = await client.hgetall(key)
        if not fields:
            return None

        if fields.get("handle"):
            await client.hdel(self.handles_key, fields["handle"])
        await client.hset(key, mapping={"handle": "", "online": "0"})
        fields.update({"handle": "", "online": "0"})
        return self._decode(courier_id, fields, None)

    async def find_within_radius(self, center: Coordinate, radius_m: float) -> List[Courier]:
        client = self.connector.get_client()
        hits = await client.geosearch(
            self.geo_key,
            longitude=center.longitude,
            latitude=center.latitude,
            radius=radius_m,
            unit="m",
            sort="ASC",
            withcoord=True,
        )
        if not hits:
            return []

        pipe = client.pipeline()
        for member, _ in hits:
            pipe.hgetall(self._courier_key(member))
        rows = await pipe.execute()

        couriers = []
        for (member, (lon, lat)), fields in zip(hits, rows):
            if not fields:
                # Position left behind by a deleted account
                continue
            position = Coordinate(longitude=float(lon), latitude=float(lat))
            couriers.append(self._decode(member, fields, position))
        return couriers
