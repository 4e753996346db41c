import json
from typing import Any, Dict, Optional

from dispatchkit.connectors.valkey import ValkeyConnector
from dispatchkit.errors import GatewayError
from dispatchkit.gateway.interfaces import NotificationGateway
from dispatchkit.settings import settings


class ValkeyNotificationGateway(NotificationGateway):
    """
    Publishes pushes on Valkey pub/sub so any socket server process can
    relay them. Channel per handle: {prefix}:push:<handle>.
    """
    def __init__(self, connector: ValkeyConnector, prefix: Optional[str] = None):
        self.connector = connector
        self.prefix = prefix or settings.KEY_PREFIX
        self.broadcast_channel = f"{self.prefix}:broadcast"

    def channel(self, handle: str) -> str:
        return f"{self.prefix}:push:{handle}"

    @staticmethod
    def _encode(event: str, payload: Dict[str, Any]) -> str:
        return json.dumps({"event": event, "payload": payload}, default=str)

    async def push(self, handle: str, event: str, payload: Dict[str, Any]) -> None:
        receivers = await self.connector.get_client().publish(self.channel(handle), self._encode(event, payload))
        if not receivers:
            raise GatewayError(f"no subscriber on {self.channel(handle)}")

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        await self.connector.get_client().publish(self.broadcast_channel, self._encode(event, payload))
