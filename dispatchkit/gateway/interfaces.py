from abc import ABC, abstractmethod
from typing import Any, Dict


class NotificationGateway(ABC):
    """
    Push channel keyed by reachability handle. The engine only writes to it.
    Implementations raise GatewayError when a message cannot be handed off.
    """

    @abstractmethod
    async def push(self, handle: str, event: str, payload: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        """Send to every connected client (live location updates)."""
        pass
