import asyncio
from typing import Any, Dict, List, Optional, Tuple

from dispatchkit.errors import GatewayError
from dispatchkit.gateway.interfaces import NotificationGateway
from dispatchkit.utils.metrics import MetricsManager

Message = Tuple[str, Dict[str, Any]]


class ConnectionRegistry(NotificationGateway):
    """
    In-process gateway: one asyncio.Queue per live connection handle.
    The socket layer calls ``connect`` when a client identifies itself and
    drains ``queue(handle)`` to write frames out.
    """
    def __init__(self, maxsize: int = 0):
        self._queues: Dict[str, asyncio.Queue] = {}
        self._maxsize = maxsize
        self._lock = asyncio.Lock()
        self.connections = MetricsManager().gauge("gateway_connections")

    async def connect(self, handle: str) -> asyncio.Queue:
        async with self._lock:
            if handle not in self._queues:
                self._queues[handle] = asyncio.Queue(maxsize=self._maxsize)
                self.connections.set(len(self._queues))
            return self._queues[handle]

    async def disconnect(self, handle: str) -> None:
        async with self._lock:
            self._queues.pop(handle, None)
            self.connections.set(len(self._queues))

    def queue(self, handle: str) -> Optional[asyncio.Queue]:
        return self._queues.get(handle)

    async def push(self, handle: str, event: str, payload: Dict[str, Any]) -> None:
        async with self._lock:
            q = self._queues.get(handle)
        if q is None:
            raise GatewayError(f"no live connection for handle {handle}")
        try:
            q.put_nowait((event, payload))
        except asyncio.QueueFull:
            raise GatewayError(f"outbound queue full for handle {handle}")

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        async with self._lock:
            queues = list(self._queues.values())
        for q in queues:
            if not q.full():
                q.put_nowait((event, payload))

    def drain(self, handle: str) -> List[Message]:
        """Pop everything queued for a handle."""
        q = self._queues.get(handle)
        messages: List[Message] = []
        while q is not None and not q.empty():
            messages.append(q.get_nowait())
        return messages
