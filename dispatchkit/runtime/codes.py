from abc import ABC, abstractmethod
import asyncio
import time
from typing import Dict, Optional, Tuple


class CodeStore(ABC):
    """
    Short-lived storage for delivery codes, keyed by order line.
    """

    @abstractmethod
    async def save(self, key: str, code: str, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """The code if present and not expired."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class MemoryCodeStore(CodeStore):
    """
    In-memory implementation of CodeStore.
    """
    def __init__(self):
        self._codes: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def save(self, key: str, code: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._codes[key] = (code, time.monotonic() + ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._codes.get(key)
            if entry is None:
                return None
            code, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._codes[key]
                return None
            return code

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._codes.pop(key, None)
