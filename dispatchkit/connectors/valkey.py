from typing import Optional

import valkey.asyncio as valkey

from dispatchkit.settings import settings
from dispatchkit.utils.logging import get_logger

logger = get_logger("ValkeyConnector")


class ValkeyConnector:
    """
    Owns the async Valkey client shared by the directory, ledger, code
    store and gateway backends.
    """
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 password: Optional[str] = None):
        self.host = host or settings.VALKEY_HOST
        self.port = port or settings.VALKEY_PORT
        self.password = password if password is not None else settings.VALKEY_PASSWORD
        self._client: Optional[valkey.Valkey] = None

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = valkey.Valkey(
            host=self.host,
            port=self.port,
            password=self.password,
            decode_responses=True,
        )
        await self._client.ping()
        logger.info(f"Connected to Valkey at {self.host}:{self.port}")

    def get_client(self) -> valkey.Valkey:
        if self._client is None:
            raise RuntimeError("ValkeyConnector not connected")
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
