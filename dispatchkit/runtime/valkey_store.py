from typing import Optional

from dispatchkit.connectors.valkey import ValkeyConnector
from dispatchkit.runtime.codes import CodeStore
from dispatchkit.settings import settings


class ValkeyCodeStore(CodeStore):
    """
    Delivery codes in Valkey. Uses SET with expiry so stale codes vanish
    on their own.
    """
    def __init__(self, connector: ValkeyConnector, prefix: Optional[str] = None):
        self.connector = connector
        self.prefix = f"{prefix or settings.KEY_PREFIX}:otp"

    async def save(self, key: str, code: str, ttl_seconds: int) -> None:
        await self.connector.get_client().set(f"{self.prefix}:{key}", code, ex=ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return await self.connector.get_client().get(f"{self.prefix}:{key}")

    async def delete(self, key: str) -> None:
        await self.connector.get_client().delete(f"{self.prefix}:{key}")
