import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

NOTIFY_MESSAGE = "written"


def mailbox_key(device_id: str) -> str:
    return f"mailbox/{device_id}"


class RelayStore(ABC):
    """Key-value store with per-key last-write-wins and push-on-write notification."""

    @abstractmethod
    async def put(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def take(self, key: str) -> Optional[str]:
        """Read and delete ``key`` in one step; None when empty."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def watch(self, key: str) -> AsyncIterator[str]:
        """Yield ``key`` once subscribed, then every time it is written, until cancelled."""
        pass

    async def close(self) -> None:
        pass


class RedisRelayManager(RelayStore):

    def __init__(self, host: str = 'localhost', port: int = 6379, db: int = 0,
                 password: Optional[str] = None,
                 username: Optional[str] = None,
                 ssl: bool = False,
                 client: Optional[aioredis.Redis] = None):
        self.client = client or aioredis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            username=username,
            ssl=ssl,
            decode_responses=True
        )

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def put(self, key: str, value: str) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.set(key, value)
            pipe.publish(key, NOTIFY_MESSAGE)
            await pipe.execute()

    async def take(self, key: str) -> Optional[str]:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.get(key)
            pipe.delete(key)
            value, _ = await pipe.execute()
        return value

    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(key))

    async def watch(self, key: str) -> AsyncIterator[str]:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(key)
        logger.debug(f"Watching relay key {key}")
        try:
            yield key
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    yield key
        finally:
            await pubsub.unsubscribe(key)
            await pubsub.aclose()

    async def close(self) -> None:
        await self.client.aclose()
