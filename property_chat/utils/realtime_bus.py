import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis

from property_chat.core.config import settings

logger = logging.getLogger(__name__)


class LocalBus:
    """In-process fan-out used when no Redis is configured."""

    enabled = False

    def __init__(self) -> None:
        self._queues: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._queues.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        # registered now so nothing published before run() is lost
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(channel, set()).add(queue)
        bus = self

        class _Sub:
            async def run(self_inner):
                while True:
                    message = await queue.get()
                    await on_message(message)

            async def cancel(self_inner):
                queues = bus._queues.get(channel)
                if queues is not None:
                    queues.discard(queue)
                    if not queues:
                        del bus._queues[channel]

        return _Sub()


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except Exception as exc:
                        logger.warning("redis pubsub read failed on %s: %s", channel, exc)
                        await asyncio.sleep(0.5)
                        continue
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        await on_message(data)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except Exception as exc:
                    logger.debug("redis unsubscribe from %s failed: %s", channel, exc)

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus(url: Optional[str] = None):
    global _bus
    if _bus is not None:
        return _bus
    url = url or settings.REDIS_URL
    _bus = RedisBus(url) if url else LocalBus()
    return _bus


async def reset_bus() -> None:
    global _bus
    if isinstance(_bus, RedisBus):
        await _bus.close()
    _bus = None
