"""Sources of the operator-designated default revision.

The election only ever calls get_default(); handlers registered through
add_handler() are for callers that want push notification of changes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

from redis.exceptions import RedisError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DefaultHandler = Callable[[str], None]


@runtime_checkable
class DefaultRevisionOracle(Protocol):
    """Supplies the currently preferred revision."""

    def get_default(self) -> str: ...

    def add_handler(self, handler: DefaultHandler) -> None: ...


class _HandlerMixin:
    def __init__(self) -> None:
        self._handlers: list[DefaultHandler] = []

    def add_handler(self, handler: DefaultHandler) -> None:
        self._handlers.append(handler)

    def _notify(self, revision: str) -> None:
        for handler in self._handlers:
            try:
                handler(revision)
            except Exception as e:
                logger.error(f"Default revision handler {handler!r} failed: {e}")


class StaticDefaultWatcher(_HandlerMixin):
    """Default revision held in memory and changed explicitly."""

    def __init__(self, default_revision: str = ""):
        super().__init__()
        self._default = default_revision

    def get_default(self) -> str:
        return self._default

    def set_default(self, revision: str) -> None:
        if revision == self._default:
            return
        self._default = revision
        logger.info(f"Default revision changed to '{revision}'")
        self._notify(revision)


class RedisDefaultWatcher(_HandlerMixin):
    """Default revision read from a Redis string key.

    The value is refreshed by run() on a fixed interval; get_default()
    returns the last value observed. A failed read keeps the previous value.

    Args:
        client: redis.asyncio client
        key: Redis key holding the default revision
        poll_interval: Seconds between refreshes
    """

    def __init__(self, client: Redis, key: str, poll_interval: float = 5.0):
        super().__init__()
        self.client = client
        self.key = key
        self.poll_interval = poll_interval
        self._default = ""

    def get_default(self) -> str:
        return self._default

    async def refresh(self) -> str:
        """Re-read the key and notify handlers if the value changed."""
        try:
            raw = await self.client.get(self.key)
        except RedisError as e:
            logger.warning(f"Failed to read default revision from '{self.key}': {e}")
            return self._default

        value = "" if raw is None else raw.decode() if isinstance(raw, bytes) else str(raw)
        if value != self._default:
            self._default = value
            logger.info(f"Default revision changed to '{value}'")
            self._notify(value)
        return value

    async def set_default(self, revision: str) -> None:
        """Write a new default revision for every watcher of this key."""
        await self.client.set(self.key, revision)
        await self.refresh()

    async def run(self, stop: asyncio.Event) -> None:
        """Poll the key until stop is set."""
        while not stop.is_set():
            await self.refresh()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
