from __future__ import annotations

import logging
from typing import Any, AsyncIterable, Mapping, Sequence

from queryportal.client.store import ApiStore

logger = logging.getLogger(__name__)


class NotificationInvalidator:
    """Invalidate cached queries when a push notification arrives.

    ``routes`` maps a channel name to the query keys it makes stale, e.g.
    ``{"orders": [["orders"]], "cart": ["cart"]}``.
    """

    def __init__(self, store: ApiStore, routes: Mapping[str, Sequence[Any]]):
        self.store = store
        self.routes = {channel: list(keys) for channel, keys in routes.items()}

    def handle(self, message: Mapping[str, Any]) -> list[str]:
        channel = message.get("channel")
        keys = self.routes.get(channel) if isinstance(channel, str) else None
        if not keys:
            logger.debug("ignoring notification", extra={"channel": channel})
            return []
        touched = self.store.invalidate_queries(*keys)
        logger.info(
            "notification invalidated %d queries",
            len(touched),
            extra={"channel": channel, "data": message.get("data")},
        )
        return touched

    async def consume(self, source: AsyncIterable[Mapping[str, Any]]) -> int:
        count = 0
        async for message in source:
            self.handle(message)
            count += 1
        return count
