from __future__ import annotations

import logging
from collections import Counter
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.events.decoder import (
    POOL_CREATED_TOPIC,
    POOL_STATUS_UPDATED_TOPIC,
    TIER_COMMITTED_TOPIC,
)
from poolsync.events.models import DecodedEvent, HandlerResult, HandlerStatus
from poolsync.services import state_applier


logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, DecodedEvent, bool, int], Awaitable[HandlerResult]]


def default_registry() -> dict[str, Handler]:
    return {
        POOL_CREATED_TOPIC: state_applier.handle_pool_created,
        TIER_COMMITTED_TOPIC: state_applier.handle_tier_committed,
        POOL_STATUS_UPDATED_TOPIC: state_applier.handle_pool_status_updated,
    }


class EventRouter:
    """Dispatch decoded events to the handler registered for their topic."""

    def __init__(self, registry: Optional[dict[str, Handler]] = None) -> None:
        source = registry if registry is not None else default_registry()
        self.registry: dict[str, Handler] = {topic.lower(): handler for topic, handler in source.items()}
        self.unrouted: Counter[str] = Counter()

    def handles(self, topic: Optional[str]) -> bool:
        return bool(topic) and topic.lower() in self.registry

    async def route(self, db: AsyncSession, event: DecodedEvent) -> HandlerResult:
        topic = event.topic.lower()
        handler = self.registry.get(topic)
        if handler is None:
            self.unrouted[topic] += 1
            logger.debug("No handler registered for topic %s", topic)
            return HandlerResult(
                event=event.event_name,
                status=HandlerStatus.IGNORED,
                action="unrouted",
            )
        return await handler(db, event, event.raw.removed, event.raw.block_number)
