import pytest
from helpers import status_updated_log, tier_committed_log

from poolsync.events.decoder import EventDecoder, POOL_STATUS_UPDATED_TOPIC, TIER_COMMITTED_TOPIC
from poolsync.events.models import HandlerResult, HandlerStatus
from poolsync.events.router import EventRouter, default_registry


def test_default_registry_covers_all_pool_events() -> None:
    router = EventRouter()
    assert set(default_registry()) == set(router.registry)
    assert router.handles(TIER_COMMITTED_TOPIC.upper())
    assert not router.handles(None)


@pytest.mark.asyncio
async def test_unrouted_events_are_ignored_and_counted() -> None:
    seen = []

    async def handler(db, event, removed, block_number):
        seen.append((event.status_code, removed, block_number))
        return HandlerResult(event=event.event_name, status=HandlerStatus.SUCCESS, action="updated")

    router = EventRouter(registry={POOL_STATUS_UPDATED_TOPIC: handler})
    decoder = EventDecoder()

    routed = await router.route(None, decoder.decode(status_updated_log(3, block=55)))
    unrouted = await router.route(None, decoder.decode(tier_committed_log()))

    assert routed.status is HandlerStatus.SUCCESS
    assert seen == [(3, False, 55)]
    assert unrouted.status is HandlerStatus.IGNORED
    assert unrouted.action == "unrouted"
    assert router.unrouted[TIER_COMMITTED_TOPIC.lower()] == 1
