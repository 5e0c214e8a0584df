"""
Domain event publishing.

Events are frozen dataclasses. Publishers are plain async callables so
modules take them by injection; a failing publisher never fails the
operation that produced the event.
"""
import dataclasses
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

import redis.asyncio as redis


logger = logging.getLogger(__name__)

EVENT_TTL_SECONDS = 24 * 3600

EventPublisher = Callable[[Any], Awaitable[None]]


def event_to_dict(event) -> Dict[str, Any]:
    """Flatten an event dataclass into JSON-friendly values."""
    data = {}
    for f in dataclasses.fields(event):
        value = getattr(event, f.name)
        if isinstance(value, Enum):
            value = value.value
        data[f.name] = value
    return data


def serialize_event(event) -> str:
    return json.dumps({
        "event_type": event.__class__.__name__,
        "data": event_to_dict(event),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }, default=str)


async def log_event_publisher(event) -> None:
    """Default publisher: log the event."""
    logger.info(f"Event: {type(event).__name__} - {event}")


class RedisEventPublisher:
    """Pushes events onto per-type Redis lists with a 24h TTL."""

    def __init__(self, redis_client: redis.Redis, namespace: str):
        self.redis = redis_client
        self.namespace = namespace

    def key_for(self, event) -> str:
        return f"events:{self.namespace}:{event.__class__.__name__}"

    async def __call__(self, event) -> None:
        event_key = self.key_for(event)
        await self.redis.lpush(event_key, serialize_event(event))
        await self.redis.expire(event_key, EVENT_TTL_SECONDS)
        logger.info(f"Emitted event: {event.__class__.__name__}")


async def publish_safely(publisher: EventPublisher, event) -> None:
    """Publish an event, logging instead of raising on failure."""
    try:
        await publisher(event)
    except Exception as e:
        logger.warning(f"Failed to publish {event.__class__.__name__}: {e}")
