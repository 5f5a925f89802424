"""
Domain events published by the resources service.

  ResourceCreated           {resourceId, title, fileCount}, after a batch upload succeeds
  ResourceLifecycleChanged  {action, succeeded, failed}, after a trash/restore/delete call

Each event goes to a durable queue named after its eventType on the default
exchange. Publishing is optional (PUBLISH_EVENTS) and best-effort: a broker
problem is logged and the request that produced the event still succeeds.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aio_pika

from common.config import settings

logger = logging.getLogger("events")

RESOURCE_CREATED = "ResourceCreated"
RESOURCE_LIFECYCLE_CHANGED = "ResourceLifecycleChanged"


@dataclass
class EventEnvelope:
    eventType: str
    payload: Dict[str, Any]
    correlationId: Optional[str] = None
    eventId: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(tz=timezone.utc).isoformat())
    source: str = field(default_factory=lambda: settings.service_name)
    version: str = "1.0"

    def to_message(self) -> aio_pika.Message:
        return aio_pika.Message(
            body=json.dumps(asdict(self), ensure_ascii=False).encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=self.eventId,
            timestamp=datetime.fromisoformat(self.timestamp),
            correlation_id=self.correlationId,
            headers={"eventType": self.eventType, "version": self.version},
        )


def resource_created(resource_id: str, title: str, file_count: int, session_id: str) -> EventEnvelope:
    return EventEnvelope(
        eventType=RESOURCE_CREATED,
        payload={"resourceId": resource_id, "title": title, "fileCount": file_count},
        correlationId=session_id,
    )


def lifecycle_changed(action: str, succeeded: List[str], failed: List[str]) -> EventEnvelope:
    return EventEnvelope(
        eventType=RESOURCE_LIFECYCLE_CHANGED,
        payload={"action": action, "succeeded": list(succeeded), "failed": sorted(failed)},
    )


class EventPublisher:
    """One robust connection and channel per process, opened on first publish."""

    def __init__(self, url: str):
        self.url = url
        self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._lock: Optional[asyncio.Lock] = None

    async def _channel_for_publish(self) -> aio_pika.abc.AbstractChannel:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._channel is None or self._channel.is_closed:
                if self._connection is None or self._connection.is_closed:
                    logger.info("Connecting to RabbitMQ")
                    self._connection = await aio_pika.connect_robust(self.url)
                self._channel = await self._connection.channel()
            return self._channel

    async def publish(self, event: EventEnvelope) -> None:
        channel = await self._channel_for_publish()
        queue = await channel.declare_queue(event.eventType, durable=True)
        await channel.default_exchange.publish(event.to_message(), routing_key=queue.name)
        logger.info("Published %s id=%s corr=%s", event.eventType, event.eventId, event.correlationId)

    async def close(self) -> None:
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None
        self._channel = None


publisher = EventPublisher(settings.rabbitmq_url)


async def publish_quietly(event: EventEnvelope) -> None:
    if not settings.publish_events:
        return
    try:
        await publisher.publish(event)
    except Exception:
        logger.exception("Could not publish %s id=%s", event.eventType, event.eventId)
