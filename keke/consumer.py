# keke/consumer.py
import json
import uuid
import logging
from typing import Any

from faststream.rabbit import RabbitBroker, RabbitExchange, RabbitQueue
from pydantic import ValidationError

from keke import config
from keke.models.ride_model import ChangeEvent
from keke.realtime import RideChangeHub

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("consumer")


def _safe_parse_message(message: Any) -> dict:
    if isinstance(message, dict):
        return message
    if isinstance(message, bytes):
        text = message.decode("utf-8")
    else:
        text = str(message)

    return json.loads(text)

async def relay_change(message: Any, hub: RideChangeHub) -> int:
    try:
        data = _safe_parse_message(message)
    except json.JSONDecodeError as e:
        logger.error(f"Could not decode JSON message: {e}")
        return 0

    try:
        event = ChangeEvent(**data)
    except (ValidationError, TypeError) as e:
        logger.error(f"Invalid change event: {e}")
        return 0

    if not event.new_record.get("id"):
        logger.error("Incomplete change event: new_record needs an id.")
        return 0

    delivered = await hub.dispatch(event)
    logger.info(
        f"{event.event_type} of ride {event.new_record['id']} delivered to {delivered} subscriber(s)"
    )
    return delivered

def attach_change_consumer(broker: RabbitBroker, hub: RideChangeHub, exchange: RabbitExchange):
    """Bind a private queue to the ride exchange and relay into ``hub``."""
    queue = RabbitQueue(
        f"{config.RIDE_EXCHANGE}.{uuid.uuid4().hex[:12]}",
        auto_delete=True,
        exclusive=True,
    )

    @broker.subscriber(queue, exchange)
    async def relay_ride_change(message: Any):
        await relay_change(message, hub)

    logger.info(f"Listening for ride changes on {queue.name}")
    return relay_ride_change
