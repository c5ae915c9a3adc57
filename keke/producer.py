import logging
from typing import Optional
from faststream.rabbit import ExchangeType, RabbitBroker, RabbitExchange

from keke import config
from keke.consumer import attach_change_consumer
from keke.models.ride_model import ChangeEvent
from keke.realtime import RideChangeHub

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ride_exchange = RabbitExchange(config.RIDE_EXCHANGE, type=ExchangeType.FANOUT, durable=True)

class RideEventProducer:
    def __init__(self):
        self.broker: Optional[RabbitBroker] = None
        self.exchange = ride_exchange

    async def connect(self, hub: Optional[RideChangeHub] = None):
        try:
            self.broker = RabbitBroker(config.rabbitmq_url)
            if hub is not None:
                attach_change_consumer(self.broker, hub, self.exchange)
            await self.broker.start()

            logger.info(
                f"Producer connected to {config.RABBITMQ_HOST}:{config.RABBITMQ_PORT}, "
                f"exchange {self.exchange.name}"
            )

        except Exception as e:
            logger.error(f"Failed to connect producer: {e}")
            self.broker = None
            raise

    @property
    def connected(self) -> bool:
        return self.broker is not None

    async def publish(self, event: ChangeEvent):
        if self.broker is None:
            raise RuntimeError("Ride event producer is not connected")

        try:
            await self.broker.publish(
                message=event.model_dump_json(),
                exchange=self.exchange
            )

            logger.info(
                f"Event published: {event.event_type} of ride {event.new_record.get('id')} "
                f"- status: {event.new_record.get('status')}"
            )

        except Exception as e:
            logger.error(f"Failed to publish event: {e}")
            raise

    async def close(self):
        if self.broker:
            await self.broker.close()
            self.broker = None
            logger.info("Producer disconnected")

producer = RideEventProducer()
