import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from keke.models.ride_model import ChangeEvent

logger = logging.getLogger(__name__)

Handler = Callable[[ChangeEvent], Awaitable[None]]

EVENT_TYPES = frozenset({"insert", "update"})


@dataclass(frozen=True)
class Subscription:
    id: int
    table: str
    event_types: FrozenSet[str]
    filters: Dict[str, object] = field(default_factory=dict, hash=False)
    handler: Optional[Handler] = field(default=None, hash=False, compare=False)

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.event_type not in self.event_types:
            return False
        return all(event.new_record.get(key) == value for key, value in self.filters.items())


class RideChangeHub:
    def __init__(self):
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

    def subscribe(
        self,
        table: str,
        event_types: Iterable[str],
        filters: Optional[Dict[str, object]],
        handler: Handler,
    ) -> Subscription:
        event_types = frozenset(event_types)
        unknown = event_types - EVENT_TYPES
        if unknown:
            raise ValueError(f"Unsupported event types: {sorted(unknown)}")

        subscription = Subscription(
            id=next(self._ids),
            table=table,
            event_types=event_types,
            filters=dict(filters or {}),
            handler=handler,
        )
        self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscription {subscription.id} on {table} {sorted(event_types)}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())

    async def dispatch(self, event: ChangeEvent) -> int:
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(event):
                continue
            try:
                await subscription.handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    f"Handler for subscription {subscription.id} failed on "
                    f"{event.event_type} of ride {event.new_record.get('id')}"
                )
        return delivered

    async def publish(self, event: ChangeEvent) -> None:
        task = asyncio.create_task(self.dispatch(event))
        self._pending.add(task)
        task.add_done_callback(self._dispatched)

    def _dispatched(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Dispatching ride change failed: {error}")

    async def drain(self):
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


change_hub = RideChangeHub()
