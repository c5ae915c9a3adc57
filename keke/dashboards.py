import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional, Tuple

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from keke.database.ride_store import RideStore
from keke.models.ride_model import ChangeEvent, Ride, RideStatus, TransitionOutcome
from keke.realtime import RideChangeHub, Subscription
from keke.services.ride_service import RideService

logger = logging.getLogger(__name__)

ACCEPT_FAILED = "Failed to accept ride. Please try again."

OnChange = Callable[["Dashboard"], Awaitable[None]]


def reconcile(rides: List[Ride], ride: Ride) -> Tuple[List[Ride], bool]:
    """Merge a freshly fetched ride into a newest-first list."""
    for index, existing in enumerate(rides):
        if existing.id != ride.id:
            continue
        if existing == ride:
            return rides, False
        updated = list(rides)
        updated[index] = ride
        return updated, True
    return [ride] + list(rides), True


def discard(rides: List[Ride], ride_id: str) -> Tuple[List[Ride], bool]:
    remaining = [ride for ride in rides if ride.id != ride_id]
    return remaining, len(remaining) != len(rides)


class Dashboard:
    role: str = ""

    def __init__(
        self,
        store: RideStore,
        hub: RideChangeHub,
        user_id: str,
        on_change: Optional[OnChange] = None,
    ):
        self.store = store
        self.hub = hub
        self.user_id = user_id
        self.on_change = on_change
        self.live_updates = False
        self._subscriptions: List[Subscription] = []

    async def load(self):
        raise NotImplementedError

    def _open_subscriptions(self):
        raise NotImplementedError

    def snapshot(self) -> dict:
        raise NotImplementedError

    def _subscribe(self, event_types, filters, handler):
        subscription = self.hub.subscribe("rides", event_types, filters, handler)
        self._subscriptions.append(subscription)
        return subscription

    def _release(self):
        while self._subscriptions:
            self.hub.unsubscribe(self._subscriptions.pop())
        self.live_updates = False

    async def _changed(self):
        if self.on_change is not None:
            await self.on_change(self)

    @asynccontextmanager
    async def live(self):
        """Load the dashboard and keep it subscribed for the block's lifetime."""
        await self.load()
        try:
            try:
                self._open_subscriptions()
                self.live_updates = True
            except Exception as e:
                logger.warning(
                    f"Live updates unavailable for {self.role} {self.user_id}: {e}"
                )
            yield self
        finally:
            self._release()


class PassengerDashboard(Dashboard):
    role = "passenger"

    def __init__(self, store, hub, user_id, on_change=None):
        super().__init__(store, hub, user_id, on_change)
        self.rides: List[Ride] = []

    async def load(self):
        self.rides = await self.store.select_rides_with({"passenger_id": self.user_id}, "driver")
        logger.info(f"Passenger {self.user_id} dashboard loaded with {len(self.rides)} rides")

    def _open_subscriptions(self):
        self._subscribe(["insert", "update"], {"passenger_id": self.user_id}, self.on_ride_change)

    async def on_ride_change(self, event: ChangeEvent):
        ride = await self.store.get_ride_with(event.new_record["id"], "driver")
        if ride is None or ride.passenger_id != self.user_id:
            return
        self.rides, changed = reconcile(self.rides, ride)
        if changed:
            await self._changed()

    def snapshot(self) -> dict:
        return {
            "type": "snapshot",
            "role": self.role,
            "live": self.live_updates,
            "rides": [ride.model_dump(mode="json") for ride in self.rides],
        }


class DriverDashboard(Dashboard):
    role = "driver"

    def __init__(self, store, hub, service: RideService, user_id, on_change=None):
        super().__init__(store, hub, user_id, on_change)
        self.service = service
        self.pending: List[Ride] = []
        self.accepted: List[Ride] = []

    async def load(self):
        self.pending = await self.store.select_rides_with(
            {"status": RideStatus.PENDING.value}, "passenger"
        )
        self.accepted = await self.store.select_rides_with(
            {"driver_id": self.user_id, "status": RideStatus.ACCEPTED.value}, "passenger"
        )
        logger.info(
            f"Driver {self.user_id} dashboard loaded: "
            f"{len(self.pending)} pending, {len(self.accepted)} accepted"
        )

    def _open_subscriptions(self):
        self._subscribe(["insert"], {"status": RideStatus.PENDING.value}, self.on_new_request)
        self._subscribe(["update"], None, self.on_ride_update)

    async def on_new_request(self, event: ChangeEvent):
        ride = await self.store.get_ride_with(event.new_record["id"], "passenger")
        if ride is None or ride.status != RideStatus.PENDING:
            return
        self.pending, changed = reconcile(self.pending, ride)
        if changed:
            await self._changed()

    async def on_ride_update(self, event: ChangeEvent):
        record = event.new_record
        changed = False

        if record.get("status") != RideStatus.PENDING.value:
            self.pending, removed = discard(self.pending, record["id"])
            changed = changed or removed

        if record.get("driver_id") == self.user_id:
            ride = await self.store.get_ride_with(record["id"], "passenger")
            if ride is not None and ride.status == RideStatus.ACCEPTED:
                self.accepted, merged = reconcile(self.accepted, ride)
            else:
                self.accepted, merged = discard(self.accepted, record["id"])
            changed = changed or merged

        if changed:
            await self._changed()

    async def accept(self, ride_id: str) -> TransitionOutcome:
        local = next((ride for ride in self.pending if ride.id == ride_id), None)
        try:
            outcome = await self.service.accept_ride(ride_id, self.user_id)
        except (PyMongoError, ValidationError) as e:
            logger.error(f"Failed to accept ride {ride_id}: {e}")
            return TransitionOutcome(ok=False, message=ACCEPT_FAILED)

        self.pending, changed = discard(self.pending, ride_id)
        if outcome.ok:
            if local is not None:
                ride = outcome.ride.model_copy(update={"passenger": local.passenger})
            else:
                try:
                    ride = await self.store.get_ride_with(ride_id, "passenger") or outcome.ride
                except PyMongoError as e:
                    logger.warning(f"Accepted ride {ride_id} but could not load its passenger: {e}")
                    ride = outcome.ride
            self.accepted, merged = reconcile(self.accepted, ride)
            changed = changed or merged

        if changed:
            await self._changed()
        return outcome

    def snapshot(self) -> dict:
        return {
            "type": "snapshot",
            "role": self.role,
            "live": self.live_updates,
            "pending": [ride.model_dump(mode="json") for ride in self.pending],
            "accepted": [ride.model_dump(mode="json") for ride in self.accepted],
        }
