import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Protocol

from keke.database.ride_store import RideStore
from keke.models.ride_model import (
    ChangeEvent,
    Location,
    LocationInput,
    Ride,
    RideStatus,
    TransitionOutcome,
)

logger = logging.getLogger(__name__)

MISSING_ADDRESS = "Please enter both pickup and drop-off locations"
UNSELECTED_SUGGESTION = "Please select valid locations from the suggestions"
RIDE_UNAVAILABLE = "Ride no longer available"
RIDE_NOT_ACTIVE = "Ride is not active for this driver"


class RideRequestError(ValueError):
    """A ride request that must not reach the store."""


class ChangeFeed(Protocol):
    async def publish(self, event: ChangeEvent) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_location(location: LocationInput, geocoding_enabled: bool) -> Location:
    address = location.address.strip()
    if location.resolved:
        return Location(address=address, lat=location.lat, lng=location.lng)
    if geocoding_enabled:
        raise RideRequestError(UNSELECTED_SUGGESTION)
    return Location(address=address, lat=0.0, lng=0.0)


class RideService:
    def __init__(
        self,
        store: RideStore,
        feed: ChangeFeed,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.feed = feed
        self.clock = clock

    async def _announce(self, event_type: str, ride: Ride):
        record = ride.model_dump(mode="json", exclude={"passenger", "driver"})
        try:
            await self.feed.publish(ChangeEvent(event_type=event_type, new_record=record))
        except Exception as e:
            logger.error(f"Live update for ride {ride.id} not delivered: {e}")

    async def request_ride(
        self,
        passenger_id: str,
        pickup: LocationInput,
        dropoff: LocationInput,
        geocoding_enabled: bool,
    ) -> Ride:
        if not pickup.address.strip() or not dropoff.address.strip():
            raise RideRequestError(MISSING_ADDRESS)

        pickup_location = resolve_location(pickup, geocoding_enabled)
        dropoff_location = resolve_location(dropoff, geocoding_enabled)

        ride = Ride(
            id=str(uuid.uuid4()),
            passenger_id=passenger_id,
            driver_id=None,
            pickup_location=pickup_location,
            dropoff_location=dropoff_location,
            status=RideStatus.PENDING.value,
            created_at=self.clock(),
        )
        await self.store.insert_ride(ride.model_dump(exclude={"passenger", "driver"}))

        logger.info(
            f"Ride {ride.id} requested by {passenger_id} - "
            f"{pickup_location.address} -> {dropoff_location.address}"
        )
        await self._announce("insert", ride)
        return ride

    async def accept_ride(self, ride_id: str, driver_id: str) -> TransitionOutcome:
        ride = await self.store.update_ride(
            ride_id,
            patch={"driver_id": driver_id, "status": RideStatus.ACCEPTED.value},
            expected={"status": RideStatus.PENDING.value},
        )
        if ride is None:
            logger.info(f"Driver {driver_id} lost ride {ride_id}: no longer pending")
            return TransitionOutcome(ok=False, message=RIDE_UNAVAILABLE)

        logger.info(f"Ride {ride_id} accepted by driver {driver_id}")
        await self._announce("update", ride)
        return TransitionOutcome(ok=True, ride=ride)

    async def complete_ride(self, ride_id: str, driver_id: str) -> TransitionOutcome:
        ride = await self.store.update_ride(
            ride_id,
            patch={"status": RideStatus.COMPLETED.value},
            expected={"status": RideStatus.ACCEPTED.value, "driver_id": driver_id},
        )
        if ride is None:
            logger.info(f"Driver {driver_id} cannot complete ride {ride_id}")
            return TransitionOutcome(ok=False, message=RIDE_NOT_ACTIVE)

        logger.info(f"Ride {ride_id} completed by driver {driver_id}")
        await self._announce("update", ride)
        return TransitionOutcome(ok=True, ride=ride)
