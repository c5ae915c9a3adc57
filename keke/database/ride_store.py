from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from typing import Dict, List, Optional
import logging

from keke.models.ride_model import Counterparty, Ride
from keke.models.user_model import UserProfile

logger = logging.getLogger(__name__)

# which profile to join onto a ride, keyed by the name of the nested field
COUNTERPARTY_KEYS = {
    "passenger": "passenger_id",
    "driver": "driver_id",
}


def _strip_id(document: Optional[dict]) -> Optional[dict]:
    if document is not None:
        document.pop("_id", None)
    return document


def _to_ride(document: Optional[dict]) -> Optional[Ride]:
    if not document:
        return None
    try:
        return Ride(**document)
    except ValidationError as e:
        logger.warning(f"Skipping unreadable ride {document.get('id')}: {e.error_count()} validation error(s)")
        return None


class RideStore:
    def __init__(self, rides, users):
        self.rides = rides
        self.users = users

    async def insert_ride(self, record: dict) -> dict:
        await self.rides.insert_one(dict(record))
        logger.info(f"Ride {record['id']} stored for passenger {record['passenger_id']}")
        return record

    async def get_ride(self, ride_id: str) -> Optional[Ride]:
        document = await self.rides.find_one({"id": ride_id}, {"_id": 0})
        return _to_ride(document)

    async def select_rides(self, filters: Dict[str, object]) -> List[Ride]:
        cursor = self.rides.find(filters, {"_id": 0}).sort("created_at", DESCENDING)
        documents = await cursor.to_list(length=None)
        rides = [_to_ride(document) for document in documents]
        return [ride for ride in rides if ride is not None]

    async def update_ride(
        self, ride_id: str, patch: Dict[str, object], expected: Dict[str, object]
    ) -> Optional[Ride]:
        """Apply ``patch`` only if the row still matches ``expected``.

        Returns the updated ride, or None when no row matched (the ride is
        gone or its state moved on).
        """
        conditions = dict(expected)
        conditions["id"] = ride_id
        document = await self.rides.find_one_and_update(
            conditions,
            {"$set": patch},
            return_document=ReturnDocument.AFTER,
        )
        document = _strip_id(document)
        return Ride(**document) if document else None

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        document = await self.users.find_one({"id": user_id}, {"_id": 0})
        return UserProfile(**document) if document else None

    async def _counterparties(self, user_ids) -> Dict[str, Counterparty]:
        ids = sorted({user_id for user_id in user_ids if user_id})
        if not ids:
            return {}
        cursor = self.users.find({"id": {"$in": ids}}, {"_id": 0})
        documents = await cursor.to_list(length=None)
        return {
            document["id"]: Counterparty(
                name=document.get("name", ""),
                phone=document.get("phone") or "",
                vehicle_info=document.get("vehicle_info"),
            )
            for document in documents
        }

    async def _join(self, rides: List[Ride], counterparty: str) -> List[Ride]:
        key = COUNTERPARTY_KEYS[counterparty]
        profiles = await self._counterparties(getattr(ride, key) for ride in rides)
        return [
            ride.model_copy(update={counterparty: profiles.get(getattr(ride, key))})
            for ride in rides
        ]

    async def get_ride_with(self, ride_id: str, counterparty: str) -> Optional[Ride]:
        ride = await self.get_ride(ride_id)
        if ride is None:
            return None
        joined = await self._join([ride], counterparty)
        return joined[0]

    async def select_rides_with(self, filters: Dict[str, object], counterparty: str) -> List[Ride]:
        rides = await self.select_rides(filters)
        return await self._join(rides, counterparty)
