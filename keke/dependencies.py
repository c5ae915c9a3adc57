from fastapi import Depends, Header, HTTPException, status
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError
from typing import Optional, Tuple
import logging

from keke.database.mongo_client import get_rides_collection, get_users_collection
from keke.database.redis_client import SessionStore, get_session_store
from keke.database.ride_store import RideStore
from keke.geocoder import MapboxGeocoder, geocoder
from keke.models.user_model import CurrentUser, UserProfile, UserRole
from keke.producer import producer
from keke.realtime import RideChangeHub, change_hub
from keke.services.ride_service import RideService

logger = logging.getLogger(__name__)

PROFILE_NOT_FOUND = (
    "Your user profile hasn't been created yet. Confirm your email or "
    "contact support if signup did not finish."
)


class ProfileError(Exception):
    def __init__(self, status_code: int, detail: dict):
        super().__init__(detail.get("message"))
        self.status_code = status_code
        self.detail = detail


def get_ride_store() -> RideStore:
    return RideStore(get_rides_collection(), get_users_collection())

def get_change_hub() -> RideChangeHub:
    return change_hub

def get_change_feed(hub: RideChangeHub = Depends(get_change_hub)):
    if producer.connected:
        return producer
    return hub

def get_ride_service(
    store: RideStore = Depends(get_ride_store),
    feed=Depends(get_change_feed),
) -> RideService:
    return RideService(store, feed)

def get_geocoder() -> MapboxGeocoder:
    return geocoder

def get_sessions() -> SessionStore:
    return get_session_store()


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def resolve_profile(
    token: Optional[str], sessions: SessionStore, store: RideStore
) -> Tuple[CurrentUser, UserProfile]:
    """Look up the session and its profile, raising ProfileError when either is missing."""
    try:
        user = await sessions.get_current_user(token)
    except RedisError as e:
        logger.error(f"Session lookup failed: {e}")
        raise ProfileError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            {"code": "session_unavailable", "message": "Session service unavailable"},
        )
    if user is None:
        raise ProfileError(
            status.HTTP_401_UNAUTHORIZED,
            {"code": "not_authenticated", "message": "Not authenticated"},
        )

    try:
        profile = await store.get_profile(user.id)
    except PyMongoError as e:
        logger.error(f"Profile lookup failed for {user.id}: {e}")
        raise ProfileError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"code": "profile_lookup_failed", "message": "Failed to load profile"},
        )
    if profile is None:
        logger.warning(f"User {user.id} is authenticated but has no profile")
        raise ProfileError(
            status.HTTP_409_CONFLICT,
            {
                "code": "profile_not_found",
                "message": PROFILE_NOT_FOUND,
                "user_id": user.id,
                "email": user.email,
            },
        )
    return user, profile


def check_role(profile: UserProfile, role: UserRole):
    if profile.role != role.value:
        raise ProfileError(
            status.HTTP_403_FORBIDDEN,
            {
                "code": "wrong_role",
                "message": f"This page is for {role.value}s",
                "dashboard": f"/{profile.role}",
            },
        )


async def get_current_user(
    token: Optional[str] = Depends(bearer_token),
    sessions: SessionStore = Depends(get_sessions),
) -> CurrentUser:
    try:
        user = await sessions.get_current_user(token)
    except RedisError as e:
        logger.error(f"Session lookup failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session service unavailable"
        )
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return user


async def get_profile(
    token: Optional[str] = Depends(bearer_token),
    sessions: SessionStore = Depends(get_sessions),
    store: RideStore = Depends(get_ride_store),
) -> UserProfile:
    try:
        _, profile = await resolve_profile(token, sessions, store)
    except ProfileError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return profile


def require_role(role: UserRole):
    async def checker(profile: UserProfile = Depends(get_profile)) -> UserProfile:
        try:
            check_role(profile, role)
        except ProfileError as e:
            raise HTTPException(status_code=e.status_code, detail=e.detail)
        return profile
    return checker

require_driver = require_role(UserRole.DRIVER)
require_passenger = require_role(UserRole.PASSENGER)
