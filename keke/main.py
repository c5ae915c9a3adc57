from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from typing import List, Optional, Union
from datetime import datetime
import json
import logging
import requests

from keke import config
from keke.dashboards import DriverDashboard, PassengerDashboard
from keke.database.mongo_client import mongo_client
from keke.database.redis_client import SessionStore, redis_client
from keke.database.ride_store import RideStore
from keke.dependencies import (
    ProfileError,
    bearer_token,
    check_role,
    get_change_hub,
    get_current_user,
    get_geocoder,
    get_profile,
    get_ride_service,
    get_ride_store,
    get_sessions,
    require_driver,
    require_passenger,
    resolve_profile,
)
from keke.geocoder import MapboxGeocoder
from keke.models.ride_model import (
    DriverRides,
    GeocodeResponse,
    Ride,
    RideCreate,
    RideCreated,
    RideStatus,
    TransitionOutcome,
)
from keke.models.user_model import CurrentUser, UserProfile, UserRole
from keke.producer import producer
from keke.realtime import RideChangeHub, change_hub
from keke.services.ride_service import RideRequestError, RideService

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Corp Kèkè",
    description=(
        "Keke rides for NYSC members in Kano: passengers request rides, "
        "drivers accept them, both follow the ride live."
    ),
    version="1.0.0"
)

@app.on_event("startup")
async def startup_event():
    logger.info("Starting Corp Keke")

    try:
        await mongo_client.ping()
        await mongo_client.ensure_indexes()
        await redis_client.ping()
    except Exception as e:
        logger.error(f"Failed to start services: {e}")
        raise

    try:
        await producer.connect(hub=change_hub)
    except Exception as e:
        logger.warning(f"RabbitMQ unavailable, live updates limited to this process: {e}")

    logger.info("Corp Keke started")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Stopping Corp Keke")
    try:
        await producer.close()
    except Exception as e:
        logger.error(f"Failed to close producer: {e}")
    await change_hub.drain()
    await redis_client.close()
    mongo_client.close()

@app.get("/", tags=["Health"])
async def root():
    return {
        "message": "Corp Kèkè is running! Fast, Reliable & Designed for Corpers",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "rides": "/rides",
            "geocode": "/geocode?q={query}",
            "passenger_feed": "/ws/passenger?token={token}",
            "driver_feed": "/ws/driver?token={token}"
        }
    }

@app.get("/health", tags=["Health"])
async def health_check():
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "services": {}
    }

    try:
        await mongo_client.ping()
        health_status["services"]["mongodb"] = "healthy"
    except Exception as e:
        health_status["services"]["mongodb"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    try:
        await redis_client.ping()
        health_status["services"]["redis"] = "healthy"
    except Exception as e:
        health_status["services"]["redis"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    if producer.connected:
        health_status["services"]["rabbitmq"] = "healthy"
    else:
        health_status["services"]["rabbitmq"] = "unhealthy: not connected"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)

@app.get("/me", response_model=UserProfile, tags=["Auth"])
async def read_profile(profile: UserProfile = Depends(get_profile)):
    return profile

@app.post("/auth/sign-out", tags=["Auth"])
async def sign_out(
    user: CurrentUser = Depends(get_current_user),
    token: Optional[str] = Depends(bearer_token),
    sessions: SessionStore = Depends(get_sessions),
):
    try:
        await sessions.sign_out(token)
        logger.info(f"User {user.id} signed out")
        return {"message": "Signed out"}

    except Exception as e:
        logger.error(f"Failed to sign out: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sign out"
        )

@app.get("/geocode", response_model=GeocodeResponse, tags=["Geocoding"])
async def geocode(
    q: str = Query("", description="Free-text address"),
    geocoder: MapboxGeocoder = Depends(get_geocoder),
):
    if not geocoder.enabled:
        return GeocodeResponse(enabled=False)

    try:
        suggestions = await geocoder.search(q)
        return GeocodeResponse(enabled=True, suggestions=suggestions)

    except requests.RequestException:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch locations. Please try again."
        )

@app.post(
    "/rides",
    response_model=RideCreated,
    status_code=status.HTTP_201_CREATED,
    tags=["Rides"]
)
async def request_ride(
    body: RideCreate,
    profile: UserProfile = Depends(require_passenger),
    service: RideService = Depends(get_ride_service),
    geocoder: MapboxGeocoder = Depends(get_geocoder),
):
    try:
        ride = await service.request_ride(profile.id, body.pickup, body.dropoff, geocoder.enabled)
        return RideCreated(ride_id=ride.id, ride=ride)

    except RideRequestError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Failed to create ride request: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create ride request"
        )

@app.get(
    "/rides",
    response_model=Union[DriverRides, List[Ride]],
    tags=["Rides"]
)
async def list_rides(
    profile: UserProfile = Depends(get_profile),
    store: RideStore = Depends(get_ride_store),
):
    try:
        if profile.role == UserRole.DRIVER.value:
            pending = await store.select_rides_with({"status": RideStatus.PENDING.value}, "passenger")
            accepted = await store.select_rides_with(
                {"driver_id": profile.id, "status": RideStatus.ACCEPTED.value}, "passenger"
            )
            logger.info(f"Listing {len(pending)} pending and {len(accepted)} accepted rides for {profile.id}")
            return DriverRides(pending=pending, accepted=accepted)

        rides = await store.select_rides_with({"passenger_id": profile.id}, "driver")
        logger.info(f"Listing {len(rides)} rides for passenger {profile.id}")
        return rides

    except Exception as e:
        logger.error(f"Failed to list rides: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list rides"
        )

@app.post("/rides/{ride_id}/accept", response_model=TransitionOutcome, tags=["Rides"])
async def accept_ride(
    ride_id: str,
    profile: UserProfile = Depends(require_driver),
    service: RideService = Depends(get_ride_service),
):
    try:
        return await service.accept_ride(ride_id, profile.id)

    except Exception as e:
        logger.error(f"Failed to accept ride {ride_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to accept ride"
        )

@app.post("/rides/{ride_id}/complete", response_model=TransitionOutcome, tags=["Rides"])
async def complete_ride(
    ride_id: str,
    profile: UserProfile = Depends(require_driver),
    service: RideService = Depends(get_ride_service),
):
    try:
        return await service.complete_ride(ride_id, profile.id)

    except Exception as e:
        logger.error(f"Failed to complete ride {ride_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to complete ride"
        )


async def _open_feed(
    websocket: WebSocket, token: Optional[str], sessions: SessionStore, store: RideStore, role: UserRole
) -> Optional[UserProfile]:
    await websocket.accept()
    try:
        _, profile = await resolve_profile(token, sessions, store)
        check_role(profile, role)
    except ProfileError as e:
        await websocket.send_json({"type": "error", **e.detail})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None
    return profile

async def _run_feed(websocket: WebSocket, dashboard, handle_message=None):
    try:
        async with dashboard.live():
            await websocket.send_json(dashboard.snapshot())
            while True:
                text = await websocket.receive_text()
                if handle_message is None:
                    continue
                try:
                    message = json.loads(text)
                except ValueError:
                    await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                    continue
                await handle_message(message)

    except WebSocketDisconnect:
        logger.info(f"{dashboard.role.capitalize()} {dashboard.user_id} left the dashboard")
    except (PyMongoError, ValidationError) as e:
        logger.error(f"Failed to load {dashboard.role} dashboard: {e}")
        await websocket.send_json({"type": "error", "message": "Failed to load rides"})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)

@app.websocket("/ws/passenger")
async def passenger_feed(
    websocket: WebSocket,
    token: Optional[str] = None,
    sessions: SessionStore = Depends(get_sessions),
    store: RideStore = Depends(get_ride_store),
    hub: RideChangeHub = Depends(get_change_hub),
):
    profile = await _open_feed(websocket, token, sessions, store, UserRole.PASSENGER)
    if profile is None:
        return

    async def push(dashboard):
        await websocket.send_json(dashboard.snapshot())

    await _run_feed(websocket, PassengerDashboard(store, hub, profile.id, on_change=push))

@app.websocket("/ws/driver")
async def driver_feed(
    websocket: WebSocket,
    token: Optional[str] = None,
    sessions: SessionStore = Depends(get_sessions),
    store: RideStore = Depends(get_ride_store),
    hub: RideChangeHub = Depends(get_change_hub),
    service: RideService = Depends(get_ride_service),
):
    profile = await _open_feed(websocket, token, sessions, store, UserRole.DRIVER)
    if profile is None:
        return

    async def push(dashboard):
        await websocket.send_json(dashboard.snapshot())

    dashboard = DriverDashboard(store, hub, service, profile.id, on_change=push)

    async def handle_message(message):
        if not isinstance(message, dict) or message.get("action") != "accept" or not message.get("ride_id"):
            await websocket.send_json({"type": "error", "message": "Unsupported action"})
            return
        outcome = await dashboard.accept(str(message["ride_id"]))
        await websocket.send_json({
            "type": "accept_result",
            "ride_id": message["ride_id"],
            **outcome.model_dump(mode="json")
        })

    await _run_feed(websocket, dashboard, handle_message)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
