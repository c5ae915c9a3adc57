import asyncio
import logging
from typing import List, Tuple
from urllib.parse import quote

import requests

from keke import config
from keke.models.ride_model import GeocodeSuggestion

logger = logging.getLogger(__name__)


class MapboxGeocoder:
    def __init__(
        self,
        token: str = config.MAPBOX_TOKEN,
        proximity: Tuple[float, float] = config.GEOCODER_PROXIMITY,
        country: str = config.GEOCODER_COUNTRY,
        limit: int = config.GEOCODER_LIMIT,
    ):
        self.token = token or ""
        self.proximity = proximity
        self.country = country
        self.limit = limit

    @property
    def enabled(self) -> bool:
        return len(self.token) > config.MAPBOX_MIN_TOKEN_LENGTH

    def _search(self, query: str) -> List[GeocodeSuggestion]:
        response = requests.get(
            f"{config.MAPBOX_URL}/{quote(query)}.json",
            params={
                "access_token": self.token,
                "proximity": f"{self.proximity[0]},{self.proximity[1]}",
                "country": self.country,
                "limit": self.limit,
            },
            timeout=config.GEOCODER_TIMEOUT,
        )
        response.raise_for_status()

        suggestions = []
        for feature in response.json().get("features") or []:
            center = feature.get("center") or []
            if len(center) != 2:
                continue
            suggestions.append(
                GeocodeSuggestion(label=feature.get("place_name", ""), lng=center[0], lat=center[1])
            )
        return suggestions

    async def search(self, query: str) -> List[GeocodeSuggestion]:
        query = query.strip()
        if len(query) < config.GEOCODER_MIN_QUERY_LENGTH or not self.enabled:
            return []

        try:
            return await asyncio.to_thread(self._search, query)
        except requests.RequestException as e:
            logger.error(f"Mapbox lookup failed for {query!r}: {e}")
            raise


geocoder = MapboxGeocoder()
