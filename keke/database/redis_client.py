import json
import redis.asyncio as aioredis
from redis.exceptions import ConnectionError, RedisError
from typing import Optional
import logging

from keke import config
from keke.models.user_model import CurrentUser

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

class RedisClient:
    _instance: Optional['RedisClient'] = None
    _client: Optional[aioredis.Redis] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def connect(self):
        self._client = aioredis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        logger.info(f"Redis client ready for {config.REDIS_URL}")

    async def ping(self):
        try:
            await self.get_client().ping()
        except ConnectionError as e:
            logger.error(f"Redis connection error: {e}")
            raise

    def get_client(self) -> aioredis.Redis:
        if self._client is None:
            self.connect()
        return self._client

    async def close(self):
        if self._client:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.warning(f"Error while closing Redis: {e}")
            finally:
                self._client = None

redis_client = RedisClient()


class SessionStore:
    """Sessions issued by the auth provider, keyed by bearer token."""

    def __init__(self, client: aioredis.Redis, ttl: int = config.SESSION_TTL_SECONDS):
        self.client = client
        self.ttl = ttl

    @staticmethod
    def _key(token: str) -> str:
        return f"session:{token}"

    async def create_session(self, token: str, user: CurrentUser) -> None:
        try:
            await self.client.set(self._key(token), user.model_dump_json(), ex=self.ttl)
            logger.info(f"Session opened for user {user.id}")
        except RedisError as e:
            logger.error(f"Failed to store session: {e}")
            raise

    async def get_current_user(self, token: Optional[str]) -> Optional[CurrentUser]:
        if not token:
            return None
        try:
            raw = await self.client.get(self._key(token))
        except RedisError as e:
            logger.error(f"Failed to read session: {e}")
            raise

        if raw is None:
            return None
        try:
            return CurrentUser(**json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Discarding malformed session: {e}")
            return None

    async def sign_out(self, token: str) -> bool:
        try:
            removed = await self.client.delete(self._key(token))
        except RedisError as e:
            logger.error(f"Failed to delete session: {e}")
            raise
        return removed > 0


def get_session_store() -> SessionStore:
    return SessionStore(redis_client.get_client())
