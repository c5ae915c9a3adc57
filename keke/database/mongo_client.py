from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure
from typing import Optional
import logging

from keke import config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

class MongoDBClient:
    _instance: Optional['MongoDBClient'] = None
    _client: Optional[AsyncIOMotorClient] = None
    _db = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def connect(self):
        # motor connects lazily; ping() is what actually reaches the server
        self._client = AsyncIOMotorClient(
            config.MONGO_URI,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=10000
        )
        self._db = self._client[config.MONGO_DB]
        logger.info(f"MongoDB client ready: {config.MONGO_URI}/{config.MONGO_DB}")

    async def ping(self):
        try:
            await self.get_database().client.admin.command("ping")
        except ConnectionFailure as e:
            logger.error(f"Failed to reach MongoDB: {e}")
            raise

    async def ensure_indexes(self):
        rides = self.get_collection(config.RIDES_COLLECTION)
        await rides.create_index([("id", ASCENDING)], unique=True)
        await rides.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
        await rides.create_index([("passenger_id", ASCENDING), ("created_at", DESCENDING)])
        await rides.create_index([("driver_id", ASCENDING), ("created_at", DESCENDING)])

        users = self.get_collection(config.USERS_COLLECTION)
        await users.create_index([("id", ASCENDING)], unique=True)
        logger.info("MongoDB indexes ensured")

    def get_database(self):
        if self._db is None:
            self.connect()
        return self._db

    def get_collection(self, collection_name: str):
        db = self.get_database()
        return db[collection_name]

    def close(self):
        if self._client:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("MongoDB connection closed.")

mongo_client = MongoDBClient()

def get_rides_collection():
    return mongo_client.get_collection(config.RIDES_COLLECTION)

def get_users_collection():
    return mongo_client.get_collection(config.USERS_COLLECTION)
