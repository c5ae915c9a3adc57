import os

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "corp_keke")
RIDES_COLLECTION = os.getenv("RIDES_COLLECTION", "rides")
USERS_COLLECTION = os.getenv("USERS_COLLECTION", "users")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "604800"))

RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "localhost")
RABBITMQ_PORT = os.getenv("RABBITMQ_PORT", "5672")
RABBITMQ_USER = os.getenv("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.getenv("RABBITMQ_PASSWORD", "guest")
RIDE_EXCHANGE = os.getenv("RIDE_EXCHANGE", "ride_changes")

rabbitmq_url = f"amqp://{RABBITMQ_USER}:{RABBITMQ_PASSWORD}@{RABBITMQ_HOST}:{RABBITMQ_PORT}/"

# Geocoding is only switched on for a real-looking access token
MAPBOX_TOKEN = os.getenv("MAPBOX_TOKEN", "")
MAPBOX_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
MAPBOX_MIN_TOKEN_LENGTH = 20

# Kano, Nigeria (lng, lat)
GEOCODER_PROXIMITY = (8.5167, 11.9667)
GEOCODER_COUNTRY = "NG"
GEOCODER_LIMIT = 5
GEOCODER_MIN_QUERY_LENGTH = 3
GEOCODER_TIMEOUT = 10

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))
